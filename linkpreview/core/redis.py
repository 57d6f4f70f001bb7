"""Resilient Redis client with graceful degradation.

When Redis is unavailable, operations return defaults instead of raising,
so a Redis outage turns preview cache lookups into misses rather than
failed page renders.
"""

import logging
import time

import redis.asyncio as aioredis

from linkpreview.config import settings

logger = logging.getLogger(__name__)


class ResilientRedis:
    """Wraps an async Redis client with reconnection and a small circuit breaker.

    - Connection/timeout errors are logged and turned into defaults
    - A failed connection is dropped and recreated on the next call
    - After 5 consecutive failures, skip Redis for 10s
    """

    CB_THRESHOLD = 5
    CB_COOLDOWN = 10.0

    def __init__(self, url: str, max_connections: int = 50):
        self._url = url
        self._max_connections = max_connections
        self._client: aioredis.Redis | None = None
        self._consecutive_failures = 0
        self._circuit_open_until = 0.0

    def _create_client(self) -> aioredis.Redis:
        return aioredis.from_url(
            self._url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=self._max_connections,
            socket_connect_timeout=5,
            socket_timeout=5,
        )

    @property
    def client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = self._create_client()
        return self._client

    def _is_circuit_open(self) -> bool:
        if self._consecutive_failures >= self.CB_THRESHOLD:
            if time.monotonic() < self._circuit_open_until:
                return True
            # Cooldown expired, allow a probe
            self._consecutive_failures = 0
        return False

    def _record_success(self):
        self._consecutive_failures = 0

    def _record_failure(self):
        self._consecutive_failures += 1
        if self._consecutive_failures >= self.CB_THRESHOLD:
            self._circuit_open_until = time.monotonic() + self.CB_COOLDOWN
            logger.warning(
                f"Redis circuit breaker OPEN, skipping for {self.CB_COOLDOWN}s"
            )

    async def _safe_op(self, op_name, coro_func, *args, default=None, **kwargs):
        """Execute a Redis operation, returning ``default`` on connection trouble."""
        if self._is_circuit_open():
            return default

        try:
            result = await coro_func(*args, **kwargs)
            self._record_success()
            return result
        except (
            aioredis.ConnectionError,
            aioredis.TimeoutError,
            ConnectionRefusedError,
            OSError,
        ) as e:
            self._record_failure()
            logger.warning(f"Redis {op_name} failed (degraded): {e}")
            self._client = None
            return default

    async def get(self, key):
        return await self._safe_op("get", self.client.get, key)

    async def set(self, key, value, ex: int | None = None):
        return await self._safe_op(
            "set", self.client.set, key, value, ex=ex, default=False
        )

    async def delete(self, *keys):
        if not keys:
            return 0
        return await self._safe_op("delete", self.client.delete, *keys, default=0)

    async def sadd(self, key, *values):
        return await self._safe_op("sadd", self.client.sadd, key, *values, default=0)

    async def smembers(self, key):
        return await self._safe_op("smembers", self.client.smembers, key, default=set())

    async def expire(self, key, seconds):
        return await self._safe_op(
            "expire", self.client.expire, key, seconds, default=False
        )

    async def ping(self):
        return await self._safe_op("ping", self.client.ping, default=False)

    async def close(self):
        if self._client is not None:
            try:
                await self._client.aclose()
            except (aioredis.RedisError, OSError) as e:
                logger.debug(f"Redis close failed: {e}")
            self._client = None


def create_redis_client() -> ResilientRedis:
    return ResilientRedis(settings.REDIS_URL, settings.REDIS_MAX_CONNECTIONS)
