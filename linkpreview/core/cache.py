"""Keyed, TTL-based, tag-invalidatable cache used for preview metadata.

Entries record the logical key they were stored under and are checked on
read, so a lookup can never hand back a value stored for another URL even
if two keys hash to the same slot.
"""

import hashlib
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

from linkpreview.core.redis import ResilientRedis

logger = logging.getLogger(__name__)

CACHE_PREFIX = "cache:link-preview:"
TAG_PREFIX = "cache-tag:link-preview:"
MEMORY_CACHE_MAX_ENTRIES = 5000


def cache_key(namespace: str, key: str) -> str:
    """SHA256-based storage key for a logical key within a namespace."""
    digest = hashlib.sha256(f"{namespace}:{key}".encode()).hexdigest()
    return f"{CACHE_PREFIX}{namespace}:{digest}"


class TaggedCache(ABC):
    def __init__(self, namespace: str, default_ttl: int):
        self.namespace = namespace
        self.default_ttl = default_ttl

    @abstractmethod
    async def get(self, key: str) -> dict | None:
        """Cached value for ``key``, or None on miss/expiry."""

    @abstractmethod
    async def set(
        self, key: str, value: dict, ttl: int | None = None, tags: tuple[str, ...] = ()
    ) -> None:
        """Store ``value``; overwrites any previous entry (last write wins)."""

    @abstractmethod
    async def invalidate_tag(self, tag: str) -> int:
        """Drop every entry carrying ``tag``. Returns the number of entries removed."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


@dataclass
class CacheEntry:
    key: str
    value: dict
    expires_at: float
    tags: frozenset[str] = field(default_factory=frozenset)


class MemoryTaggedCache(TaggedCache):
    """Per-process cache with an injectable clock.

    Expired entries are swept on every write and the oldest entries are
    evicted once ``max_entries`` is reached.
    """

    def __init__(
        self,
        namespace: str,
        default_ttl: int,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = MEMORY_CACHE_MAX_ENTRIES,
    ):
        super().__init__(namespace, default_ttl)
        self._clock = clock
        self._max_entries = max_entries
        self._entries: dict[str, CacheEntry] = {}
        self._tags: dict[str, set[str]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _discard(self, storage_key: str) -> CacheEntry | None:
        entry = self._entries.pop(storage_key, None)
        if entry is None:
            return None
        for tag in entry.tags:
            members = self._tags.get(tag)
            if members is None:
                continue
            members.discard(storage_key)
            if not members:
                del self._tags[tag]
        return entry

    def _sweep(self) -> None:
        now = self._clock()
        expired = [k for k, entry in self._entries.items() if entry.expires_at <= now]
        for storage_key in expired:
            self._discard(storage_key)
        # Insertion order doubles as age order
        while len(self._entries) >= self._max_entries:
            self._discard(next(iter(self._entries)))

    async def get(self, key: str) -> dict | None:
        storage_key = cache_key(self.namespace, key)
        entry = self._entries.get(storage_key)
        if entry is None:
            return None
        if entry.key != key:
            return None
        if entry.expires_at <= self._clock():
            self._discard(storage_key)
            return None
        return entry.value

    async def set(
        self, key: str, value: dict, ttl: int | None = None, tags: tuple[str, ...] = ()
    ) -> None:
        storage_key = cache_key(self.namespace, key)
        self._discard(storage_key)
        self._sweep()
        expires_at = self._clock() + (ttl or self.default_ttl)
        self._entries[storage_key] = CacheEntry(key, value, expires_at, frozenset(tags))
        for tag in tags:
            self._tags.setdefault(tag, set()).add(storage_key)

    async def invalidate_tag(self, tag: str) -> int:
        removed = 0
        for storage_key in list(self._tags.get(tag, ())):
            if self._discard(storage_key) is not None:
                removed += 1
        self._tags.pop(tag, None)
        return removed


class RedisTaggedCache(TaggedCache):
    """Shared cache on Redis. Each tag is a Redis set of storage keys.

    Redis failures degrade to cache misses (see ResilientRedis).
    """

    def __init__(self, redis: ResilientRedis, namespace: str, default_ttl: int):
        super().__init__(namespace, default_ttl)
        self._redis = redis

    def _tag_key(self, tag: str) -> str:
        return f"{TAG_PREFIX}{tag}"

    async def get(self, key: str) -> dict | None:
        raw = await self._redis.get(cache_key(self.namespace, key))
        if not raw:
            return None
        try:
            entry: dict[str, Any] = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Discarding undecodable cache entry for {key}")
            return None
        if entry.get("key") != key:
            return None
        return entry.get("value")

    async def set(
        self, key: str, value: dict, ttl: int | None = None, tags: tuple[str, ...] = ()
    ) -> None:
        ttl = ttl or self.default_ttl
        storage_key = cache_key(self.namespace, key)
        payload = json.dumps({"key": key, "value": value, "tags": list(tags)})
        await self._redis.set(storage_key, payload, ex=ttl)
        for tag in tags:
            tag_key = self._tag_key(tag)
            await self._redis.sadd(tag_key, storage_key)
            # Tag sets outlive their members by at most one TTL
            await self._redis.expire(tag_key, ttl)
        logger.debug(f"Cached {key} (TTL={ttl}s)")

    async def invalidate_tag(self, tag: str) -> int:
        tag_key = self._tag_key(tag)
        members = await self._redis.smembers(tag_key)
        removed = await self._redis.delete(*members) if members else 0
        await self._redis.delete(tag_key)
        return int(removed or 0)

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def close(self) -> None:
        await self._redis.close()
