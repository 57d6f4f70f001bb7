"""Upstream fetches behind the image proxy and OG re-proxy endpoints.

Neither path caches bytes: each request re-validates its target and
streams the upstream body back through a byte ceiling.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable

import httpx

from linkpreview.core.exceptions import (
    BadRequestError,
    PayloadTooLargeError,
    UpstreamError,
)
from linkpreview.core.metrics import image_proxy_bytes_total
from linkpreview.services.image_proxy import (
    ResolvedImageProxy,
    build_image_cache_control,
    build_safe_image_proxy_response_headers,
)
from linkpreview.services.network_safety import (
    UnsafeTargetError,
    get_hostname,
    is_private_hostname,
)
from linkpreview.services.stream_limit import ByteLimitExceededError, limit_byte_stream

logger = logging.getLogger(__name__)

IMAGE_FETCH_TIMEOUT_SECONDS = 10.0
MAX_IMAGE_BYTES = 8 * 1024 * 1024
IMAGE_ACCEPT = "image/*,*/*;q=0.8"
DEFAULT_OG_CACHE_CONTROL = (
    "public, max-age=3600, s-maxage=86400, stale-while-revalidate=86400"
)
OG_RELAY_HEADERS = (
    "content-type",
    "content-length",
    "cache-control",
    "etag",
    "last-modified",
    "vary",
    "x-content-type-options",
)


@dataclass
class ProxiedImage:
    """An upstream image ready to send: either buffered ``body`` or a live ``stream``."""

    status_code: int
    headers: dict[str, str]
    body: bytes | None = None
    stream: AsyncIterator[bytes] | None = None
    close: Callable[[], Awaitable[None]] | None = field(default=None, repr=False)


def _declared_length(response: httpx.Response) -> int | None:
    raw = response.headers.get("content-length")
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value >= 0 else None


def _is_encoded(response: httpx.Response) -> bool:
    return response.headers.get("content-encoding", "identity").lower() != "identity"


async def _collect_limited(response: httpx.Response, max_bytes: int) -> bytes:
    buffer = bytearray()
    async for chunk in limit_byte_stream(response.aiter_bytes(), max_bytes):
        buffer.extend(chunk)
    return bytes(buffer)


async def _stream_and_close(
    response: httpx.Response, max_bytes: int, endpoint: str
) -> AsyncIterator[bytes]:
    """Relay ``response`` through the byte ceiling; the upstream is closed however iteration ends."""
    try:
        async for chunk in limit_byte_stream(response.aiter_bytes(), max_bytes):
            image_proxy_bytes_total.labels(endpoint=endpoint).inc(len(chunk))
            yield chunk
    finally:
        await response.aclose()


async def fetch_proxied_image(
    client: httpx.AsyncClient,
    resolved: ResolvedImageProxy,
    max_bytes: int = MAX_IMAGE_BYTES,
    timeout: float = IMAGE_FETCH_TIMEOUT_SECONDS,
) -> ProxiedImage:
    """Fetch ``resolved`` and validate it as an image of acceptable size.

    Raises BadRequestError for blocked targets, PayloadTooLargeError when
    the body passes ``max_bytes`` and UpstreamError for anything else
    that goes wrong upstream.
    """
    url = resolved.normalized_url
    rule = resolved.rule
    if is_private_hostname(get_hostname(url)):
        raise BadRequestError("Blocked hostname")

    headers = {"Accept": IMAGE_ACCEPT}
    if rule.referer:
        headers["Referer"] = rule.referer

    request = client.build_request("GET", url, headers=headers, timeout=timeout)
    try:
        response = await asyncio.wait_for(client.send(request, stream=True), timeout=timeout)
    except UnsafeTargetError:
        raise BadRequestError("Blocked redirected hostname")
    except (httpx.HTTPError, asyncio.TimeoutError) as e:
        logger.info(f"Image proxy fetch failed for {url}: {e!r}")
        raise UpstreamError("Failed to fetch image")

    handed_off = False
    try:
        if not response.is_success:
            logger.info(f"Image proxy got {response.status_code} for {url}")
            raise UpstreamError("Failed to fetch image")

        if is_private_hostname(get_hostname(str(response.url))):
            raise BadRequestError("Blocked redirected hostname")

        content_type = response.headers.get("content-type", "").lower()
        if not content_type.startswith("image/"):
            raise UpstreamError("Upstream content is not an image")

        cache_control = build_image_cache_control(rule.cache_ttl_seconds)
        out_headers = build_safe_image_proxy_response_headers(response.headers, cache_control)
        out_headers["content-type"] = content_type

        declared = _declared_length(response)
        if declared is not None and declared > max_bytes:
            logger.info(f"Image proxy rejected {url}: declared {declared} bytes")
            raise PayloadTooLargeError("Image too large")

        if declared is not None and not _is_encoded(response):
            out_headers["content-length"] = str(declared)
            handed_off = True
            return ProxiedImage(
                status_code=200,
                headers=out_headers,
                stream=_stream_and_close(response, max_bytes, "image"),
                close=response.aclose,
            )

        try:
            body = await asyncio.wait_for(_collect_limited(response, max_bytes), timeout=timeout)
        except ByteLimitExceededError:
            logger.info(f"Image proxy rejected {url}: body exceeded {max_bytes} bytes")
            raise PayloadTooLargeError("Image too large")
        except (httpx.HTTPError, asyncio.TimeoutError) as e:
            logger.info(f"Image proxy body read failed for {url}: {e!r}")
            raise UpstreamError("Failed to fetch image")

        image_proxy_bytes_total.labels(endpoint="image").inc(len(body))
        out_headers["content-length"] = str(len(body))
        return ProxiedImage(status_code=200, headers=out_headers, body=body)
    finally:
        if not handed_off:
            await response.aclose()


async def relay_og_image(
    client: httpx.AsyncClient, proxy_url: str, max_bytes: int = MAX_IMAGE_BYTES
) -> ProxiedImage:
    """Fetch an already-validated same-origin proxy URL and pass the result through.

    Status and body are relayed as-is; only cache/content headers are kept
    and a default Cache-Control is added when upstream sent none. Bodies
    past ``max_bytes`` are refused up front when declared and aborted
    mid-stream otherwise.
    """
    request = client.build_request("GET", proxy_url, headers={"Accept": IMAGE_ACCEPT})
    try:
        response = await client.send(request, stream=True)
    except httpx.HTTPError as e:
        logger.info(f"OG re-proxy fetch failed for {proxy_url}: {e!r}")
        raise UpstreamError("Failed to fetch image")

    declared = _declared_length(response)
    if declared is not None and declared > max_bytes:
        await response.aclose()
        logger.info(f"OG re-proxy rejected {proxy_url}: declared {declared} bytes")
        raise PayloadTooLargeError("Image too large")

    headers = {}
    for key in OG_RELAY_HEADERS:
        value = response.headers.get(key)
        if value:
            headers[key] = value
    if _is_encoded(response):
        headers.pop("content-length", None)
    headers.setdefault("cache-control", DEFAULT_OG_CACHE_CONTROL)

    return ProxiedImage(
        status_code=response.status_code,
        headers=headers,
        stream=_stream_and_close(response, max_bytes, "og"),
        close=response.aclose,
    )
