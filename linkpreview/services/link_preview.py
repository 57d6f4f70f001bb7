"""Link preview pipeline: normalize, guard, cache, fetch, extract, adapt.

``LinkPreviewService`` owns the HTTP clients and the metadata cache. The
renderer calls ``get_link_preview_map`` with every URL found in a document;
the API calls ``get_link_preview`` for single lookups.

Upstream faults never surface to callers: timeouts, DNS errors, non-2xx and
non-HTML responses all produce the fallback record, which is cached like any
other result so a dead link is not refetched on every render.
"""

import asyncio
import logging
import time
from typing import Iterable
from urllib.parse import quote, urlsplit

import httpx
from pydantic import ValidationError

from linkpreview.core.cache import TaggedCache
from linkpreview.core.metrics import (
    link_preview_cache_lookups_total,
    link_preview_fetch_duration_seconds,
    link_preview_fetch_total,
)
from linkpreview.schemas.link_preview import PreviewMetadata
from linkpreview.services.adapters import (
    SPECIAL_ADAPTERS,
    AdapterContext,
    LinkPreviewAdapter,
    resolve_link_preview_by_adapter,
)
from linkpreview.services.concurrency import map_with_concurrency
from linkpreview.services.image_proxy import (
    IMAGE_PROXY_PATH,
    ONE_DAY_SECONDS,
    to_link_preview_image_proxy_url,
)
from linkpreview.services.metadata import MAX_HEAD_CHARS, parse_metadata
from linkpreview.services.network_safety import (
    UnsafeTargetError,
    get_hostname,
    guard_outbound_request,
    is_private_hostname,
)
from linkpreview.services.stream_limit import (
    parse_charset_from_content_type,
    read_limited_text,
)
from linkpreview.services.url_normalize import normalize_preview_url

logger = logging.getLogger(__name__)

LINK_PREVIEW_CACHE_NAMESPACE = "link-preview-metadata-v5"
LINK_PREVIEW_CACHE_TAG = "link-preview-metadata"
LINK_PREVIEW_CACHE_TTL_SECONDS = ONE_DAY_SECONDS

FETCH_TIMEOUT_SECONDS = 8.0
CONNECT_TIMEOUT_SECONDS = 5.0
MAX_REDIRECTS = 5
HTML_BYTE_LIMIT = MAX_HEAD_CHARS
DEFAULT_CONCURRENCY = 6

USER_AGENT = "Mozilla/5.0 (compatible; LinkPreview/1.0)"
HTML_ACCEPT = "text/html,application/xhtml+xml"
HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")


def build_http_client(
    transport: httpx.AsyncBaseTransport | None = None,
    timeout: float = FETCH_TIMEOUT_SECONDS,
) -> httpx.AsyncClient:
    """Client for attacker-influenced URLs: every hop, redirects included, is hostname-guarded."""
    return httpx.AsyncClient(
        transport=transport,
        follow_redirects=True,
        max_redirects=MAX_REDIRECTS,
        http2=True,
        timeout=httpx.Timeout(timeout, connect=CONNECT_TIMEOUT_SECONDS),
        headers={"User-Agent": USER_AGENT},
        event_hooks={"request": [guard_outbound_request]},
    )


def build_relay_client(
    transport: httpx.AsyncBaseTransport | None = None,
    timeout: float = 10.0,
) -> httpx.AsyncClient:
    """Client for same-origin relays; the target was validated before the call."""
    return httpx.AsyncClient(
        transport=transport,
        follow_redirects=False,
        timeout=timeout,
        headers={"User-Agent": USER_AGENT},
    )


def create_fallback(url: str) -> PreviewMetadata:
    hostname = get_hostname(url)
    default_icon = (
        f"https://www.google.com/s2/favicons?domain={quote(hostname, safe='')}&sz=32"
        if hostname
        else ""
    )
    return PreviewMetadata(
        url=url,
        hostname=hostname,
        title=hostname or url,
        description="",
        image="",
        icon=to_link_preview_image_proxy_url(default_icon),
    )


def _proxied(image_url: str) -> str:
    if image_url.startswith(f"{IMAGE_PROXY_PATH}?"):
        return image_url
    return to_link_preview_image_proxy_url(image_url)


class LinkPreviewService:
    def __init__(
        self,
        cache: TaggedCache,
        client: httpx.AsyncClient | None = None,
        relay_client: httpx.AsyncClient | None = None,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        fetch_timeout: float = FETCH_TIMEOUT_SECONDS,
        adapters: tuple[LinkPreviewAdapter, ...] = SPECIAL_ADAPTERS,
    ):
        self.cache = cache
        self.client = client or build_http_client()
        self.relay_client = relay_client or build_relay_client()
        self.concurrency = concurrency
        self.fetch_timeout = fetch_timeout
        self.adapters = adapters

    async def aclose(self) -> None:
        await self.client.aclose()
        await self.relay_client.aclose()
        await self.cache.close()

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def get_link_preview(self, raw_url: str) -> PreviewMetadata | None:
        """Preview for one caller-supplied URL; None if it fails normalization."""
        normalized_url = normalize_preview_url(raw_url)
        if not normalized_url:
            return None
        return await self.get_cached_link_preview(normalized_url)

    async def get_link_preview_map(self, urls: Iterable[str]) -> dict[str, PreviewMetadata]:
        """Resolve many URLs with bounded concurrency.

        Invalid entries are dropped and duplicates collapse onto one
        normalized key. Every key that normalized gets a record, falling
        back to the minimal preview if the fetch failed.
        """
        unique_urls = list(
            dict.fromkeys(u for u in (normalize_preview_url(raw) for raw in urls) if u)
        )
        if not unique_urls:
            return {}

        records = await map_with_concurrency(
            unique_urls, self.concurrency, self.get_cached_link_preview
        )
        return dict(zip(unique_urls, records))

    async def get_cached_link_preview(self, normalized_url: str) -> PreviewMetadata:
        cached = await self.cache.get(normalized_url)
        if cached is not None:
            try:
                data = PreviewMetadata.model_validate(cached)
                link_preview_cache_lookups_total.labels(result="hit").inc()
                return data
            except ValidationError as e:
                logger.warning(f"Ignoring malformed cache entry for {normalized_url}: {e}")

        link_preview_cache_lookups_total.labels(result="miss").inc()
        data = await self.fetch_link_preview(normalized_url)
        await self.cache.set(
            normalized_url,
            data.model_dump(),
            ttl=LINK_PREVIEW_CACHE_TTL_SECONDS,
            tags=(LINK_PREVIEW_CACHE_TAG,),
        )
        return data

    async def invalidate(self, tag: str = LINK_PREVIEW_CACHE_TAG) -> int:
        removed = await self.cache.invalidate_tag(tag)
        logger.info(f"Invalidated {removed} cached previews for tag {tag}")
        return removed

    # ------------------------------------------------------------------
    # Cache-miss path
    # ------------------------------------------------------------------

    async def fetch_link_preview(self, normalized_url: str) -> PreviewMetadata:
        """Fetch and extract metadata for an already-normalized URL. Never raises on upstream faults."""
        fallback = create_fallback(normalized_url)
        start = time.monotonic()
        outcome = "error"
        try:
            data, outcome = await asyncio.wait_for(
                self._fetch_and_extract(normalized_url, fallback),
                timeout=self.fetch_timeout,
            )
            return data
        except asyncio.TimeoutError:
            outcome = "timeout"
            logger.info(f"Link preview timed out after {self.fetch_timeout}s: {normalized_url}")
            return fallback
        except UnsafeTargetError as e:
            outcome = "blocked"
            logger.warning(f"Link preview redirect blocked for {normalized_url}: {e}")
            return fallback
        except asyncio.CancelledError:
            outcome = "cancelled"
            logger.debug(f"Link preview fetch cancelled: {normalized_url}")
            raise
        except httpx.HTTPError as e:
            logger.info(f"Link preview fetch failed for {normalized_url}: {e!r}")
            return fallback
        except Exception as e:
            logger.warning(f"Link preview extraction failed for {normalized_url}: {e}")
            return fallback
        finally:
            link_preview_fetch_total.labels(outcome=outcome).inc()
            link_preview_fetch_duration_seconds.observe(time.monotonic() - start)

    async def _fetch_and_extract(
        self, normalized_url: str, fallback: PreviewMetadata
    ) -> tuple[PreviewMetadata, str]:
        async with self.client.stream(
            "GET", normalized_url, headers={"Accept": HTML_ACCEPT}
        ) as response:
            if not response.is_success:
                logger.debug(f"Link preview got {response.status_code} for {normalized_url}")
                return fallback, "fallback"

            content_type = response.headers.get("content-type", "").lower()
            if not any(t in content_type for t in HTML_CONTENT_TYPES):
                logger.debug(f"Link preview skipped {content_type!r} for {normalized_url}")
                return fallback, "fallback"

            charset = parse_charset_from_content_type(content_type)
            html = await read_limited_text(response.aiter_bytes(), HTML_BYTE_LIMIT, charset)
            resolved_url = str(response.url)

        hostname = get_hostname(resolved_url)
        if is_private_hostname(hostname):
            logger.warning(
                f"Link preview for {normalized_url} resolved to blocked host {hostname!r}"
            )
            return fallback, "blocked"

        metadata = parse_metadata(html, resolved_url)
        ctx = AdapterContext(
            normalized_url=normalized_url,
            resolved_url=resolved_url,
            hostname=hostname,
            parsed_url=urlsplit(resolved_url),
            metadata=metadata,
            fallback=fallback,
        )
        adapted = resolve_link_preview_by_adapter(ctx, self.adapters)

        final_url = (adapted.get("url") or resolved_url).strip() or resolved_url
        final_hostname = (adapted.get("hostname") or hostname).strip() or hostname
        final_icon = _proxied((adapted.get("icon") or "").strip()) or fallback.icon

        data = PreviewMetadata(
            url=final_url,
            hostname=final_hostname,
            title=(adapted.get("title") or "").strip() or fallback.title,
            description=(adapted.get("description") or "").strip(),
            image=_proxied((adapted.get("image") or "").strip()),
            icon=final_icon,
        )
        return data, "ok"
