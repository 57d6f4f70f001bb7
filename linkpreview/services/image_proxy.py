"""Image proxy rule table and URL helpers.

Two predicates with different strictness:

- ``resolve_image_proxy`` is default-allow. Any valid http(s) URL resolves;
  a matching rule only adds behaviour (Referer, longer TTL).
- ``is_link_preview_image_whitelisted`` is true only for explicit rule
  matches. The OG re-proxy chain relies on it.
"""

from dataclasses import dataclass
from typing import Callable
from urllib.parse import SplitResult, parse_qs, quote, urljoin, urlsplit

import httpx

from linkpreview.services.network_safety import get_hostname, is_private_hostname
from linkpreview.services.url_normalize import normalize_http_url, serialize_url

ONE_HOUR_SECONDS = 60 * 60
ONE_DAY_SECONDS = 60 * 60 * 24
SEVEN_DAYS_SECONDS = ONE_DAY_SECONDS * 7

IMAGE_PROXY_PATH = "/api/link-preview/image"

BROWSER_MAX_AGE_SECONDS = ONE_HOUR_SECONDS
STALE_WHILE_REVALIDATE_SECONDS = ONE_DAY_SECONDS

SAFE_IMAGE_PROXY_RESPONSE_HEADERS = ("content-type", "etag", "last-modified", "vary")

DOUBAN_IMAGE_HOSTS = (
    "img1.doubanio.com",
    "img2.doubanio.com",
    "img3.doubanio.com",
    "img9.doubanio.com",
)


@dataclass(frozen=True)
class ImageProxyRule:
    id: str
    match: Callable[[SplitResult], bool]
    referer: str | None = None
    cache_ttl_seconds: int = ONE_DAY_SECONDS


@dataclass(frozen=True)
class ResolvedImageProxy:
    normalized_url: str
    rule: ImageProxyRule


DEFAULT_IMAGE_PROXY_RULE = ImageProxyRule(id="default", match=lambda url: True)

IMAGE_PROXY_RULES: tuple[ImageProxyRule, ...] = (
    ImageProxyRule(
        id="douban",
        match=lambda url: url.scheme == "https"
        and url.hostname in DOUBAN_IMAGE_HOSTS
        and url.path.startswith("/"),
        referer="https://book.douban.com/",
        cache_ttl_seconds=ONE_DAY_SECONDS,
    ),
    ImageProxyRule(
        id="google-favicons",
        match=lambda url: url.scheme == "https"
        and url.hostname == "www.google.com"
        and url.path == "/s2/favicons",
        cache_ttl_seconds=SEVEN_DAYS_SECONDS,
    ),
    ImageProxyRule(
        id="github-favicons",
        match=lambda url: url.scheme == "https"
        and url.hostname == "github.githubassets.com"
        and url.path.startswith("/favicons/"),
        cache_ttl_seconds=SEVEN_DAYS_SECONDS,
    ),
)


def _match_rule(parsed: SplitResult) -> ImageProxyRule | None:
    for rule in IMAGE_PROXY_RULES:
        if rule.match(parsed):
            return rule
    return None


def resolve_image_proxy(raw_url: str) -> ResolvedImageProxy | None:
    """Normalized source URL plus the rule that applies to it, or None if not http(s)."""
    parsed = normalize_http_url((raw_url or "").strip())
    if parsed is None:
        return None
    rule = _match_rule(parsed) or DEFAULT_IMAGE_PROXY_RULE
    return ResolvedImageProxy(normalized_url=serialize_url(parsed), rule=rule)


def is_link_preview_image_whitelisted(raw_url: str) -> bool:
    parsed = normalize_http_url((raw_url or "").strip())
    if parsed is None:
        return False
    return _match_rule(parsed) is not None


def to_link_preview_image_proxy_url(raw_image_url: str) -> str:
    """Proxy-relative path for an image URL; '' when the URL cannot be proxied."""
    resolved = resolve_image_proxy(raw_image_url)
    if resolved is None:
        return ""
    if is_private_hostname(get_hostname(resolved.normalized_url)):
        return ""
    return f"{IMAGE_PROXY_PATH}?url={quote(resolved.normalized_url, safe='')}"


def _origin_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}"


def resolve_og_proxy_target(
    raw_url: str, origin: str, fetch_origin: str | None = None
) -> str | None:
    """Absolute image-proxy URL for the OG re-proxy, or None if the chain is unsafe.

    ``raw_url`` must point at ``origin``'s image proxy path and carry a
    whitelisted source image in its ``url`` parameter. The returned URL is
    rebuilt on ``fetch_origin`` when given, so the host that gets fetched
    never comes from ``raw_url`` or the caller's origin.
    """
    raw = (raw_url or "").strip()
    if not raw:
        return None
    base = _origin_of(origin)
    try:
        absolute = urljoin(f"{base}/", raw)
        parts = urlsplit(absolute)
    except ValueError:
        return None
    if _origin_of(absolute) != base:
        return None
    if parts.path != IMAGE_PROXY_PATH:
        return None
    source = (parse_qs(parts.query).get("url") or [""])[0].strip()
    if not is_safe_proxy_redirect_target(source):
        return None
    target_base = _origin_of(fetch_origin) if fetch_origin else base
    return f"{target_base}{IMAGE_PROXY_PATH}?url={quote(source, safe='')}"


def can_use_link_preview_og_proxy(raw_url: str, origin: str = "https://proxy.local") -> bool:
    return resolve_og_proxy_target(raw_url, origin) is not None


def is_safe_proxy_redirect_target(url: str) -> bool:
    if is_private_hostname(get_hostname(url)):
        return False
    return is_link_preview_image_whitelisted(url)


def build_image_cache_control(cache_ttl_seconds: int) -> str:
    browser_max_age = min(BROWSER_MAX_AGE_SECONDS, cache_ttl_seconds)
    return (
        f"public, max-age={browser_max_age}, s-maxage={cache_ttl_seconds}, "
        f"stale-while-revalidate={STALE_WHILE_REVALIDATE_SECONDS}"
    )


def build_safe_image_proxy_response_headers(
    upstream_headers: httpx.Headers, cache_control: str
) -> dict[str, str]:
    """Copy only cache/content headers from upstream; never cookies or custom headers."""
    headers: dict[str, str] = {}
    for key in SAFE_IMAGE_PROXY_RESPONSE_HEADERS:
        value = upstream_headers.get(key)
        if value:
            headers[key] = value
    headers["cache-control"] = cache_control
    headers["x-content-type-options"] = "nosniff"
    return headers
