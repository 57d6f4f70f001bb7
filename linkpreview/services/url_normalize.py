"""URL normalization for preview lookups and cache keys."""

import re
from urllib.parse import SplitResult, urlsplit, urlunsplit

from linkpreview.services.network_safety import is_private_hostname

ALLOWED_SCHEMES = ("http", "https")
DEFAULT_PORTS = {"http": 80, "https": 443}

_HTTP_PREFIX_RE = re.compile(r"^https?://", re.IGNORECASE)
_BARE_DOMAIN_RE = re.compile(
    r"^(?:www\.)?[a-z0-9][a-z0-9.-]*\.[a-z]{2,}(?::\d+)?(?:[/?#].*)?$", re.IGNORECASE
)
_UNSAFE_CHARS_RE = re.compile(r"[\s\x00-\x1f\x7f]")


def _coerce_raw_preview_url(raw_url: str) -> str:
    """Prepend https:// to bare domains such as ``example.com/a``."""
    trimmed = (raw_url or "").strip()
    if not trimmed:
        return ""
    if _HTTP_PREFIX_RE.match(trimmed):
        return trimmed
    if _BARE_DOMAIN_RE.match(trimmed):
        return f"https://{trimmed}"
    return trimmed


def serialize_url(parts: SplitResult) -> str:
    """Canonical string form: lower-case scheme/host, no default port, '/' for empty path."""
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if ":" in host:
        host = f"[{host}]"
    port = parts.port
    netloc = host if port is None or port == DEFAULT_PORTS.get(scheme) else f"{host}:{port}"
    if parts.username or parts.password:
        userinfo = parts.username or ""
        if parts.password:
            userinfo = f"{userinfo}:{parts.password}"
        netloc = f"{userinfo}@{netloc}"
    return urlunsplit((scheme, netloc, parts.path or "/", parts.query, parts.fragment))


def normalize_http_url(raw_url: str) -> SplitResult | None:
    """Parse an absolute http(s) URL without guessing intent. Returns None if invalid."""
    if not raw_url or _UNSAFE_CHARS_RE.search(raw_url):
        return None
    try:
        parts = urlsplit(raw_url)
        parts.port  # raises ValueError on a malformed port
    except ValueError:
        return None
    if parts.scheme.lower() not in ALLOWED_SCHEMES or not parts.hostname:
        return None
    return urlsplit(serialize_url(parts))


def normalize_preview_url(raw_url: str) -> str | None:
    """Turn caller-supplied text into a safe absolute URL, or None.

    Bare domains get an https:// prefix; anything that is not http(s) or
    points at a private host is rejected.
    """
    coerced = _coerce_raw_preview_url(raw_url)
    if not coerced:
        return None
    parts = normalize_http_url(coerced)
    if parts is None:
        return None
    if is_private_hostname(parts.hostname or ""):
        return None
    return serialize_url(parts)
