"""Open Graph, Twitter card and HTML head metadata extraction."""

from dataclasses import dataclass
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from linkpreview.services.url_normalize import normalize_http_url, serialize_url

# The reader caps bodies at the same size, so this slice is a no-op for
# fetched pages and only matters for HTML handed in directly.
MAX_HEAD_CHARS = 200_000

DESCRIPTION_KEYS = ("og:description", "twitter:description", "description")
IMAGE_KEYS = ("og:image", "og:image:url", "twitter:image")


@dataclass(frozen=True)
class ParsedHtmlMetadata:
    og_title: str = ""
    title_tag: str = ""
    description: str = ""
    image: str = ""
    icon: str = ""
    canonical: str = ""


def _attr(tag, name: str) -> str:
    value = tag.get(name)
    if isinstance(value, list):
        value = " ".join(value)
    return (value or "").strip()


def _pick(meta_values: dict[str, str], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = meta_values.get(key)
        if value:
            return value
    return ""


def to_absolute_url(base_url: str, maybe_relative: str) -> str:
    """Resolve ``maybe_relative`` against ``base_url``; '' unless the result is http(s)."""
    if not maybe_relative:
        return ""
    try:
        joined = urljoin(base_url, maybe_relative)
    except ValueError:
        return ""
    parts = normalize_http_url(joined)
    return serialize_url(parts) if parts else ""


def parse_metadata(html: str, source_url: str) -> ParsedHtmlMetadata:
    """Pull title, description, image, icon and canonical URL out of an HTML prefix.

    ``source_url`` must be the final (post-redirect) response URL; relative
    links are resolved against it. For repeated meta keys the first tag wins.
    """
    soup = BeautifulSoup(html[:MAX_HEAD_CHARS], "lxml")

    meta_values: dict[str, str] = {}
    for tag in soup.find_all("meta"):
        key = (_attr(tag, "property") or _attr(tag, "name")).lower()
        content = _attr(tag, "content")
        if not key or not content:
            continue
        meta_values.setdefault(key, content)

    icon = ""
    canonical = ""
    for tag in soup.find_all("link"):
        rel = _attr(tag, "rel").lower()
        href = _attr(tag, "href")
        if not rel or not href:
            continue
        if not icon and "icon" in rel:
            icon = to_absolute_url(source_url, href)
        if not canonical and "canonical" in rel.split():
            canonical = to_absolute_url(source_url, href)
        if icon and canonical:
            break

    title_tag = ""
    title_el = soup.find("title")
    if title_el:
        title_tag = title_el.get_text().strip()

    return ParsedHtmlMetadata(
        og_title=_pick(meta_values, ("og:title",)),
        title_tag=title_tag,
        description=_pick(meta_values, DESCRIPTION_KEYS),
        image=to_absolute_url(source_url, _pick(meta_values, IMAGE_KEYS)),
        icon=icon,
        canonical=canonical,
    )
