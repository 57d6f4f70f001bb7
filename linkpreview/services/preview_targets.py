"""Collect embeddable URLs from a parsed content tree.

The document is ``{"root_id": ..., "blocks_by_id": {id: block}}`` where each
block is ``{"id", "type", "children": [ids], <type>: {...}}``. The walk uses
an explicit worklist so deeply nested or cyclic trees cannot exhaust the
stack.
"""

from typing import Any, Iterable
from urllib.parse import parse_qs, urlsplit

MENTION_URL_TYPES = ("link_preview", "link_mention")


def resolve_embed_iframe_url(url: str | None) -> str | None:
    """Inline iframe URL for embeds the renderer can show directly (YouTube), else None."""
    if not url:
        return None
    try:
        parsed = urlsplit(url)
    except ValueError:
        return None
    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]

    if host == "youtu.be":
        segments = [s for s in parsed.path.split("/") if s]
        return f"https://www.youtube.com/embed/{segments[0]}" if segments else None
    if host == "youtube.com" or host.endswith(".youtube.com"):
        video_id = (parse_qs(parsed.query).get("v") or [""])[0]
        if video_id:
            return f"https://www.youtube.com/embed/{video_id}"
        if parsed.path.startswith("/embed/"):
            return url
    return None


def _mention_url(item: dict) -> str:
    if item.get("type") != "mention":
        return ""
    mention = item.get("mention") or {}
    mention_type = mention.get("type")
    if mention_type not in MENTION_URL_TYPES:
        return ""
    payload = mention.get(mention_type) or {}
    url = payload.get("url") or payload.get("href") or ""
    return url if isinstance(url, str) else ""


def _rich_text_urls(rich_text: Any) -> Iterable[str]:
    if not isinstance(rich_text, list):
        return
    for item in rich_text:
        if isinstance(item, dict):
            url = _mention_url(item)
            if url:
                yield url


def _block_urls(block: dict) -> Iterable[str]:
    block_type = block.get("type")
    payload = block.get(block_type) if isinstance(block_type, str) else None
    if not isinstance(payload, dict):
        return

    if block_type == "bookmark":
        url = payload.get("url")
        if isinstance(url, str) and url:
            yield url
        return

    if block_type == "embed":
        url = payload.get("url")
        if isinstance(url, str) and url and not resolve_embed_iframe_url(url):
            yield url
        return

    if block_type == "table_row":
        for cell in payload.get("cells") or []:
            yield from _rich_text_urls(cell)
        return

    yield from _rich_text_urls(payload.get("rich_text"))


def resolve_preview_targets(document: dict | None) -> list[str]:
    """Every URL in ``document`` that needs a preview card, unique, in document order."""
    if not document:
        return []
    blocks: dict = document.get("blocks_by_id") or {}
    root_id = document.get("root_id")
    pending = [root_id] if root_id in blocks else list(blocks)
    pending.reverse()

    seen_blocks: set = set()
    urls: dict[str, None] = {}
    while pending:
        block_id = pending.pop()
        if block_id in seen_blocks:
            continue
        seen_blocks.add(block_id)
        block = blocks.get(block_id)
        if not isinstance(block, dict):
            continue

        for url in _block_urls(block):
            urls.setdefault(url, None)

        children = block.get("children") or []
        pending.extend(reversed([c for c in children if c not in seen_blocks]))

    return list(urls)
