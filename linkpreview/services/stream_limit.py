"""Byte-bounded readers for upstream response bodies.

Two shapes:
- ``read_limited_text``: reads at most ``max_bytes`` of an HTML body and
  decodes it incrementally. Anything past the ceiling is dropped silently,
  since the metadata we want lives in the document head.
- ``limit_byte_stream``: relays binary chunks unchanged and raises
  ``ByteLimitExceededError`` the moment the running total passes the ceiling.
"""

from __future__ import annotations

import codecs
import logging
import re
from typing import AsyncIterator, Callable

logger = logging.getLogger(__name__)

CHARSET_ALIASES = {
    "utf8": "utf-8",
    "gb2312": "gbk",
}

_CHARSET_PARAM_RE = re.compile(r"charset\s*=\s*([^;]+)", re.IGNORECASE)
_META_CHARSET_RE = re.compile(
    rb"<meta[^>]+charset\s*=\s*[\"']?\s*([a-zA-Z0-9_.:-]+)", re.IGNORECASE
)
SNIFF_BYTES = 2048


class ByteLimitExceededError(Exception):
    """Raised when a relayed stream grows past its byte ceiling."""

    def __init__(self, max_bytes: int):
        self.max_bytes = max_bytes
        super().__init__(f"Byte limit exceeded ({max_bytes} bytes)")


def _normalize_charset(value: str) -> str:
    name = value.strip().strip("\"'").strip().lower()
    return CHARSET_ALIASES.get(name, name)


def parse_charset_from_content_type(content_type: str | None) -> str:
    """Charset named in a Content-Type header, with aliases mapped; '' if none."""
    match = _CHARSET_PARAM_RE.search(content_type or "")
    if not match:
        return ""
    return _normalize_charset(match.group(1))


def sniff_html_charset(prefix: bytes) -> str:
    """Charset from a ``<meta charset>`` or http-equiv tag near the top of the document."""
    match = _META_CHARSET_RE.search(prefix[:SNIFF_BYTES])
    if not match:
        return ""
    return _normalize_charset(match.group(1).decode("ascii", "ignore"))


def resolve_decoder_charset(charset: str) -> str:
    """Return ``charset`` if Python can decode it, else utf-8."""
    if not charset:
        return "utf-8"
    try:
        return codecs.lookup(charset).name
    except LookupError:
        logger.debug(f"Unsupported charset {charset!r}, decoding as utf-8")
        return "utf-8"


async def read_limited_text(
    chunks: AsyncIterator[bytes], max_bytes: int, charset: str = ""
) -> str:
    """Read and decode up to ``max_bytes`` from ``chunks``.

    When ``charset`` is empty the first chunk is sniffed for a meta charset
    before the decoder is chosen.
    """
    decoder = None
    parts: list[str] = []
    total = 0

    async for chunk in chunks:
        if not chunk:
            continue
        if decoder is None:
            name = resolve_decoder_charset(charset or sniff_html_charset(chunk))
            decoder = codecs.getincrementaldecoder(name)(errors="replace")

        remaining = max_bytes - total
        if len(chunk) >= remaining:
            parts.append(decoder.decode(chunk[:remaining], final=True))
            total = max_bytes
            break
        parts.append(decoder.decode(chunk))
        total += len(chunk)
    else:
        if decoder is not None:
            parts.append(decoder.decode(b"", final=True))

    return "".join(parts)


async def limit_byte_stream(
    chunks: AsyncIterator[bytes],
    max_bytes: int,
    on_exceeded: Callable[[], None] | None = None,
) -> AsyncIterator[bytes]:
    """Yield ``chunks`` unchanged, aborting once more than ``max_bytes`` have passed."""
    total = 0
    async for chunk in chunks:
        total += len(chunk)
        if total > max_bytes:
            if on_exceeded is not None:
                on_exceeded()
            raise ByteLimitExceededError(max_bytes)
        yield chunk
