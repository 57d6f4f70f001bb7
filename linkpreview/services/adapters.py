"""Per-domain overrides for generic link preview extraction.

Adapters are tried in order and the first match wins; the default adapter
always sits at the end. Add new domain adapters to ``SPECIAL_ADAPTERS``.
Adapters only see contexts whose URLs already passed the hostname guard.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import SplitResult, unquote

from linkpreview.schemas.link_preview import PreviewMetadata
from linkpreview.services.metadata import ParsedHtmlMetadata
from linkpreview.services.network_safety import get_hostname

logger = logging.getLogger(__name__)

GITHUB_HOSTS = ("github.com", "www.github.com")
GITHUB_FAVICON_URL = "https://github.githubassets.com/favicons/favicon.svg"


@dataclass(frozen=True)
class AdapterContext:
    normalized_url: str
    resolved_url: str
    hostname: str
    parsed_url: SplitResult
    metadata: ParsedHtmlMetadata
    fallback: PreviewMetadata


@dataclass(frozen=True)
class LinkPreviewAdapter:
    id: str
    matches: Callable[[AdapterContext], bool]
    resolve: Callable[[AdapterContext], dict[str, Any] | None]


def _decode_segment(segment: str) -> str:
    return unquote(segment) if segment else ""


def _resolve_github(ctx: AdapterContext) -> dict[str, Any]:
    segments = [_decode_segment(s) for s in ctx.parsed_url.path.split("/") if s]
    if len(segments) >= 2:
        title = f"{segments[0]}/{segments[1]}"
    elif len(segments) == 1:
        title = segments[0]
    else:
        title = "GitHub"

    return {
        "url": ctx.resolved_url,
        "hostname": "github.com",
        "title": title,
        "description": ctx.metadata.description,
        "image": ctx.metadata.image,
        # <link rel=icon> scraping is unreliable on github.com
        "icon": GITHUB_FAVICON_URL,
    }


def _pick_display_url(ctx: AdapterContext) -> str:
    canonical = ctx.metadata.canonical
    if canonical and get_hostname(canonical) == ctx.hostname:
        return canonical
    return ctx.resolved_url


def _resolve_default(ctx: AdapterContext) -> dict[str, Any]:
    return {
        "url": _pick_display_url(ctx),
        "hostname": ctx.hostname,
        "title": ctx.metadata.og_title or ctx.metadata.title_tag or ctx.fallback.title,
        "description": ctx.metadata.description,
        "image": ctx.metadata.image,
        "icon": ctx.metadata.icon or ctx.fallback.icon,
    }


github_adapter = LinkPreviewAdapter(
    id="github",
    matches=lambda ctx: ctx.hostname.lower() in GITHUB_HOSTS,
    resolve=_resolve_github,
)

default_adapter = LinkPreviewAdapter(
    id="default",
    matches=lambda ctx: True,
    resolve=_resolve_default,
)

SPECIAL_ADAPTERS: tuple[LinkPreviewAdapter, ...] = (github_adapter,)


def select_adapter(
    ctx: AdapterContext,
    adapters: tuple[LinkPreviewAdapter, ...] = SPECIAL_ADAPTERS,
) -> LinkPreviewAdapter:
    for adapter in adapters:
        if adapter.matches(ctx):
            return adapter
    return default_adapter


def resolve_link_preview_by_adapter(
    ctx: AdapterContext,
    adapters: tuple[LinkPreviewAdapter, ...] = SPECIAL_ADAPTERS,
) -> dict[str, Any]:
    """Partial PreviewMetadata fields from the first matching adapter."""
    adapter = select_adapter(ctx, adapters)
    logger.debug(f"Link preview adapter {adapter.id} for {ctx.resolved_url}")
    return adapter.resolve(ctx) or {}
