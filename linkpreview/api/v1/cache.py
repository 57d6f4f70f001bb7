import hmac
import json
import logging
import re
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from linkpreview.api.deps import get_link_preview_service
from linkpreview.config import settings
from linkpreview.core.exceptions import BadRequestError, ConfigurationError, UnauthorizedError
from linkpreview.schemas.link_preview import RevalidateRequest, RevalidateResponse
from linkpreview.services.link_preview import LINK_PREVIEW_CACHE_TAG, LinkPreviewService

router = APIRouter()
logger = logging.getLogger(__name__)

DEFAULT_REVALIDATE_TAGS = (LINK_PREVIEW_CACHE_TAG,)
TOKEN_HEADERS = ("x-cache-revalidate-token", "x-revalidate-token")
_BEARER_RE = re.compile(r"^bearer\s+", re.IGNORECASE)


def _split_list(values) -> list[str]:
    if isinstance(values, str):
        values = [values]
    out = []
    for value in values or []:
        out.extend(part.strip() for part in value.split(",") if part.strip())
    return out


async def _parse_body(request: Request) -> RevalidateRequest:
    if request.method != "POST":
        return RevalidateRequest()
    raw = (await request.body()).decode("utf-8", errors="replace")
    if not raw.strip():
        return RevalidateRequest()
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        raise BadRequestError("Invalid JSON body")
    if not isinstance(parsed, dict):
        return RevalidateRequest()
    try:
        return RevalidateRequest.model_validate(parsed)
    except ValidationError:
        raise BadRequestError("Invalid request body")


def _request_token(request: Request, body: RevalidateRequest) -> str:
    for header in TOKEN_HEADERS:
        value = request.headers.get(header, "").strip()
        if value:
            return value
    authorization = request.headers.get("authorization", "").strip()
    if authorization:
        return _BEARER_RE.sub("", authorization).strip()
    query_token = request.query_params.get("token", "").strip()
    if query_token:
        return query_token
    return (body.token or "").strip()


def _requested_tags(request: Request, body: RevalidateRequest) -> list[str]:
    tags = _split_list(request.query_params.getlist("tag"))
    tags += _split_list(request.query_params.getlist("tags"))
    tags += _split_list(body.tags)
    return list(dict.fromkeys(tags)) or list(DEFAULT_REVALIDATE_TAGS)


@router.api_route(
    "/revalidate",
    methods=["GET", "POST"],
    summary="Invalidate cached previews by tag",
    description="Drop every cached preview carrying the given tags (default: link-preview-metadata). Requires the CACHE_REVALIDATE_TOKEN via header, bearer token, query string, or JSON body.",
    response_model=RevalidateResponse,
)
async def revalidate(
    request: Request,
    service: LinkPreviewService = Depends(get_link_preview_service),
):
    server_token = settings.CACHE_REVALIDATE_TOKEN.strip()
    if not server_token:
        raise ConfigurationError("Server is missing CACHE_REVALIDATE_TOKEN")

    body = await _parse_body(request)

    token = _request_token(request, body)
    if not token or not hmac.compare_digest(token.encode(), server_token.encode()):
        raise UnauthorizedError("Unauthorized")

    tags = _requested_tags(request, body)
    invalidated = 0
    for tag in tags:
        invalidated += await service.invalidate(tag)

    result = RevalidateResponse(
        ok=True,
        tags=tags,
        invalidated=invalidated,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
    return JSONResponse(content=result.model_dump(), headers={"Cache-Control": "no-store"})
