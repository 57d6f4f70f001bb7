import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from linkpreview.api.deps import (
    get_internal_origin,
    get_link_preview_service,
    get_public_origin,
)
from linkpreview.core.exceptions import BadRequestError, LinkPreviewError
from linkpreview.core.metrics import image_proxy_responses_total
from linkpreview.schemas.link_preview import ErrorResponse, PreviewMetadata
from linkpreview.services.image_proxy import resolve_image_proxy, resolve_og_proxy_target
from linkpreview.services.image_relay import ProxiedImage, fetch_proxied_image, relay_og_image
from linkpreview.services.link_preview import LinkPreviewService

router = APIRouter()
logger = logging.getLogger(__name__)

METADATA_CACHE_CONTROL = "public, max-age=3600, s-maxage=86400, stale-while-revalidate=86400"
IMAGE_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    413: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


def _to_response(image: ProxiedImage) -> Response:
    if image.stream is not None:
        return StreamingResponse(
            image.stream,
            status_code=image.status_code,
            headers=image.headers,
            background=BackgroundTask(image.close) if image.close else None,
        )
    return Response(content=image.body or b"", status_code=image.status_code, headers=image.headers)


@router.get(
    "/link-preview",
    response_model=PreviewMetadata,
    responses={400: {"model": ErrorResponse}},
    summary="Resolve link preview metadata",
    description="Normalize the given URL, reject private targets, and return the cached or freshly fetched preview card. Upstream failures produce a minimal fallback card rather than an error.",
)
async def get_link_preview(
    url: str | None = Query(None, description="Page URL, with or without scheme"),
    service: LinkPreviewService = Depends(get_link_preview_service),
):
    if not url or not url.strip():
        raise BadRequestError("Missing query param: url")

    data = await service.get_link_preview(url)
    if data is None:
        raise BadRequestError("Invalid or blocked url")

    return JSONResponse(
        content=data.model_dump(),
        headers={"Cache-Control": METADATA_CACHE_CONTROL},
    )


@router.get(
    "/link-preview/image",
    responses=IMAGE_ERROR_RESPONSES,
    summary="Proxy a preview image",
    description="Fetch a public image and stream it back with a per-host Referer and cache lifetime. Bodies over 8 MiB are rejected with 413; non-image or failed upstream responses return 502.",
)
async def proxy_image(
    url: str | None = Query(None, description="Absolute http(s) image URL"),
    service: LinkPreviewService = Depends(get_link_preview_service),
):
    if not url or not url.strip():
        image_proxy_responses_total.labels(endpoint="image", status="400").inc()
        raise BadRequestError("Missing query param: url")

    resolved = resolve_image_proxy(url)
    if resolved is None:
        image_proxy_responses_total.labels(endpoint="image", status="400").inc()
        raise BadRequestError("Invalid or blocked url")

    try:
        image = await fetch_proxied_image(service.client, resolved)
    except LinkPreviewError as e:
        image_proxy_responses_total.labels(endpoint="image", status=str(e.status_code)).inc()
        raise

    image_proxy_responses_total.labels(endpoint="image", status=str(image.status_code)).inc()
    return _to_response(image)


@router.get(
    "/link-preview/og",
    responses=IMAGE_ERROR_RESPONSES,
    summary="Re-proxy an image for Open Graph cards",
    description="Accept only this origin's image proxy URL wrapping a whitelisted source image, fetch it through the image proxy and relay the result.",
)
async def proxy_og_image(
    image: str | None = Query(None, description="Image proxy URL on this origin"),
    origin: str = Depends(get_public_origin),
    fetch_origin: str = Depends(get_internal_origin),
    service: LinkPreviewService = Depends(get_link_preview_service),
):
    if not image or not image.strip():
        image_proxy_responses_total.labels(endpoint="og", status="400").inc()
        raise BadRequestError("Missing query param: image")

    target = resolve_og_proxy_target(image, origin, fetch_origin)
    if target is None:
        image_proxy_responses_total.labels(endpoint="og", status="400").inc()
        raise BadRequestError("Image url is not an allowed proxy target")

    try:
        relayed = await relay_og_image(service.relay_client, target)
    except LinkPreviewError as e:
        image_proxy_responses_total.labels(endpoint="og", status=str(e.status_code)).inc()
        raise

    image_proxy_responses_total.labels(endpoint="og", status=str(relayed.status_code)).inc()
    return _to_response(relayed)
