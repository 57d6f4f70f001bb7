from fastapi import Request

from linkpreview.config import settings
from linkpreview.services.link_preview import LinkPreviewService


def get_link_preview_service(request: Request) -> LinkPreviewService:
    """The process-wide service built in the app lifespan."""
    return request.app.state.link_preview_service


def get_public_origin(request: Request) -> str:
    """Origin the OG re-proxy treats as its own: PUBLIC_ORIGIN, else the request's.

    Only used to check that an image URL points back at this service.
    """
    if settings.PUBLIC_ORIGIN:
        return settings.PUBLIC_ORIGIN.rstrip("/")
    return str(request.base_url).rstrip("/")


def get_internal_origin() -> str:
    """Origin the OG re-proxy actually fetches from, fixed by configuration."""
    return settings.INTERNAL_ORIGIN.rstrip("/")
