import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class LinkPreviewError(Exception):
    """Base error carrying the HTTP status the API should answer with."""

    status_code = 500

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)


class BadRequestError(LinkPreviewError):
    status_code = 400


class UnauthorizedError(LinkPreviewError):
    status_code = 401


class PayloadTooLargeError(LinkPreviewError):
    status_code = 413


class UpstreamError(LinkPreviewError):
    status_code = 502


class ConfigurationError(LinkPreviewError):
    status_code = 500


async def link_preview_error_handler(request: Request, exc: LinkPreviewError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers={"Cache-Control": "no-store"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LinkPreviewError, link_preview_error_handler)
