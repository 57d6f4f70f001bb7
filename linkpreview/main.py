import logging
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI

from linkpreview.api.v1.health import router as health_router
from linkpreview.api.v1.router import api_router
from linkpreview.config import settings
from linkpreview.core.cache import MemoryTaggedCache, RedisTaggedCache, TaggedCache
from linkpreview.core.exceptions import register_exception_handlers
from linkpreview.core.logging_config import configure_logging
from linkpreview.core.redis import create_redis_client
from linkpreview.middleware.request_id import RequestIDMiddleware
from linkpreview.services.link_preview import (
    LINK_PREVIEW_CACHE_NAMESPACE,
    LINK_PREVIEW_CACHE_TTL_SECONDS,
    LinkPreviewService,
)

# Configure structured logging (must happen before any logger is created)
configure_logging(log_format=settings.LOG_FORMAT, log_level=settings.LOG_LEVEL)

# Initialize Sentry error tracking
if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        environment=settings.SENTRY_ENVIRONMENT,
        release=f"linkpreview@{settings.APP_VERSION}",
        send_default_pii=False,
    )

logger = logging.getLogger(__name__)


def build_preview_cache() -> TaggedCache:
    if settings.CACHE_BACKEND == "redis":
        return RedisTaggedCache(
            create_redis_client(),
            LINK_PREVIEW_CACHE_NAMESPACE,
            LINK_PREVIEW_CACHE_TTL_SECONDS,
        )
    return MemoryTaggedCache(LINK_PREVIEW_CACHE_NAMESPACE, LINK_PREVIEW_CACHE_TTL_SECONDS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info(
        f"Starting {settings.APP_NAME} v{settings.APP_VERSION} "
        f"(cache backend: {settings.CACHE_BACKEND})"
    )
    service = LinkPreviewService(build_preview_cache())
    app.state.link_preview_service = service

    yield

    logger.info("Shutting down...")
    await service.aclose()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Link preview service: SSRF-guarded metadata extraction "
    "for embedded URLs plus a whitelisting image proxy.",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Request ID middleware (must be added before other middleware)
app.add_middleware(RequestIDMiddleware)

register_exception_handlers(app)

# Link preview, image proxy and cache routes
app.include_router(api_router)

# Health & metrics routes (no /api prefix)
app.include_router(health_router)


@app.get("/")
async def root():
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "status": "running",
    }
