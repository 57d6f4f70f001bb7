import json
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from linkpreview.api.deps import get_link_preview_service
from linkpreview.config import settings
from linkpreview.core.metrics import get_metrics, get_metrics_content_type
from linkpreview.services.link_preview import LinkPreviewService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get(
    "/health",
    summary="Liveness check",
    description="Basic liveness probe that returns HTTP 200 if the application process is running. Suitable for Kubernetes liveness probes or load balancer health checks.",
)
async def liveness():
    """Liveness probe: returns 200 if the process is running."""
    return {"status": "healthy"}


@router.get(
    "/health/ready",
    summary="Readiness check",
    description="Readiness probe that verifies the preview cache backend is reachable. Returns HTTP 200 with individual check statuses when healthy, or HTTP 503 otherwise.",
)
async def readiness(service: LinkPreviewService = Depends(get_link_preview_service)):
    """Readiness probe: checks the cache backend."""
    checks = {}

    try:
        checks["cache"] = "ok" if await service.cache.ping() else "unreachable"
    except Exception as e:
        checks["cache"] = f"error: {e}"
    checks["cache_backend"] = settings.CACHE_BACKEND

    all_ok = checks["cache"] == "ok"
    if not all_ok:
        logger.warning(f"Readiness check failed: {checks}")

    return Response(
        content=json.dumps({"status": "ready" if all_ok else "not ready", "checks": checks}),
        status_code=200 if all_ok else 503,
        media_type="application/json",
    )


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose application metrics in Prometheus exposition format. Returns HTTP 404 if metrics collection is disabled in the application configuration.",
)
async def metrics():
    """Prometheus metrics endpoint."""
    if not settings.METRICS_ENABLED:
        return Response(content="Metrics disabled", status_code=404)

    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type(),
    )
