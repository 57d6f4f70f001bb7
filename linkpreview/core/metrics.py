from prometheus_client import (
    Counter,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# ---------------------------------------------------------------------------
# Metadata pipeline
# ---------------------------------------------------------------------------
link_preview_cache_lookups_total = Counter(
    "link_preview_cache_lookups_total",
    "Preview metadata cache lookups",
    ["result"],  # hit, miss
)
link_preview_fetch_total = Counter(
    "link_preview_fetch_total",
    "Upstream metadata fetches by outcome",
    ["outcome"],  # ok, fallback, blocked, timeout, error
)
link_preview_fetch_duration_seconds = Histogram(
    "link_preview_fetch_duration_seconds",
    "Time spent fetching and parsing one preview page",
    buckets=[0.1, 0.25, 0.5, 1, 2, 4, 8, 10],
)

# ---------------------------------------------------------------------------
# Image proxy
# ---------------------------------------------------------------------------
image_proxy_responses_total = Counter(
    "image_proxy_responses_total",
    "Image proxy responses by endpoint and status code",
    ["endpoint", "status"],
)
image_proxy_bytes_total = Counter(
    "image_proxy_bytes_total",
    "Image bytes sent to clients by endpoint",
    ["endpoint"],
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def get_metrics_content_type() -> str:
    """Return the Prometheus content type header value."""
    return CONTENT_TYPE_LATEST
