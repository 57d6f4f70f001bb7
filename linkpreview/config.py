import logging

from pydantic_settings import BaseSettings

_logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # App
    APP_NAME: str = "LinkPreview"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Public origin the OG re-proxy accepts image URLs for (empty = request origin)
    PUBLIC_ORIGIN: str = ""
    # Origin the OG re-proxy fetches the image proxy from; never taken from the request
    INTERNAL_ORIGIN: str = "http://127.0.0.1:8000"

    # Cache backend: "memory" (per process) or "redis" (shared)
    CACHE_BACKEND: str = "memory"

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 50

    # Admin cache revalidation; the endpoint answers 500 while this is empty
    CACHE_REVALIDATE_TOKEN: str = ""

    # Sentry
    SENTRY_DSN: str = ""
    SENTRY_TRACES_SAMPLE_RATE: float = 0.2
    SENTRY_ENVIRONMENT: str = "development"

    # Logging
    LOG_FORMAT: str = "json"  # "json" for production, "text" for development
    LOG_LEVEL: str = "INFO"

    # Metrics
    METRICS_ENABLED: bool = True

    def model_post_init(self, __context) -> None:
        if self.CACHE_BACKEND not in ("memory", "redis"):
            _logger.warning(
                "Unknown CACHE_BACKEND %r, falling back to in-memory cache.",
                self.CACHE_BACKEND,
            )
            object.__setattr__(self, "CACHE_BACKEND", "memory")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
