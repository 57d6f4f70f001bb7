"""Integration tests for /health, /health/ready and /metrics."""

from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient

from linkpreview.config import settings


class TestLivenessEndpoint:
    @pytest.mark.asyncio
    async def test_liveness_returns_healthy(self, client: AsyncClient):
        """GET /health returns 200 with status healthy."""
        resp = await client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client: AsyncClient):
        resp = await client.get("/health", headers={"X-Request-ID": "abc-123"})
        assert resp.headers["x-request-id"] == "abc-123"

    @pytest.mark.asyncio
    async def test_bad_request_id_replaced(self, client: AsyncClient):
        resp = await client.get("/health", headers={"X-Request-ID": "bad id with spaces"})
        assert resp.headers["x-request-id"] != "bad id with spaces"
        assert len(resp.headers["x-request-id"]) == 36


class TestReadinessEndpoint:
    @pytest.mark.asyncio
    async def test_readiness_with_memory_cache(self, client: AsyncClient):
        """GET /health/ready reports the cache check."""
        resp = await client.get("/health/ready")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ready"
        assert data["checks"]["cache"] == "ok"

    @pytest.mark.asyncio
    async def test_readiness_returns_503_when_cache_unreachable(self, client: AsyncClient, cache):
        with patch.object(cache, "ping", AsyncMock(return_value=False)):
            resp = await client.get("/health/ready")
        assert resp.status_code == 503
        assert resp.json()["status"] == "not ready"

    @pytest.mark.asyncio
    async def test_readiness_returns_503_on_cache_error(self, client: AsyncClient, cache):
        with patch.object(cache, "ping", AsyncMock(side_effect=Exception("Redis down"))):
            resp = await client.get("/health/ready")
        assert resp.status_code == 503
        assert "Redis down" in resp.json()["checks"]["cache"]


class TestMetricsEndpoint:
    @pytest.mark.asyncio
    async def test_metrics_exposed(self, client: AsyncClient, upstream):
        upstream.html("https://example.com/", "<title>x</title>")
        await client.get("/api/link-preview", params={"url": "example.com"})

        resp = await client.get("/metrics")

        assert resp.status_code == 200
        assert "link_preview_fetch_total" in resp.text
        assert "link_preview_cache_lookups_total" in resp.text

    @pytest.mark.asyncio
    async def test_metrics_disabled(self, client: AsyncClient, monkeypatch):
        monkeypatch.setattr(settings, "METRICS_ENABLED", False)
        resp = await client.get("/metrics")
        assert resp.status_code == 404
