"""Shared fixtures: a scripted upstream web, the preview service, and an ASGI client."""

from typing import Callable

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from linkpreview.core.cache import MemoryTaggedCache
from linkpreview.main import app
from linkpreview.services.link_preview import (
    LINK_PREVIEW_CACHE_NAMESPACE,
    LINK_PREVIEW_CACHE_TTL_SECONDS,
    LinkPreviewService,
    build_http_client,
    build_relay_client,
)


class RecordingStream(httpx.AsyncByteStream):
    """Response body that counts how many chunks were actually pulled."""

    def __init__(self, chunks: list[bytes]):
        self._chunks = chunks
        self.chunks_read = 0
        self.closed = False

    async def __aiter__(self):
        for chunk in self._chunks:
            self.chunks_read += 1
            yield chunk

    async def aclose(self):
        self.closed = True


class FakeUpstream:
    """MockTransport handler routing on scheme://host[:port]/path (query ignored).

    Routes map to callables ``request -> httpx.Response`` (sync or async) so a
    fresh response is built per request. Every request seen is recorded.
    """

    def __init__(self):
        self.routes: dict[str, Callable] = {}
        self.requests: list[httpx.Request] = []

    @staticmethod
    def route_key(url) -> str:
        return str(url).split("#", 1)[0].split("?", 1)[0]

    def add(self, url: str, handler: Callable) -> None:
        self.routes[self.route_key(url)] = handler

    def html(self, url: str, body: str, content_type: str = "text/html; charset=utf-8") -> None:
        self.add(
            url,
            lambda request: httpx.Response(
                200, headers={"content-type": content_type}, content=body.encode("utf-8")
            ),
        )

    def hits(self, url: str) -> int:
        key = self.route_key(url)
        return sum(1 for r in self.requests if self.route_key(r.url) == key)

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        handler = self.routes.get(self.route_key(request.url))
        if handler is None:
            return httpx.Response(404, text="not found")
        return handler(request)


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def cache() -> MemoryTaggedCache:
    return MemoryTaggedCache(LINK_PREVIEW_CACHE_NAMESPACE, LINK_PREVIEW_CACHE_TTL_SECONDS)


@pytest_asyncio.fixture
async def service(upstream, cache):
    transport = httpx.MockTransport(upstream)
    svc = LinkPreviewService(
        cache,
        client=build_http_client(transport=transport),
        relay_client=build_relay_client(transport=transport),
    )
    yield svc
    await svc.aclose()


@pytest_asyncio.fixture
async def client(service):
    app.state.link_preview_service = service
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
