"""
Tests for the HTTP front in postercache/server/app.py.

Test Perspectives Table:
| Case ID   | Input / Precondition             | Perspective             | Expected Result                       | Notes |
|-----------|----------------------------------|-------------------------|---------------------------------------|-------|
| TC-N-01   | GET /                            | Equivalence - normal    | 200 "Successfully connected"          | -     |
| TC-N-02   | GET /poster?movie=X              | Equivalence - normal    | 200 with poster URL as text           | -     |
| TC-N-03   | GET /posters                     | Equivalence - snapshot  | JSON key -> URL                       | -     |
| TC-N-04   | GET /health                      | Equivalence - monitoring| JSON stats with status                | -     |
| TC-A-01   | movie missing                    | Boundary - invalid      | 400 INVALID_KEY                       | -     |
| TC-A-02   | cached=1 on a cold key           | Equivalence - miss      | 404 CACHE_MISS                        | -     |
| TC-A-03   | Fetcher finds no poster          | Boundary - not found    | 404 FETCH_FAILED                      | -     |
| TC-A-04   | Fetcher errors                   | Boundary - backend      | 502 FETCH_FAILED                      | -     |
| TC-A-05   | Gate busy past lookup timeout    | Boundary - timeout      | 503 GATE_TIMEOUT                      | -     |
| TC-A-06   | Fetch running past timeout       | Boundary - timeout      | 504 FETCH_TIMEOUT                     | -     |
"""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from postercache.cache.context import CacheContext
from postercache.crawler.poster_fetcher import PosterNotFoundError
from postercache.server.app import create_app

pytestmark = pytest.mark.integration


@pytest_asyncio.fixture
async def context(make_settings, fake_fetcher) -> AsyncGenerator[CacheContext, None]:
    settings = make_settings(storage_enabled=False, lookup_timeout=0.05)
    async with CacheContext(settings, fake_fetcher) as ctx:
        yield ctx


@pytest_asyncio.fixture
async def client(context: CacheContext) -> AsyncGenerator[TestClient, None]:
    async with TestClient(TestServer(create_app(context))) as test_client:
        yield test_client


class TestRoutes:
    """Tests for successful requests."""

    @pytest.mark.asyncio
    async def test_welcome(self, client: TestClient) -> None:
        """TC-N-01: Connectivity check."""
        resp = await client.get("/")

        assert resp.status == 200
        assert await resp.text() == "Successfully connected"

    @pytest.mark.asyncio
    async def test_poster_lookup(self, client: TestClient, fake_fetcher) -> None:
        """TC-N-02: The poster URL is returned as plain text."""
        resp = await client.get("/poster", params={"movie": "The Thing"})

        assert resp.status == 200
        assert await resp.text() == "https://posters.example/The Thing.jpg"
        assert fake_fetcher.calls == ["The Thing"]

    @pytest.mark.asyncio
    async def test_cached_lookup_after_fetch(self, client: TestClient) -> None:
        await client.get("/poster", params={"movie": "Heat"})

        resp = await client.get("/poster", params={"movie": "Heat", "cached": "1"})

        assert resp.status == 200
        assert await resp.text() == "https://posters.example/Heat.jpg"

    @pytest.mark.asyncio
    async def test_posters_snapshot(self, client: TestClient) -> None:
        """TC-N-03: /posters lists the hot tier."""
        await client.get("/poster", params={"movie": "Heat"})

        resp = await client.get("/posters")

        assert resp.status == 200
        assert await resp.json() == {"Heat": "https://posters.example/Heat.jpg"}

    @pytest.mark.asyncio
    async def test_health(self, client: TestClient) -> None:
        """TC-N-04: /health reports component statistics."""
        resp = await client.get("/health")

        body = await resp.json()
        assert resp.status == 200
        assert body["status"] == "ok"
        assert body["gate"]["capacity"] == 1
        assert body["cache"]["memory_only"] is True
        assert body["scheduler"]["running"] is True


class TestErrorMapping:
    """Tests for CacheError -> HTTP status mapping."""

    @pytest.mark.asyncio
    async def test_missing_movie(self, client: TestClient) -> None:
        """TC-A-01: A missing key is a client error."""
        resp = await client.get("/poster")

        assert resp.status == 400
        assert (await resp.json())["error_code"] == "INVALID_KEY"

    @pytest.mark.asyncio
    async def test_cached_only_miss(self, client: TestClient, fake_fetcher) -> None:
        """TC-A-02: cached=1 on a cold key does not fetch."""
        resp = await client.get("/poster", params={"movie": "Cold", "cached": "true"})

        body = await resp.json()
        assert resp.status == 404
        assert body["ok"] is False
        assert body["error_code"] == "CACHE_MISS"
        assert fake_fetcher.calls == []

    @pytest.mark.asyncio
    async def test_not_found(self, client: TestClient, fake_fetcher) -> None:
        """TC-A-03: No poster on the page maps to 404."""
        fake_fetcher.failures["Obscure"] = PosterNotFoundError("no image")

        resp = await client.get("/poster", params={"movie": "Obscure"})

        body = await resp.json()
        assert resp.status == 404
        assert body["error_code"] == "FETCH_FAILED"
        assert body["details"]["reason"] == "not_found"

    @pytest.mark.asyncio
    async def test_backend_error(self, client: TestClient, fake_fetcher) -> None:
        """TC-A-04: Backend failures map to 502."""
        fake_fetcher.failures["Broken"] = RuntimeError("tab crashed")

        resp = await client.get("/poster", params={"movie": "Broken"})

        assert resp.status == 502
        assert (await resp.json())["details"]["reason"] == "error"

    @pytest.mark.asyncio
    async def test_gate_timeout(self, client: TestClient, context: CacheContext) -> None:
        """TC-A-05: No slot within the lookup timeout maps to 503."""
        holder = await context.gate.acquire()
        try:
            resp = await client.get("/poster", params={"movie": "Queued"})
        finally:
            context.gate.release(holder)

        assert resp.status == 503
        assert (await resp.json())["error_code"] == "GATE_TIMEOUT"

    @pytest.mark.asyncio
    async def test_fetch_timeout(self, client: TestClient, fake_fetcher) -> None:
        """TC-A-06: A fetch outliving the lookup timeout maps to 504."""
        fake_fetcher.release_event.clear()

        resp = await client.get("/poster", params={"movie": "Slow"})

        assert resp.status == 504
        assert (await resp.json())["error_code"] == "FETCH_TIMEOUT"
        fake_fetcher.release_event.set()
