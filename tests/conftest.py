"""
Pytest fixtures and configuration for postercache tests.

Markers:
- @pytest.mark.unit: Single class/function, no external dependencies.
  DEFAULT: Tests without a marker are auto-classified as unit.
- @pytest.mark.integration: Multiple components (real SQLite, aiohttp test
  server), browser backend faked.
- @pytest.mark.e2e: Real Chrome reachable over CDP. Skipped unless
  POSTERCACHE_E2E=1.

Mock strategy:
- Browser backend: FakeFetcher below, or MagicMock/AsyncMock for Playwright
- File I/O: tmp_path-based temp_dir fixture
- Database: temporary SQLite file
"""

from __future__ import annotations

import asyncio
import os
import sys
import tempfile
from collections.abc import AsyncGenerator, Generator
from pathlib import Path

import pytest
import pytest_asyncio
import structlog

from postercache.utils.config import (
    CacheConfig,
    GateConfig,
    Settings,
    StorageConfig,
    get_settings,
)


def pytest_configure(config):
    """Register custom markers for test classification."""
    config.addinivalue_line("markers", "unit: Unit tests with no external dependencies")
    config.addinivalue_line(
        "markers", "integration: Integration tests with a faked browser backend"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests requiring a running Chrome (POSTERCACHE_E2E=1)"
    )


def pytest_collection_modifyitems(config, items):
    """Default unmarked tests to unit and skip e2e unless requested."""
    skip_e2e = pytest.mark.skip(reason="E2E tests need Chrome; set POSTERCACHE_E2E=1")
    run_e2e = os.environ.get("POSTERCACHE_E2E") == "1"

    for item in items:
        has_classification = any(
            marker.name in ("unit", "integration", "e2e") for marker in item.iter_markers()
        )
        if not has_classification:
            item.add_marker(pytest.mark.unit)

        if not run_e2e and any(marker.name == "e2e" for marker in item.iter_markers()):
            item.add_marker(skip_e2e)


class FakeFetcher:
    """Stand-in for the browser backend.

    Records every invocation, tracks peak concurrency and can be held open
    with release_event to observe in-flight behaviour.
    """

    def __init__(
        self,
        values: dict[str, str] | None = None,
        *,
        default: str | None = "https://posters.example/{key}.jpg",
        delay: float = 0.0,
        hold: bool = False,
    ) -> None:
        self.values = values or {}
        self.default = default
        self.delay = delay
        self.failures: dict[str, BaseException] = {}
        self.calls: list[str] = []
        self.started: list[str] = []
        self.active = 0
        self.peak_active = 0
        self.release_event = asyncio.Event()
        if not hold:
            self.release_event.set()
        self.closed = False

    async def fetch(self, key: str) -> str:
        self.calls.append(key)
        self.active += 1
        self.peak_active = max(self.peak_active, self.active)
        self.started.append(key)
        try:
            await self.release_event.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            else:
                await asyncio.sleep(0)
            if key in self.failures:
                raise self.failures[key]
            if key in self.values:
                return self.values[key]
            if self.default is None:
                return ""
            return self.default.format(key=key)
        finally:
            self.active -= 1

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def make_fetcher() -> type[FakeFetcher]:
    """FakeFetcher constructor, for tests that tune its behaviour."""
    return FakeFetcher


@pytest.fixture
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db_path(temp_dir: Path) -> Path:
    """Get path for temporary test database."""
    return temp_dir / "test_postercache.db"


@pytest_asyncio.fixture
async def test_database(temp_db_path: Path) -> AsyncGenerator:
    """Connected temporary database with schema."""
    from postercache.storage.database import Database

    db = Database(temp_db_path)
    await db.connect()
    await db.initialize_schema()

    yield db

    await db.close()


@pytest_asyncio.fixture
async def poster_store(test_database):
    """PosterStore over the temporary database."""
    from postercache.storage.poster_store import PosterStore

    return PosterStore(test_database)


@pytest.fixture
def make_settings(temp_db_path: Path):
    """Factory for Settings with small capacities and a temp database."""

    def _make(
        *,
        gate_capacity: int = 1,
        soft: int = 10,
        target: int = 8,
        hard: int = 12,
        storage_enabled: bool = True,
        max_records: int = 100,
        target_records: int = 80,
        interval: float = 3600.0,
        lookup_timeout: float | None = None,
        warm_on_start: bool = True,
    ) -> Settings:
        return Settings(
            gate=GateConfig(capacity=gate_capacity),
            cache=CacheConfig(
                soft_capacity=soft,
                target_capacity=target,
                hard_capacity=hard,
                eviction_interval_seconds=interval,
                lookup_timeout_seconds=lookup_timeout,
                warm_on_start=warm_on_start,
            ),
            storage=StorageConfig(
                enabled=storage_enabled,
                database_path=str(temp_db_path),
                max_records=max_records,
                target_records=target_records,
            ),
        )

    return _make


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Generator[None, None, None]:
    """Reset the cached settings around every test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True, scope="session")
def log_to_stderr() -> Generator[None, None, None]:
    """Route log output to stderr so stdout carries only command output."""
    structlog.configure(logger_factory=structlog.PrintLoggerFactory(sys.stderr))
    yield
    structlog.reset_defaults()
