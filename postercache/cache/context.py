"""
Lifecycle owner for the cache subsystem.

All shared cache and gate state lives in one CacheContext created at
startup and closed at shutdown. Components receive their collaborators at
construction; nothing is held in module globals.
"""

from __future__ import annotations

import sqlite3
from typing import Any

from postercache.cache.eviction import EvictionScheduler
from postercache.cache.gate import AdmissionGate
from postercache.cache.orchestrator import FetchOrchestrator
from postercache.cache.service import PosterCache
from postercache.cache.tier import CacheTier
from postercache.crawler.poster_fetcher import PosterFetcher
from postercache.storage.database import Database
from postercache.storage.poster_store import PosterStore
from postercache.utils.config import Settings
from postercache.utils.logging import get_logger

logger = get_logger(__name__)


class CacheContext:
    """Builds, starts and tears down the cache subsystem.

    Example:
        async with CacheContext(settings, PlaywrightPosterFetcher(settings.browser)) as ctx:
            url = await ctx.cache.lookup("Avengers")

    Args:
        settings: Process settings (immutable).
        fetcher: Browser fetch capability; closed with the context.
    """

    def __init__(self, settings: Settings, fetcher: PosterFetcher) -> None:
        self._settings = settings
        self._fetcher = fetcher

        self._database: Database | None = None
        self._store: PosterStore | None = None
        self._tier: CacheTier | None = None
        self._gate: AdmissionGate | None = None
        self._orchestrator: FetchOrchestrator | None = None
        self._scheduler: EvictionScheduler | None = None
        self._cache: PosterCache | None = None
        self._started = False

    async def start(self) -> None:
        """Connect storage, build components, warm the tier and start sweeping."""
        if self._started:
            return

        settings = self._settings
        self._store = await self._open_store()

        self._tier = CacheTier(hard_capacity=settings.cache.hard_capacity)
        self._gate = AdmissionGate(capacity=settings.gate.capacity)
        self._orchestrator = FetchOrchestrator(
            self._tier,
            self._gate,
            self._fetcher,
            store=self._store,
            fetch_timeout=settings.browser.fetch_timeout_seconds,
        )
        self._cache = PosterCache(
            self._tier,
            self._orchestrator,
            store=self._store,
            lookup_timeout=settings.cache.lookup_timeout_seconds,
        )
        self._scheduler = EvictionScheduler(
            self._tier,
            soft_capacity=settings.cache.soft_capacity,
            target_capacity=settings.cache.target_capacity,
            interval=settings.cache.eviction_interval_seconds,
            pinned=self._orchestrator.in_flight_keys,
            store=self._store,
            store_max_records=settings.storage.max_records,
            store_target_records=settings.storage.target_records,
        )

        if settings.cache.warm_on_start:
            await self._cache.warm(settings.cache.target_capacity)

        await self._scheduler.start()
        self._started = True

        logger.info(
            "Cache context started",
            gate_capacity=settings.gate.capacity,
            soft_capacity=settings.cache.soft_capacity,
            memory_only=self._store is None,
        )

    async def _open_store(self) -> PosterStore | None:
        storage = self._settings.storage
        if not storage.enabled:
            logger.info("Persistent store disabled, running memory-only")
            return None

        database = Database(storage.database_path)
        try:
            await database.connect()
            await database.initialize_schema()
        except (sqlite3.Error, OSError) as e:
            logger.warning(
                "Persistent store unavailable at startup, running memory-only",
                path=storage.database_path,
                error=str(e),
            )
            await database.close()
            return None

        self._database = database
        return PosterStore(database)

    async def close(self) -> None:
        """Shut down the subsystem and save tier counters to the store."""
        if not self._started:
            return
        self._started = False

        assert self._scheduler is not None
        assert self._orchestrator is not None
        assert self._gate is not None

        await self._scheduler.stop()
        await self._orchestrator.close()
        self._gate.close()

        flushed = await self._scheduler.flush()
        logger.debug("Tier counters saved", records=flushed)

        try:
            await self._fetcher.close()
        except Exception as e:
            logger.warning("Error closing fetcher", error=str(e))

        if self._database is not None:
            await self._database.close()
            self._database = None

        logger.info("Cache context closed")

    async def __aenter__(self) -> CacheContext:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _require(self, component: Any, name: str) -> Any:
        if component is None:
            raise RuntimeError(f"CacheContext is not started ({name} unavailable)")
        return component

    @property
    def cache(self) -> PosterCache:
        return self._require(self._cache, "cache")

    @property
    def tier(self) -> CacheTier:
        return self._require(self._tier, "tier")

    @property
    def gate(self) -> AdmissionGate:
        return self._require(self._gate, "gate")

    @property
    def orchestrator(self) -> FetchOrchestrator:
        return self._require(self._orchestrator, "orchestrator")

    @property
    def scheduler(self) -> EvictionScheduler:
        return self._require(self._scheduler, "scheduler")

    @property
    def store(self) -> PosterStore | None:
        return self._store

    @property
    def settings(self) -> Settings:
        return self._settings

    def get_stats(self) -> dict[str, Any]:
        """Combined statistics for the health endpoint."""
        return {
            "cache": self.cache.get_stats(),
            "gate": self.gate.get_stats(),
            "scheduler": self.scheduler.get_stats(),
        }
