"""
Lookup entry point for the HTTP front.

A lookup tries the hot tier, then the durable store (warming the tier on a
hit), then a single-flight fetch through the browser.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from postercache.cache.errors import CacheMiss, StoreUnavailable
from postercache.cache.orchestrator import FetchOrchestrator
from postercache.cache.record import Record, normalize_key
from postercache.cache.tier import CacheTier
from postercache.utils.logging import get_logger

if TYPE_CHECKING:
    from postercache.storage.poster_store import PosterStore

logger = get_logger(__name__)


class PosterCache:
    """Tiered poster cache.

    Args:
        tier: Hot tier.
        orchestrator: Single-flight fetcher for full misses.
        store: Durable store, or None for memory-only operation.
        lookup_timeout: Default seconds a caller waits on a fetch.
    """

    def __init__(
        self,
        tier: CacheTier,
        orchestrator: FetchOrchestrator,
        *,
        store: PosterStore | None = None,
        lookup_timeout: float | None = None,
    ) -> None:
        self._tier = tier
        self._orchestrator = orchestrator
        self._store = store
        self._lookup_timeout = lookup_timeout

        self._lookups = 0
        self._store_hits = 0
        self._fetches = 0

    async def lookup(
        self,
        key: str,
        *,
        cached_only: bool = False,
        timeout: float | None = None,
    ) -> str:
        """Return the poster URL for key.

        Raises:
            InvalidKeyError: Key is blank.
            CacheMiss: cached_only and the key is in neither tier.
            FetchFailed: The browser fetch failed.
            GateTimeout: No admission slot within the timeout.
            FetchTimeout: The fetch did not finish within the timeout.
        """
        record = await self.lookup_record(key, cached_only=cached_only, timeout=timeout)
        return record.value

    async def lookup_record(
        self,
        key: str,
        *,
        cached_only: bool = False,
        timeout: float | None = None,
    ) -> Record:
        """Like lookup() but returns a copy of the full record."""
        key = normalize_key(key)
        self._lookups += 1

        try:
            return await self._lookup_local(key)
        except CacheMiss:
            if cached_only:
                raise

        self._fetches += 1
        return await self._orchestrator.fetch(
            key,
            timeout=timeout if timeout is not None else self._lookup_timeout,
        )

    async def _lookup_local(self, key: str) -> Record:
        """Tier then store; raises CacheMiss when neither has the key."""
        record = self._tier.lookup(key)
        if record is not None:
            return record

        if self._store is not None:
            try:
                stored = await self._store.get(key)
            except StoreUnavailable:
                stored = None
            if stored is not None:
                self._store_hits += 1
                logger.debug("Warmed from store", key=key, access_count=stored.access_count)
                evicted: list[Record] = []
                record = self._tier.admit(
                    stored, exclude=self._orchestrator.in_flight_keys(), evicted=evicted
                )
                await self._save_evicted(evicted)
                return record

        raise CacheMiss(key)

    async def _save_evicted(self, evicted: list[Record]) -> None:
        """Write back the counters of entries displaced by a warm."""
        if not evicted or self._store is None:
            return
        try:
            await self._store.upsert_many(evicted)
        except StoreUnavailable:
            pass

    def list_all(self) -> dict[str, str]:
        """Read-only snapshot of the hot tier as key -> value."""
        return {key: record.value for key, record in self._tier.snapshot()}

    async def warm(self, limit: int) -> int:
        """Preload the highest-ranked store records into the tier.

        Returns:
            Number of records loaded (0 when memory-only or the store fails).
        """
        if self._store is None or limit <= 0:
            return 0
        try:
            rows = await self._store.scan_all()
        except StoreUnavailable:
            return 0

        loaded = self._tier.preload((record for _, record in rows), limit)
        logger.info("Tier warmed from store", loaded=loaded, stored=len(rows))
        return loaded

    @property
    def memory_only(self) -> bool:
        """True without a store or while the store is failing."""
        return self._store is None or not self._store.available

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics for monitoring."""
        return {
            "lookups": self._lookups,
            "store_hits": self._store_hits,
            "fetches": self._fetches,
            "memory_only": self.memory_only,
            "tier": self._tier.get_stats(),
            "orchestrator": self._orchestrator.get_stats(),
            "store": self._store.get_stats() if self._store is not None else None,
        }
