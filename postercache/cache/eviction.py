"""
Periodic frequency-ranked eviction.

Each sweep:
1. Exports the hot tier snapshot to the store so its rank index reflects
   current access counts.
2. Trims the tier to target_capacity once it reaches soft_capacity.
3. Trims the store to target_records once it exceeds max_records, then drops
   from the tier the exported keys that did not survive.

Keys with an in-flight fetch are never removed. Store failures are logged and
the sweep carries on memory-only.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Collection
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from postercache.cache.errors import StoreUnavailable
from postercache.cache.tier import CacheTier
from postercache.utils.logging import get_logger

if TYPE_CHECKING:
    from postercache.storage.poster_store import PosterStore

logger = get_logger(__name__)


@dataclass
class EvictionReport:
    """Outcome of one sweep."""

    tier_size_before: int = 0
    tier_size_after: int = 0
    tier_evicted: list[str] = field(default_factory=list)
    exported: int = 0
    store_deleted: int = 0
    reconciled: list[str] = field(default_factory=list)
    store_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tier_size_before": self.tier_size_before,
            "tier_size_after": self.tier_size_after,
            "tier_evicted": len(self.tier_evicted),
            "exported": self.exported,
            "store_deleted": self.store_deleted,
            "reconciled": len(self.reconciled),
            "store_error": self.store_error,
        }


class EvictionScheduler:
    """Background sweep enforcing tier and store capacity bounds.

    Args:
        tier: Hot tier to trim.
        soft_capacity: Tier size that triggers a trim.
        target_capacity: Tier size after a trim.
        interval: Seconds between sweeps.
        pinned: Returns keys that must not be evicted (in-flight fetches).
        store: Optional durable store to trim and reconcile against.
        store_max_records: Store size that triggers a store trim.
        store_target_records: Store size after a store trim.
    """

    def __init__(
        self,
        tier: CacheTier,
        *,
        soft_capacity: int,
        target_capacity: int,
        interval: float,
        pinned: Callable[[], Collection[str]] = frozenset,
        store: PosterStore | None = None,
        store_max_records: int | None = None,
        store_target_records: int | None = None,
    ) -> None:
        if not 0 <= target_capacity <= soft_capacity:
            raise ValueError("target_capacity must be between 0 and soft_capacity")
        if interval <= 0:
            raise ValueError("interval must be > 0")

        self._tier = tier
        self._soft_capacity = soft_capacity
        self._target_capacity = target_capacity
        self._interval = interval
        self._pinned = pinned
        self._store = store
        self._store_max_records = store_max_records
        self._store_target_records = (
            store_target_records if store_target_records is not None else store_max_records
        )

        self._task: asyncio.Task[None] | None = None
        self._runs = 0
        self._last_report: EvictionReport | None = None

    async def run_once(self) -> EvictionReport:
        """Perform one sweep."""
        report = EvictionReport(tier_size_before=len(self._tier))

        # Keys are exported before trimming so evicted entries keep their
        # latest counts in the store
        exported_keys: list[str] = []
        if self._store is not None:
            snapshot = self._tier.snapshot()
            exported_keys = [key for key, _ in snapshot]
            try:
                report.exported = await self._store.upsert_many(r for _, r in snapshot)
            except StoreUnavailable as e:
                report.store_error = e.message
                exported_keys = []

        if len(self._tier) >= self._soft_capacity:
            removed = self._tier.evict_to(self._target_capacity, exclude=self._pinned())
            report.tier_evicted = [r.key for r in removed]

        if self._store is not None and report.store_error is None:
            await self._sweep_store(report, exported_keys)

        report.tier_size_after = len(self._tier)
        self._runs += 1
        self._last_report = report

        if report.tier_evicted or report.store_deleted:
            logger.info("Eviction sweep", **report.to_dict())
        else:
            logger.debug("Eviction sweep", **report.to_dict())
        return report

    async def flush(self) -> int:
        """Export the current tier snapshot to the store.

        Returns:
            Number of records written (0 when memory-only or the store fails).
        """
        if self._store is None:
            return 0
        try:
            return await self._store.upsert_many(r for _, r in self._tier.snapshot())
        except StoreUnavailable:
            return 0

    async def _sweep_store(self, report: EvictionReport, exported_keys: list[str]) -> None:
        assert self._store is not None
        if self._store_max_records is None:
            return

        try:
            size = await self._store.count()
            if size <= self._store_max_records:
                return

            report.store_deleted = await self._store.delete_lowest_n(
                size - self._store_target_records
            )
            survivors = {key for key, _ in await self._store.scan_all()}
        except StoreUnavailable as e:
            report.store_error = e.message
            return

        report.reconciled = self._tier.retain(
            survivors,
            candidates=exported_keys,
            exclude=self._pinned(),
        )

    async def _loop(self) -> None:
        logger.info("Eviction scheduler started", interval=self._interval)
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.run_once()
            except Exception as e:
                logger.error("Eviction sweep failed", error=str(e), exc_info=True)

    async def start(self) -> None:
        """Start the background sweep."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._loop(), name="eviction_scheduler")

    async def stop(self) -> None:
        """Stop the background sweep and wait for it to exit."""
        if self._task is None:
            return

        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Eviction scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def get_stats(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "runs": self._runs,
            "interval": self._interval,
            "soft_capacity": self._soft_capacity,
            "target_capacity": self._target_capacity,
            "last_report": self._last_report.to_dict() if self._last_report else None,
        }
