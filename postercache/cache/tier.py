"""
Hot in-memory cache tier.

Locking discipline: a single coarse lock guards the key -> Record map.
Every public operation, including the scheduler's ranking-and-removal pass,
runs inside one critical section, so the tier size bound holds in every
observable state. Records leave the tier only as copies.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Collection, Iterable
from typing import Any

from postercache.cache.record import Record
from postercache.utils.logging import get_logger

logger = get_logger(__name__)


class CacheTier:
    """Key -> Record map with access-frequency counters.

    Example:
        tier = CacheTier(hard_capacity=3)
        tier.insert("Avengers", "https://.../avengers.jpg")
        record = tier.lookup("Avengers")  # access_count == 2

    Args:
        hard_capacity: Maximum entries. Inserting a new key at capacity first
            evicts the single lowest-ranked entry.
    """

    def __init__(self, hard_capacity: int) -> None:
        if hard_capacity < 1:
            raise ValueError("hard_capacity must be at least 1")

        self._hard_capacity = hard_capacity
        self._records: dict[str, Record] = {}
        self._lock = threading.Lock()

        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def lookup(self, key: str) -> Record | None:
        """Look up a key, counting a hit.

        Args:
            key: Lookup key.

        Returns:
            Copy of the updated record, or None on miss.
        """
        with self._lock:
            record = self._records.get(key)
            if record is None:
                self._misses += 1
                return None
            record.touch()
            self._hits += 1
            return record.copy()

    def insert(
        self,
        key: str,
        value: str,
        *,
        exclude: Collection[str] = (),
        evicted: list[Record] | None = None,
    ) -> Record:
        """Insert a freshly fetched value with access_count=1.

        An existing key keeps its counters; its value is replaced and it is
        touched without counting a hit.

        Args:
            key: Lookup key.
            value: Fetched value.
            exclude: Keys that must not be evicted to make room.
            evicted: If given, receives a copy of the entry evicted to make
                room, so the caller can save its counters.

        Returns:
            Copy of the stored record.
        """
        with self._lock:
            existing = self._records.get(key)
            if existing is not None:
                existing.value = value
                existing.last_accessed = max(existing.last_accessed, time.time())
                return existing.copy()

            self._make_room(exclude, evicted)
            record = Record(key=key, value=value)
            self._records[key] = record
            return record.copy()

    def admit(
        self,
        record: Record,
        *,
        exclude: Collection[str] = (),
        evicted: list[Record] | None = None,
    ) -> Record:
        """Warm the tier with a record loaded from the store and count a hit.

        Counters from the store are preserved. If the key is already present
        (a concurrent warm won the race) this is a plain hit. evicted works as
        in insert().

        Returns:
            Copy of the updated record.
        """
        with self._lock:
            current = self._records.get(record.key)
            if current is None:
                self._make_room(exclude, evicted)
                current = record.copy()
                self._records[current.key] = current
            current.touch()
            self._hits += 1
            return current.copy()

    def preload(self, records: Iterable[Record], limit: int) -> int:
        """Load store records without counting hits, up to limit entries.

        Used once at startup; keys already present are left untouched.

        Returns:
            Number of records loaded.
        """
        loaded = 0
        with self._lock:
            for record in records:
                if len(self._records) >= min(limit, self._hard_capacity):
                    break
                if record.key in self._records:
                    continue
                self._records[record.key] = record.copy()
                loaded += 1
        return loaded

    def snapshot(self) -> list[tuple[str, Record]]:
        """Point-in-time copy of all entries in insertion order."""
        with self._lock:
            return [(key, record.copy()) for key, record in self._records.items()]

    def evict_to(self, target: int, *, exclude: Collection[str] = ()) -> list[Record]:
        """Remove lowest-ranked entries until at most target remain.

        Ranking is access_count ascending, then last_accessed ascending, then
        insertion order. Excluded keys are skipped, so the tier may stay above
        target if only excluded keys remain.

        Args:
            target: Occupancy to reduce to.
            exclude: Keys that must survive (in-flight fetches).

        Returns:
            Copies of removed records, lowest rank first.
        """
        with self._lock:
            excess = len(self._records) - max(0, target)
            if excess <= 0:
                return []

            # sorted() is stable, so dict insertion order breaks remaining ties
            ranked = sorted(
                (r for r in self._records.values() if r.key not in exclude),
                key=Record.rank,
            )
            removed = ranked[:excess]
            for record in removed:
                del self._records[record.key]
            self._evictions += len(removed)

        return [record.copy() for record in removed]

    def retain(
        self,
        keys: Collection[str],
        *,
        candidates: Iterable[str],
        exclude: Collection[str] = (),
    ) -> list[str]:
        """Drop candidate keys that are not in keys.

        Used to reconcile the tier with the store after a destructive store
        sweep: candidates are the keys exported before the sweep.

        Returns:
            Keys removed from the tier.
        """
        dropped: list[str] = []
        with self._lock:
            for key in candidates:
                if key in keys or key in exclude:
                    continue
                if self._records.pop(key, None) is not None:
                    dropped.append(key)
            self._evictions += len(dropped)
        return dropped

    def _make_room(self, exclude: Collection[str], evicted: list[Record] | None) -> None:
        """Evict one entry if at hard capacity (caller must hold lock)."""
        if len(self._records) < self._hard_capacity:
            return

        candidates = [r for r in self._records.values() if r.key not in exclude]
        if not candidates:
            logger.warning(
                "Tier at hard capacity with only pinned entries",
                size=len(self._records),
                hard_capacity=self._hard_capacity,
            )
            return

        victim = min(candidates, key=Record.rank)
        del self._records[victim.key]
        self._evictions += 1
        if evicted is not None:
            evicted.append(victim.copy())
        logger.debug(
            "Evicted on insert",
            key=victim.key,
            access_count=victim.access_count,
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._records

    @property
    def hard_capacity(self) -> int:
        """Maximum number of entries."""
        return self._hard_capacity

    def get_stats(self) -> dict[str, Any]:
        """Get tier statistics for monitoring."""
        with self._lock:
            return {
                "size": len(self._records),
                "hard_capacity": self._hard_capacity,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }
