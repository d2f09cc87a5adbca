"""
Durable poster store backed by SQLite.

Every storage-layer failure surfaces as StoreUnavailable so the cache can
degrade to memory-only operation instead of failing lookups.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, TypeVar

from postercache.cache.errors import StoreUnavailable
from postercache.cache.record import Record
from postercache.storage.database import Database
from postercache.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

_UPSERT_SQL = """
INSERT INTO posters (key, value, access_count, last_accessed)
VALUES (?, ?, ?, ?)
ON CONFLICT(key) DO UPDATE SET
    value = excluded.value,
    access_count = excluded.access_count,
    last_accessed = excluded.last_accessed
"""


def _row_to_record(row: dict[str, Any]) -> Record:
    return Record(
        key=row["key"],
        value=row["value"],
        access_count=row["access_count"],
        last_accessed=row["last_accessed"],
    )


class PosterStore:
    """Key -> Record persistence with rank-ordered bulk deletion."""

    def __init__(self, db: Database) -> None:
        self._db = db
        self._available = True
        self._failures = 0

    @property
    def available(self) -> bool:
        """False after a failed operation, until one succeeds again."""
        return self._available

    async def _guard(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        try:
            result = await call()
        except (sqlite3.Error, OSError) as e:
            self._failures += 1
            if self._available:
                self._available = False
                logger.warning(
                    "Persistent store unavailable, continuing memory-only",
                    operation=operation,
                    error=str(e),
                )
            raise StoreUnavailable(operation, str(e)) from e

        if not self._available:
            self._available = True
            logger.info("Persistent store recovered", operation=operation)
        return result

    def get_stats(self) -> dict[str, Any]:
        return {
            "available": self._available,
            "failures": self._failures,
            "path": str(self._db.db_path),
        }

    async def get(self, key: str) -> Record | None:
        """Point lookup; does not count a hit."""
        row = await self._guard(
            "get",
            lambda: self._db.fetch_one(
                "SELECT key, value, access_count, last_accessed FROM posters WHERE key = ?",
                (key,),
            ),
        )
        return _row_to_record(row) if row else None

    async def upsert(self, record: Record) -> None:
        """Insert or replace a record (last writer wins)."""
        await self._guard(
            "upsert",
            lambda: self._db.execute(
                _UPSERT_SQL,
                (record.key, record.value, record.access_count, record.last_accessed),
            ),
        )

    async def upsert_many(self, records: Iterable[Record]) -> int:
        """Upsert records in one transaction.

        Returns:
            Number of records written.
        """
        params = [(r.key, r.value, r.access_count, r.last_accessed) for r in records]
        if not params:
            return 0
        await self._guard("upsert_many", lambda: self._db.execute_many(_UPSERT_SQL, params))
        return len(params)

    async def delete_lowest_n(self, n: int) -> int:
        """Delete the n lowest-ranked records.

        Rank is access_count ascending, ties broken by oldest last_accessed.

        Returns:
            Number of records actually removed (fewer than n if the store is
            smaller).
        """
        if n <= 0:
            return 0

        cursor = await self._guard(
            "delete_lowest_n",
            lambda: self._db.execute(
                """
                DELETE FROM posters
                WHERE key IN (
                    SELECT key FROM posters
                    ORDER BY access_count ASC, last_accessed ASC
                    LIMIT ?
                )
                """,
                (n,),
            ),
        )
        return cursor.rowcount

    async def scan_all(self) -> list[tuple[str, Record]]:
        """Materialize every record, highest rank first."""
        rows = await self._guard(
            "scan_all",
            lambda: self._db.fetch_all(
                """
                SELECT key, value, access_count, last_accessed FROM posters
                ORDER BY access_count DESC, last_accessed DESC
                """
            ),
        )
        return [(row["key"], _row_to_record(row)) for row in rows]

    async def count(self) -> int:
        """Number of stored records."""
        row = await self._guard(
            "count",
            lambda: self._db.fetch_one("SELECT COUNT(*) AS n FROM posters"),
        )
        return int(row["n"]) if row else 0
