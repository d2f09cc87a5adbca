"""
Database management for postercache.
Handles the SQLite connection, schema initialization and common operations.
"""

import asyncio
import sqlite3
from pathlib import Path
from typing import Any

import aiosqlite

from postercache.utils.logging import get_logger

logger = get_logger(__name__)


class Database:
    """Async SQLite database manager."""

    def __init__(self, db_path: str | Path):
        """Initialize database manager.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = Path(db_path)
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    async def connect(self) -> None:
        """Connect to the database."""
        if self._connection is not None:
            return

        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(
            self.db_path,
            isolation_level=None,  # Auto-commit mode
        )

        await self._connection.execute("PRAGMA journal_mode = WAL")
        await self._connection.execute("PRAGMA synchronous = NORMAL")

        # Row factory for dict-like access
        self._connection.row_factory = aiosqlite.Row

        logger.info("Database connected", path=str(self.db_path))

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("Database connection closed")

    async def initialize_schema(self) -> None:
        """Initialize database schema from SQL file."""
        schema_path = Path(__file__).parent / "schema.sql"

        if not schema_path.exists():
            raise FileNotFoundError(f"Schema file not found: {schema_path}")

        schema_sql = schema_path.read_text(encoding="utf-8")

        async with self._lock:
            await self._require_connection().executescript(schema_sql)

        logger.info("Database schema initialized")

    def _require_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise sqlite3.ProgrammingError("Database is not connected")
        return self._connection

    async def execute(
        self,
        sql: str,
        parameters: tuple | dict | None = None,
    ) -> aiosqlite.Cursor:
        """Execute a SQL statement.

        Args:
            sql: SQL statement to execute.
            parameters: Optional parameters for the statement.

        Returns:
            Cursor with results.
        """
        async with self._lock:
            connection = self._require_connection()
            if parameters:
                cursor = await connection.execute(sql, parameters)
            else:
                cursor = await connection.execute(sql)
            return cursor

    async def execute_many(
        self,
        sql: str,
        parameters: list[tuple | dict],
    ) -> None:
        """Execute a SQL statement with multiple parameter sets in one transaction.

        Args:
            sql: SQL statement to execute.
            parameters: List of parameter sets.
        """
        async with self._lock:
            connection = self._require_connection()
            await connection.execute("BEGIN")
            try:
                await connection.executemany(sql, parameters)
            except BaseException:
                await connection.execute("ROLLBACK")
                raise
            await connection.execute("COMMIT")

    async def fetch_one(
        self,
        sql: str,
        parameters: tuple | dict | None = None,
    ) -> dict[str, Any] | None:
        """Fetch a single row.

        Args:
            sql: SQL query.
            parameters: Optional parameters.

        Returns:
            Row as dict or None.
        """
        cursor = await self.execute(sql, parameters)
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def fetch_all(
        self,
        sql: str,
        parameters: tuple | dict | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch all rows.

        Args:
            sql: SQL query.
            parameters: Optional parameters.

        Returns:
            List of rows as dicts.
        """
        cursor = await self.execute(sql, parameters)
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]
