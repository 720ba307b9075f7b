"""
buildwatch Persistence - Database connection.

SQLite database with async support via aiosqlite.
"""

from __future__ import annotations

import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiosqlite
from loguru import logger

from buildwatch.core.exceptions import PersistenceError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


def _adapt_datetime(val: datetime) -> str:
    """Adapt datetime to ISO format string."""
    return val.isoformat()


def _convert_datetime(val: bytes) -> datetime:
    """Convert ISO format string to datetime."""
    return datetime.fromisoformat(val.decode())


sqlite3.register_adapter(datetime, _adapt_datetime)
sqlite3.register_converter("TIMESTAMP", _convert_datetime)

class DatabaseError(PersistenceError):
    """Database operation failed."""

    def __init__(self, reason: str):
        super().__init__("query", reason)


class IntegrityError(PersistenceError):
    """Raised when a unique constraint is violated."""

    def __init__(self, reason: str):
        super().__init__("insert", reason)


class Database:
    """
    SQLite database connection manager.

    One instance per LifecycleContext or CLI command, opened with connect()
    and released with close().
    """

    def __init__(self, path: Path) -> None:
        """
        Initialize database.

        Args:
            path: Database file path.
        """
        self.path = path
        self._connection: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Open database connection and initialize schema."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(
            self.path,
            detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
        )
        self._connection.row_factory = aiosqlite.Row

        await self._init_schema()
        logger.debug(f"🗄️ Database connected: {self.path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.debug("🗄️ Database connection closed")

    @property
    def connection(self) -> aiosqlite.Connection:
        """Get current connection."""
        if not self._connection:
            raise RuntimeError("Database not connected")
        return self._connection

    async def _init_schema(self) -> None:
        """Initialize database schema."""
        conn = self.connection
        await conn.executescript(
            """
            -- Completed builds (append-only)
            CREATE TABLE IF NOT EXISTS builds (
                id TEXT PRIMARY KEY,
                job_name TEXT NOT NULL,
                build_number INTEGER NOT NULL,
                status TEXT NOT NULL,
                duration_ms INTEGER NOT NULL DEFAULT 0,
                console_link TEXT NOT NULL,
                error_summary TEXT,
                failure_category TEXT,
                completed_at TIMESTAMP NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (job_name, build_number)
            );

            CREATE INDEX IF NOT EXISTS idx_builds_completed ON builds(completed_at DESC);
            CREATE INDEX IF NOT EXISTS idx_builds_job ON builds(job_name, build_number DESC);
            """
        )
        await conn.commit()

    async def execute(self, query: str, params: tuple[Any, ...] | None = None) -> aiosqlite.Cursor:
        """Execute a query."""
        try:
            return await self.connection.execute(query, params or ())
        except aiosqlite.IntegrityError as e:
            raise IntegrityError(str(e)) from e
        except aiosqlite.OperationalError as e:
            raise DatabaseError(f"Database operation failed: {e}") from e

    async def commit(self) -> None:
        """Commit current transaction."""
        await self.connection.commit()

    async def rollback(self) -> None:
        """Rollback current transaction."""
        await self.connection.rollback()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Database]:
        """
        Transaction context manager with automatic rollback on error.

        Usage:
            async with db.transaction():
                await db.execute(...)
        """
        try:
            yield self
            await self.commit()
        except Exception:
            await self.rollback()
            raise
