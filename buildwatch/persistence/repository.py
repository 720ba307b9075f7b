"""
buildwatch Persistence - Build record repository.

Append-only from the engine's point of view: one row per completed build,
never updated. Implements the event bus RecordSink protocol.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from loguru import logger

from buildwatch.ci.models import BuildRecord, BuildStatus
from buildwatch.persistence.database import Database, IntegrityError

if TYPE_CHECKING:
    import aiosqlite

_COLUMNS = (
    "id, job_name, build_number, status, duration_ms, console_link, "
    "error_summary, failure_category, completed_at"
)


class BuildRecordRepository:
    """Stores and reads BuildRecords."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def append(self, record: BuildRecord) -> str:
        """
        Append a completed build.

        Returns:
            Generated record id

        Raises:
            IntegrityError: If a record for this job/build number already exists
        """
        record_id = uuid.uuid4().hex
        async with self.db.transaction():
            await self.db.execute(
                f"INSERT INTO builds ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record_id,
                    record.job_name,
                    record.build_number,
                    record.status.value,
                    record.duration_ms,
                    record.console_link,
                    record.error_summary,
                    record.failure_category,
                    record.completed_at,
                ),
            )
        logger.debug(f"Appended build record {record_id} ({record.job_name} #{record.build_number})")
        return record_id

    async def get(self, record_id: str) -> BuildRecord | None:
        async with await self.db.execute(
            f"SELECT {_COLUMNS} FROM builds WHERE id = ?", (record_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return self._from_row(row) if row else None

    async def exists(self, job_name: str, build_number: int) -> bool:
        async with await self.db.execute(
            "SELECT 1 FROM builds WHERE job_name = ? AND build_number = ?",
            (job_name, build_number),
        ) as cursor:
            return await cursor.fetchone() is not None

    async def list_recent(self, limit: int = 20, job_name: str | None = None) -> list[BuildRecord]:
        """Most recently completed builds first."""
        if job_name:
            query = (
                f"SELECT {_COLUMNS} FROM builds WHERE job_name = ? "
                "ORDER BY completed_at DESC LIMIT ?"
            )
            params: tuple[Any, ...] = (job_name, limit)
        else:
            query = f"SELECT {_COLUMNS} FROM builds ORDER BY completed_at DESC LIMIT ?"
            params = (limit,)

        async with await self.db.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        return [self._from_row(row) for row in rows]

    async def latest(self, job_name: str) -> BuildRecord | None:
        """Highest build number stored for a job."""
        async with await self.db.execute(
            f"SELECT {_COLUMNS} FROM builds WHERE job_name = ? "
            "ORDER BY build_number DESC LIMIT 1",
            (job_name,),
        ) as cursor:
            row = await cursor.fetchone()
        return self._from_row(row) if row else None

    async def count(self) -> int:
        async with await self.db.execute("SELECT COUNT(*) FROM builds") as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    @staticmethod
    def _from_row(row: aiosqlite.Row) -> BuildRecord:
        return BuildRecord(
            job_name=row["job_name"],
            build_number=row["build_number"],
            status=BuildStatus(row["status"]),
            duration_ms=row["duration_ms"],
            console_link=row["console_link"],
            error_summary=row["error_summary"],
            failure_category=row["failure_category"],
            completed_at=row["completed_at"],
        )


__all__ = ["BuildRecordRepository", "IntegrityError"]
