"""
SyncRunStore — the sync run log.

A record is created Running when a run starts, has its counters bumped by
the owning run, and is frozen once it reaches Success or Failed.
"""

import logging
from typing import Any

from ..exceptions import StorageError
from ..models import RunStatus, SyncMode, SyncRunRecord, utcnow
from .database import DatabaseManager, from_db_time, to_db_time

logger = logging.getLogger(__name__)


def _record(row: Any) -> SyncRunRecord:
    data = dict(row)
    data["started_at"] = from_db_time(data["started_at"])
    data["completed_at"] = from_db_time(data["completed_at"])
    return SyncRunRecord(**data)


class SyncRunStore:
    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def start(self, user_id: int, source: str, mode: SyncMode) -> SyncRunRecord:
        started_at = utcnow().replace(microsecond=0)
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                "INSERT INTO sync_runs (user_id, source, mode, status, started_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (user_id, source, mode.value, RunStatus.RUNNING.value, to_db_time(started_at)),
            )
            run_id = cursor.lastrowid
        return SyncRunRecord(
            id=run_id, user_id=user_id, source=source, mode=mode, started_at=started_at,
        )

    async def update_progress(self, record: SyncRunRecord) -> None:
        """Persist the running counters of a record that is still Running."""
        async with self._db.transaction() as conn:
            await conn.execute(
                "UPDATE sync_runs SET items_processed = ?, items_added = ?, "
                "items_updated = ?, items_failed = ? WHERE id = ? AND status = ?",
                (
                    record.items_processed, record.items_added, record.items_updated,
                    record.items_failed, record.id, RunStatus.RUNNING.value,
                ),
            )

    async def finish(
        self, record: SyncRunRecord, status: RunStatus, error: str | None = None
    ) -> SyncRunRecord:
        """Move a Running record to a terminal status. Terminal records never change."""
        if status == RunStatus.RUNNING:
            raise ValueError("finish() needs a terminal status")
        if record.is_terminal:
            raise StorageError(f"Sync run {record.id} is already {record.status.value}")

        record.status = status
        record.error_message = error
        record.completed_at = utcnow().replace(microsecond=0)
        async with self._db.transaction() as conn:
            await conn.execute(
                "UPDATE sync_runs SET status = ?, completed_at = ?, items_processed = ?, "
                "items_added = ?, items_updated = ?, items_failed = ?, error_message = ? "
                "WHERE id = ? AND status = ?",
                (
                    status.value, to_db_time(record.completed_at), record.items_processed,
                    record.items_added, record.items_updated, record.items_failed,
                    error, record.id, RunStatus.RUNNING.value,
                ),
            )
        return record

    async def get(self, run_id: int) -> SyncRunRecord | None:
        async with self._db.get_connection() as conn:
            cursor = await conn.execute("SELECT * FROM sync_runs WHERE id = ?", (run_id,))
            row = await cursor.fetchone()
            return _record(row) if row else None

    async def list_for_user(self, user_id: int, limit: int = 20) -> list[SyncRunRecord]:
        """Most recent runs first."""
        async with self._db.get_connection() as conn:
            rows = await conn.execute_fetchall(
                "SELECT * FROM sync_runs WHERE user_id = ? ORDER BY id DESC LIMIT ?",
                (user_id, limit),
            )
            return [_record(r) for r in rows]

    async def mark_interrupted(self) -> int:
        """Crash recovery: runs left Running by a previous process become Failed."""
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE sync_runs SET status = ?, completed_at = ?, error_message = ? "
                "WHERE status = ?",
                (
                    RunStatus.FAILED.value, to_db_time(utcnow()),
                    "Interrupted by restart", RunStatus.RUNNING.value,
                ),
            )
            count = cursor.rowcount
        if count:
            logger.warning("Marked %d interrupted sync run(s) as Failed", count)
        return count
