"""ActivityStore — append-only audit log of autonomous agent actions."""

import logging
from typing import Any

from ..models import AgentActivity
from .database import DatabaseManager, from_db_time

logger = logging.getLogger(__name__)


def _activity(row: Any) -> AgentActivity:
    data = dict(row)
    data["is_read"] = bool(data["is_read"])
    data["created_at"] = from_db_time(data["created_at"])
    return AgentActivity(**data)


class ActivityStore:
    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def add(self, activity: AgentActivity) -> int:
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO agent_activities (
                    user_id, activity_type, description, details,
                    triggered_by_external_id, instruction_id, status, error_message
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    activity.user_id,
                    activity.activity_type,
                    activity.description,
                    activity.details,
                    activity.triggered_by_external_id,
                    activity.instruction_id,
                    activity.status,
                    activity.error_message,
                ),
            )
            return cursor.lastrowid

    async def list_for_user(
        self, user_id: int, unread_only: bool = False, limit: int = 50
    ) -> list[AgentActivity]:
        """Newest first."""
        query = "SELECT * FROM agent_activities WHERE user_id = ?"
        if unread_only:
            query += " AND is_read = 0"
        query += " ORDER BY id DESC LIMIT ?"
        async with self._db.get_connection() as conn:
            rows = await conn.execute_fetchall(query, (user_id, limit))
            return [_activity(r) for r in rows]

    async def mark_read(self, user_id: int, activity_id: int) -> bool:
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE agent_activities SET is_read = 1 WHERE id = ? AND user_id = ?",
                (activity_id, user_id),
            )
            return cursor.rowcount > 0

    async def has_acted(self, instruction_id: int, external_id: str) -> bool:
        """True if this instruction already produced an activity for this item."""
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                "SELECT 1 FROM agent_activities "
                "WHERE instruction_id = ? AND triggered_by_external_id = ? LIMIT 1",
                (instruction_id, external_id),
            )
            return await cursor.fetchone() is not None
