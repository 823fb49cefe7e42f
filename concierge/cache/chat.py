"""ChatStore — per-user conversation history."""

import logging

from ..models import ChatMessage
from .database import DatabaseManager, from_db_time

logger = logging.getLogger(__name__)


class ChatStore:
    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def add_message(self, user_id: int, role: str, content: str) -> int:
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                "INSERT INTO chat_messages (user_id, role, content) VALUES (?, ?, ?)",
                (user_id, role, content),
            )
            return cursor.lastrowid

    async def recent(self, user_id: int, limit: int) -> list[ChatMessage]:
        """The last `limit` messages, oldest first."""
        async with self._db.get_connection() as conn:
            rows = await conn.execute_fetchall(
                "SELECT role, content, created_at FROM ("
                "  SELECT id, role, content, created_at FROM chat_messages "
                "  WHERE user_id = ? ORDER BY id DESC LIMIT ?"
                ") ORDER BY id",
                (user_id, limit),
            )
            return [
                ChatMessage(
                    role=r["role"], content=r["content"], created_at=from_db_time(r["created_at"])
                )
                for r in rows
            ]

    async def clear(self, user_id: int) -> int:
        async with self._db.transaction() as conn:
            cursor = await conn.execute("DELETE FROM chat_messages WHERE user_id = ?", (user_id,))
            return cursor.rowcount
