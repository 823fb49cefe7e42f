"""
InstructionStore — CRUD for user-authored standing instructions.

The proactive agent only ever touches execution_count and last_executed_at.
"""

import logging
from typing import Any

from ..models import StandingInstruction, TriggerType
from .database import DatabaseManager, from_db_time

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, user_id, instruction, trigger_type, priority, is_active, "
    "execution_count, last_executed_at, created_at"
)


def _instruction(row: Any) -> StandingInstruction:
    data = dict(row)
    data["is_active"] = bool(data["is_active"])
    data["last_executed_at"] = from_db_time(data["last_executed_at"])
    data["created_at"] = from_db_time(data["created_at"])
    return StandingInstruction(**data)


class InstructionStore:
    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def add(
        self,
        user_id: int,
        instruction: str,
        trigger_type: TriggerType = TriggerType.ALL,
        priority: int = 0,
    ) -> int:
        """Insert a new active instruction. Returns the new row ID."""
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                "INSERT INTO standing_instructions (user_id, instruction, trigger_type, priority) "
                "VALUES (?, ?, ?, ?)",
                (user_id, instruction, trigger_type.value, priority),
            )
            return cursor.lastrowid

    async def update(
        self,
        user_id: int,
        instruction_id: int,
        *,
        instruction: str | None = None,
        trigger_type: TriggerType | None = None,
        priority: int | None = None,
        is_active: bool | None = None,
    ) -> bool:
        """Edit the given fields. Returns True if the row exists for this user."""
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                """
                UPDATE standing_instructions SET
                    instruction = COALESCE(?, instruction),
                    trigger_type = COALESCE(?, trigger_type),
                    priority = COALESCE(?, priority),
                    is_active = COALESCE(?, is_active),
                    updated_at = datetime('now')
                WHERE id = ? AND user_id = ?
                """,
                (
                    instruction,
                    trigger_type.value if trigger_type else None,
                    priority,
                    int(is_active) if is_active is not None else None,
                    instruction_id,
                    user_id,
                ),
            )
            return cursor.rowcount > 0

    async def delete(self, user_id: int, instruction_id: int) -> bool:
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM standing_instructions WHERE id = ? AND user_id = ?",
                (instruction_id, user_id),
            )
            return cursor.rowcount > 0

    async def get(self, user_id: int, instruction_id: int) -> StandingInstruction | None:
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                f"SELECT {_COLUMNS} FROM standing_instructions WHERE id = ? AND user_id = ?",
                (instruction_id, user_id),
            )
            row = await cursor.fetchone()
            return _instruction(row) if row else None

    async def list_active(self, user_id: int) -> list[StandingInstruction]:
        """Active instructions, highest priority first."""
        async with self._db.get_connection() as conn:
            rows = await conn.execute_fetchall(
                f"SELECT {_COLUMNS} FROM standing_instructions "
                "WHERE user_id = ? AND is_active = 1 ORDER BY priority DESC, id",
                (user_id,),
            )
            return [_instruction(r) for r in rows]

    async def users_with_active_instructions(self) -> list[int]:
        async with self._db.get_connection() as conn:
            rows = await conn.execute_fetchall(
                "SELECT DISTINCT user_id FROM standing_instructions "
                "WHERE is_active = 1 ORDER BY user_id"
            )
            return [r["user_id"] for r in rows]

    async def record_execution(self, instruction_id: int) -> None:
        async with self._db.transaction() as conn:
            await conn.execute(
                "UPDATE standing_instructions SET execution_count = execution_count + 1, "
                "last_executed_at = datetime('now') WHERE id = ?",
                (instruction_id,),
            )
