"""
UserStore — users, their opaque bearer credentials, and per-source sync cursors.

A cursor is the "last synced at" stamp of one (user, source). It is read when
a run starts and written only when a run succeeds.
"""

import logging
from datetime import datetime

from ..models import User
from .database import DatabaseManager, from_db_time, to_db_time

logger = logging.getLogger(__name__)


class UserStore:
    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def upsert_user(
        self,
        user_id: int,
        email: str | None = None,
        google_access_token: str | None = None,
        hubspot_access_token: str | None = None,
    ) -> None:
        async with self._db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO users (user_id, email, google_access_token, hubspot_access_token)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    email=COALESCE(excluded.email, users.email),
                    google_access_token=excluded.google_access_token,
                    hubspot_access_token=excluded.hubspot_access_token,
                    updated_at=datetime('now')
                """,
                (user_id, email, google_access_token, hubspot_access_token),
            )

    async def get(self, user_id: int) -> User | None:
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                "SELECT user_id, email, google_access_token, hubspot_access_token "
                "FROM users WHERE user_id = ?",
                (user_id,),
            )
            row = await cursor.fetchone()
            return User(**dict(row)) if row else None

    async def list_sync_eligible(self) -> list[int]:
        """Users holding a Google credential, in id order."""
        async with self._db.get_connection() as conn:
            rows = await conn.execute_fetchall(
                "SELECT user_id FROM users "
                "WHERE google_access_token IS NOT NULL AND google_access_token != '' "
                "ORDER BY user_id"
            )
            return [r["user_id"] for r in rows]

    async def get_cursor(self, user_id: int, source: str) -> datetime | None:
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                "SELECT last_synced_at FROM sync_cursors WHERE user_id = ? AND source = ?",
                (user_id, source),
            )
            row = await cursor.fetchone()
            return from_db_time(row["last_synced_at"]) if row else None

    async def set_cursor(self, user_id: int, source: str, synced_at: datetime) -> None:
        async with self._db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO sync_cursors (user_id, source, last_synced_at) VALUES (?, ?, ?)
                ON CONFLICT(user_id, source) DO UPDATE SET last_synced_at=excluded.last_synced_at
                """,
                (user_id, source, to_db_time(synced_at)),
            )
