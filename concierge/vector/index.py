"""
VectorIndex — points stored in SQLite, ranked with sqlite-vec distance functions.

Every search and delete is filtered on user_id; there is no code path that
reads another user's points. Point ids are deterministic, so upserting the
same (type, user, row) twice replaces the point rather than adding one.
"""

import logging
from dataclasses import dataclass
from typing import Any

from ..cache.database import DatabaseManager
from ..config import settings
from ..exceptions import StorageError, VectorUnavailableError
from .embeddings import MODEL_NAME, vec_bytes

logger = logging.getLogger(__name__)


@dataclass
class VectorHit:
    point_id: str
    score: float
    payload: dict[str, Any]


class VectorIndex:
    def __init__(self, db: DatabaseManager, enabled: bool | None = None) -> None:
        self._db = db
        self._enabled = settings.vector_enabled if enabled is None else enabled

    @property
    def available(self) -> bool:
        return self._enabled and self._db.vec_available

    def require(self) -> None:
        if not self._enabled:
            raise VectorUnavailableError("Vector search is disabled")
        if not self._db.vec_available:
            raise VectorUnavailableError("sqlite-vec extension is not loaded")

    async def get_hash(self, point_id: str, user_id: int) -> str | None:
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                "SELECT content_hash FROM vector_points WHERE point_id = ? AND user_id = ?",
                (point_id, user_id),
            )
            row = await cursor.fetchone()
            return row["content_hash"] if row else None

    async def upsert(
        self,
        point_id: str,
        vector: list[float],
        payload: dict[str, Any],
        content_hash: str,
    ) -> None:
        """Insert or replace one point. Payload must carry type, user_id, source_item_id, content."""
        self.require()
        async with self._db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO vector_points (
                    point_id, user_id, item_type, source_item_id, content,
                    content_hash, embedding, model_name
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(point_id) DO UPDATE SET
                    content=excluded.content,
                    content_hash=excluded.content_hash,
                    embedding=excluded.embedding,
                    model_name=excluded.model_name,
                    updated_at=datetime('now')
                """,
                (
                    point_id,
                    payload["user_id"],
                    payload["type"],
                    payload["source_item_id"],
                    payload["content"],
                    content_hash,
                    vec_bytes(vector),
                    MODEL_NAME,
                ),
            )

    async def search(
        self,
        vector: list[float],
        top_k: int,
        user_id: int,
        item_type: str | None = None,
    ) -> list[VectorHit]:
        """Nearest points for one user by cosine distance, best first."""
        self.require()
        query = (
            "SELECT point_id, user_id, item_type, source_item_id, content, "
            "vec_distance_cosine(embedding, ?) AS distance "
            "FROM vector_points WHERE user_id = ?"
        )
        params: list[Any] = [vec_bytes(vector), user_id]
        if item_type:
            query += " AND item_type = ?"
            params.append(item_type)
        query += " ORDER BY distance LIMIT ?"
        params.append(top_k)

        async with self._db.get_connection() as conn:
            try:
                rows = await conn.execute_fetchall(query, params)
            except Exception as e:
                raise StorageError(f"Vector search failed: {e}") from e
        return [
            VectorHit(
                point_id=r["point_id"],
                score=1.0 - float(r["distance"]),
                payload={
                    "type": r["item_type"],
                    "user_id": r["user_id"],
                    "source_item_id": r["source_item_id"],
                    "content": r["content"],
                },
            )
            for r in rows
        ]

    async def delete_for_user(self, user_id: int) -> int:
        async with self._db.transaction() as conn:
            cursor = await conn.execute("DELETE FROM vector_points WHERE user_id = ?", (user_id,))
            return cursor.rowcount

    async def count(self, user_id: int) -> int:
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                "SELECT COUNT(*) FROM vector_points WHERE user_id = ?", (user_id,)
            )
            return (await cursor.fetchone())[0]
