"""
CacheStore — reads and writes for the per-source cache tables.

Rows are keyed by (user_id, external_id). The sync engine only ever inserts
or updates; nothing here deletes cache rows.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, AsyncIterator

from ..models import CacheItem, SourceKind, utcnow
from .database import DatabaseManager, to_db_time

logger = logging.getLogger(__name__)


class UpsertOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"


@dataclass(frozen=True)
class TableSpec:
    table: str
    text_fields: tuple[str, ...]
    # Column used for recency ordering
    time_field: str


TABLES: dict[SourceKind, TableSpec] = {
    SourceKind.MAIL: TableSpec(
        "mail_items", ("subject", "from_addr", "to_addr", "snippet", "body"), "received_at",
    ),
    SourceKind.CALENDAR: TableSpec(
        "calendar_items", ("summary", "description", "location", "attendees"), "start_time",
    ),
    SourceKind.CRM_CONTACTS: TableSpec(
        "crm_contacts",
        ("first_name", "last_name", "email", "company", "job_title"),
        "last_modified",
    ),
    SourceKind.CRM_COMPANIES: TableSpec(
        "crm_companies", ("name", "domain", "industry", "city", "country"), "last_modified",
    ),
    SourceKind.CRM_DEALS: TableSpec(
        "crm_deals", ("deal_name", "stage", "pipeline", "priority"), "last_modified",
    ),
}


def _like_pattern(term: str) -> str:
    """Substring pattern with LIKE wildcards in `term` taken literally."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _column_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_db_time(value)
    if isinstance(value, bool):
        return int(value)
    return value


class CacheStore:
    """Persistent store for cached mail, calendar and CRM rows."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert_item(self, user_id: int, item: CacheItem) -> UpsertOutcome:
        """
        Insert or update one item inside its own transaction.

        user_id, external_id and created_at are never touched by an update.
        Fields in the item's PRESERVE_IF_NONE keep their stored value when
        the incoming value is None.
        """
        spec = TABLES[item.kind]
        fields = {k: _column_value(v) for k, v in item.mutable_fields().items()}
        now = to_db_time(utcnow())

        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                f"SELECT id FROM {spec.table} WHERE user_id = ? AND external_id = ?",
                (user_id, item.external_id),
            )
            existing = await cursor.fetchone()

            if existing is None:
                columns = ["user_id", "external_id", *fields.keys(), "created_at", "updated_at"]
                values = [user_id, item.external_id, *fields.values(), now, now]
                placeholders = ", ".join("?" for _ in columns)
                await conn.execute(
                    f"INSERT INTO {spec.table} ({', '.join(columns)}) VALUES ({placeholders})",
                    values,
                )
                return UpsertOutcome.INSERTED

            assignments = []
            values = []
            for column, value in fields.items():
                if column in item.PRESERVE_IF_NONE:
                    assignments.append(f"{column} = COALESCE(?, {column})")
                else:
                    assignments.append(f"{column} = ?")
                values.append(value)
            assignments.append("updated_at = ?")
            values.extend([now, existing["id"]])
            await conn.execute(
                f"UPDATE {spec.table} SET {', '.join(assignments)} WHERE id = ?",
                values,
            )
            return UpsertOutcome.UPDATED

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_by_external_id(
        self, user_id: int, kind: SourceKind, external_id: str
    ) -> dict[str, Any] | None:
        spec = TABLES[kind]
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                f"SELECT * FROM {spec.table} WHERE user_id = ? AND external_id = ?",
                (user_id, external_id),
            )
            row = await cursor.fetchone()
            return dict(row) if row else None

    async def count(self, user_id: int, kind: SourceKind) -> int:
        spec = TABLES[kind]
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                f"SELECT COUNT(*) FROM {spec.table} WHERE user_id = ?", (user_id,)
            )
            row = await cursor.fetchone()
            return row[0]

    async def iter_rows(
        self, user_id: int, kind: SourceKind, batch_size: int = 200
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield every row of one kind for a user, in id order, a page at a time."""
        spec = TABLES[kind]
        last_id = 0
        while True:
            async with self._db.get_connection() as conn:
                rows = await conn.execute_fetchall(
                    f"SELECT * FROM {spec.table} WHERE user_id = ? AND id > ? "
                    "ORDER BY id LIMIT ?",
                    (user_id, last_id, batch_size),
                )
            if not rows:
                return
            for row in rows:
                yield dict(row)
            last_id = rows[-1]["id"]

    async def keyword_search(
        self,
        user_id: int,
        terms: list[str],
        limit: int,
        kinds: tuple[SourceKind, ...] | None = None,
    ) -> list[tuple[SourceKind, dict[str, Any]]]:
        """
        Substring-match each term against the indexed text fields.
        Rows are ranked by how many distinct terms they contain, then recency.
        """
        if not terms:
            return []
        scored: list[tuple[int, str, SourceKind, dict[str, Any]]] = []
        for kind in kinds or tuple(TABLES):
            spec = TABLES[kind]
            clauses = []
            params: list[Any] = [user_id]
            for term in terms:
                for column in spec.text_fields:
                    clauses.append(f"{column} LIKE ? ESCAPE '\\'")
                    params.append(_like_pattern(term))
            params.append(limit)
            async with self._db.get_connection() as conn:
                rows = await conn.execute_fetchall(
                    f"SELECT * FROM {spec.table} WHERE user_id = ? AND ({' OR '.join(clauses)}) "
                    f"ORDER BY {spec.time_field} DESC LIMIT ?",
                    params,
                )
            for row in rows:
                record = dict(row)
                haystack = " ".join(
                    str(record.get(c) or "") for c in spec.text_fields
                ).lower()
                hits = sum(1 for t in terms if t.lower() in haystack)
                scored.append((hits, record.get(spec.time_field) or "", kind, record))

        scored.sort(key=lambda s: (s[0], s[1]), reverse=True)
        return [(kind, record) for _, _, kind, record in scored[:limit]]

    async def calendar_between(
        self, user_id: int, start: datetime, end: datetime, limit: int = 50
    ) -> list[dict[str, Any]]:
        """
        Events whose start falls in [start, end), earliest first.

        All-day events are stored at midnight UTC of their calendar date, so
        they are matched on that date against the window's own local dates.
        """
        first_day = start.date().isoformat()
        last_day = (end - timedelta(microseconds=1)).date().isoformat()
        async with self._db.get_connection() as conn:
            rows = await conn.execute_fetchall(
                "SELECT * FROM calendar_items WHERE user_id = ? "
                "AND ((is_all_day = 0 AND start_time >= ? AND start_time < ?) "
                "OR (is_all_day = 1 AND date(start_time) BETWEEN ? AND ?)) "
                "AND COALESCE(status, '') != 'cancelled' "
                "ORDER BY start_time LIMIT ?",
                (user_id, to_db_time(start), to_db_time(end), first_day, last_day, limit),
            )
            return [dict(r) for r in rows]

    async def recent_items(
        self, user_id: int, kind: SourceKind, since: datetime, limit: int
    ) -> list[dict[str, Any]]:
        """Rows first cached at or after `since`, newest first."""
        spec = TABLES[kind]
        async with self._db.get_connection() as conn:
            rows = await conn.execute_fetchall(
                f"SELECT * FROM {spec.table} WHERE user_id = ? AND created_at >= ? "
                "ORDER BY created_at DESC, id DESC LIMIT ?",
                (user_id, to_db_time(since), limit),
            )
            return [dict(r) for r in rows]

    async def find_deal_by_name(self, user_id: int, name: str) -> dict[str, Any] | None:
        """Case-insensitive substring match; exact matches win, then most recent."""
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM crm_deals WHERE user_id = ? AND deal_name LIKE ? ESCAPE '\\' "
                "ORDER BY (LOWER(deal_name) = LOWER(?)) DESC, last_modified DESC LIMIT 1",
                (user_id, _like_pattern(name), name),
            )
            row = await cursor.fetchone()
            return dict(row) if row else None

    async def find_contact_by_email(self, user_id: int, email: str) -> dict[str, Any] | None:
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM crm_contacts WHERE user_id = ? AND LOWER(email) = LOWER(?) LIMIT 1",
                (user_id, email.strip()),
            )
            row = await cursor.fetchone()
            return dict(row) if row else None
