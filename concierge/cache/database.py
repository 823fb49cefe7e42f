"""
SQLite database manager for concierge.

Initialises the local cache schema (users, per-source cache tables, sync run
log, standing instructions, agent activity, chat history, vector points).
Loads the sqlite-vec extension for vector distance functions with graceful
fallback. Uses WAL mode with a single shared connection; every write goes
through `transaction()` so concurrent tasks never interleave partial writes.
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

import aiosqlite

from ..config import settings
from ..exceptions import StorageError

logger = logging.getLogger(__name__)

# Matches SQLite's datetime('now') so stored stamps compare as plain strings
DB_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def to_db_time(dt: datetime | None) -> str | None:
    """Serialise a datetime as a UTC stamp. Naive values are taken as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(DB_TIME_FORMAT)


def from_db_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.strptime(value[:19], DB_TIME_FORMAT).replace(tzinfo=timezone.utc)


_DDL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;
PRAGMA foreign_keys=ON;

CREATE TABLE IF NOT EXISTS users (
    user_id              INTEGER PRIMARY KEY,
    email                TEXT,
    google_access_token  TEXT,
    hubspot_access_token TEXT,
    created_at           TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at           TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS sync_cursors (
    user_id        INTEGER NOT NULL REFERENCES users(user_id),
    source         TEXT NOT NULL,
    last_synced_at TEXT NOT NULL,
    PRIMARY KEY (user_id, source)
);

CREATE TABLE IF NOT EXISTS mail_items (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     INTEGER NOT NULL REFERENCES users(user_id),
    external_id TEXT NOT NULL,
    thread_id   TEXT,
    subject     TEXT,
    from_addr   TEXT,
    to_addr     TEXT,
    snippet     TEXT,
    body        TEXT,
    labels      TEXT,
    is_read     INTEGER NOT NULL DEFAULT 0,
    received_at TEXT,
    created_at  TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at  TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE (user_id, external_id)
);
CREATE INDEX IF NOT EXISTS idx_mail_user_received ON mail_items(user_id, received_at);

CREATE TABLE IF NOT EXISTS calendar_items (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id           INTEGER NOT NULL REFERENCES users(user_id),
    external_id       TEXT NOT NULL,
    summary           TEXT,
    description       TEXT,
    location          TEXT,
    start_time        TEXT,
    end_time          TEXT,
    is_all_day        INTEGER NOT NULL DEFAULT 0,
    attendees         TEXT,
    organizer         TEXT,
    status            TEXT,
    updated_remote_at TEXT,
    created_at        TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at        TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE (user_id, external_id)
);
CREATE INDEX IF NOT EXISTS idx_calendar_user_start ON calendar_items(user_id, start_time);

CREATE TABLE IF NOT EXISTS crm_contacts (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         INTEGER NOT NULL REFERENCES users(user_id),
    external_id     TEXT NOT NULL,
    first_name      TEXT,
    last_name       TEXT,
    email           TEXT,
    phone           TEXT,
    company         TEXT,
    job_title       TEXT,
    lifecycle_stage TEXT,
    last_modified   TEXT,
    created_at      TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at      TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE (user_id, external_id)
);
CREATE INDEX IF NOT EXISTS idx_contacts_user_email ON crm_contacts(user_id, email);

CREATE TABLE IF NOT EXISTS crm_companies (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id        INTEGER NOT NULL REFERENCES users(user_id),
    external_id    TEXT NOT NULL,
    name           TEXT,
    domain         TEXT,
    industry       TEXT,
    city           TEXT,
    state          TEXT,
    country        TEXT,
    employees      INTEGER,
    annual_revenue REAL,
    last_modified  TEXT,
    created_at     TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at     TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE (user_id, external_id)
);

CREATE TABLE IF NOT EXISTS crm_deals (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id       INTEGER NOT NULL REFERENCES users(user_id),
    external_id   TEXT NOT NULL,
    deal_name     TEXT,
    stage         TEXT,
    pipeline      TEXT,
    amount        REAL,
    close_date    TEXT,
    priority      TEXT,
    last_modified TEXT,
    created_at    TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at    TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE (user_id, external_id)
);

CREATE TABLE IF NOT EXISTS sync_runs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         INTEGER NOT NULL,
    source          TEXT NOT NULL,
    mode            TEXT NOT NULL,
    status          TEXT NOT NULL,
    started_at      TEXT NOT NULL DEFAULT (datetime('now')),
    completed_at    TEXT,
    items_processed INTEGER NOT NULL DEFAULT 0,
    items_added     INTEGER NOT NULL DEFAULT 0,
    items_updated   INTEGER NOT NULL DEFAULT 0,
    items_failed    INTEGER NOT NULL DEFAULT 0,
    error_message   TEXT
);
CREATE INDEX IF NOT EXISTS idx_sync_runs_user ON sync_runs(user_id, source, started_at);

CREATE TABLE IF NOT EXISTS standing_instructions (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id          INTEGER NOT NULL REFERENCES users(user_id),
    instruction      TEXT NOT NULL,
    trigger_type     TEXT NOT NULL DEFAULT 'All',
    priority         INTEGER NOT NULL DEFAULT 0,
    is_active        INTEGER NOT NULL DEFAULT 1,
    execution_count  INTEGER NOT NULL DEFAULT 0,
    last_executed_at TEXT,
    created_at       TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at       TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_instructions_user ON standing_instructions(user_id, is_active);

CREATE TABLE IF NOT EXISTS agent_activities (
    id                       INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id                  INTEGER NOT NULL REFERENCES users(user_id),
    activity_type            TEXT NOT NULL,
    description              TEXT NOT NULL,
    details                  TEXT,
    triggered_by_external_id TEXT,
    instruction_id           INTEGER,
    status                   TEXT NOT NULL,
    error_message            TEXT,
    is_read                  INTEGER NOT NULL DEFAULT 0,
    created_at               TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_activities_user ON agent_activities(user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_activities_trigger
    ON agent_activities(instruction_id, triggered_by_external_id);

CREATE TABLE IF NOT EXISTS chat_messages (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id    INTEGER NOT NULL REFERENCES users(user_id),
    role       TEXT NOT NULL,
    content    TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_chat_user ON chat_messages(user_id, id);

CREATE TABLE IF NOT EXISTS vector_points (
    point_id       TEXT PRIMARY KEY,
    user_id        INTEGER NOT NULL,
    item_type      TEXT NOT NULL,
    source_item_id INTEGER NOT NULL,
    content        TEXT NOT NULL,
    content_hash   TEXT NOT NULL,
    embedding      BLOB NOT NULL,
    model_name     TEXT NOT NULL,
    updated_at     TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_vector_points_user ON vector_points(user_id, item_type);
"""

# Schema migrations applied after the main DDL.
# Each entry is attempted once; OperationalError means the column already exists.
_MIGRATIONS = [
    # 001: failed-item counter on run log rows created before it existed
    "ALTER TABLE sync_runs ADD COLUMN items_failed INTEGER NOT NULL DEFAULT 0;",
]


class DatabaseManager:
    """Manages the SQLite connection and schema for concierge."""

    def __init__(self, db_path: str | None = None) -> None:
        self.db_path = db_path or settings.db_path
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()
        self.vec_available = False

    async def init(self) -> None:
        """Open connection, load extensions, run DDL."""
        os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)

        self._conn = await aiosqlite.connect(self.db_path)
        self._conn.row_factory = aiosqlite.Row

        # Try loading sqlite-vec for vector distance functions
        try:
            import sqlite_vec
            await self._conn.enable_load_extension(True)
            await self._conn.load_extension(sqlite_vec.loadable_path())
            await self._conn.enable_load_extension(False)
            self.vec_available = True
            logger.info("sqlite-vec loaded — vector search enabled")
        except Exception as e:
            logger.warning("sqlite-vec unavailable (%s) — retrieval will use keyword search", e)
            self.vec_available = False

        await self._conn.executescript(_DDL)

        # Additive migrations; an OperationalError means already applied
        for migration_sql in _MIGRATIONS:
            try:
                await self._conn.execute(migration_sql)
                await self._conn.commit()
            except aiosqlite.OperationalError:
                pass  # Column already exists

        await self._conn.commit()
        logger.info("Database initialised: %s", self.db_path)

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    @asynccontextmanager
    async def get_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield the shared connection for reads. Callers must not close it."""
        if self._conn is None:
            raise RuntimeError("DatabaseManager not initialised — call init() first")
        yield self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Serialise a unit of writes: commit on success, roll back on error.
        sqlite errors are re-raised as StorageError.
        """
        async with self._write_lock:
            async with self.get_connection() as conn:
                try:
                    yield conn
                    await conn.commit()
                except aiosqlite.Error as e:
                    await conn.rollback()
                    raise StorageError(str(e)) from e
                except BaseException:
                    await conn.rollback()
                    raise
