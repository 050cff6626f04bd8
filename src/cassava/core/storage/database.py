"""SQLite database management for the on-device analysis store.

Handles connection lifecycle, schema creation, and migrations.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from cassava.core.errors import LocalStoreError

logger = logging.getLogger(__name__)

# Current schema version
SCHEMA_VERSION = 2

# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_V1 = """
-- One row per diagnosis held on the device (pending or synced mirror)
CREATE TABLE IF NOT EXISTS analyses (
    id                       TEXT PRIMARY KEY,
    user_id                  TEXT NOT NULL,
    image_uri                TEXT NOT NULL,
    disease_detected         TEXT NOT NULL,
    confidence_score         REAL NOT NULL,
    severity_level           TEXT,
    treatment_recommendation TEXT,
    recommendations          TEXT,
    analysis_metadata        TEXT,
    created_at               TEXT NOT NULL,
    synced                   INTEGER NOT NULL DEFAULT 0
);

-- Durable queue of changes not yet reflected remotely, one row per entry
CREATE TABLE IF NOT EXISTS sync_queue (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_type   TEXT NOT NULL,
    record_id    TEXT NOT NULL,
    payload_json TEXT NOT NULL,
    enqueued_at  TEXT NOT NULL,
    attempts     INTEGER NOT NULL DEFAULT 0,
    last_error   TEXT
);

CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_analyses_user_created ON analyses(user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_analyses_synced       ON analyses(synced);
CREATE INDEX IF NOT EXISTS idx_queue_record          ON sync_queue(record_id);
"""

# ---------------------------------------------------------------------------
# V2: sync telemetry (why a record fell back, how each drain went)
# ---------------------------------------------------------------------------

_SCHEMA_V2 = """
CREATE TABLE IF NOT EXISTS sync_events (
    id            TEXT PRIMARY KEY,
    timestamp     TEXT NOT NULL DEFAULT (datetime('now')),
    action        TEXT NOT NULL,
    record_id     TEXT,
    status        TEXT NOT NULL DEFAULT 'success',
    cause         TEXT,
    error_type    TEXT,
    duration_ms   REAL,
    metadata_json TEXT
);

CREATE INDEX IF NOT EXISTS idx_events_timestamp ON sync_events(timestamp);
CREATE INDEX IF NOT EXISTS idx_events_action    ON sync_events(action);
"""


class LocalDatabase:
    """Async SQLite manager for the offline analysis store.

    Holds a single long-lived connection so ``:memory:`` databases survive
    between calls. Each atomic unit of work goes through ``transaction()``,
    which serializes it against other units on the same connection and
    commits or rolls back as a whole.

    Usage::

        db = LocalDatabase(":memory:")
        await db.initialize()
        async with db.transaction() as conn:
            await conn.execute(...)
        await db.close()
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        """Initialize database manager.

        Args:
            db_path: Path to SQLite file, or ":memory:" for in-memory DB.
        """
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    @property
    def db_path(self) -> str:
        return self._db_path

    @property
    def connection(self) -> aiosqlite.Connection:
        """Get the active database connection.

        Raises:
            LocalStoreError: If the database has not been initialized.
        """
        if self._conn is None:
            raise LocalStoreError("Database not initialized. Call initialize() first.")
        return self._conn

    @property
    def is_initialized(self) -> bool:
        return self._conn is not None

    async def initialize(self) -> None:
        """Open the connection and ensure the schema exists.

        For file-based databases, creates parent directories if needed.
        Idempotent: safe to call multiple times.

        Raises:
            LocalStoreError: If the file cannot be opened or is corrupt.
        """
        if self._conn is not None:
            return  # Already initialized

        try:
            if self._db_path != ":memory:":
                db_file = Path(self._db_path).expanduser()
                db_file.parent.mkdir(parents=True, exist_ok=True)
                conn = await aiosqlite.connect(str(db_file))
            else:
                conn = await aiosqlite.connect(":memory:")
        except (OSError, sqlite3.Error) as exc:
            raise LocalStoreError(f"Cannot open local database {self._db_path}: {exc}") from exc

        conn.row_factory = aiosqlite.Row
        try:
            await conn.execute("PRAGMA journal_mode=WAL")
            await self._ensure_schema(conn)
        except sqlite3.Error as exc:
            await conn.close()
            raise LocalStoreError(f"Local database {self._db_path} is unusable: {exc}") from exc

        self._conn = conn
        logger.info("Offline database initialized: %s", self._db_path)

    async def _ensure_schema(self, conn: aiosqlite.Connection) -> None:
        """Create tables if they don't exist and apply migrations."""
        # V1: Core tables (always applied, CREATE IF NOT EXISTS is idempotent)
        await conn.executescript(_SCHEMA_V1)

        current_version = await self._read_version(conn)

        # V2: sync telemetry
        if current_version < 2:
            await conn.executescript(_SCHEMA_V2)
            logger.info("Applied schema migration V2: sync_events table")

        if current_version < SCHEMA_VERSION:
            await conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            await conn.commit()
            logger.info(
                "Schema updated from version %d to %d", current_version, SCHEMA_VERSION
            )

    @staticmethod
    async def _read_version(conn: aiosqlite.Connection) -> int:
        cursor = await conn.execute("SELECT MAX(version) FROM schema_version")
        row = await cursor.fetchone()
        return row[0] if row and row[0] is not None else 0

    async def get_schema_version(self) -> int:
        """Return the current schema version."""
        async with self._lock:
            return await self._read_version(self.connection)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run one atomic unit of work.

        Commits on normal exit and rolls back on error. sqlite errors are
        re-raised as ``LocalStoreError``.
        """
        conn = self.connection
        async with self._lock:
            try:
                yield conn
                await conn.commit()
            except sqlite3.Error as exc:
                await conn.rollback()
                raise LocalStoreError(f"Local database operation failed: {exc}") from exc
            except BaseException:
                await conn.rollback()
                raise

    async def fetchall(self, query: str, params: tuple | list = ()) -> list[aiosqlite.Row]:
        """Run a read query and return all rows."""
        conn = self.connection
        async with self._lock:
            try:
                cursor = await conn.execute(query, params)
                return list(await cursor.fetchall())
            except sqlite3.Error as exc:
                raise LocalStoreError(f"Local database query failed: {exc}") from exc

    async def fetchone(self, query: str, params: tuple | list = ()) -> aiosqlite.Row | None:
        """Run a read query and return the first row, if any."""
        rows = await self.fetchall(query, params)
        return rows[0] if rows else None

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.info("Offline database closed")

    async def __aenter__(self) -> LocalDatabase:
        await self.initialize()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()
