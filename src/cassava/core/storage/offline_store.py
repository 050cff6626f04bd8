"""Offline analysis store: local records plus the durable sync queue.

Every locally persisted analysis is written together with its sync queue
entry in one transaction, so after a crash either both exist or neither does.
All mutations are single-row (or single-record) statements; nothing reads
the whole queue, edits it in memory and writes it back.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import replace
from datetime import datetime, timezone

from cassava.core.storage.database import LocalDatabase
from cassava.core.storage.models import AnalysisRecord, SyncQueueEntry

logger = logging.getLogger(__name__)

ENTRY_ANALYSIS = "analysis"
ENTRY_DELETION = "deletion"

_INSERT_ANALYSIS = """INSERT INTO analyses (
    id, user_id, image_uri, disease_detected, confidence_score,
    severity_level, treatment_recommendation, recommendations,
    analysis_metadata, created_at, synced
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"""

_UPSERT_ANALYSIS = _INSERT_ANALYSIS.replace("INSERT INTO", "INSERT OR REPLACE INTO", 1)

_INSERT_QUEUE = """INSERT INTO sync_queue
    (entry_type, record_id, payload_json, enqueued_at)
    VALUES (?, ?, ?, ?)"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class OfflineStore:
    """Local persistence for analyses that could not (yet) be written remotely.

    Usage::

        db = LocalDatabase(":memory:")
        await db.initialize()
        store = OfflineStore(db)

        record_id = await store.save_analysis_offline(record)
        pending = await store.get_pending_sync_count()
    """

    def __init__(self, database: LocalDatabase) -> None:
        self._db = database
        self._last_token = 0

    @property
    def database(self) -> LocalDatabase:
        return self._db

    async def initialize(self) -> None:
        await self._db.initialize()

    async def close(self) -> None:
        await self._db.close()

    def new_local_id(self) -> str:
        """Return a strictly increasing, timestamp-derived local id."""
        token = max(time.time_ns() // 1000, self._last_token + 1)
        self._last_token = token
        return f"local-{token}"

    # ------------------------------------------------------------------
    # Analyses
    # ------------------------------------------------------------------

    async def save_analysis_offline(self, record: AnalysisRecord) -> str:
        """Persist a pending analysis and enqueue it for sync, atomically.

        Args:
            record: The analysis. An empty ``id`` gets a fresh local id; an
                empty ``created_at`` gets the current time.

        Returns:
            The local record id.
        """
        pending = replace(
            record,
            id=record.id or self.new_local_id(),
            created_at=record.created_at or _now_iso(),
            synced=False,
        )
        now = _now_iso()

        async with self._db.transaction() as conn:
            await conn.execute(_INSERT_ANALYSIS, pending.to_row())
            await conn.execute(
                _INSERT_QUEUE,
                (
                    ENTRY_ANALYSIS,
                    pending.id,
                    json.dumps(pending.to_dict(), separators=(",", ":")),
                    now,
                ),
            )

        logger.info("Saved analysis %s offline (user=%s)", pending.id, pending.user_id)
        return pending.id

    async def get_analyses_offline(self, user_id: str) -> list[AnalysisRecord]:
        """Return the user's local records, newest first."""
        rows = await self._db.fetchall(
            "SELECT * FROM analyses WHERE user_id = ? ORDER BY created_at DESC",
            (user_id,),
        )
        return [AnalysisRecord.from_row(row) for row in rows]

    async def get_analysis_offline(self, record_id: str) -> AnalysisRecord | None:
        row = await self._db.fetchone("SELECT * FROM analyses WHERE id = ?", (record_id,))
        return AnalysisRecord.from_row(row) if row is not None else None

    async def delete_analysis_offline(self, record_id: str) -> bool:
        """Delete a local record and any pending upload of it.

        Returns:
            True if a local record was removed.
        """
        async with self._db.transaction() as conn:
            cursor = await conn.execute("DELETE FROM analyses WHERE id = ?", (record_id,))
            deleted = cursor.rowcount
            await conn.execute(
                "DELETE FROM sync_queue WHERE record_id = ? AND entry_type = ?",
                (record_id, ENTRY_ANALYSIS),
            )

        if deleted:
            logger.info("Deleted offline analysis %s", record_id)
        return deleted > 0

    async def refresh_mirrors(self, user_id: str, records: list[AnalysisRecord]) -> None:
        """Replace the user's synced mirrors with a fresh remote listing.

        Pending (unsynced) rows are left alone, and records with a queued
        remote deletion are not mirrored again.
        """
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                "SELECT record_id FROM sync_queue WHERE entry_type = ?", (ENTRY_DELETION,)
            )
            tombstoned = {row[0] for row in await cursor.fetchall()}
            await conn.execute(
                "DELETE FROM analyses WHERE user_id = ? AND synced = 1", (user_id,)
            )
            for record in records:
                if record.id in tombstoned:
                    continue
                mirror = replace(record, synced=True)
                await conn.execute(_UPSERT_ANALYSIS, mirror.to_row())

    async def clear_offline_data(self) -> int:
        """Delete every local record and queue entry.

        Returns:
            Number of analysis rows removed.
        """
        async with self._db.transaction() as conn:
            cursor = await conn.execute("DELETE FROM analyses")
            count = cursor.rowcount
            await conn.execute("DELETE FROM sync_queue")

        logger.info("Cleared offline data (%d analyses)", count)
        return count

    # ------------------------------------------------------------------
    # Sync queue
    # ------------------------------------------------------------------

    async def get_pending_sync_count(self) -> int:
        row = await self._db.fetchone("SELECT COUNT(*) FROM sync_queue")
        return row[0] if row else 0

    async def get_sync_queue(self, limit: int | None = None) -> list[SyncQueueEntry]:
        """Return queue entries oldest first."""
        query = "SELECT * FROM sync_queue ORDER BY id ASC"
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)
        rows = await self._db.fetchall(query, params)
        return [SyncQueueEntry.from_row(row) for row in rows]

    async def complete_sync(self, entry: SyncQueueEntry, remote: AnalysisRecord) -> bool:
        """Swap a pending record for a synced mirror of its remote copy.

        Removes the queue entry, drops the local-id row and stores the remote
        record as ``synced=True``, in one transaction.

        Returns:
            False if the queue entry was already gone (the local record was
            deleted while the upload was in flight); nothing is written then.
        """
        async with self._db.transaction() as conn:
            cursor = await conn.execute("DELETE FROM sync_queue WHERE id = ?", (entry.id,))
            if cursor.rowcount == 0:
                return False
            await conn.execute("DELETE FROM analyses WHERE id = ?", (entry.record_id,))
            await conn.execute(_UPSERT_ANALYSIS, replace(remote, synced=True).to_row())

        logger.info("Analysis %s synced as %s", entry.record_id, remote.id)
        return True

    async def record_sync_failure(self, entry_id: int, error: str) -> None:
        async with self._db.transaction() as conn:
            await conn.execute(
                "UPDATE sync_queue SET attempts = attempts + 1, last_error = ? WHERE id = ?",
                (error[:500], entry_id),
            )

    async def remove_queue_entry(self, entry_id: int) -> None:
        async with self._db.transaction() as conn:
            await conn.execute("DELETE FROM sync_queue WHERE id = ?", (entry_id,))

    async def enqueue_deletion(self, record_id: str, user_id: str) -> None:
        """Drop any local mirror of a remote record and queue its remote delete."""
        async with self._db.transaction() as conn:
            await conn.execute("DELETE FROM analyses WHERE id = ?", (record_id,))
            await conn.execute(
                _INSERT_QUEUE,
                (
                    ENTRY_DELETION,
                    record_id,
                    json.dumps({"id": record_id, "user_id": user_id}, separators=(",", ":")),
                    _now_iso(),
                ),
            )
        logger.info("Queued remote deletion of %s", record_id)

    async def delete_mirror(self, record_id: str) -> None:
        async with self._db.transaction() as conn:
            await conn.execute(
                "DELETE FROM analyses WHERE id = ? AND synced = 1", (record_id,)
            )
