"""Sync telemetry: why analyses fell back and how each drain went.

A connectivity failure and a remote-write failure look identical to the
user (both produce an offline record). The ``cause`` column on each
``analysis_fallback`` event is what tells them apart afterwards.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from cassava.core.storage.database import LocalDatabase

logger = logging.getLogger(__name__)

CAUSE_CONNECTIVITY = "connectivity"
CAUSE_INFERENCE = "inference"
CAUSE_REMOTE_WRITE = "remote_write"


@dataclass
class SyncEvent:
    """A single telemetry entry."""

    action: str  # 'analysis_saved' | 'analysis_fallback' | 'sync_entry' | 'deletion' | 'sync_cycle'
    record_id: str | None = None
    status: str = "success"  # 'success' | 'failure'
    cause: str | None = None  # 'connectivity' | 'inference' | 'remote_write'
    error_type: str | None = None
    duration_ms: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class SyncEventLogger:
    """Records sync events to the ``sync_events`` table.

    Writes never raise: a failed write is logged and the event dropped, so
    telemetry can never break an analysis or a drain.

    Usage::

        telemetry = SyncEventLogger(local_db)
        await telemetry.log_fallback("local-17", cause="remote_write",
                                     error_type="RemoteWriteError")
    """

    def __init__(self, database: LocalDatabase) -> None:
        self._db = database

    # ---------------------------------------------------------------
    # Write
    # ---------------------------------------------------------------

    async def log_event(self, event: SyncEvent) -> str:
        """Insert an event and return its id, or "" if it was lost."""
        event_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()

        metadata_json = (
            json.dumps(event.metadata, separators=(",", ":"), default=str)
            if event.metadata
            else None
        )

        try:
            async with self._db.transaction() as conn:
                await conn.execute(
                    """INSERT INTO sync_events
                       (id, timestamp, action, record_id, status, cause,
                        error_type, duration_ms, metadata_json)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        event_id,
                        now,
                        event.action,
                        event.record_id,
                        event.status,
                        event.cause,
                        event.error_type,
                        event.duration_ms,
                        metadata_json,
                    ),
                )
        except Exception:
            logger.exception("Failed to write sync event %s; event lost", event.action)
            return ""

        return event_id

    async def log_fallback(
        self,
        record_id: str,
        *,
        cause: str,
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """An analysis was stored locally instead of remotely."""
        return await self.log_event(SyncEvent(
            action="analysis_fallback",
            record_id=record_id,
            status="failure",
            cause=cause,
            error_type=error_type,
            metadata=metadata or {},
        ))

    async def log_sync_entry(
        self,
        record_id: str,
        *,
        success: bool,
        error_type: str | None = None,
        duration_ms: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """One queue entry was pushed (or failed to be pushed)."""
        return await self.log_event(SyncEvent(
            action="sync_entry",
            record_id=record_id,
            status="success" if success else "failure",
            error_type=error_type,
            duration_ms=duration_ms,
            metadata=metadata or {},
        ))

    # ---------------------------------------------------------------
    # Read
    # ---------------------------------------------------------------

    async def get_events(
        self,
        *,
        action: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Query events with optional filters, newest first."""
        conditions: list[str] = []
        params: list[Any] = []

        if action:
            conditions.append("action = ?")
            params.append(action)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        query = f"SELECT * FROM sync_events{where} ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        rows = await self._db.fetchall(query, params)
        return [dict(row) for row in rows]

    async def count_events(
        self, *, action: str | None = None, status: str | None = None
    ) -> int:
        conditions: list[str] = []
        params: list[Any] = []
        if action:
            conditions.append("action = ?")
            params.append(action)
        if status:
            conditions.append("status = ?")
            params.append(status)
        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        row = await self._db.fetchone(f"SELECT COUNT(*) FROM sync_events{where}", params)
        return row[0] if row else 0
