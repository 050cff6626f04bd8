"""Sync queue drain: pushes offline analyses and deletions to the backend.

Each queue entry is handled on its own. A failing entry stays queued with
its attempt count bumped and the drain moves on to the next one.
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from datetime import datetime, timezone

from cassava.core.errors import CassavaError, LocalStoreError
from cassava.core.remote.client import RemoteBackendClient
from cassava.core.storage.models import AnalysisRecord, SyncQueueEntry, SyncReport
from cassava.core.storage.offline_store import ENTRY_DELETION, OfflineStore
from cassava.core.telemetry.logger import SyncEvent, SyncEventLogger

logger = logging.getLogger(__name__)


def is_remote_url(image_ref: str) -> bool:
    return image_ref.startswith(("http://", "https://"))


class SyncReconciler:
    """Drains the offline sync queue into the remote backend.

    Not reentrant; the orchestrator serializes calls to ``drain()``.

    Usage::

        reconciler = SyncReconciler(store, backend, telemetry)
        report = await reconciler.drain()
    """

    def __init__(
        self,
        store: OfflineStore,
        backend: RemoteBackendClient,
        telemetry: SyncEventLogger | None = None,
    ) -> None:
        self._store = store
        self._backend = backend
        self._telemetry = telemetry

    async def drain(self) -> SyncReport:
        """Push every queued entry once, oldest first.

        Raises:
            LocalStoreError: If the local store itself fails; per-entry
                remote errors are recorded on the entry instead.
        """
        entries = await self._store.get_sync_queue()
        report = SyncReport(attempted=len(entries))
        if not entries:
            return report

        logger.info("Draining %d sync queue entries", len(entries))
        for entry in entries:
            start = time.monotonic()
            try:
                if entry.entry_type == ENTRY_DELETION:
                    await self._push_deletion(entry)
                else:
                    await self._push_analysis(entry)
            except LocalStoreError:
                raise
            except Exception as exc:
                report.failed += 1
                logger.warning(
                    "Sync of %s %s failed (attempt %d): %s",
                    entry.entry_type,
                    entry.record_id,
                    entry.attempts + 1,
                    exc,
                )
                await self._store.record_sync_failure(entry.id, f"{type(exc).__name__}: {exc}")
                await self._log_entry(entry, start, error=exc)
            else:
                report.synced += 1
                await self._log_entry(entry, start)

        report.remaining = await self._store.get_pending_sync_count()
        logger.info(
            "Sync drain done: %d synced, %d failed, %d remaining",
            report.synced,
            report.failed,
            report.remaining,
        )
        if self._telemetry is not None:
            await self._telemetry.log_event(SyncEvent(
                action="sync_cycle",
                status="success" if report.failed == 0 else "failure",
                metadata=report.to_dict(),
            ))
        return report

    async def _push_analysis(self, entry: SyncQueueEntry) -> None:
        record = AnalysisRecord.from_dict(entry.payload)

        image_url = record.image_ref
        uploaded = False
        if not is_remote_url(image_url):
            image_url = await self._backend.upload_image(record.image_ref, record.user_id)
            uploaded = True

        outgoing = replace(
            record,
            image_ref=image_url,
            analysis_metadata={
                **record.analysis_metadata,
                "local_id": record.id,
                "synced_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        try:
            remote = await self._backend.save_analysis(outgoing)
        except CassavaError:
            if uploaded:
                await self._backend.remove_image(image_url)
            raise

        if not await self._store.complete_sync(entry, remote):
            # Deleted locally while the upload was in flight.
            logger.info("Analysis %s was deleted during sync; removing remote %s",
                        record.id, remote.id)
            try:
                await self._backend.delete_analysis(remote.id)
            except CassavaError as exc:
                logger.warning("Remote cleanup of %s failed, queueing deletion: %s", remote.id, exc)
                await self._store.enqueue_deletion(remote.id, remote.user_id)

    async def _push_deletion(self, entry: SyncQueueEntry) -> None:
        remote_id = str(entry.payload.get("id") or entry.record_id)
        await self._backend.delete_analysis(remote_id)
        await self._store.remove_queue_entry(entry.id)
        await self._store.delete_mirror(remote_id)

    async def _log_entry(
        self, entry: SyncQueueEntry, start: float, error: Exception | None = None
    ) -> None:
        if self._telemetry is None:
            return
        await self._telemetry.log_sync_entry(
            entry.record_id,
            success=error is None,
            error_type=type(error).__name__ if error is not None else None,
            duration_ms=round((time.monotonic() - start) * 1000, 1),
            metadata={"entry_type": entry.entry_type, "attempts": entry.attempts + 1},
        )
