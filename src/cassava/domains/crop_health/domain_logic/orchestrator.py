"""Hybrid analysis orchestrator.

Routes each leaf image to the classifier, stores the result remotely when it
can and locally when it cannot, and keeps a background task that pushes the
local backlog once connectivity returns.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

from cassava.core.connectivity.monitor import ConnectivityMonitor
from cassava.core.errors import (
    CassavaError,
    ConnectivityError,
    InferenceError,
    LocalStoreError,
    NoConnectivityError,
    NotInitializedError,
    RemoteBackendError,
)
from cassava.core.inference.provider import Classifier, Diagnosis
from cassava.core.remote.client import RemoteBackendClient
from cassava.core.storage.models import (
    FAILURE_LABEL,
    AnalysisRecord,
    AnalysisResult,
    SyncReport,
)
from cassava.core.storage.offline_store import OfflineStore
from cassava.core.telemetry.logger import (
    CAUSE_CONNECTIVITY,
    CAUSE_INFERENCE,
    CAUSE_REMOTE_WRITE,
    SyncEvent,
    SyncEventLogger,
)
from cassava.domains.crop_health.domain_logic.reconciliation import SyncReconciler

logger = logging.getLogger(__name__)

FAILURE_TREATMENT = "The image could not be analyzed. Please try again."
FAILURE_RECOMMENDATIONS = [
    "Retake the photo in good light",
    "Make sure the leaf fills the frame",
    "Try again when the connection is stable",
]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class SyncStatus:
    is_online: bool
    pending_sync_count: int
    backend_status: str
    backend_latency_ms: float | None = None
    last_sync_at: str | None = None
    last_sync_report: SyncReport | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_online": self.is_online,
            "pending_sync_count": self.pending_sync_count,
            "backend_status": self.backend_status,
            "backend_latency_ms": self.backend_latency_ms,
            "last_sync_at": self.last_sync_at,
            "last_sync_report": (
                self.last_sync_report.to_dict() if self.last_sync_report else None
            ),
        }


class HybridAnalysisOrchestrator:
    """Online-first analysis with a durable offline fallback.

    Usage::

        orchestrator = HybridAnalysisOrchestrator(store, backend, classifier, connectivity)
        await orchestrator.initialize()
        result = await orchestrator.analyze_image("/tmp/leaf.jpg", user.id)
        if result.is_offline:
            ...  # queued; the background task will sync it
        await orchestrator.shutdown()
    """

    SYNC_INTERVAL_SECONDS = 300

    def __init__(
        self,
        store: OfflineStore,
        backend: RemoteBackendClient,
        classifier: Classifier,
        connectivity: ConnectivityMonitor,
        telemetry: SyncEventLogger | None = None,
    ) -> None:
        self._store = store
        self._backend = backend
        self._classifier = classifier
        self._connectivity = connectivity
        self._telemetry = telemetry
        self._reconciler = SyncReconciler(store, backend, telemetry)

        self._init_lock = asyncio.Lock()
        self._drain_lock = asyncio.Lock()
        self._initialized = False
        self._sync_task: asyncio.Task | None = None
        self._last_sync_at: str | None = None
        self._last_sync_report: SyncReport | None = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def store(self) -> OfflineStore:
        return self._store

    @property
    def backend(self) -> RemoteBackendClient:
        return self._backend

    @property
    def classifier(self) -> Classifier:
        return self._classifier

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Open the local store, load the classifier, start background sync.

        Idempotent. A classifier that fails to load stays "not ready" and its
        failures surface as inference failures.

        Raises:
            LocalStoreError: If the local store cannot be opened.
        """
        async with self._init_lock:
            if self._initialized:
                return
            await self._store.initialize()
            try:
                await self._classifier.initialize()
            except CassavaError as exc:
                logger.warning(
                    "Classifier %s failed to initialize: %s", self._classifier.strategy, exc
                )
            self._sync_task = asyncio.create_task(self._sync_loop(), name="cassava-sync")
            self._initialized = True
            logger.info(
                "Orchestrator ready (classifier=%s, sync every %ds)",
                self._classifier.strategy,
                self.SYNC_INTERVAL_SECONDS,
            )

    async def shutdown(self) -> None:
        """Stop background sync and release resources. Idempotent."""
        task, self._sync_task = self._sync_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Background sync task had failed")
        if self._initialized:
            await self._classifier.aclose()
            await self._store.close()
            self._initialized = False
            logger.info("Orchestrator shut down")

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError("Orchestrator not initialized. Call initialize() first.")

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    async def analyze_image(self, image_ref: str, user_id: str) -> AnalysisResult:
        """Classify a leaf image and persist the result.

        Returns:
            The stored analysis; ``is_offline`` is True when it was kept
            locally and queued for sync.

        Raises:
            NotInitializedError: Before ``initialize()``.
            NoConnectivityError: Offline with a classifier that needs the network.
            LocalStoreError: If the offline fallback itself cannot be written.
        """
        self._require_initialized()

        online = await self._connectivity.is_online()
        if not online and not self._classifier.supports_offline:
            raise NoConnectivityError(
                f"Analysis with the {self._classifier.strategy} classifier needs a connection"
            )

        try:
            diagnosis = await self._classifier.classify(image_ref)
        except InferenceError as exc:
            logger.warning("Inference failed for %s: %s", image_ref, exc)
            return await self._store_offline(
                self._failure_record(image_ref, user_id, exc), cause=CAUSE_INFERENCE, error=exc
            )

        record = self._diagnosis_record(diagnosis, image_ref, user_id)
        if not online:
            return await self._store_offline(record, cause=CAUSE_CONNECTIVITY)

        try:
            saved = await self._save_remote(record)
        except ConnectivityError as exc:
            return await self._store_offline(record, cause=CAUSE_CONNECTIVITY, error=exc)
        except CassavaError as exc:
            return await self._store_offline(record, cause=CAUSE_REMOTE_WRITE, error=exc)

        logger.info("Analysis %s saved remotely (%s)", saved.id, saved.disease_label)
        if self._telemetry is not None:
            await self._telemetry.log_event(SyncEvent(action="analysis_saved", record_id=saved.id))
        return AnalysisResult(saved, is_offline=False)

    async def _save_remote(self, record: AnalysisRecord) -> AnalysisRecord:
        image_url = await self._backend.upload_image(record.image_ref, record.user_id)
        try:
            return await self._backend.save_analysis(replace(record, image_ref=image_url))
        except CassavaError:
            await self._backend.remove_image(image_url)
            raise

    async def _store_offline(
        self,
        record: AnalysisRecord,
        *,
        cause: str,
        error: Exception | None = None,
    ) -> AnalysisResult:
        pending = replace(record, id=self._store.new_local_id(), synced=False)
        await self._store.save_analysis_offline(pending)
        if error is not None:
            logger.warning("Analysis stored offline as %s (cause=%s): %s", pending.id, cause, error)
        else:
            logger.info("Analysis stored offline as %s (cause=%s)", pending.id, cause)
        if self._telemetry is not None:
            await self._telemetry.log_fallback(
                pending.id,
                cause=cause,
                error_type=type(error).__name__ if error is not None else None,
            )
        return AnalysisResult(pending, is_offline=True)

    def _diagnosis_record(
        self, diagnosis: Diagnosis, image_ref: str, user_id: str
    ) -> AnalysisRecord:
        now = _now_iso()
        metadata: dict[str, Any] = {
            "strategy": self._classifier.strategy,
            "model_version": diagnosis.model_version,
            "analyzed_at": now,
        }
        if diagnosis.backend_timestamp:
            metadata["backend_timestamp"] = diagnosis.backend_timestamp
        return AnalysisRecord(
            id="",
            user_id=user_id,
            image_ref=image_ref,
            disease_label=diagnosis.label,
            confidence_score=diagnosis.confidence,
            severity_level=diagnosis.severity,
            treatment_text=diagnosis.treatment,
            recommendations=list(diagnosis.recommendations),
            analysis_metadata=metadata,
            created_at=now,
        )

    def _failure_record(self, image_ref: str, user_id: str, error: Exception) -> AnalysisRecord:
        now = _now_iso()
        return AnalysisRecord(
            id="",
            user_id=user_id,
            image_ref=image_ref,
            disease_label=FAILURE_LABEL,
            confidence_score=0.0,
            severity_level=None,
            treatment_text=FAILURE_TREATMENT,
            recommendations=list(FAILURE_RECOMMENDATIONS),
            analysis_metadata={
                "strategy": self._classifier.strategy,
                "failure_cause": CAUSE_INFERENCE,
                "error": str(error),
                "analyzed_at": now,
            },
            created_at=now,
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def get_analyses(self, user_id: str) -> list[AnalysisResult]:
        """The user's history, newest first.

        Remote when reachable, otherwise the local records. The two are
        never merged.
        """
        self._require_initialized()

        if await self._connectivity.is_online():
            try:
                records = await self._backend.get_analyses(user_id)
            except CassavaError as exc:
                logger.warning("Remote history unavailable, using local records: %s", exc)
            else:
                try:
                    await self._store.refresh_mirrors(user_id, records)
                except LocalStoreError as exc:
                    logger.warning("Could not refresh local mirrors: %s", exc)
                records.sort(key=lambda r: r.created_at, reverse=True)
                return [AnalysisResult(r, is_offline=False) for r in records]

        local = await self._store.get_analyses_offline(user_id)
        return [AnalysisResult(r, is_offline=True) for r in local]

    async def delete_analysis(self, record_id: str, is_offline: bool) -> None:
        """Delete an analysis wherever it lives.

        A pending local record is removed together with its queue entry. A
        remote record is deleted remotely when possible; otherwise its local
        mirror is dropped and a deletion is queued for the next sync.

        Raises:
            AuthError: If the backend rejects the session.
        """
        self._require_initialized()

        local = await self._store.get_analysis_offline(record_id)
        if local is not None and not local.synced:
            await self._store.delete_analysis_offline(record_id)
            return
        if is_offline and local is None:
            logger.info("No local analysis %s to delete", record_id)
            return

        if await self._connectivity.is_online():
            try:
                await self._backend.delete_analysis(record_id)
            except (ConnectivityError, RemoteBackendError) as exc:
                logger.warning("Remote delete of %s failed, queueing: %s", record_id, exc)
            else:
                await self._store.delete_mirror(record_id)
                if self._telemetry is not None:
                    await self._telemetry.log_event(
                        SyncEvent(action="deletion", record_id=record_id)
                    )
                return

        await self._store.enqueue_deletion(record_id, local.user_id if local else "")

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def force_sync(self) -> SyncReport:
        """Drain the sync queue now.

        Raises:
            NoConnectivityError: When offline.
        """
        self._require_initialized()
        if not await self._connectivity.is_online():
            raise NoConnectivityError("Cannot sync while offline")
        return await self._drain()

    async def run_sync_cycle(self) -> SyncReport | None:
        """One background pass: drain if online, otherwise do nothing."""
        if not self._initialized:
            return None
        try:
            if not await self._connectivity.is_online():
                logger.debug("Offline; skipping sync cycle")
                return None
            return await self._drain()
        except LocalStoreError:
            logger.exception("Local store failure during sync cycle; skipping")
            return None

    async def _drain(self) -> SyncReport:
        async with self._drain_lock:
            report = await self._reconciler.drain()
            self._last_sync_at = _now_iso()
            self._last_sync_report = report
            return report

    async def _sync_loop(self) -> None:
        while True:
            await asyncio.sleep(self.SYNC_INTERVAL_SECONDS)
            await self.run_sync_cycle()

    async def get_sync_status(self) -> SyncStatus:
        self._require_initialized()
        online = await self._connectivity.is_online()
        pending = await self._store.get_pending_sync_count()
        health = await self._classifier.health_check()
        return SyncStatus(
            is_online=online,
            pending_sync_count=pending,
            backend_status=health.status,
            backend_latency_ms=health.latency_ms,
            last_sync_at=self._last_sync_at,
            last_sync_report=self._last_sync_report,
        )

    async def clear_offline_data(self) -> int:
        """Delete every local record and queued sync entry."""
        self._require_initialized()
        return await self._store.clear_offline_data()
