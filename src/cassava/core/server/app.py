"""Cassava analysis MCP server: application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastmcp import FastMCP

from cassava.core.config.settings import get_settings
from cassava.core.connectivity.monitor import (
    ConnectivityMonitor,
    NetworkConnectivityMonitor,
    StaticConnectivityMonitor,
)
from cassava.core.errors import CassavaError
from cassava.core.inference.catalog import get_default_catalog
from cassava.core.inference.provider import Classifier, create_classifier
from cassava.core.remote.client import SupabaseBackendClient, create_backend_client
from cassava.core.storage.database import LocalDatabase
from cassava.core.storage.offline_store import OfflineStore
from cassava.core.telemetry.logger import SyncEventLogger
from cassava.domains.crop_health.domain_logic.orchestrator import HybridAnalysisOrchestrator
from cassava.domains.crop_health.resources.catalog import register_disease_catalog_resource
from cassava.domains.crop_health.tools.analysis_tools import register_analysis_tools
from cassava.domains.crop_health.tools.auth_tools import register_auth_tools
from cassava.domains.crop_health.tools.sync_tools import register_sync_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "Cassava Leaf Diagnosis"
SERVER_VERSION = "0.1.0"


def create_app(
    *,
    orchestrator_override: HybridAnalysisOrchestrator | None = None,
    backend_override: SupabaseBackendClient | None = None,
    classifier_override: Classifier | None = None,
    connectivity_override: ConnectivityMonitor | None = None,
    store_override: OfflineStore | None = None,
) -> FastMCP:
    """Create and configure the cassava analysis MCP server.

    This is the main application factory. It:
    1. Builds the local store, backend client, classifier and connectivity monitor
    2. Wires them into the hybrid orchestrator
    3. Registers all tools and resources
    """
    settings = get_settings()
    catalog = get_default_catalog()

    if orchestrator_override is not None:
        orchestrator = orchestrator_override
        backend = orchestrator.backend
        store = orchestrator.store
        telemetry = SyncEventLogger(store.database)
    else:
        # --- Local fallback store ---
        store = store_override or OfflineStore(LocalDatabase(settings.offline_db_path))
        telemetry = SyncEventLogger(store.database)

        # --- Remote backend ---
        backend = backend_override or create_backend_client(settings)

        # --- Classifier ---
        classifier = classifier_override or create_classifier(settings, catalog)
        logger.info("Classifier strategy: %s", classifier.strategy)

        # --- Connectivity ---
        connectivity: ConnectivityMonitor
        if connectivity_override is not None:
            connectivity = connectivity_override
        elif settings.cassava_force_offline:
            connectivity = StaticConnectivityMonitor(online=False)
            logger.warning("CASSAVA_FORCE_OFFLINE set; every analysis stays local")
        else:
            backend_url, _, _ = settings.active_supabase()
            connectivity = NetworkConnectivityMonitor.for_backend(
                backend_url, timeout=settings.connectivity_probe_timeout_seconds
            )

        orchestrator = HybridAnalysisOrchestrator(
            store, backend, classifier, connectivity, telemetry
        )

    @asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[None]:
        try:
            yield
        finally:
            await orchestrator.shutdown()

    # --- Server instance ---
    server = FastMCP(
        SERVER_NAME,
        instructions=(
            "Cassava leaf disease diagnosis. Analyze leaf photos, browse and delete "
            "past analyses, and sync analyses captured offline. Sign in first; "
            "analyses are stored under the signed-in account."
        ),
        lifespan=lifespan,
    )

    # --- Register tools ---
    @server.tool
    async def health_check() -> dict:
        """Check server health and return basic status information."""
        status = {
            "status": "ok",
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "classifier": orchestrator.classifier.strategy,
            "supabase_mode": settings.supabase_mode,
            "diseases_known": len(catalog.entries),
        }
        try:
            await orchestrator.initialize()
            status["classifier_ready"] = orchestrator.classifier.is_ready()
            status["pending_sync_count"] = await orchestrator.store.get_pending_sync_count()
            remote = await orchestrator.backend.health_check()
            status["remote_backend"] = remote.status
            status["remote_latency_ms"] = remote.latency_ms
        except CassavaError as exc:
            logger.error("Health check could not open the local store: %s", exc)
            status["status"] = "degraded"
            status["error"] = str(exc)
        return status

    register_analysis_tools(server, orchestrator)
    register_sync_tools(server, orchestrator, telemetry)
    if isinstance(backend, SupabaseBackendClient):
        register_auth_tools(server, backend)
        logger.info("Auth tools registered")

    # --- Register resources ---
    register_disease_catalog_resource(server, catalog)

    return server


# Module-level instance for FastMCP discovery.
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
