"""MCP tools for the offline sync queue."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from cassava.core.errors import CassavaError
from cassava.domains.crop_health.tools.analysis_tools import error_response

if TYPE_CHECKING:
    from cassava.core.telemetry.logger import SyncEventLogger
    from cassava.domains.crop_health.domain_logic.orchestrator import (
        HybridAnalysisOrchestrator,
    )

logger = logging.getLogger(__name__)


def register_sync_tools(
    mcp: FastMCP,
    orchestrator: HybridAnalysisOrchestrator,
    telemetry: SyncEventLogger | None = None,
) -> None:
    """Register sync tools on the MCP server."""

    @mcp.tool
    async def force_sync(ctx: Context) -> str:
        """Push analyses stored on this device to the cloud now."""
        try:
            await orchestrator.initialize()
            report = await orchestrator.force_sync()
        except CassavaError as exc:
            return error_response(exc)
        return json.dumps({"status": "ok", **report.to_dict()})

    @mcp.tool
    async def sync_status(ctx: Context) -> str:
        """Connectivity, pending sync count and classifier backend status."""
        try:
            await orchestrator.initialize()
            status = await orchestrator.get_sync_status()
        except CassavaError as exc:
            return error_response(exc)
        return json.dumps({"status": "ok", **status.to_dict()}, indent=2)

    @mcp.tool
    async def clear_offline_data(
        ctx: Context,
        confirm: str = "",
    ) -> str:
        """Delete every analysis stored on this device, synced or not.

        Unsynced analyses are lost for good.

        Args:
            confirm: Must be exactly 'CLEAR' to proceed.
        """
        if confirm != "CLEAR":
            return json.dumps({
                "status": "cancelled",
                "message": (
                    "To clear offline data, call this tool with confirm='CLEAR'. "
                    "Unsynced analyses cannot be recovered."
                ),
            })
        try:
            await orchestrator.initialize()
            count = await orchestrator.clear_offline_data()
        except CassavaError as exc:
            return error_response(exc)

        logger.warning("Offline data cleared: %d analyses removed", count)
        return json.dumps({"status": "cleared", "analyses_deleted": count})

    if telemetry is None:
        return

    @mcp.tool
    async def recent_sync_events(
        ctx: Context,
        action: str = "",
        limit: int = 20,
    ) -> str:
        """Recent fallback and sync events, newest first.

        Args:
            action: Optional filter ('analysis_fallback', 'sync_entry',
                'sync_cycle', 'deletion', 'analysis_saved').
            limit: Maximum number of events (default: 20).
        """
        try:
            await orchestrator.initialize()
            events = await telemetry.get_events(action=action or None, limit=limit)
        except CassavaError as exc:
            return error_response(exc)
        return json.dumps({"status": "ok", "count": len(events), "events": events}, indent=2)
