"""MCP tools for leaf analysis and analysis history.

The acting user always comes from the backend session, never from tool
arguments.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from cassava.core.errors import AuthError, CassavaError

if TYPE_CHECKING:
    from cassava.core.remote.client import AuthUser
    from cassava.domains.crop_health.domain_logic.orchestrator import (
        HybridAnalysisOrchestrator,
    )

logger = logging.getLogger(__name__)


def error_response(exc: CassavaError) -> str:
    """JSON error body shared by the crop health tools."""
    return json.dumps({
        "status": "error",
        "error_type": type(exc).__name__,
        "message": str(exc),
    })


async def require_user(orchestrator: HybridAnalysisOrchestrator) -> AuthUser:
    user = await orchestrator.backend.get_current_user()
    if user is None:
        raise AuthError("Sign in first")
    return user


def register_analysis_tools(mcp: FastMCP, orchestrator: HybridAnalysisOrchestrator) -> None:
    """Register analysis tools on the MCP server."""

    @mcp.tool
    async def analyze_leaf_image(
        ctx: Context,
        image_path: str,
    ) -> str:
        """Diagnose a cassava leaf photo.

        The result is saved to the signed-in user's history. Without a
        connection (or when the backend fails) it is kept on the device
        and synced later; ``is_offline`` tells which happened.

        Args:
            image_path: Path to the leaf photo on this device.
        """
        start_time = time.monotonic()
        try:
            await orchestrator.initialize()
            user = await require_user(orchestrator)
            result = await orchestrator.analyze_image(image_path, user.id)
        except CassavaError as exc:
            logger.warning("analyze_leaf_image failed: %s", exc)
            return error_response(exc)

        elapsed_ms = (time.monotonic() - start_time) * 1000
        return json.dumps({
            "status": "queued_offline" if result.is_offline else "saved",
            "analysis": result.to_dict(),
            "duration_ms": round(elapsed_ms, 1),
        }, indent=2)

    @mcp.tool
    async def list_analyses(ctx: Context) -> str:
        """List the signed-in user's analyses, newest first."""
        try:
            await orchestrator.initialize()
            user = await require_user(orchestrator)
            results = await orchestrator.get_analyses(user.id)
        except CassavaError as exc:
            return error_response(exc)

        analyses: list[dict[str, Any]] = [r.to_dict() for r in results]
        return json.dumps({
            "status": "ok",
            "source": "local" if results and results[0].is_offline else "remote",
            "count": len(analyses),
            "analyses": analyses,
        }, indent=2)

    @mcp.tool
    async def delete_analysis(
        ctx: Context,
        analysis_id: str,
        is_offline: bool = False,
    ) -> str:
        """Delete one analysis.

        Args:
            analysis_id: Id as returned by list_analyses.
            is_offline: The ``is_offline`` flag list_analyses returned for it.
        """
        try:
            await orchestrator.initialize()
            await orchestrator.delete_analysis(analysis_id, is_offline)
        except CassavaError as exc:
            return error_response(exc)

        logger.info("Deleted analysis %s via tool", analysis_id)
        return json.dumps({"status": "deleted", "analysis_id": analysis_id})
