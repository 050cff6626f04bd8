"""MCP tools for the backend session."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from cassava.core.errors import CassavaError
from cassava.domains.crop_health.tools.analysis_tools import error_response

if TYPE_CHECKING:
    from cassava.core.remote.client import SupabaseBackendClient

logger = logging.getLogger(__name__)


def register_auth_tools(mcp: FastMCP, backend: SupabaseBackendClient) -> None:
    """Register sign-up/sign-in tools on the MCP server."""

    @mcp.tool
    async def sign_up(ctx: Context, email: str, password: str) -> str:
        """Create an account on the analysis backend."""
        try:
            user = await backend.sign_up(email, password)
        except CassavaError as exc:
            return error_response(exc)
        return json.dumps({"status": "ok", "user": user.to_dict()})

    @mcp.tool
    async def sign_in(ctx: Context, email: str, password: str) -> str:
        """Sign in; later analyses are saved to this account."""
        try:
            user = await backend.sign_in(email, password)
        except CassavaError as exc:
            return error_response(exc)
        return json.dumps({"status": "ok", "user": user.to_dict()})

    @mcp.tool
    async def sign_out(ctx: Context) -> str:
        """End the current session."""
        try:
            await backend.sign_out()
        except CassavaError as exc:
            return error_response(exc)
        return json.dumps({"status": "signed_out"})

    @mcp.tool
    async def current_user(ctx: Context) -> str:
        """The signed-in user, if any."""
        try:
            user = await backend.get_current_user()
        except CassavaError as exc:
            return error_response(exc)
        return json.dumps({
            "status": "ok",
            "user": user.to_dict() if user is not None else None,
        })
