"""MCP resource exposing the disease catalog."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from fastmcp import FastMCP

if TYPE_CHECKING:
    from cassava.core.inference.catalog import DiseaseCatalog


def register_disease_catalog_resource(mcp: FastMCP, catalog: DiseaseCatalog) -> None:
    """Register the ``catalog://diseases`` resource on the MCP server."""

    @mcp.resource("catalog://diseases")
    def disease_catalog_resource() -> str:
        """Known cassava diseases with treatments and recommendations."""
        data = catalog.to_dict()
        return json.dumps({"disease_count": len(data["diseases"]), **data}, indent=2)
