"""MCP server exposing the mesh entry points as tools.

Uses the low-level ``mcp.server.Server`` with a single ``call_tool``
dispatcher driven by ``TOOL_CATALOG``:

  mesh_query      processQuery
  mesh_pipeline   pipeLineMesh
  mesh_services   list registered services and operations

Every tool returns one JSON text block. Unknown tools and bad arguments come
back as ``{"ok": false, "error": ...}`` rather than protocol errors.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from mcp import types
from mcp.server import Server

from agentic_mesh.mesh import Mesh

logger = logging.getLogger(__name__)


def _schema(props: dict[str, Any] | None = None, req: list[str] | None = None) -> dict[str, Any]:
    return {"type": "object", "properties": props or {}, "required": req or []}


_TEXT = {"type": "string", "description": "The request in plain language."}
_CONTINUE = {
    "type": "boolean",
    "description": "Keep running independent steps after a failure instead of aborting.",
}

TOOL_CATALOG: list[types.Tool] = [
    types.Tool(
        name="mesh_query",
        description=(
            "Route a request to the matching operation(s) on the registered domain "
            "services and return the combined result."
        ),
        inputSchema=_schema({"text": _TEXT, "continue_on_error": _CONTINUE}, ["text"]),
    ),
    types.Tool(
        name="mesh_pipeline",
        description=(
            "Run a multi-part request as an ordered pipeline, passing identifiers "
            "from earlier steps to later ones. Returns the per-step trace."
        ),
        inputSchema=_schema({"text": _TEXT, "continue_on_error": _CONTINUE}, ["text"]),
    ),
    types.Tool(
        name="mesh_services",
        description="List the registered services and the operations each one offers.",
        inputSchema=_schema(),
    ),
]


def create_server(mesh: Mesh) -> Server:
    """Create an MCP Server wired to mesh."""
    server = Server("agentic-mesh")

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return list(TOOL_CATALOG)

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any] | None = None) -> list[types.TextContent]:
        args = arguments or {}
        match name:
            case "mesh_query" | "mesh_pipeline":
                text = args.get("text")
                if not isinstance(text, str) or not text.strip():
                    return _text({"ok": False, "error": "'text' is required"})
                run = mesh.process_query if name == "mesh_query" else mesh.pipeline_mesh
                result = await run(text, continue_on_error=args.get("continue_on_error"))
                return _text({"ok": result.ok, **result.to_dict()})
            case "mesh_services":
                return _text({"ok": True, **mesh.snapshot().to_dict()})
            case _:
                logger.info("Unknown MCP tool requested: %s", name)
                return _text({"ok": False, "error": f"Unknown tool: {name}"})

    return server


def _text(payload: dict[str, Any]) -> list[types.TextContent]:
    return [types.TextContent(type="text", text=json.dumps(payload, default=str))]
