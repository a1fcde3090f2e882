"""MCP stdio server for the mesh entry points."""

from agentic_mesh.mcp.server import TOOL_CATALOG, create_server

__all__ = ["TOOL_CATALOG", "create_server"]
