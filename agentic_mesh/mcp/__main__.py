"""Entry point: ``python -m agentic_mesh.mcp``

Starts the mesh MCP server over stdio so MCP clients can route requests
through every service listed in MESH_SERVICES.

Environment variables
---------------------
MESH_SERVICES     Service map (JSON object or ``id=url,id=url``).
MESH_LOG_LEVEL    Python log level (default ``WARNING``).
MCP_TRANSPORT     ``stdio`` (default); nothing else is wired.

See agentic_mesh.config for the remaining MESH_* settings.
"""

from __future__ import annotations

import asyncio
import logging
import os

from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(
    level=os.environ.get("MESH_LOG_LEVEL", "WARNING").upper(),
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)

from agentic_mesh.config import MeshSettings  # noqa: E402
from agentic_mesh.mcp.server import create_server  # noqa: E402
from agentic_mesh.mesh import Mesh  # noqa: E402


async def main() -> None:
    mesh = await Mesh.connect(MeshSettings())
    try:
        server = create_server(mesh)

        transport = os.environ.get("MCP_TRANSPORT", "stdio")
        if transport != "stdio":
            raise NotImplementedError(f"MCP transport {transport!r} is not wired; use stdio")

        from mcp.server.stdio import stdio_server

        async with stdio_server() as (read_stream, write_stream):
            init_options = server.create_initialization_options()
            await server.run(read_stream, write_stream, init_options)
    finally:
        await mesh.aclose()


if __name__ == "__main__":
    asyncio.run(main())
