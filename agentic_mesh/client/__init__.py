"""HTTP transport to domain services."""

from agentic_mesh.client.service_client import ServiceClient

__all__ = ["ServiceClient"]
