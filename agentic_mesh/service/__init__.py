"""Hosting helpers for domain services that join the mesh."""

from agentic_mesh.service.app import create_service_app
from agentic_mesh.service.registry import OperationRegistry, RegistryEntry

__all__ = ["OperationRegistry", "RegistryEntry", "create_service_app"]
