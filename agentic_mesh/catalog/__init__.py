"""Capability catalog: operation descriptors from every registered service."""

from agentic_mesh.catalog.catalog import CapabilityCatalog, CatalogSnapshot, Match
from agentic_mesh.catalog.models import Operation, ParameterSpec, ServiceDescriptor, parse_descriptor

__all__ = [
    "CapabilityCatalog",
    "CatalogSnapshot",
    "Match",
    "Operation",
    "ParameterSpec",
    "ServiceDescriptor",
    "parse_descriptor",
]
