"""Agentic mesh: one query interface over independently hosted domain services.

Quickstart:
    from agentic_mesh import Mesh, MeshSettings

    mesh = await Mesh.connect(MeshSettings(services="patients=http://localhost:8871"))
    result = await mesh.process_query("Get medical history for patient PT-12345")
    print(result.text())
    await mesh.aclose()
"""

from agentic_mesh.catalog import CapabilityCatalog, CatalogSnapshot, Operation, ParameterSpec, ServiceDescriptor
from agentic_mesh.client import ServiceClient
from agentic_mesh.config import MeshSettings
from agentic_mesh.engine import ArgRef, Invoker, PipelineEngine, PipelinePlan, ResolvedCall, StepResult, StepStatus
from agentic_mesh.errors import (
    ApplicationError,
    DependencyAbortedError,
    DiscoveryError,
    MeshError,
    MissingArgumentError,
    PlanValidationError,
    QueryTimeoutError,
    TransientTransportError,
    UnknownServiceError,
    UnresolvableIntentError,
)
from agentic_mesh.mesh import AggregatedResult, Mesh
from agentic_mesh.resolver import IntentResolver

__all__ = [
    "AggregatedResult",
    "ApplicationError",
    "ArgRef",
    "CapabilityCatalog",
    "CatalogSnapshot",
    "DependencyAbortedError",
    "DiscoveryError",
    "IntentResolver",
    "Invoker",
    "Mesh",
    "MeshError",
    "MeshSettings",
    "MissingArgumentError",
    "Operation",
    "ParameterSpec",
    "PipelineEngine",
    "PipelinePlan",
    "PlanValidationError",
    "QueryTimeoutError",
    "ResolvedCall",
    "ServiceClient",
    "ServiceDescriptor",
    "StepResult",
    "StepStatus",
    "TransientTransportError",
    "UnknownServiceError",
    "UnresolvableIntentError",
]
