"""Execution: plans, the Invoker and the PipelineEngine."""

from agentic_mesh.engine.invoker import Invoker
from agentic_mesh.engine.metrics import MetricsCollector, QueryMetrics
from agentic_mesh.engine.pipeline import PipelineEngine, PipelineOutcome, PipelineState, extract_field
from agentic_mesh.engine.plan import (
    MISSING,
    ArgRef,
    PipelinePlan,
    ResolvedCall,
    StepResult,
    StepStatus,
    coerce_value,
)

__all__ = [
    "MISSING",
    "ArgRef",
    "Invoker",
    "MetricsCollector",
    "PipelineEngine",
    "PipelineOutcome",
    "PipelinePlan",
    "PipelineState",
    "QueryMetrics",
    "ResolvedCall",
    "StepResult",
    "StepStatus",
    "coerce_value",
    "extract_field",
]
