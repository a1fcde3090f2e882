"""Error taxonomy for the capability mesh.

Every error carries a ``to_dict()`` envelope ({type, message, detail}) so the
same shape appears in StepResult.error, HTTP responses and MCP payloads.

Raised vs returned:
  DiscoveryError            raised by CapabilityCatalog.register / refresh
  UnresolvableIntentError   raised by IntentResolver.resolve
  MissingArgumentError      raised by IntentResolver.resolve, returned as data
                            by the Invoker / PipelineEngine
  PlanValidationError       raised when a PipelinePlan or ResolvedCall is built
  TransientTransportError   raised by ServiceClient, retried by the Invoker
  ApplicationError          raised by ServiceClient, never retried
  DependencyAbortedError    returned as data for steps skipped by the engine
  QueryTimeoutError         returned as data when a query exceeds its bound
"""

from __future__ import annotations

from typing import Any


class MeshError(Exception):
    """Base class for every error the mesh produces."""

    def __init__(self, message: str, detail: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict[str, Any]:
        return {"type": type(self).__name__, "message": self.message, "detail": self.detail}


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class DiscoveryError(MeshError):
    """A service could not be reached or returned a malformed descriptor."""

    def __init__(self, service_id: str, endpoint: str, reason: str) -> None:
        super().__init__(
            f"Discovery failed for service {service_id!r} at {endpoint}: {reason}",
            detail={"service_id": service_id, "endpoint": endpoint, "reason": reason},
        )
        self.service_id = service_id
        self.endpoint = endpoint
        self.reason = reason


class UnknownServiceError(MeshError, KeyError):
    def __init__(self, service_id: str) -> None:
        super().__init__(f"Unknown service: {service_id!r}", detail={"service_id": service_id})
        self.service_id = service_id

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


class UnresolvableIntentError(MeshError):
    """No operation cleared the confidence threshold for a clause."""

    def __init__(self, clause: str, best_score: int = 0, threshold: int = 1) -> None:
        super().__init__(
            f"No operation matches clause {clause!r} "
            f"(best confidence {best_score}, threshold {threshold})",
            detail={"clause": clause, "best_score": best_score, "threshold": threshold},
        )
        self.clause = clause
        self.best_score = best_score


class MissingArgumentError(MeshError):
    """A required parameter could not be bound from text or a prior step."""

    def __init__(
        self,
        parameter: str,
        operation: str,
        clause: str | None = None,
        step: int | None = None,
        reason: str = "no value found in the request or earlier steps",
    ) -> None:
        super().__init__(
            f"Missing required argument {parameter!r} for {operation}: {reason}",
            detail={
                "parameter": parameter,
                "operation": operation,
                "clause": clause,
                "step": step,
            },
        )
        self.parameter = parameter
        self.operation = operation
        self.clause = clause
        self.step = step


class PlanValidationError(MeshError):
    """A plan or call violates its structural invariants."""


# ---------------------------------------------------------------------------
# Invocation
# ---------------------------------------------------------------------------


class TransientTransportError(MeshError):
    """Connection refused or timed out. Safe to retry."""


class ApplicationError(MeshError):
    """The service answered but rejected or failed the call. Never retried."""

    def __init__(self, message: str, status_code: int | None = None, detail: Any = None) -> None:
        super().__init__(message, detail=detail)
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        if self.status_code is not None:
            d["status_code"] = self.status_code
        return d


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class DependencyAbortedError(MeshError):
    def __init__(self, step: int, upstream: int) -> None:
        super().__init__(
            f"Step {step} skipped: upstream step {upstream} failed",
            detail={"step": step, "upstream": upstream},
        )
        self.step = step
        self.upstream = upstream


class QueryTimeoutError(MeshError, TimeoutError):
    def __init__(self, timeout: float, pending_steps: list[int] | None = None) -> None:
        super().__init__(
            f"Query exceeded {timeout:g}s",
            detail={"timeout": timeout, "pending_steps": pending_steps or []},
        )
        self.timeout = timeout
