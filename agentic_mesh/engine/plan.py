"""Query-scoped execution model: ResolvedCall, PipelinePlan, StepResult.

A PipelinePlan is an ordered list of ResolvedCall steps. An argument value is
either a literal, an ArgRef pointing at an earlier step's output, or the
MISSING placeholder the resolver leaves for a required parameter it could not
bind. Plans are validated on construction: a dependency must point strictly
backwards, so every plan is a DAG (a simple chain in the common case).
"""

from __future__ import annotations

import datetime
import enum
import json
import re
from dataclasses import dataclass, field
from typing import Any

from agentic_mesh.catalog.models import Operation, ParameterSpec
from agentic_mesh.errors import MissingArgumentError, PlanValidationError


class _Missing:
    """Placeholder for a required argument the resolver could not bind."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


@dataclass(frozen=True)
class ArgRef:
    """Reference to a field of an earlier step's output.

    step:  index of the upstream step (0-based).
    field: dotted path into a structured payload, or the upstream argument name.
    kind:  identifier kind (e.g. "patient") used to find the value in a text payload.
    """

    step: int
    field: str
    kind: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"$ref": {"step": self.step, "field": self.field, "kind": self.kind}}


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def coerce_value(spec: ParameterSpec, value: Any) -> Any:
    """Coerce value to spec.type. Raises PlanValidationError when impossible."""
    try:
        match spec.type:
            case "number":
                if isinstance(value, bool):
                    raise ValueError("boolean is not a number")
                if isinstance(value, str):
                    value = value.replace(",", "").lstrip("$").strip()
                return float(value)
            case "integer":
                if isinstance(value, bool):
                    raise ValueError("boolean is not an integer")
                if isinstance(value, str):
                    value = value.replace(",", "").strip()
                number = float(value)
                if not number.is_integer():
                    raise ValueError(f"{value} is not a whole number")
                return int(number)
            case "boolean":
                if isinstance(value, bool):
                    return value
                text = str(value).strip().lower()
                if text in ("true", "yes", "1", "y"):
                    return True
                if text in ("false", "no", "0", "n"):
                    return False
                raise ValueError(f"{value!r} is not a boolean")
            case "date":
                if isinstance(value, datetime.datetime):
                    return value.date().isoformat()
                if isinstance(value, datetime.date):
                    return value.isoformat()
                text = str(value).strip()
                if not _ISO_DATE_RE.match(text):
                    raise ValueError(f"{value!r} is not an ISO date")
                datetime.date.fromisoformat(text)
                return text
            case _:
                if isinstance(value, (dict, list)):
                    raise ValueError(f"expected a scalar, got {type(value).__name__}")
                text = str(value).strip()
                if not text:
                    raise ValueError("empty value")
                return text
    except (TypeError, ValueError) as e:
        raise PlanValidationError(
            f"Argument {spec.name!r} expects {spec.type}: {e}",
            detail={"parameter": spec.name, "type": spec.type, "value": repr(value)},
        ) from e


# ---------------------------------------------------------------------------
# ResolvedCall
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResolvedCall:
    """One step of execution: an operation plus its argument bindings."""

    operation: Operation
    arguments: dict[str, Any] = field(default_factory=dict)
    clause: str = ""

    def __post_init__(self) -> None:
        unknown = [name for name in self.arguments if self.operation.parameter(name) is None]
        if unknown:
            raise PlanValidationError(
                f"{self.operation.ref} has no parameter(s) {unknown}",
                detail={"operation": self.operation.ref, "unknown": unknown},
            )
        for name, value in self.arguments.items():
            if isinstance(value, ArgRef) or value is MISSING:
                continue
            coerce_value(self.operation.parameter(name), value)

    @property
    def dependencies(self) -> list[int]:
        return sorted({v.step for v in self.arguments.values() if isinstance(v, ArgRef)})

    def missing(self) -> list[str]:
        """Required parameters that are unbound or hold the MISSING placeholder."""
        return [
            p.name for p in self.operation.parameters
            if p.required and self.arguments.get(p.name, MISSING) is MISSING
        ]

    def bind(self, resolved: dict[str, Any] | None = None) -> dict[str, Any]:
        """Concrete, type-coerced arguments ready for dispatch.

        resolved supplies values for ArgRef arguments. Raises
        MissingArgumentError if a required value is absent and
        PlanValidationError if a value has the wrong type.
        """
        resolved = resolved or {}
        out: dict[str, Any] = {}
        for spec in self.operation.parameters:
            value = self.arguments.get(spec.name, MISSING)
            if isinstance(value, ArgRef):
                value = resolved.get(spec.name, MISSING)
            if value is MISSING or value is None:
                if spec.required:
                    raise MissingArgumentError(spec.name, self.operation.ref, clause=self.clause or None)
                continue
            out[spec.name] = coerce_value(spec, value)
        return out

    def to_dict(self) -> dict[str, Any]:
        args: dict[str, Any] = {}
        for name, value in self.arguments.items():
            if isinstance(value, ArgRef):
                args[name] = value.to_dict()
            elif value is MISSING:
                args[name] = None
            else:
                args[name] = value
        return {
            "operation": self.operation.ref,
            "arguments": args,
            "missing": self.missing(),
            "depends_on": self.dependencies,
            "clause": self.clause,
        }


# ---------------------------------------------------------------------------
# PipelinePlan
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PipelinePlan:
    steps: tuple[ResolvedCall, ...]
    continue_on_error: bool = False
    source: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        for index, call in enumerate(self.steps):
            for dep in call.dependencies:
                if dep < 0 or dep >= index:
                    raise PlanValidationError(
                        f"Step {index} depends on step {dep}; dependencies must point to earlier steps",
                        detail={"step": index, "dependency": dep},
                    )

    def __len__(self) -> int:
        return len(self.steps)

    def missing(self) -> list[tuple[int, str]]:
        return [(i, name) for i, call in enumerate(self.steps) for name in call.missing()]

    def dependents(self, index: int) -> list[int]:
        """Steps that depend on step index, directly or transitively."""
        out: list[int] = []
        tainted = {index}
        for i in range(index + 1, len(self.steps)):
            if tainted.intersection(self.steps[i].dependencies):
                tainted.add(i)
                out.append(i)
        return out

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "continue_on_error": self.continue_on_error,
            "steps": [c.to_dict() for c in self.steps],
        }


# ---------------------------------------------------------------------------
# StepResult
# ---------------------------------------------------------------------------


class StepStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class StepResult:
    """Outcome of one invocation. Failures are data, never exceptions.

    Fields:
        index:       Step index within the plan (0 for single-shot calls).
        operation:   Operation ref ("service.operation").
        status:      SUCCESS or FAILED.
        raw_output:  Payload returned by the service (text or structured).
        error:       {type, message, detail} envelope when FAILED.
        arguments:   Concrete arguments that were dispatched.
        attempts:    Transport attempts made (0 when never dispatched).
        duration_ms: Wall-clock time spent in the invoker.
    """

    index: int
    operation: str
    status: StepStatus
    raw_output: Any = None
    error: dict[str, Any] | None = None
    arguments: dict[str, Any] = field(default_factory=dict)
    attempts: int = 0
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.SUCCESS

    @classmethod
    def failure(
        cls,
        index: int,
        operation: str,
        error: dict[str, Any],
        arguments: dict[str, Any] | None = None,
        attempts: int = 0,
        duration_ms: float = 0.0,
    ) -> StepResult:
        return cls(
            index=index,
            operation=operation,
            status=StepStatus.FAILED,
            error=error,
            arguments=arguments or {},
            attempts=attempts,
            duration_ms=duration_ms,
        )

    def text(self) -> str:
        """Human-readable rendering of the output or the error."""
        if not self.ok:
            return f"ERROR ({(self.error or {}).get('type', 'Error')}): {(self.error or {}).get('message', '')}"
        if self.raw_output is None:
            return ""
        if isinstance(self.raw_output, str):
            return self.raw_output
        return json.dumps(self.raw_output, indent=2, default=str)

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "operation": self.operation,
            "status": self.status.value,
            "output": self.raw_output,
            "error": self.error,
            "arguments": self.arguments,
            "attempts": self.attempts,
            "duration_ms": round(self.duration_ms, 3),
        }
