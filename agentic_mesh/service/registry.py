"""OperationRegistry — the provider side of the discovery/invocation protocol.

A domain service declares its operations explicitly, then serves them with
create_service_app():

    registry = OperationRegistry("appointments")
    registry.register(
        "scheduleAppointment",
        "Schedule an appointment for a patient with a doctor",
        [
            ParameterSpec("patientId"),
            ParameterSpec("doctorName"),
            ParameterSpec("appointmentType"),
            ParameterSpec("preferredDate", "date"),
        ],
        schedule_appointment,
        outputs=["appointmentId"],
    )

describe() returns the GET /operations body; call() validates and coerces
the arguments, runs the callable (sync or async) and returns the POST /invoke
envelope. call() never raises for a bad request or a failing callable: the
caller gets {"status": "error", "errorMessage": ...}.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from agentic_mesh.catalog.models import ParameterSpec, normalize_type
from agentic_mesh.engine.plan import coerce_value
from agentic_mesh.errors import MeshError

logger = logging.getLogger(__name__)

ParameterLike = ParameterSpec | Mapping[str, Any] | str


@dataclass
class RegistryEntry:
    """A single registered operation.

    Fields:
        name:        Operation name, unique within the registry.
        description: Text the mesh ranks against.
        parameters:  Ordered parameter specs.
        fn:          Callable receiving the coerced arguments as keywords.
        outputs:     Identifier-shaped fields the operation produces.
    """

    name: str
    description: str
    parameters: tuple[ParameterSpec, ...]
    fn: Callable[..., Any]
    outputs: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "parameters": [p.to_dict() for p in self.parameters],
        }
        if self.outputs:
            d["outputs"] = list(self.outputs)
        return d


class OperationRegistry:
    """Operations one domain service exposes to the mesh."""

    def __init__(self, service: str = "") -> None:
        self.service = service
        self._entries: dict[str, RegistryEntry] = {}

    def register(
        self,
        name: str,
        description: str,
        parameters: Iterable[ParameterLike],
        fn: Callable[..., Any],
        outputs: Iterable[str] = (),
    ) -> None:
        """Register one operation.

        parameters may be ParameterSpecs, ``{"name", "type", "required"}``
        dicts or bare names (required strings). Re-registering a name
        replaces the earlier entry. Raises ValueError on a blank name or
        duplicate parameter names.
        """
        if not name or not name.strip():
            raise ValueError("Operation name must not be empty")
        specs = tuple(_to_spec(p) for p in parameters)
        names = [p.name for p in specs]
        if len(names) != len(set(names)):
            raise ValueError(f"{name}: duplicate parameter names in {names}")
        self._entries[name] = RegistryEntry(
            name=name,
            description=description,
            parameters=specs,
            fn=fn,
            outputs=tuple(outputs),
        )

    def describe(self) -> dict[str, Any]:
        """Discovery payload served at GET /operations."""
        return {
            "service": self.service,
            "operations": [e.to_dict() for e in self._entries.values()],
        }

    def names(self) -> list[str]:
        return list(self._entries)

    async def call(self, name: str, arguments: Mapping[str, Any] | None) -> dict[str, Any]:
        """Run an operation and wrap the outcome in an invocation envelope."""
        entry = self._entries.get(name)
        if entry is None:
            return _error(f"Unknown operation: {name!r}")

        arguments = dict(arguments or {})
        unknown = sorted(set(arguments) - {p.name for p in entry.parameters})
        if unknown:
            return _error(f"{name}: unknown argument(s) {unknown}")

        kwargs: dict[str, Any] = {}
        for spec in entry.parameters:
            value = arguments.get(spec.name)
            if value is None:
                if spec.required:
                    return _error(f"{name}: missing required argument {spec.name!r}")
                continue
            try:
                kwargs[spec.name] = coerce_value(spec, value)
            except MeshError as e:
                return _error(e.message)

        try:
            result = entry.fn(**kwargs)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.warning("Operation %s raised %s: %s", name, type(e).__name__, e)
            return _error(f"{type(e).__name__}: {e}")
        return {"status": "ok", "payload": result}

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"OperationRegistry(service={self.service!r}, operations={self.names()!r})"


def _to_spec(p: ParameterLike) -> ParameterSpec:
    if isinstance(p, ParameterSpec):
        return ParameterSpec(p.name, normalize_type(p.type), p.required)
    if isinstance(p, str):
        return ParameterSpec(p)
    return ParameterSpec(
        name=str(p["name"]),
        type=normalize_type(p.get("type")),
        required=bool(p.get("required", True)),
    )


def _error(message: str) -> dict[str, Any]:
    return {"status": "error", "payload": None, "errorMessage": message}
