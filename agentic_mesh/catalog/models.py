"""Operation / ServiceDescriptor data model and discovery payload parsing.

An Operation is identified by (service_id, name) and is immutable once built.
A ServiceDescriptor is built from one discovery call and never mutated;
re-discovery produces a new descriptor that replaces the old one wholesale.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from agentic_mesh.errors import DiscoveryError

logger = logging.getLogger(__name__)

PARAM_TYPES = frozenset({"string", "number", "integer", "boolean", "date", "identifier"})

_TYPE_ALIASES: dict[str, str] = {
    "string": "string",
    "str": "string",
    "text": "string",
    "number": "number",
    "double": "number",
    "float": "number",
    "decimal": "number",
    "int": "integer",
    "integer": "integer",
    "long": "integer",
    "bool": "boolean",
    "boolean": "boolean",
    "date": "date",
    "localdate": "date",
    "identifier": "identifier",
    "id": "identifier",
}


@dataclass(frozen=True)
class ParameterSpec:
    name: str
    type: str = "string"
    required: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.type, "required": self.required}


@dataclass(frozen=True)
class Operation:
    """One invocable operation on one service.

    Fields:
        service_id:  Owning service identifier (catalog key).
        name:        Operation name, unique within the service.
        description: Human-readable description used for matching.
        parameters:  Ordered parameter specs.
        endpoint:    Base URL of the owning service.
        outputs:     Identifier-shaped fields the operation produces
                     (e.g. "appointmentId"). Optional.
    """

    service_id: str
    name: str
    description: str
    parameters: tuple[ParameterSpec, ...]
    endpoint: str
    outputs: tuple[str, ...] = ()

    @property
    def ref(self) -> str:
        return f"{self.service_id}.{self.name}"

    def parameter(self, name: str) -> ParameterSpec | None:
        for p in self.parameters:
            if p.name == name:
                return p
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "service_id": self.service_id,
            "name": self.name,
            "description": self.description,
            "parameters": [p.to_dict() for p in self.parameters],
            "outputs": list(self.outputs),
        }


@dataclass(frozen=True)
class ServiceDescriptor:
    service_id: str
    endpoint: str
    operations: tuple[Operation, ...] = field(default_factory=tuple)

    def operation(self, name: str) -> Operation | None:
        for op in self.operations:
            if op.name == name:
                return op
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "service_id": self.service_id,
            "endpoint": self.endpoint,
            "operations": [op.to_dict() for op in self.operations],
        }


# ---------------------------------------------------------------------------
# Discovery payload parsing
# ---------------------------------------------------------------------------


def normalize_type(raw: Any) -> str:
    """Map a declared parameter type onto PARAM_TYPES. Unknown types become string."""
    key = str(raw or "string").strip().lower()
    normalized = _TYPE_ALIASES.get(key)
    if normalized is None:
        logger.warning("Unknown parameter type %r; treating as string", raw)
        return "string"
    return normalized


def parse_descriptor(service_id: str, endpoint: str, payload: Any) -> ServiceDescriptor:
    """Build a ServiceDescriptor from a raw discovery response.

    Accepts a bare list of operations or an object with an "operations" list.
    Raises DiscoveryError on missing names, duplicate operation names,
    duplicate parameter names or wrongly-shaped entries.
    """
    if isinstance(payload, dict):
        raw_ops = payload.get("operations")
    else:
        raw_ops = payload
    if not isinstance(raw_ops, list):
        raise DiscoveryError(service_id, endpoint, "descriptor has no operation list")

    operations: list[Operation] = []
    seen: set[str] = set()
    for i, raw in enumerate(raw_ops):
        if not isinstance(raw, dict):
            raise DiscoveryError(service_id, endpoint, f"operation #{i} is not an object")
        name = raw.get("name")
        if not isinstance(name, str) or not name.strip():
            raise DiscoveryError(service_id, endpoint, f"operation #{i} is missing a name")
        name = name.strip()
        if name in seen:
            raise DiscoveryError(service_id, endpoint, f"duplicate operation name {name!r}")
        seen.add(name)

        raw_params = raw.get("parameters") or []
        if not isinstance(raw_params, list):
            raise DiscoveryError(service_id, endpoint, f"{name}: parameters must be a list")
        params: list[ParameterSpec] = []
        param_names: set[str] = set()
        for j, rp in enumerate(raw_params):
            if not isinstance(rp, dict) or not isinstance(rp.get("name"), str) or not rp["name"].strip():
                raise DiscoveryError(service_id, endpoint, f"{name}: parameter #{j} is missing a name")
            pname = rp["name"].strip()
            if pname in param_names:
                raise DiscoveryError(service_id, endpoint, f"{name}: duplicate parameter {pname!r}")
            param_names.add(pname)
            params.append(ParameterSpec(
                name=pname,
                type=normalize_type(rp.get("type")),
                required=bool(rp.get("required", True)),
            ))

        outputs = raw.get("outputs") or []
        if not isinstance(outputs, list) or not all(isinstance(o, str) for o in outputs):
            raise DiscoveryError(service_id, endpoint, f"{name}: outputs must be a list of strings")

        operations.append(Operation(
            service_id=service_id,
            name=name,
            description=str(raw.get("description") or ""),
            parameters=tuple(params),
            endpoint=endpoint,
            outputs=tuple(outputs),
        ))

    return ServiceDescriptor(service_id=service_id, endpoint=endpoint, operations=tuple(operations))
