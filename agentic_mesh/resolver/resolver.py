"""IntentResolver — turns request text into a PipelinePlan.

For each clause the resolver ranks the catalog snapshot, keeps the top
candidate if its confidence clears ``min_confidence`` and hands the clause to
a SlotFiller. Later clauses see the calls resolved before them, so a clause
that names no patient binds ``patientId`` to the step that did.

Example:
    "Get medical history for patient PT-12345, then generate invoice for $150 office visit"

    step 0  patients.getPatientHistory  patientId=PT-12345
    step 1  billing.generateInvoice     patientId=$ref(step 0, patientId)
                                        serviceType="office visit", amount=150.0
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from agentic_mesh.catalog import CapabilityCatalog, CatalogSnapshot, Operation
from agentic_mesh.engine.plan import MISSING, ArgRef, PipelinePlan, ResolvedCall, coerce_value
from agentic_mesh.errors import (
    MissingArgumentError,
    PlanValidationError,
    UnresolvableIntentError,
)
from agentic_mesh.resolver.clauses import split_clauses
from agentic_mesh.resolver.slots import ClauseEntities, SlotFiller

logger = logging.getLogger(__name__)


class IntentResolver:
    """Resolves requests against a catalog (or a fixed snapshot)."""

    def __init__(self, catalog: CapabilityCatalog | CatalogSnapshot, min_confidence: int = 1) -> None:
        self._catalog = catalog
        self.min_confidence = min_confidence

    def _snapshot(self, snapshot: CatalogSnapshot | None) -> CatalogSnapshot:
        if snapshot is not None:
            return snapshot
        if isinstance(self._catalog, CatalogSnapshot):
            return self._catalog
        return self._catalog.snapshot()

    # ------------------------------------------------------------------
    # Natural language
    # ------------------------------------------------------------------

    def resolve(
        self,
        text: str,
        *,
        snapshot: CatalogSnapshot | None = None,
        continue_on_error: bool = False,
    ) -> PipelinePlan:
        """Resolve text into an executable plan.

        Raises UnresolvableIntentError when a clause matches no operation and
        MissingArgumentError for the first required parameter left unbound.
        """
        plan = self.draft(text, snapshot=snapshot, continue_on_error=continue_on_error)
        for index, name in plan.missing():
            call = plan.steps[index]
            raise MissingArgumentError(name, call.operation.ref, clause=call.clause, step=index)
        return plan

    def draft(
        self,
        text: str,
        *,
        snapshot: CatalogSnapshot | None = None,
        continue_on_error: bool = False,
    ) -> PipelinePlan:
        """Like resolve(), but unbound required parameters stay MISSING."""
        snap = self._snapshot(snapshot)
        split = split_clauses(text, snap.verbs)
        if not split.clauses:
            raise UnresolvableIntentError(text.strip(), 0, self.min_confidence)

        preamble = ClauseEntities(split.preamble) if split.preamble else None
        steps: list[ResolvedCall] = []
        for clause in split.clauses:
            entities = ClauseEntities(clause)
            operation = self._select(snap, clause, entities)
            arguments = SlotFiller(operation, entities, preamble, steps).fill()
            call = ResolvedCall(operation, _validated(operation, arguments), clause=clause)
            logger.debug(
                "Clause %r -> %s (args: %s, missing: %s)",
                clause, operation.ref, sorted(call.arguments), call.missing(),
            )
            steps.append(call)
        return PipelinePlan(tuple(steps), continue_on_error=continue_on_error, source=text)

    def _select(self, snap: CatalogSnapshot, clause: str, entities: ClauseEntities) -> Operation:
        matches = snap.rank(entities.masked())
        best = matches[0] if matches else None
        if best is None or best.confidence < self.min_confidence:
            score = best.confidence if best else 0
            logger.info("Unresolvable clause %r (best confidence %d)", clause, score)
            raise UnresolvableIntentError(clause, score, self.min_confidence)
        return best.operation

    # ------------------------------------------------------------------
    # Structured requests
    # ------------------------------------------------------------------

    def resolve_structured(
        self,
        request: Mapping[str, Any] | Sequence[Mapping[str, Any]],
        *,
        snapshot: CatalogSnapshot | None = None,
        continue_on_error: bool | None = None,
    ) -> PipelinePlan:
        """Build a plan from explicit steps instead of text.

        Accepts ``{"steps": [...], "continue_on_error": bool}`` or a bare list
        of steps. Each step is ``{"operation": "service.name" | "name",
        "arguments": {...}}``; an argument of the form
        ``{"$ref": {"step": 0, "field": "patientId"}}`` depends on an earlier
        step. Raises PlanValidationError for unknown or ambiguous operations.
        """
        snap = self._snapshot(snapshot)
        if isinstance(request, Mapping):
            raw_steps = request.get("steps")
            if continue_on_error is None:
                continue_on_error = bool(request.get("continue_on_error", False))
        else:
            raw_steps = request
        if not isinstance(raw_steps, Sequence) or isinstance(raw_steps, str) or not raw_steps:
            raise PlanValidationError("Structured request needs a non-empty list of steps")

        steps: list[ResolvedCall] = []
        for index, raw in enumerate(raw_steps):
            if not isinstance(raw, Mapping) or not isinstance(raw.get("operation"), str):
                raise PlanValidationError(f"Step {index} needs an 'operation' name", detail={"step": index})
            operation = _find_operation(snap, raw["operation"], index)
            raw_arguments = raw.get("arguments") or {}
            if not isinstance(raw_arguments, Mapping):
                raise PlanValidationError(
                    f"Step {index}: 'arguments' must be an object of name -> value",
                    detail={"step": index, "arguments": type(raw_arguments).__name__},
                )
            arguments = {
                name: _structured_value(value, index)
                for name, value in raw_arguments.items()
            }
            for spec in operation.parameters:
                if spec.required and spec.name not in arguments:
                    raise MissingArgumentError(spec.name, operation.ref, step=index)
            steps.append(ResolvedCall(operation, arguments, clause=raw.get("clause", "")))
        return PipelinePlan(tuple(steps), continue_on_error=bool(continue_on_error))


def _validated(operation: Operation, arguments: dict[str, Any]) -> dict[str, Any]:
    """Drop literal values that cannot be coerced to their parameter type."""
    out: dict[str, Any] = {}
    for name, value in arguments.items():
        if not isinstance(value, ArgRef) and value is not MISSING:
            spec = operation.parameter(name)
            try:
                coerce_value(spec, value)
            except PlanValidationError:
                logger.debug("Discarding %s value for %s.%s", spec.type, operation.ref, name)
                if spec.required:
                    out[name] = MISSING
                continue
        out[name] = value
    return out


def _find_operation(snap: CatalogSnapshot, name: str, index: int) -> Operation:
    found = snap.find(name)
    if not found:
        raise PlanValidationError(f"Step {index}: unknown operation {name!r}", detail={"step": index, "operation": name})
    if len(found) > 1:
        raise PlanValidationError(
            f"Step {index}: operation {name!r} is ambiguous; use one of {[op.ref for op in found]}",
            detail={"step": index, "operation": name, "candidates": [op.ref for op in found]},
        )
    return found[0]


def _structured_value(value: Any, index: int) -> Any:
    if isinstance(value, Mapping) and "$ref" in value:
        ref = value["$ref"]
        if not isinstance(ref, Mapping) or "step" not in ref or "field" not in ref:
            raise PlanValidationError(f"Step {index}: $ref needs 'step' and 'field'", detail={"step": index})
        try:
            step = int(ref["step"])
        except (TypeError, ValueError):
            raise PlanValidationError(f"Step {index}: $ref step must be an integer", detail={"step": index}) from None
        return ArgRef(step=step, field=str(ref["field"]), kind=ref.get("kind"))
    return value
