"""PipelineEngine — executes a PipelinePlan step by step.

State machine per run:

    PENDING -> RUNNING(step i) -> RUNNING(step j) ... -> COMPLETED | ABORTED

Scheduling:
  A step is ready once every step it depends on has a StepResult. Ready steps
  are dispatched lowest index first, at most settings.max_concurrency at a
  time, so independent steps overlap and dependent ones run strictly in order.

Failure policy:
  fail-fast (default)  first FAILED result stops all new dispatches; steps
                       already in flight are awaited and recorded; the run
                       ends ABORTED with the partial trace.
  continue_on_error    dependents of a failed step are recorded as FAILED with
                       DependencyAbortedError and never invoked; independent
                       steps keep running; the run ends COMPLETED.

A per-query timeout bounds the whole run. On expiry in-flight invocations are
cancelled, steps not yet started are abandoned and the run ends ABORTED.

The engine keeps no state between runs.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any

from agentic_mesh.catalog.text import compact
from agentic_mesh.config import MeshSettings
from agentic_mesh.engine.invoker import Invoker
from agentic_mesh.engine.plan import ArgRef, PipelinePlan, ResolvedCall, StepResult
from agentic_mesh.errors import DependencyAbortedError, MissingArgumentError, QueryTimeoutError
from agentic_mesh.identifiers import find_identifier, identifier_kind

logger = logging.getLogger(__name__)


class PipelineState(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    ABORTED = "aborted"
    COMPLETED = "completed"


@dataclass(frozen=True)
class PipelineOutcome:
    """Result of one pipeline run.

    Fields:
        plan:        The plan that was executed.
        state:       COMPLETED or ABORTED.
        trace:       StepResults ordered by step index.
        error:       First failure envelope (or the timeout), None on success.
        failed_step: Index of the first failed step, None when none failed.
        not_run:     Steps that never started (fail-fast abort or timeout).
        history:     State transitions, e.g. [("pending", None), ("running", 0), ...].
    """

    plan: PipelinePlan
    state: PipelineState
    trace: tuple[StepResult, ...]
    error: dict[str, Any] | None = None
    failed_step: int | None = None
    not_run: tuple[int, ...] = ()
    history: tuple[tuple[str, int | None], ...] = field(default_factory=tuple)

    @property
    def status(self) -> str:
        if self.state is PipelineState.ABORTED:
            return "aborted"
        if all(r.ok for r in self.trace):
            return "success"
        return "partial"

    def sections(self) -> list[dict[str, str]]:
        """Human-readable sections in step order."""
        return [
            {"step_label": f"Step {r.index + 1}: {r.operation}", "text": r.text()}
            for r in self.trace
        ]

    def text(self) -> str:
        return "\n\n".join(f"{s['step_label']}\n{s['text']}" for s in self.sections())

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "state": self.state.value,
            "trace": [r.to_dict() for r in self.trace],
            "error": self.error,
            "failed_step": self.failed_step,
            "not_run": list(self.not_run),
        }


# ---------------------------------------------------------------------------
# Dependency value extraction
# ---------------------------------------------------------------------------


def extract_field(upstream: StepResult, upstream_call: ResolvedCall, ref: ArgRef) -> Any:
    """Pull the value ref points at out of an upstream step.

    Lookup order:
      1. dotted path in a structured payload (key match ignores case and _)
      2. identifier of ref.kind inside a text payload
      3. the upstream step's own dispatched argument of that name / kind
    Returns None when nothing matches.
    """
    payload = upstream.raw_output

    if isinstance(payload, dict):
        value = _walk(payload, ref.field.split("."))
        if value is not None:
            return value

    if ref.kind:
        if isinstance(payload, str):
            value = find_identifier(payload, ref.kind)
            if value:
                return value
        elif isinstance(payload, (dict, list)):
            value = find_identifier(_flatten_text(payload), ref.kind)
            if value:
                return value

    if ref.field in upstream.arguments:
        return upstream.arguments[ref.field]
    if ref.kind:
        for spec in upstream_call.operation.parameters:
            if identifier_kind(spec.name) == ref.kind and spec.name in upstream.arguments:
                return upstream.arguments[spec.name]
    return None


def _walk(node: Any, path: list[str]) -> Any:
    for key in path:
        if isinstance(node, dict):
            if key in node:
                node = node[key]
                continue
            wanted = compact(key)
            for k, v in node.items():
                if compact(str(k)) == wanted:
                    node = v
                    break
            else:
                return None
        elif isinstance(node, list) and key.isdigit() and int(key) < len(node):
            node = node[int(key)]
        else:
            return None
    return node


def _flatten_text(node: Any) -> str:
    if isinstance(node, dict):
        return " ".join(_flatten_text(v) for v in node.values())
    if isinstance(node, list):
        return " ".join(_flatten_text(v) for v in node)
    return str(node)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class PipelineEngine:
    """Runs PipelinePlans through an Invoker."""

    def __init__(self, invoker: Invoker, settings: MeshSettings | None = None) -> None:
        self._invoker = invoker
        self._settings = settings or invoker.settings

    async def run(self, plan: PipelinePlan, timeout: float | None = None) -> PipelineOutcome:
        timeout = self._settings.query_timeout if timeout is None else timeout
        limit = self._settings.max_concurrency
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        results: dict[int, StepResult] = {}
        history: list[tuple[str, int | None]] = [(PipelineState.PENDING.value, None)]
        pending: list[int] = list(range(len(plan.steps)))
        running: dict[asyncio.Task, int] = {}
        first_failure: StepResult | None = None
        halted = False

        try:
            while pending or running:
                if not halted:
                    for index in list(pending):
                        if len(running) >= limit:
                            break
                        deps = plan.steps[index].dependencies
                        if any(d not in results for d in deps):
                            continue
                        pending.remove(index)
                        failed = [d for d in deps if not results[d].ok]
                        if failed:
                            results[index] = self._skip(plan, index, failed[0])
                            continue
                        history.append((PipelineState.RUNNING.value, index))
                        task = asyncio.create_task(
                            self._run_step(plan, index, results),
                            name=f"mesh-step-{index}",
                        )
                        running[task] = index

                if not running:
                    break

                remaining = deadline - loop.time()
                done: set[asyncio.Task] = set()
                if remaining > 0:
                    done, _ = await asyncio.wait(
                        running, timeout=remaining, return_when=asyncio.FIRST_COMPLETED,
                    )
                if not done:
                    unfinished = sorted(pending + list(running.values()))
                    await _cancel_all(running)
                    running.clear()
                    logger.warning(
                        "Pipeline timed out after %gs; abandoning steps %s", timeout, unfinished,
                    )
                    history.append((PipelineState.ABORTED.value, None))
                    return PipelineOutcome(
                        plan=plan,
                        state=PipelineState.ABORTED,
                        trace=_ordered(results),
                        error=QueryTimeoutError(timeout, unfinished).to_dict(),
                        failed_step=first_failure.index if first_failure else None,
                        not_run=tuple(unfinished),
                        history=tuple(history),
                    )

                for task in sorted(done, key=lambda t: running[t]):
                    index = running.pop(task)
                    result = task.result()
                    results[index] = result
                    if not result.ok:
                        if first_failure is None or index < first_failure.index:
                            first_failure = result
                        if not plan.continue_on_error and not halted:
                            halted = True
                            logger.warning(
                                "Step %d (%s) failed; aborting remaining steps %s",
                                index, result.operation, pending,
                            )
        finally:
            if running:
                await _cancel_all(running)

        if halted:
            history.append((PipelineState.ABORTED.value, None))
            return PipelineOutcome(
                plan=plan,
                state=PipelineState.ABORTED,
                trace=_ordered(results),
                error=first_failure.error if first_failure else None,
                failed_step=first_failure.index if first_failure else None,
                not_run=tuple(pending),
                history=tuple(history),
            )

        history.append((PipelineState.COMPLETED.value, None))
        failures = [r for r in _ordered(results) if not r.ok]
        return PipelineOutcome(
            plan=plan,
            state=PipelineState.COMPLETED,
            trace=_ordered(results),
            error=failures[0].error if failures else None,
            failed_step=failures[0].index if failures else None,
            history=tuple(history),
        )

    async def _run_step(self, plan: PipelinePlan, index: int, results: dict[int, StepResult]) -> StepResult:
        call = plan.steps[index]
        resolved: dict[str, Any] = {}
        for name, value in call.arguments.items():
            if not isinstance(value, ArgRef):
                continue
            extracted = extract_field(results[value.step], plan.steps[value.step], value)
            if extracted is None:
                error = MissingArgumentError(
                    name,
                    call.operation.ref,
                    clause=call.clause or None,
                    step=index,
                    reason=f"step {value.step} produced no {value.field!r}",
                )
                logger.info("Step %d (%s): %s", index, call.operation.ref, error.message)
                return StepResult.failure(index, call.operation.ref, error.to_dict())
            resolved[name] = extracted
        logger.debug("Step %d (%s) dispatching", index, call.operation.ref)
        return await self._invoker.invoke(call, resolved, index=index)

    @staticmethod
    def _skip(plan: PipelinePlan, index: int, upstream: int) -> StepResult:
        error = DependencyAbortedError(index, upstream)
        logger.info("%s", error.message)
        return StepResult.failure(index, plan.steps[index].operation.ref, error.to_dict())


def _ordered(results: dict[int, StepResult]) -> tuple[StepResult, ...]:
    return tuple(results[i] for i in sorted(results))


async def _cancel_all(running: dict[asyncio.Task, int]) -> None:
    for task in running:
        task.cancel()
    await asyncio.gather(*running, return_exceptions=True)
