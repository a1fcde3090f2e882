"""Mesh facade — one query interface over every registered domain service.

    mesh = await Mesh.connect(MeshSettings())
    result = await mesh.process_query("Show upcoming appointments for patient PT-12345")
    result = await mesh.pipeline_mesh(
        "Get medical history for patient PT-12345, then generate invoice for $150 office visit"
    )

process_query   resolve, then dispatch a single-step plan straight to the
                Invoker; longer plans go through the PipelineEngine.
pipeline_mesh   resolve, then always run the PipelineEngine so every query
                gets the same state-machine trace.

Each query captures one CatalogSnapshot and resolves against it, so a
refresh that lands mid-query is not observed. Resolution failures are
returned as an AggregatedResult with status "failed", never raised.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

import httpx

from agentic_mesh.catalog import CapabilityCatalog, CatalogSnapshot
from agentic_mesh.client import ServiceClient
from agentic_mesh.config import MeshSettings
from agentic_mesh.engine import (
    Invoker,
    MetricsCollector,
    PipelineEngine,
    PipelinePlan,
    StepResult,
)
from agentic_mesh.errors import MeshError, QueryTimeoutError
from agentic_mesh.resolver import IntentResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregatedResult:
    """What a mesh query returns.

    status is one of "success", "partial" (continue mode with failures),
    "aborted" (fail-fast or timeout) or "failed" (nothing was executed
    because the request could not be resolved).
    """

    status: str
    mode: str
    trace: tuple[StepResult, ...] = ()
    error: dict[str, Any] | None = None
    plan: PipelinePlan | None = None
    metrics: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "success"

    def sections(self) -> list[dict[str, str]]:
        return [
            {"step_label": f"Step {r.index + 1}: {r.operation}", "text": r.text()}
            for r in self.trace
        ]

    def text(self) -> str:
        parts = [f"{s['step_label']}\n{s['text']}" for s in self.sections()]
        if self.error and not self.trace:
            parts.append(f"ERROR ({self.error.get('type')}): {self.error.get('message')}")
        return "\n\n".join(parts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "mode": self.mode,
            "sections": self.sections(),
            "trace": [r.to_dict() for r in self.trace],
            "error": self.error,
            "plan": self.plan.to_dict() if self.plan else None,
            "metrics": self.metrics,
        }


class Mesh:
    """Composes resolver, invoker and pipeline engine over one catalog."""

    def __init__(
        self,
        catalog: CapabilityCatalog,
        invoker: Invoker,
        settings: MeshSettings | None = None,
    ) -> None:
        self.catalog = catalog
        self.settings = settings or invoker.settings
        self.invoker = invoker
        self.resolver = IntentResolver(catalog, min_confidence=self.settings.min_confidence)
        self.engine = PipelineEngine(invoker, self.settings)
        self._client: ServiceClient | None = None

    @classmethod
    async def connect(
        cls,
        settings: MeshSettings | None = None,
        services: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> Mesh:
        """Build a mesh with its own ServiceClient and register every service.

        services defaults to settings.service_map. Services that fail
        discovery are logged and left out; call aclose() when done.
        """
        settings = settings or MeshSettings()
        client = ServiceClient(settings, transport=transport)
        catalog = CapabilityCatalog(client)
        mesh = cls(catalog, Invoker(client, settings), settings)
        mesh._client = client
        await catalog.register_all(settings.service_map if services is None else services)
        return mesh

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def process_query(self, text: str, *, continue_on_error: bool | None = None) -> AggregatedResult:
        """Resolve and execute text; single-step plans skip the engine."""
        async with MetricsCollector("single") as m:
            plan, error = self._resolve(text, continue_on_error)
            if plan is None:
                result = _failed(m.mode, error)
            else:
                m.steps_planned = len(plan)
                if len(plan) == 1:
                    result = await self._run_single(plan)
                else:
                    m.mode = "pipeline"
                    result = await self._run_pipeline(plan)
                m.record(result.trace)
        return replace(result, metrics=m.to_dict())

    async def pipeline_mesh(self, text: str, *, continue_on_error: bool | None = None) -> AggregatedResult:
        """Resolve and execute text, always through the PipelineEngine."""
        async with MetricsCollector("pipeline") as m:
            plan, error = self._resolve(text, continue_on_error)
            if plan is None:
                result = _failed(m.mode, error)
            else:
                m.steps_planned = len(plan)
                result = await self._run_pipeline(plan)
                m.record(result.trace)
        return replace(result, metrics=m.to_dict())

    async def run_plan(self, plan: PipelinePlan) -> AggregatedResult:
        """Execute an already-built plan (e.g. from resolve_structured)."""
        async with MetricsCollector("pipeline") as m:
            m.steps_planned = len(plan)
            result = await self._run_pipeline(plan)
            m.record(result.trace)
        return replace(result, metrics=m.to_dict())

    def resolve(self, text: str, *, continue_on_error: bool | None = None) -> PipelinePlan:
        """Resolve text without executing it. Raises resolution errors."""
        return self.resolver.resolve(
            text, snapshot=self.catalog.snapshot(), continue_on_error=self._continue(continue_on_error),
        )

    def draft(self, text: str, *, continue_on_error: bool | None = None) -> PipelinePlan:
        """Resolve text, keeping unbound required parameters as placeholders."""
        return self.resolver.draft(
            text, snapshot=self.catalog.snapshot(), continue_on_error=self._continue(continue_on_error),
        )

    def structured(
        self,
        request: Mapping[str, Any] | Sequence[Mapping[str, Any]],
        *,
        continue_on_error: bool | None = None,
    ) -> PipelinePlan:
        """Build a plan from explicit steps. Raises resolution errors."""
        if continue_on_error is None and not (isinstance(request, Mapping) and "continue_on_error" in request):
            continue_on_error = self.settings.continue_on_error
        return self.resolver.resolve_structured(
            request, snapshot=self.catalog.snapshot(), continue_on_error=continue_on_error,
        )

    def snapshot(self) -> CatalogSnapshot:
        return self.catalog.snapshot()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _continue(self, flag: bool | None) -> bool:
        return self.settings.continue_on_error if flag is None else flag

    def _resolve(self, text: str, flag: bool | None) -> tuple[PipelinePlan | None, dict[str, Any] | None]:
        try:
            return self.resolve(text, continue_on_error=flag), None
        except MeshError as e:
            logger.info("Query not resolved: %s", e.message)
            return None, e.to_dict()

    async def _run_single(self, plan: PipelinePlan) -> AggregatedResult:
        timeout = self.settings.query_timeout
        try:
            step = await asyncio.wait_for(self.invoker.invoke(plan.steps[0]), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Query timed out after %gs", timeout)
            return AggregatedResult(
                status="aborted",
                mode="single",
                error=QueryTimeoutError(timeout, [0]).to_dict(),
                plan=plan,
            )
        if step.ok:
            status = "success"
        else:
            status = "partial" if plan.continue_on_error else "aborted"
        return AggregatedResult(status=status, mode="single", trace=(step,), error=step.error, plan=plan)

    async def _run_pipeline(self, plan: PipelinePlan) -> AggregatedResult:
        outcome = await self.engine.run(plan)
        return AggregatedResult(
            status=outcome.status,
            mode="pipeline",
            trace=outcome.trace,
            error=outcome.error,
            plan=plan,
        )


def _failed(mode: str, error: dict[str, Any] | None) -> AggregatedResult:
    return AggregatedResult(status="failed", mode=mode, error=error)
