"""Per-query timing and counters.

QueryMetrics     — snapshot of one query's counters + duration.
MetricsCollector — async context manager; call .result / .to_dict() after exit.

Usage::

    async with MetricsCollector("pipeline") as m:
        outcome = await engine.run(plan)
        m.record(outcome.trace)
    metrics = m.to_dict()   # JSON-serialisable dict for the query result
"""

from __future__ import annotations

import dataclasses
import time
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from agentic_mesh.engine.plan import StepResult


@dataclasses.dataclass
class QueryMetrics:
    """Timing and counter snapshot for one query.

    Fields
    ------
    mode:          "single" (direct invoker call) or "pipeline".
    start_ts:      Unix timestamp at query start (time.time()).
    end_ts:        Unix timestamp at query end.
    duration_ms:   (end_ts - start_ts) * 1000.
    steps_planned: Steps in the resolved plan.
    steps_run:     Steps that produced a StepResult.
    steps_failed:  StepResults with status FAILED (including skipped dependents).
    retries:       Transport retries across all steps (attempts beyond the first).
    """

    mode: str
    start_ts: float
    end_ts: float
    duration_ms: float
    steps_planned: int = 0
    steps_run: int = 0
    steps_failed: int = 0
    retries: int = 0


class MetricsCollector:
    """Async context manager that records per-query timing and counters."""

    def __init__(self, mode: str) -> None:
        self.mode = mode
        self.steps_planned: int = 0
        self.steps_run: int = 0
        self.steps_failed: int = 0
        self.retries: int = 0
        self._start_ts: float = 0.0
        self._result: QueryMetrics | None = None

    async def __aenter__(self) -> MetricsCollector:
        self._start_ts = time.time()
        return self

    async def __aexit__(self, *_args: object) -> None:
        end_ts = time.time()
        self._result = QueryMetrics(
            mode=self.mode,
            start_ts=self._start_ts,
            end_ts=end_ts,
            duration_ms=(end_ts - self._start_ts) * 1000,
            steps_planned=self.steps_planned,
            steps_run=self.steps_run,
            steps_failed=self.steps_failed,
            retries=self.retries,
        )

    def record(self, trace: Iterable[StepResult]) -> None:
        """Fold a trace into the counters."""
        for result in trace:
            self.steps_run += 1
            if not result.ok:
                self.steps_failed += 1
            self.retries += max(result.attempts - 1, 0)

    @property
    def result(self) -> QueryMetrics | None:
        """Finalized QueryMetrics after the context manager exits, else None."""
        return self._result

    def to_dict(self) -> dict[str, Any]:
        """Return the finalized QueryMetrics as a JSON-serialisable dict.

        Returns an empty dict if called before the context manager has exited.
        """
        return dataclasses.asdict(self._result) if self._result is not None else {}
