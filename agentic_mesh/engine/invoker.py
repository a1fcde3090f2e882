"""Invoker — one remote call with a bounded timeout and transient-only retries.

invoke() is the boundary where exceptions become data: every failure is
returned as a FAILED StepResult. The only exception that escapes is
asyncio.CancelledError, so a cancelled query stops waiting on the network.

Retry policy:
  TransientTransportError (connect refused, timeouts) -> retry up to
      settings.max_retries times, sleeping settings.backoff_delay(n) before
      retry n (0.5s, 1s, 2s, ... by default)
  ApplicationError / validation errors               -> no retry
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from agentic_mesh.config import MeshSettings
from agentic_mesh.engine.plan import ResolvedCall, StepResult, StepStatus
from agentic_mesh.errors import MeshError, TransientTransportError

if TYPE_CHECKING:
    from agentic_mesh.client import ServiceClient

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class Invoker:
    """Dispatches ResolvedCalls to their owning services.

    Args:
        client:   Transport with ``invoke(endpoint, operation_name, arguments)``.
        settings: Timeout and retry knobs.
        sleep:    Backoff sleeper; injectable so tests can record delays.
    """

    def __init__(
        self,
        client: ServiceClient,
        settings: MeshSettings | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._client = client
        self._settings = settings or MeshSettings()
        self._sleep = sleep

    @property
    def settings(self) -> MeshSettings:
        return self._settings

    async def invoke(
        self,
        call: ResolvedCall,
        resolved: dict[str, Any] | None = None,
        index: int = 0,
    ) -> StepResult:
        """Execute call and return its StepResult.

        resolved supplies concrete values for ArgRef arguments (the pipeline
        engine fills it in); single-shot calls pass nothing.
        """
        op = call.operation
        start = time.monotonic()

        try:
            arguments = call.bind(resolved)
        except MeshError as e:
            logger.info("Step %d (%s) not dispatched: %s", index, op.ref, e.message)
            return StepResult.failure(index, op.ref, e.to_dict())

        attempts = 0
        max_attempts = 1 + self._settings.max_retries
        while True:
            attempts += 1
            try:
                payload = await asyncio.wait_for(
                    self._client.invoke(op.endpoint, op.name, arguments),
                    timeout=self._settings.request_timeout,
                )
            except asyncio.TimeoutError:
                error: MeshError = TransientTransportError(
                    f"{op.ref} timed out after {self._settings.request_timeout:g}s",
                    detail={"endpoint": op.endpoint},
                )
            except TransientTransportError as e:
                error = e
            except MeshError as e:
                logger.info("Step %d (%s) failed: %s", index, op.ref, e.message)
                return StepResult.failure(
                    index, op.ref, e.to_dict(), arguments, attempts, _elapsed_ms(start),
                )
            except Exception as e:
                logger.warning("Step %d (%s) raised %s: %s", index, op.ref, type(e).__name__, e)
                return StepResult.failure(
                    index,
                    op.ref,
                    {"type": type(e).__name__, "message": str(e), "detail": None},
                    arguments,
                    attempts,
                    _elapsed_ms(start),
                )
            else:
                logger.debug("Step %d (%s) ok after %d attempt(s)", index, op.ref, attempts)
                return StepResult(
                    index=index,
                    operation=op.ref,
                    status=StepStatus.SUCCESS,
                    raw_output=payload,
                    arguments=arguments,
                    attempts=attempts,
                    duration_ms=_elapsed_ms(start),
                )

            if attempts >= max_attempts:
                logger.warning(
                    "Step %d (%s) giving up after %d attempt(s): %s",
                    index, op.ref, attempts, error.message,
                )
                return StepResult.failure(
                    index, op.ref, error.to_dict(), arguments, attempts, _elapsed_ms(start),
                )

            delay = self._settings.backoff_delay(attempts - 1)
            logger.warning(
                "Step %d (%s) attempt %d/%d failed (%s); retrying in %.2fs",
                index, op.ref, attempts, max_attempts, error.message, delay,
            )
            await self._sleep(delay)


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000
