"""Async transport for the two calls every domain service exposes, using httpx.

  GET  {base}/operations   -> list of operation descriptors
  POST {base}/invoke       -> {"status": "ok"|"error", "payload": ..., "errorMessage": ...}

Transport failures are classified here, once:
  connect errors and timeouts          -> TransientTransportError (retryable)
  HTTP status errors, status="error",
  undecodable bodies                   -> ApplicationError (never retried)
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from agentic_mesh.config import MeshSettings
from agentic_mesh.errors import ApplicationError, DiscoveryError, TransientTransportError

logger = logging.getLogger(__name__)

_TRANSIENT = (httpx.ConnectError, httpx.TimeoutException)


class ServiceClient:
    """Thin async wrapper around the service discovery and invocation calls."""

    def __init__(self, settings: MeshSettings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._client = httpx.AsyncClient(
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(settings.request_timeout, connect=settings.connect_timeout),
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def list_operations(self, service_id: str, endpoint: str) -> Any:
        """Fetch the raw operation list for one service.

        Returns the decoded JSON body unchanged; shape validation is the
        catalog's job. Any transport or HTTP failure becomes DiscoveryError.
        """
        url = f"{endpoint.rstrip('/')}/operations"
        try:
            r = await self._client.get(url)
            r.raise_for_status()
            return r.json()
        except httpx.HTTPStatusError as e:
            logger.error("GET %s -> %s", url, e.response.status_code)
            raise DiscoveryError(service_id, endpoint, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("GET %s failed: %s", url, e)
            raise DiscoveryError(service_id, endpoint, f"unreachable: {e}") from e
        except ValueError as e:
            raise DiscoveryError(service_id, endpoint, f"response is not JSON: {e}") from e

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    async def invoke(self, endpoint: str, operation_name: str, arguments: dict[str, Any]) -> Any:
        """Invoke one operation and return its payload.

        Raises TransientTransportError or ApplicationError; never returns an
        error payload.
        """
        url = f"{endpoint.rstrip('/')}/invoke"
        body = {"operationName": operation_name, "arguments": arguments}
        try:
            r = await self._client.post(url, json=body)
            r.raise_for_status()
        except _TRANSIENT as e:
            logger.warning("POST %s (%s) transient failure: %s", url, operation_name, e)
            raise TransientTransportError(
                f"{type(e).__name__} calling {operation_name}: {e}",
                detail={"endpoint": endpoint},
            ) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error("POST %s (%s) -> %s", url, operation_name, status)
            raise ApplicationError(
                f"HTTP {status} from {operation_name}",
                status_code=status,
                detail=e.response.text[:500],
            ) from e
        except httpx.HTTPError as e:
            logger.error("POST %s (%s) failed: %s", url, operation_name, e)
            raise ApplicationError(f"{type(e).__name__} calling {operation_name}: {e}") from e

        try:
            data = r.json()
        except ValueError as e:
            raise ApplicationError(
                f"{operation_name} returned a non-JSON body", detail=r.text[:500]
            ) from e
        return self._unwrap(operation_name, data)

    @staticmethod
    def _unwrap(operation_name: str, data: Any) -> Any:
        """Return the payload from an invocation envelope or raise ApplicationError."""
        if not isinstance(data, dict) or "status" not in data:
            raise ApplicationError(
                f"{operation_name} returned a malformed envelope", detail=data
            )
        status = str(data["status"]).lower()
        if status == "ok":
            return data.get("payload")
        if status == "error":
            raise ApplicationError(
                data.get("errorMessage") or f"{operation_name} failed",
                detail=data.get("payload"),
            )
        raise ApplicationError(
            f"{operation_name} returned unknown status {data['status']!r}", detail=data
        )
