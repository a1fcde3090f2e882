"""FastAPI app that serves one OperationRegistry over the mesh wire protocol.

    GET  /operations  -> registry.describe()
    POST /invoke      -> {"status": "ok"|"error", "payload": ..., "errorMessage": ...}
    GET  /health      -> liveness plus operation count

Run one with uvicorn:

    app = create_service_app(registry)
    uvicorn.run(app, host="127.0.0.1", port=8871)
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI
from pydantic import BaseModel, Field

from agentic_mesh.service.registry import OperationRegistry

logger = logging.getLogger(__name__)


class InvokeRequest(BaseModel):
    """Request body for POST /invoke."""

    operationName: str = Field(..., description="Operation to run.", examples=["scheduleAppointment"])
    arguments: dict[str, Any] = Field(default_factory=dict, description="Argument values by parameter name.")


class InvokeResponse(BaseModel):
    status: str = Field(..., description="'ok' or 'error'.")
    payload: Any = Field(None, description="Operation result (text or structured).")
    errorMessage: str | None = Field(None, description="Present when status is 'error'.")


def create_service_app(registry: OperationRegistry, title: str | None = None) -> FastAPI:
    """Build a FastAPI app exposing registry's operations."""
    app = FastAPI(
        title=title or f"{registry.service or 'Domain'} service",
        description="Domain service speaking the mesh discovery and invocation protocol.",
        version="0.1.0",
    )
    app.state.registry = registry

    @app.get("/operations", tags=["mesh"])
    async def list_operations() -> dict:
        return registry.describe()

    @app.post("/invoke", response_model=InvokeResponse, tags=["mesh"])
    async def invoke(body: InvokeRequest) -> dict:
        logger.debug("Invoke %s (args: %s)", body.operationName, sorted(body.arguments))
        return await registry.call(body.operationName, body.arguments)

    @app.get("/health", tags=["system"])
    async def health() -> dict:
        return {"status": "ok", "service": registry.service, "operations": len(registry)}

    return app
