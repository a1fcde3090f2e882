"""FastAPI front door for the capability mesh.

Query flows:

  POST /query       processQuery: single-step plans go straight to the
                    Invoker, multi-step plans through the PipelineEngine
  POST /pipeline    pipeLineMesh: always the PipelineEngine; accepts text or
                    an explicit list of steps
  POST /resolve     dry run: the plan that text resolves to, with any
                    unbound required parameters listed instead of raised

Catalog management:

  GET    /services                 registered services and their operations
  POST   /services                 register (discover) a service
  POST   /services/{id}/refresh    re-discover one service
  DELETE /services/{id}            remove a service
  GET    /health

An unresolvable request is a query result, not a transport failure: it comes
back as HTTP 200 with status "failed" and the error envelope. Unknown
services map to 404 and discovery failures to 502.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from agentic_mesh.config import MeshSettings
from agentic_mesh.errors import DiscoveryError, MeshError, UnknownServiceError
from agentic_mesh.mesh import AggregatedResult, Mesh

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan: build the mesh once at startup, close its client on shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Register every service in MESH_SERVICES, then serve."""
    from dotenv import load_dotenv

    load_dotenv()
    settings = MeshSettings()
    mesh = await Mesh.connect(settings)
    logger.info(
        "Starting agentic mesh | services: %s | operations: %d",
        ", ".join(mesh.snapshot().services) or "(none)",
        len(mesh.snapshot()),
    )
    app.state.mesh = mesh

    yield

    await mesh.aclose()
    logger.info("Shutting down agentic mesh")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

_rate_limit = os.getenv("MESH_RATE_LIMIT", MeshSettings.model_fields["rate_limit"].default)
limiter = Limiter(key_func=get_remote_address)

app = FastAPI(
    title="Agentic Mesh API",
    description=(
        "Routes natural-language requests to operations on independently hosted "
        "domain services, as a single call or a multi-step pipeline."
    ),
    version="0.1.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class QueryRequest(BaseModel):
    """Request body for POST /query and POST /resolve."""

    text: str = Field(
        ...,
        min_length=1,
        description="The request in plain language.",
        examples=["Show upcoming appointments for patient PT-12345"],
    )
    continue_on_error: bool | None = Field(
        None,
        description=(
            "Keep running independent steps after a failure instead of aborting. "
            "Defaults to MESH_CONTINUE_ON_ERROR."
        ),
    )


class PipelineRequest(BaseModel):
    """Request body for POST /pipeline. Give either text or steps."""

    text: str | None = Field(
        None,
        description="Multi-part request in plain language.",
        examples=["Get medical history for patient PT-12345, then generate invoice for $150 office visit"],
    )
    steps: list[dict[str, Any]] | None = Field(
        None,
        description=(
            "Explicit steps: [{operation, arguments}]. An argument "
            '{"$ref": {"step": 0, "field": "patientId"}} takes its value from an earlier step.'
        ),
    )
    continue_on_error: bool | None = Field(None, description="See POST /query.")


class RegisterServiceRequest(BaseModel):
    """Request body for POST /services."""

    service_id: str = Field(..., min_length=1, examples=["appointments"])
    endpoint: str = Field(..., min_length=1, examples=["http://localhost:8871"])


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def _get_mesh(request: Request) -> Mesh:
    return request.app.state.mesh


def _failed(mode: str, error: MeshError) -> dict:
    return AggregatedResult(status="failed", mode=mode, error=error.to_dict()).to_dict()


# ---------------------------------------------------------------------------
# Query endpoints
# ---------------------------------------------------------------------------


@app.post("/query", tags=["query"])
@limiter.limit(_rate_limit)
async def query(request: Request, body: QueryRequest) -> dict:
    """Resolve and execute a request (processQuery)."""
    mesh = _get_mesh(request)
    logger.info("Query: %r", body.text[:80])
    result = await mesh.process_query(body.text, continue_on_error=body.continue_on_error)
    return result.to_dict()


@app.post("/pipeline", tags=["query"])
@limiter.limit(_rate_limit)
async def pipeline(request: Request, body: PipelineRequest) -> dict:
    """Resolve and execute a request through the pipeline engine (pipeLineMesh)."""
    mesh = _get_mesh(request)
    if body.steps:
        try:
            plan = mesh.structured(body.steps, continue_on_error=body.continue_on_error)
        except MeshError as e:
            return _failed("pipeline", e)
        result = await mesh.run_plan(plan)
    elif body.text:
        logger.info("Pipeline: %r", body.text[:80])
        result = await mesh.pipeline_mesh(body.text, continue_on_error=body.continue_on_error)
    else:
        raise HTTPException(status_code=422, detail="Provide either 'text' or 'steps'.")
    return result.to_dict()


@app.post("/resolve", tags=["query"])
@limiter.limit(_rate_limit)
async def resolve(request: Request, body: QueryRequest) -> dict:
    """Show the plan a request resolves to without executing it.

    Unbound required parameters are listed under "missing" rather than
    raised, so a client can ask the user for them.
    """
    mesh = _get_mesh(request)
    try:
        plan = mesh.draft(body.text, continue_on_error=body.continue_on_error)
    except MeshError as e:
        return {"plan": None, "missing": [], "complete": False, "error": e.to_dict()}
    missing = [{"step": i, "parameter": name} for i, name in plan.missing()]
    return {"plan": plan.to_dict(), "missing": missing, "complete": not missing, "error": None}


# ---------------------------------------------------------------------------
# Catalog endpoints
# ---------------------------------------------------------------------------


@app.get("/services", tags=["catalog"])
async def list_services(request: Request) -> dict:
    """Registered services and their operations, in registration order."""
    return _get_mesh(request).catalog.describe()


@app.post("/services", tags=["catalog"])
async def register_service(request: Request, body: RegisterServiceRequest) -> dict:
    """Discover a service and add (or replace) it in the catalog."""
    mesh = _get_mesh(request)
    try:
        descriptor = await mesh.catalog.register(body.service_id, body.endpoint)
    except DiscoveryError as e:
        raise HTTPException(status_code=502, detail=e.to_dict())
    return descriptor.to_dict()


@app.post("/services/{service_id}/refresh", tags=["catalog"])
async def refresh_service(service_id: str, request: Request) -> dict:
    """Re-discover one service and swap its descriptor."""
    mesh = _get_mesh(request)
    try:
        descriptor = await mesh.catalog.refresh(service_id)
    except UnknownServiceError as e:
        raise HTTPException(status_code=404, detail=e.to_dict())
    except DiscoveryError as e:
        raise HTTPException(status_code=502, detail=e.to_dict())
    return descriptor.to_dict()


@app.delete("/services/{service_id}", tags=["catalog"])
async def delete_service(service_id: str, request: Request) -> dict:
    """Remove a service from the catalog. Queries already running are unaffected."""
    mesh = _get_mesh(request)
    try:
        await mesh.catalog.unregister(service_id)
    except UnknownServiceError as e:
        raise HTTPException(status_code=404, detail=e.to_dict())
    return {"deleted": True, "service_id": service_id}


@app.get("/health", tags=["system"])
async def health(request: Request) -> dict:
    snapshot = _get_mesh(request).snapshot()
    return {"api": "ok", "services": len(snapshot.services), "operations": len(snapshot)}


# ---------------------------------------------------------------------------
# Entry point (for uvicorn programmatic launch)
# ---------------------------------------------------------------------------


def serve(host: str = "127.0.0.1", port: int = 8000, reload: bool = False) -> None:
    """Launch the FastAPI server via uvicorn."""
    import uvicorn

    level = MeshSettings().log_level
    logging.basicConfig(level=level)
    uvicorn.run(
        "agentic_mesh.api:app",
        host=host,
        port=port,
        reload=reload,
        log_level=level.lower(),
    )


if __name__ == "__main__":
    serve()
