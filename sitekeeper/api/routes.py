"""Health, readiness, status and metrics routes."""

from __future__ import annotations

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from sitekeeper.api.schemas import ErrorResponse, HealthResponse, StatusResponse

router = APIRouter()


@router.get("/healthz", response_model=HealthResponse)
async def healthz() -> HealthResponse:
    """Liveness: the event loop is serving requests."""
    return HealthResponse(status="ok")


@router.get("/readyz", response_model=HealthResponse, responses={503: {"model": ErrorResponse}})
async def readyz(request: Request) -> HealthResponse | JSONResponse:
    """Readiness: the event cache has completed its initial list."""
    controller = request.app.state.controller
    if controller is None or not controller.cache.has_synced():
        return JSONResponse(
            status_code=503,
            content=ErrorResponse(error="NOT_SYNCED", detail="event cache has not synced yet").model_dump(),
        )
    return HealthResponse(status="ready")


@router.get("/status", response_model=StatusResponse, responses={503: {"model": ErrorResponse}})
async def status(request: Request) -> StatusResponse | JSONResponse:
    from sitekeeper import __version__

    controller = request.app.state.controller
    if controller is None:
        return JSONResponse(
            status_code=503,
            content=ErrorResponse(error="NOT_STARTED", detail="controller has not been started").model_dump(),
        )
    target = request.app.state.target
    snapshot = controller.status()
    return StatusResponse(version=__version__, target=target, **snapshot)


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus exposition of the default registry."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
