"""Response models for the health API."""

from __future__ import annotations

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Liveness / readiness probe body."""

    status: str


class StatusResponse(BaseModel):
    """Controller snapshot returned by ``GET /status``."""

    version: str
    target: str
    running: bool
    synced: bool
    cached_objects: int
    queue_depth: int
    in_flight: int
    pending_retries: int
    workers: int


class ErrorResponse(BaseModel):
    """Uniform error envelope."""

    error: str
    detail: str
