"""Pydantic v2 schemas for geocoding and cache endpoints."""

from typing import Any, Literal

from pydantic import BaseModel, Field


class GeocodeResponse(BaseModel):
    """Resolved lookup returned synchronously."""

    kind: str
    result: dict[str, Any]
    source: Literal["cache", "worker", "direct"]
    cached: bool = False
    job_id: str | None = None


class GeocodeJobAccepted(BaseModel):
    """Returned with 202 when the caller asked to poll the job itself."""

    job_id: str
    status: str
    status_url: str


class GeocodeJobStatusResponse(BaseModel):
    """Status of a geocoding job."""

    job_id: str
    kind: str
    status: Literal["queued", "processing", "completed", "failed"]
    cached: bool = False
    result: dict[str, Any] | None = None
    error: str | None = None
    created_at: int
    completed_at: int | None = None


class CacheInvalidationResponse(BaseModel):
    """Outcome of a cache invalidation request."""

    target: str
    deleted: int = Field(..., ge=0, description="Number of entries removed (0 when the store was unavailable)")


class HealthResponse(BaseModel):
    """Reachability of the backends behind the geocoding API."""

    status: str = Field(..., description="healthy, or degraded when a backend is unreachable")
    store: bool = Field(..., description="Result Store answered a PING")
    broker: bool = Field(..., description="Broker probe succeeded")
