"""Geocoding API endpoints: pincode/coordinate lookups and job status."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from loguru import logger

from locallens.core.dependencies import get_orchestrator
from locallens.lib.geocoder import GeocodeKind, InvalidInputError, JobStatus, normalize_query
from locallens.lib.geocoder.base import GeocodeNotFoundError, GeocodingProviderError
from locallens.schemas.geocoding import GeocodeJobAccepted, GeocodeJobStatusResponse, GeocodeResponse
from locallens.services.geocoding_service import GeocodeOrchestrator, ResolutionSource

geocoding_router = APIRouter(prefix="/geocoding", tags=["geocoding"])

_NOT_FOUND_DETAIL = {
    GeocodeKind.COORDS: "No coordinates found for this pincode",
    GeocodeKind.CITY: "No city found for this pincode",
    GeocodeKind.REVERSE: "No pincode found for these coordinates",
    GeocodeKind.REVERSE_ADDRESS: "No address found for these coordinates",
}


async def _lookup(
    kind: GeocodeKind,
    params: dict[str, Any],
    *,
    queue: bool,
    defer: bool,
    request: Request,
    response: Response,
    orchestrator: GeocodeOrchestrator,
) -> GeocodeResponse | GeocodeJobAccepted:
    """Validate, resolve and map errors for one lookup endpoint."""
    try:
        query = normalize_query(kind, params)
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    try:
        if defer and queue:
            descriptor = await orchestrator.start(kind, query)
            if descriptor.status == JobStatus.COMPLETED and descriptor.result is not None:
                return GeocodeResponse(
                    kind=kind.value,
                    result=descriptor.result,
                    source=(descriptor.source or ResolutionSource.WORKER).value,
                    cached=descriptor.cached,
                    job_id=descriptor.job_id,
                )
            response.status_code = status.HTTP_202_ACCEPTED
            return GeocodeJobAccepted(
                job_id=descriptor.job_id,
                status=descriptor.status.value,
                status_url=str(request.url_for("get_geocoding_job_status", job_id=descriptor.job_id).path),
            )

        resolution = await orchestrator.resolve(kind, query, use_async=queue)
    except GeocodeNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND_DETAIL[kind]) from e
    except GeocodingProviderError as e:
        logger.warning(f"Geocoding {kind} failed on every provider: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Geocoding service is temporarily unavailable. Please try again later.",
        ) from e

    return GeocodeResponse(
        kind=kind.value,
        result=resolution.result,
        source=resolution.source.value,
        cached=resolution.cached,
        job_id=resolution.job_id,
    )


@geocoding_router.get("/coords", response_model=GeocodeResponse | GeocodeJobAccepted)
async def pincode_to_coords(
    request: Request,
    response: Response,
    pincode: str | None = Query(None, description="US ZIP code (12345 or 12345-6789)"),  # noqa: B008
    queue: bool = Query(True, description="Use the worker queue before calling providers directly"),  # noqa: B008
    defer: bool = Query(False, description="Return 202 with a job id instead of waiting"),  # noqa: B008
    orchestrator: GeocodeOrchestrator = Depends(get_orchestrator),  # noqa: B008
) -> GeocodeResponse | GeocodeJobAccepted:
    """Resolve a pincode to coordinates."""
    return await _lookup(
        GeocodeKind.COORDS,
        {"pincode": pincode},
        queue=queue,
        defer=defer,
        request=request,
        response=response,
        orchestrator=orchestrator,
    )


@geocoding_router.get("/city", response_model=GeocodeResponse | GeocodeJobAccepted)
async def pincode_to_city(
    request: Request,
    response: Response,
    pincode: str | None = Query(None, description="US ZIP code (12345 or 12345-6789)"),  # noqa: B008
    queue: bool = Query(True, description="Use the worker queue before calling providers directly"),  # noqa: B008
    defer: bool = Query(False, description="Return 202 with a job id instead of waiting"),  # noqa: B008
    orchestrator: GeocodeOrchestrator = Depends(get_orchestrator),  # noqa: B008
) -> GeocodeResponse | GeocodeJobAccepted:
    """Resolve a pincode to a city name."""
    return await _lookup(
        GeocodeKind.CITY,
        {"pincode": pincode},
        queue=queue,
        defer=defer,
        request=request,
        response=response,
        orchestrator=orchestrator,
    )


@geocoding_router.get("/reverse", response_model=GeocodeResponse | GeocodeJobAccepted)
async def coords_to_pincode(
    request: Request,
    response: Response,
    lat: str | None = Query(None, description="WGS84 latitude"),  # noqa: B008
    lng: str | None = Query(None, description="WGS84 longitude"),  # noqa: B008
    queue: bool = Query(True, description="Use the worker queue before calling providers directly"),  # noqa: B008
    defer: bool = Query(False, description="Return 202 with a job id instead of waiting"),  # noqa: B008
    orchestrator: GeocodeOrchestrator = Depends(get_orchestrator),  # noqa: B008
) -> GeocodeResponse | GeocodeJobAccepted:
    """Resolve coordinates to a 5-digit pincode."""
    return await _lookup(
        GeocodeKind.REVERSE,
        {"lat": lat, "lng": lng},
        queue=queue,
        defer=defer,
        request=request,
        response=response,
        orchestrator=orchestrator,
    )


@geocoding_router.get("/reverse-address", response_model=GeocodeResponse | GeocodeJobAccepted)
async def coords_to_address(
    request: Request,
    response: Response,
    lat: str | None = Query(None, description="WGS84 latitude"),  # noqa: B008
    lng: str | None = Query(None, description="WGS84 longitude"),  # noqa: B008
    queue: bool = Query(True, description="Use the worker queue before calling providers directly"),  # noqa: B008
    defer: bool = Query(False, description="Return 202 with a job id instead of waiting"),  # noqa: B008
    orchestrator: GeocodeOrchestrator = Depends(get_orchestrator),  # noqa: B008
) -> GeocodeResponse | GeocodeJobAccepted:
    """Resolve coordinates to a formatted address."""
    return await _lookup(
        GeocodeKind.REVERSE_ADDRESS,
        {"lat": lat, "lng": lng},
        queue=queue,
        defer=defer,
        request=request,
        response=response,
        orchestrator=orchestrator,
    )


@geocoding_router.get(
    "/status/{job_id}",
    response_model=GeocodeJobStatusResponse,
    name="get_geocoding_job_status",
)
async def get_job_status(
    job_id: str,
    orchestrator: GeocodeOrchestrator = Depends(get_orchestrator),  # noqa: B008
) -> GeocodeJobStatusResponse:
    """Get the status of a geocoding job."""
    job = await orchestrator.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found or expired")

    return GeocodeJobStatusResponse(
        job_id=job.job_id,
        kind=job.kind.value,
        status=job.status.value,
        cached=job.cached,
        result=job.result,
        error=job.error,
        created_at=job.created_at,
        completed_at=job.completed_at,
    )
