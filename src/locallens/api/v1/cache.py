"""Cache invalidation endpoints for spatial queries and geocoding lookups."""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from locallens.core.dependencies import get_orchestrator, get_spatial_cache
from locallens.lib.geocoder import GeocodeKind, InvalidInputError, build_key, normalize_query
from locallens.schemas.geocoding import CacheInvalidationResponse
from locallens.services.geocoding_service import GeocodeOrchestrator
from locallens.services.spatial_cache import SpatialCache, SpatialNamespace

cache_router = APIRouter(prefix="/cache", tags=["cache"])


@cache_router.delete("/spatial/{namespace}", response_model=CacheInvalidationResponse)
async def invalidate_spatial_namespace(
    namespace: SpatialNamespace,
    spatial_cache: SpatialCache = Depends(get_spatial_cache),  # noqa: B008
) -> CacheInvalidationResponse:
    """Drop every cached bounding-box query for incidents or events."""
    deleted = await spatial_cache.invalidate_namespace(namespace.value)
    return CacheInvalidationResponse(target=f"{namespace.value}:query:*", deleted=deleted)


@cache_router.delete("/geocoding/{kind}", response_model=CacheInvalidationResponse)
async def invalidate_geocoding_lookup(
    kind: GeocodeKind,
    pincode: str | None = Query(None, description="Pincode for coords/city lookups"),  # noqa: B008
    lat: str | None = Query(None, description="Latitude for reverse lookups"),  # noqa: B008
    lng: str | None = Query(None, description="Longitude for reverse lookups"),  # noqa: B008
    orchestrator: GeocodeOrchestrator = Depends(get_orchestrator),  # noqa: B008
) -> CacheInvalidationResponse:
    """Drop the cached result of one geocoding lookup."""
    try:
        query = normalize_query(kind, {"pincode": pincode, "lat": lat, "lng": lng})
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    deleted = await orchestrator.invalidate(kind, query)
    return CacheInvalidationResponse(target=build_key(kind, query), deleted=deleted or 0)
