"""FastAPI dependencies for the shared geocoding and cache services.

The services are built once in the application lifespan and stored on
``app.state``; tests replace them through ``app.dependency_overrides``.
"""

from fastapi import Request

from locallens.lib.broker import RedisStreamBroker
from locallens.lib.cache import ResultStore
from locallens.services.geocoding_service import GeocodeOrchestrator
from locallens.services.spatial_cache import SpatialCache


def get_orchestrator(request: Request) -> GeocodeOrchestrator:
    """Return the application's geocode orchestrator."""
    return request.app.state.orchestrator


def get_spatial_cache(request: Request) -> SpatialCache:
    """Return the application's spatial cache."""
    return request.app.state.spatial_cache


def get_result_store(request: Request) -> ResultStore:
    """Return the application's Result Store."""
    return request.app.state.store


def get_broker(request: Request) -> RedisStreamBroker:
    """Return the application's job broker."""
    return request.app.state.broker
