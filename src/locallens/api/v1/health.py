"""Health endpoint reporting Result Store and broker reachability."""

from fastapi import APIRouter, Depends

from locallens.core.dependencies import get_broker, get_result_store
from locallens.lib.broker import RedisStreamBroker
from locallens.lib.cache import ResultStore
from locallens.schemas.geocoding import HealthResponse

health_router = APIRouter(tags=["health"])


@health_router.get("/health", response_model=HealthResponse)
async def health_check(
    store: ResultStore = Depends(get_result_store),  # noqa: B008
    broker: RedisStreamBroker = Depends(get_broker),  # noqa: B008
) -> HealthResponse:
    """Health check. Lookups still resolve directly when either backend is down, so this stays 200."""
    store_ok = await store.ping()
    broker_ok = await broker.is_available()
    return HealthResponse(
        status="healthy" if store_ok and broker_ok else "degraded",
        store=store_ok,
        broker=broker_ok,
    )
