"""FastAPI application factory.

Creates the FastAPI app with lifespan management of the shared Redis
clients, exception handlers, and OpenAPI metadata.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from locallens.core.background import BestEffortRunner
from locallens.core.config import get_settings
from locallens.core.logging import setup_logging
from locallens.lib.broker import RedisStreamBroker
from locallens.lib.cache import ResultStore
from locallens.lib.redis_client import LazyRedisClient
from locallens.services.geocoding_service import build_orchestrator
from locallens.services.spatial_cache import SpatialCache

SHUTDOWN_DRAIN_TIMEOUT = 5.0  # seconds


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Build the shared store, broker and services on startup; drain and close on shutdown."""
    settings = get_settings()
    setup_logging(settings.log_level, log_dir=settings.log_dir, json_logs=settings.log_json, component="api")

    store = ResultStore(
        LazyRedisClient(settings.redis_url, socket_timeout=settings.store_socket_timeout),
        op_timeout=settings.store_socket_timeout,
    )
    broker = RedisStreamBroker(
        LazyRedisClient(settings.effective_broker_url, socket_timeout=settings.broker_probe_timeout),
        stream=settings.broker_stream,
        group=settings.broker_group,
        maxlen=settings.broker_stream_maxlen,
        probe_timeout=settings.broker_probe_timeout,
        require_consumers=settings.broker_require_consumers,
    )
    runner = BestEffortRunner()

    app.state.store = store
    app.state.broker = broker
    app.state.runner = runner
    app.state.orchestrator = build_orchestrator(settings, store, broker, runner)
    app.state.spatial_cache = SpatialCache(store, runner)
    logger.info(f"LocalLens API started ({settings.environment})")

    yield

    await runner.drain(timeout=SHUTDOWN_DRAIN_TIMEOUT)
    await broker.close()
    await store.close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="LocalLens Geo API",
        description="Pincode and coordinate geocoding with a cache-first async job path",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Register exception handlers
    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": str(exc)},
        )

    # Register middleware and routers
    from locallens.api.router import create_router, setup_middleware

    setup_middleware(app, settings)
    app.include_router(create_router(settings))

    return app
