"""Geocoding worker command."""

import asyncio
import signal

import typer
from loguru import logger


def worker(
    consumer: str | None = typer.Option(None, "--consumer", help="Consumer name (default: host-random)"),
) -> None:
    """Consume geocoding jobs until interrupted."""
    asyncio.run(_run_worker(consumer))


async def _run_worker(consumer: str | None) -> None:
    """Async implementation of the worker loop."""
    from locallens.core.config import get_settings
    from locallens.lib.broker import RedisStreamBroker
    from locallens.lib.cache import ResultStore
    from locallens.lib.geocoder import build_direct_geocoder
    from locallens.lib.redis_client import LazyRedisClient
    from locallens.services.geocoding_worker import GeocodeWorker

    settings = get_settings()
    geocoder = build_direct_geocoder(settings)
    if not geocoder.provider_names:
        typer.echo("No geocoding providers are configured.", err=True)
        raise typer.Exit(code=1)

    store = ResultStore(
        LazyRedisClient(settings.redis_url, socket_timeout=settings.store_socket_timeout),
        op_timeout=settings.store_socket_timeout,
    )
    # Blocking reads need a socket timeout longer than the block
    broker = RedisStreamBroker(
        LazyRedisClient(settings.effective_broker_url, socket_timeout=settings.worker_block_ms / 1000 + 5),
        stream=settings.broker_stream,
        group=settings.broker_group,
        maxlen=settings.broker_stream_maxlen,
        probe_timeout=settings.broker_probe_timeout,
    )
    geocode_worker = GeocodeWorker.from_settings(settings, broker, store, geocoder, consumer=consumer)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    logger.info(f"Providers: {', '.join(geocoder.provider_names)}")
    try:
        await geocode_worker.run(stop)
    finally:
        await broker.close()
        await store.close()
    typer.echo(f"Worker stopped after {geocode_worker.processed} job(s)")
