"""Geocoding CLI commands for one-off lookups."""

import asyncio
import json

import typer

from locallens.lib.geocoder import GeocodeKind

geocode_app = typer.Typer()


@geocode_app.command("lookup")
def lookup(
    kind: GeocodeKind = typer.Argument(..., help="coords, city, reverse or reverse-address"),  # noqa: B008
    pincode: str | None = typer.Option(None, "--pincode", help="US ZIP code"),
    lat: float | None = typer.Option(None, "--lat", help="Latitude (-90 to 90)"),
    lng: float | None = typer.Option(None, "--lng", help="Longitude (-180 to 180)"),
    direct: bool = typer.Option(False, "--direct", help="Call providers directly, skipping cache and queue"),
) -> None:
    """Resolve one lookup and print the result as JSON."""
    asyncio.run(_lookup(kind, {"pincode": pincode, "lat": lat, "lng": lng}, direct))


@geocode_app.command("status")
def job_status(job_id: str = typer.Argument(..., help="Job id")) -> None:  # noqa: B008
    """Show a geocoding job record."""
    asyncio.run(_job_status(job_id))


@geocode_app.command("providers")
def list_providers() -> None:
    """List configured providers in fallback order."""
    from locallens.core.config import get_settings
    from locallens.lib.geocoder import get_available_providers, get_configured_providers

    configured = [p.provider_name for p in get_configured_providers(get_settings())]
    for name in get_available_providers():
        marker = f"#{configured.index(name) + 1}" if name in configured else "not configured"
        typer.echo(f"{name:<12} {marker}")


async def _lookup(kind: GeocodeKind, params: dict, direct: bool) -> None:
    """Async implementation of a single lookup."""
    from locallens.core.background import BestEffortRunner
    from locallens.core.config import get_settings
    from locallens.lib.broker import RedisStreamBroker
    from locallens.lib.cache import ResultStore
    from locallens.lib.geocoder import InvalidInputError, build_direct_geocoder, normalize_query
    from locallens.lib.geocoder.base import GeocodeNotFoundError, GeocodingProviderError
    from locallens.lib.redis_client import LazyRedisClient
    from locallens.services.geocoding_service import build_orchestrator

    settings = get_settings()
    try:
        query = normalize_query(kind, params)
    except InvalidInputError as e:
        typer.echo(f"Invalid input: {e}", err=True)
        raise typer.Exit(code=2) from e

    store = ResultStore(LazyRedisClient(settings.redis_url, socket_timeout=settings.store_socket_timeout))
    broker = RedisStreamBroker(
        LazyRedisClient(settings.effective_broker_url, socket_timeout=settings.broker_probe_timeout),
        stream=settings.broker_stream,
        group=settings.broker_group,
        probe_timeout=settings.broker_probe_timeout,
    )
    runner = BestEffortRunner()
    try:
        if direct:
            result = await build_direct_geocoder(settings)(kind, query)
            source = "direct"
        else:
            resolution = await build_orchestrator(settings, store, broker, runner).resolve(kind, query)
            result, source = resolution.result, resolution.source.value
    except GeocodeNotFoundError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1) from e
    except GeocodingProviderError as e:
        typer.echo(f"Geocoding unavailable: {e}", err=True)
        raise typer.Exit(code=1) from e
    finally:
        await runner.drain(timeout=5.0)
        await broker.close()
        await store.close()

    typer.echo(json.dumps({"kind": kind.value, "source": source, "result": result}, indent=2))


async def _job_status(job_id: str) -> None:
    """Async implementation of job status lookup."""
    from locallens.core.config import get_settings
    from locallens.lib.cache import ResultStore
    from locallens.lib.redis_client import LazyRedisClient
    from locallens.services.geocoding_service import read_job

    settings = get_settings()
    store = ResultStore(LazyRedisClient(settings.redis_url, socket_timeout=settings.store_socket_timeout))
    try:
        job = await read_job(store, job_id)
    finally:
        await store.close()

    if job is None:
        typer.echo(f"Job {job_id} not found or expired", err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(job.to_dict(), indent=2))
