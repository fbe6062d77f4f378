"""Cache invalidation CLI commands."""

import asyncio

import typer

from locallens.lib.cache import ResultStore
from locallens.lib.geocoder import GeocodeKind
from locallens.services.spatial_cache import SpatialNamespace

cache_app = typer.Typer()


@cache_app.command("invalidate-spatial")
def invalidate_spatial(
    namespace: SpatialNamespace = typer.Argument(..., help="incidents or events"),  # noqa: B008
) -> None:
    """Drop every cached bounding-box query in a namespace."""
    asyncio.run(_invalidate_spatial(namespace))


@cache_app.command("invalidate-lookup")
def invalidate_lookup(
    kind: GeocodeKind = typer.Argument(..., help="coords, city, reverse or reverse-address"),  # noqa: B008
    pincode: str | None = typer.Option(None, "--pincode", help="US ZIP code"),
    lat: float | None = typer.Option(None, "--lat", help="Latitude"),
    lng: float | None = typer.Option(None, "--lng", help="Longitude"),
) -> None:
    """Drop the cached result of one geocoding lookup."""
    asyncio.run(_invalidate_lookup(kind, {"pincode": pincode, "lat": lat, "lng": lng}))


def _store() -> ResultStore:
    from locallens.core.config import get_settings
    from locallens.lib.redis_client import LazyRedisClient

    settings = get_settings()
    return ResultStore(LazyRedisClient(settings.redis_url, socket_timeout=settings.store_socket_timeout))


async def _invalidate_spatial(namespace: SpatialNamespace) -> None:
    """Async implementation of namespace invalidation."""
    from locallens.core.background import BestEffortRunner
    from locallens.services.spatial_cache import SpatialCache

    store = _store()
    try:
        deleted = await SpatialCache(store, BestEffortRunner()).invalidate_namespace(namespace.value)
    finally:
        await store.close()
    typer.echo(f"Deleted {deleted} cached {namespace.value} quer{'y' if deleted == 1 else 'ies'}")


async def _invalidate_lookup(kind: GeocodeKind, params: dict) -> None:
    """Async implementation of lookup invalidation."""
    from locallens.lib.geocoder import InvalidInputError, build_key, normalize_query
    from locallens.lib.geocoder.keys import geocode_cache_key, inflight_key

    try:
        query = normalize_query(kind, params)
    except InvalidInputError as e:
        typer.echo(f"Invalid input: {e}", err=True)
        raise typer.Exit(code=2) from e

    store = _store()
    try:
        deleted = await store.delete(geocode_cache_key(kind, query), inflight_key(kind, query))
    finally:
        await store.close()

    if deleted is None:
        typer.echo("Result store unavailable", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Invalidated {build_key(kind, query)} ({deleted} key(s) removed)")
