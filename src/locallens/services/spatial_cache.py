"""Staleness-aware cache for bounding-box queries (map incidents and events).

Entries carry their own ``cachedAt`` timestamp. The store TTL bounds how
long an entry can exist; the staleness budget, usually much shorter,
bounds how old an entry may be when it is served.
"""

import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from loguru import logger

from locallens.core.background import SideEffectRunner
from locallens.lib.cache import ResultStore
from locallens.lib.geocoder.keys import bounds_key

BOUNDS_DECIMALS = 2
DEFAULT_LIMIT = 100

ComputeFn = Callable[[], Awaitable[list[Any]]]


class SpatialNamespace(StrEnum):
    """Cached spatial collections. Each owns the ``{namespace}:query:*`` keys."""

    INCIDENTS = "incidents"
    EVENTS = "events"


@dataclass(frozen=True)
class Bounds:
    """A ``(min_lat, max_lat, min_lng, max_lng)`` rectangle."""

    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float


def normalize_bounds(bounds: Bounds) -> Bounds:
    """Round bounds to 2 decimals so nearby viewports share a cache entry."""
    values = (bounds.min_lat, bounds.max_lat, bounds.min_lng, bounds.max_lng)
    return Bounds(*(round(v, BOUNDS_DECIMALS) + 0.0 for v in values))


def spatial_key(namespace: str, bounds: Bounds | None, limit: int = DEFAULT_LIMIT) -> str:
    """Cache key for a bounding-box query; unbounded queries use ``all``."""
    if bounds is None:
        return f"{namespace}:query:all_{int(limit)}"
    b = normalize_bounds(bounds)
    return bounds_key(namespace, b.min_lat, b.max_lat, b.min_lng, b.max_lng, limit)


class SpatialCache:
    """Get-or-compute cache for spatial query results.

    Args:
        store: Result Store adapter.
        runner: Runner for best-effort write-backs.
        clock: Returns the current time in epoch seconds.
    """

    def __init__(
        self,
        store: ResultStore,
        runner: SideEffectRunner,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._runner = runner
        self._clock = clock

    async def get_or_compute(
        self,
        key: str,
        ttl_seconds: int,
        stale_seconds: int,
        compute_fn: ComputeFn,
        *,
        force_refresh: bool = False,
        force_invalidate: bool = False,
    ) -> list[Any]:
        """Return a fresh cached list for ``key`` or compute and cache it.

        Args:
            key: Bounds key (see ``spatial_key``).
            ttl_seconds: Store TTL for the written entry.
            stale_seconds: Maximum age of an entry that may be served.
            compute_fn: Origin query.
            force_refresh: Skip the cache read.
            force_invalidate: Delete the entry before anything else.

        Returns:
            The cached or freshly computed list.

        Raises:
            Exception: Whatever ``compute_fn`` raises; cache failures never propagate.
        """
        if force_invalidate:
            await self.invalidate(key)

        if not force_refresh:
            cached = await self._read_fresh(key, stale_seconds)
            if cached is not None:
                return cached

        items = list(await compute_fn())
        payload = {"items": items, "cachedAt": int(self._clock())}
        self._runner.submit(self._store.set(key, payload, ttl_seconds), label=f"spatial-write {key}")
        logger.debug(f"Spatial cache computed {len(items)} item(s) | key={key}")
        return items

    async def invalidate(self, key: str) -> int | None:
        """Delete a single entry. Returns 1 if it existed, 0 if not, None on store outage."""
        deleted = await self._store.delete(key)
        if deleted:
            logger.info(f"Spatial cache INVALIDATE | key={key}")
        return deleted

    async def invalidate_namespace(self, namespace: str) -> int:
        """Delete every cached query in ``namespace``.

        Called after any create/update/delete of the underlying entities.
        Never raises, so it cannot fail the mutation that triggered it.

        Returns:
            Number of entries deleted.
        """
        return await self._store.delete_matching(f"{namespace}:query:*")

    async def _read_fresh(self, key: str, stale_seconds: int) -> list[Any] | None:
        payload = await self._store.get(key)
        if payload is None:
            logger.debug(f"Spatial cache MISS | key={key}")
            return None

        items = payload.get("items")
        try:
            age = self._clock() - float(payload.get("cachedAt", 0))
        except (TypeError, ValueError):
            age = math.inf

        if not isinstance(items, list) or age > stale_seconds:
            logger.debug(f"Spatial cache STALE ({age:.0f}s > {stale_seconds}s) | key={key}")
            await self._store.delete(key)
            return None

        logger.debug(f"Spatial cache HIT | key={key} | count={len(items)}")
        return items
