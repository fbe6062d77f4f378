"""Deterministic cache key construction.

Keys depend only on the lookup kind and its normalized parameters, so they
are stable across processes and restarts. Numbers are rendered with a fixed
format; callers round beforehand, the builder never does.
"""

from collections.abc import Mapping
from typing import Any

FLOAT_FORMAT = ".6f"

GEOCODE_CACHE_PREFIX = "geocoding:cache"
GEOCODE_INFLIGHT_PREFIX = "geocoding:inflight"
GEOCODE_RESULT_PREFIX = "geocoding:result"


def format_value(value: Any) -> str:
    """Render one key component."""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int | float):
        # 40 and 40.0 are the same coordinate; -0.0 and 0.0 the same bound
        return format(float(value) + 0.0, FLOAT_FORMAT)
    return str(value)


def build_key(kind: str, params: Mapping[str, Any]) -> str:
    """Serialize a lookup into a single key, independent of mapping order.

    Args:
        kind: Lookup kind or key namespace (e.g. ``"coords"``).
        params: Normalized identifying parameters.

    Returns:
        ``kind`` followed by each parameter value in sorted-name order,
        colon-separated, e.g. ``build_key("coords", {"pincode": "07307"})``
        gives ``"coords:07307"``.
    """
    parts = [format_value(params[name]) for name in sorted(params)]
    return ":".join([str(kind), *parts])


def geocode_cache_key(kind: str, params: Mapping[str, Any]) -> str:
    """Result Store key for a completed lookup."""
    return f"{GEOCODE_CACHE_PREFIX}:{build_key(kind, params)}"


def inflight_key(kind: str, params: Mapping[str, Any]) -> str:
    """Result Store key for the in-flight job marker of a lookup."""
    return f"{GEOCODE_INFLIGHT_PREFIX}:{build_key(kind, params)}"


def job_key(job_id: str) -> str:
    """Result Store key for a job status record."""
    return f"{GEOCODE_RESULT_PREFIX}:{job_id}"


def bounds_key(
    namespace: str,
    min_lat: float,
    max_lat: float,
    min_lng: float,
    max_lng: float,
    limit: int,
) -> str:
    """Key for a bounding-box query result in ``namespace`` (e.g. ``incidents``).

    Bounds keep their positional order so keys read naturally:
    ``incidents:query:40.740000_40.760000_-74.050000_-74.030000_100``.
    """
    parts = [format_value(float(v)) for v in (min_lat, max_lat, min_lng, max_lng)]
    return f"{namespace}:query:{'_'.join(parts)}_{int(limit)}"
