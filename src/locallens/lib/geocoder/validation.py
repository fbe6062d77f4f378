"""Pincode (US ZIP code) and coordinate validation for lookup inputs."""

import math
import re
from typing import Any

from locallens.lib.geocoder.base import GeocodeKind

# Reverse lookups are bucketed to ~11 m so nearby clicks share a cache entry
COORDINATE_PRECISION = 4

_ZIP5_RE = re.compile(r"^\d{5}$")
_ZIP9_RE = re.compile(r"^\d{5}-\d{4}$")


class InvalidInputError(ValueError):
    """Raised when a pincode or coordinate pair is malformed or out of range."""


def format_pincode(raw: str) -> str:
    """Remove whitespace and put the ZIP+4 dash in position 5.

    Args:
        raw: Raw pincode input.

    Returns:
        Formatted pincode (not yet validated).
    """
    formatted = re.sub(r"\s+", "", raw)
    if len(formatted) > 5 and "-" not in formatted:
        return f"{formatted[:5]}-{formatted[5:]}"
    return formatted


def validate_pincode(raw: str | None) -> str:
    """Validate a US ZIP code and return its 5-digit form.

    Accepts ``12345``, ``12345-6789`` and ``123456789``.

    Args:
        raw: Raw pincode input.

    Returns:
        The 5-digit pincode used for lookups and cache keys.

    Raises:
        InvalidInputError: With a message naming what is wrong.
    """
    if raw is None or not str(raw).strip():
        msg = "Pincode is required"
        raise InvalidInputError(msg)

    formatted = format_pincode(str(raw))

    if not re.fullmatch(r"[\d-]+", formatted):
        msg = "Pincode must contain only numbers and optional dash"
        raise InvalidInputError(msg)

    digits = formatted.replace("-", "")
    if len(digits) < 5:
        msg = "Pincode must be at least 5 digits"
        raise InvalidInputError(msg)
    if len(digits) > 9:
        msg = "Pincode cannot be more than 9 digits"
        raise InvalidInputError(msg)

    if not (_ZIP5_RE.match(formatted) or _ZIP9_RE.match(formatted)):
        msg = "Invalid US ZIP code format. Use 12345 or 12345-6789"
        raise InvalidInputError(msg)

    return formatted[:5]


def normalize_coordinate(value: float) -> float:
    """Round a coordinate to the lookup precision, folding -0.0 to 0.0."""
    return round(value, COORDINATE_PRECISION) + 0.0


def validate_coordinates(lat: Any, lng: Any) -> tuple[float, float]:
    """Validate a latitude/longitude pair and normalize it for lookups.

    Args:
        lat: Latitude (number or numeric string).
        lng: Longitude (number or numeric string).

    Returns:
        ``(lat, lng)`` rounded to COORDINATE_PRECISION decimals.

    Raises:
        InvalidInputError: If either value is missing, non-numeric or out of range.
    """
    try:
        lat_f = float(lat)
        lng_f = float(lng)
    except (TypeError, ValueError) as e:
        msg = "Invalid latitude or longitude format"
        raise InvalidInputError(msg) from e

    if not (math.isfinite(lat_f) and math.isfinite(lng_f)):
        msg = "Invalid latitude or longitude format"
        raise InvalidInputError(msg)
    if not -90 <= lat_f <= 90:
        msg = "Latitude must be between -90 and 90"
        raise InvalidInputError(msg)
    if not -180 <= lng_f <= 180:
        msg = "Longitude must be between -180 and 180"
        raise InvalidInputError(msg)

    return normalize_coordinate(lat_f), normalize_coordinate(lng_f)


def normalize_query(kind: GeocodeKind | str, params: dict[str, Any]) -> dict[str, Any]:
    """Validate raw lookup parameters for ``kind`` and return the normalized query.

    Args:
        kind: Lookup kind (enum or its string value).
        params: ``{"pincode": ...}`` or ``{"lat": ..., "lng": ...}``.

    Returns:
        Normalized query dict suitable for dispatch and key building.

    Raises:
        InvalidInputError: If the kind is unknown or the parameters are invalid.
    """
    try:
        kind = GeocodeKind(kind)
    except ValueError as e:
        msg = f"Unknown geocoding kind: {kind}"
        raise InvalidInputError(msg) from e

    if kind.takes_pincode:
        return {"pincode": validate_pincode(params.get("pincode"))}

    if params.get("lat") is None or params.get("lng") is None:
        msg = "Latitude and longitude parameters are required"
        raise InvalidInputError(msg)
    lat, lng = validate_coordinates(params["lat"], params["lng"])
    return {"lat": lat, "lng": lng}
