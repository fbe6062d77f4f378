"""Abstract base geocoder interface for pluggable provider support."""

import math
from abc import ABC, abstractmethod
from enum import StrEnum
from typing import Any


class GeocodeKind(StrEnum):
    """The four lookups the subsystem knows how to compute."""

    COORDS = "coords"
    CITY = "city"
    REVERSE = "reverse"
    REVERSE_ADDRESS = "reverse-address"

    @property
    def takes_pincode(self) -> bool:
        """Whether the lookup input is a pincode (otherwise a lat/lng pair)."""
        return self in (GeocodeKind.COORDS, GeocodeKind.CITY)


class GeocodingProviderError(Exception):
    """Raised when a geocoding provider experiences a transport or service error.

    Distinguishes provider failures (timeout, HTTP error, connection error)
    from a successful response with no match (which returns None).

    Args:
        provider_name: Name of the failing provider.
        message: Human-readable error description.
        status_code: Optional HTTP status code from the provider.
    """

    def __init__(self, provider_name: str, message: str, status_code: int | None = None) -> None:
        self.provider_name = provider_name
        self.message = message
        self.status_code = status_code
        super().__init__(f"{provider_name}: {message}")


class ProvidersExhaustedError(GeocodingProviderError):
    """Raised when every configured provider failed with a service error."""

    def __init__(self, kind: GeocodeKind, errors: list[GeocodingProviderError]) -> None:
        self.kind = kind
        self.errors = errors
        detail = "; ".join(str(e) for e in errors) or "no providers configured"
        super().__init__("all", f"No provider could complete the {kind} lookup ({detail})")


class GeocodeNotFoundError(Exception):
    """Raised when providers definitively have no answer for a valid input."""

    def __init__(self, kind: GeocodeKind, query: dict[str, Any]) -> None:
        self.kind = kind
        self.query = query
        super().__init__(f"No {kind} result for {query}")


def coords_payload(lat: Any, lng: Any, address: str | None = None) -> dict[str, Any]:
    """Build a ``coords`` result payload from raw provider values.

    Raises:
        ValueError: If the values are not finite, in-range coordinates.
    """
    lat_f = float(lat)
    lng_f = float(lng)
    if not (math.isfinite(lat_f) and -90 <= lat_f <= 90):
        msg = f"latitude must be between -90 and 90, got {lat}"
        raise ValueError(msg)
    if not (math.isfinite(lng_f) and -180 <= lng_f <= 180):
        msg = f"longitude must be between -180 and 180, got {lng}"
        raise ValueError(msg)
    payload: dict[str, Any] = {"lat": lat_f, "lng": lng_f}
    if address:
        payload["address"] = address
    return payload


class BaseGeocoder(ABC):
    """Abstract geocoder interface. All providers must implement this.

    Every lookup returns a JSON-serializable payload dict, or None when the
    provider responded but found no match. Transport and service failures
    raise GeocodingProviderError.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique name identifying this geocoder provider."""

    @property
    def requires_api_key(self) -> bool:
        """Whether this provider requires an API key to function."""
        return False

    @property
    def is_configured(self) -> bool:
        """Whether this provider has all required configuration (e.g., API keys)."""
        return True

    @abstractmethod
    async def pincode_to_coords(self, pincode: str) -> dict[str, Any] | None:
        """Resolve a pincode to ``{"lat", "lng"}`` (optionally ``address``)."""

    @abstractmethod
    async def pincode_to_city(self, pincode: str) -> dict[str, Any] | None:
        """Resolve a pincode to ``{"city"}``."""

    @abstractmethod
    async def coords_to_pincode(self, lat: float, lng: float) -> dict[str, Any] | None:
        """Resolve coordinates to ``{"pincode"}``."""

    @abstractmethod
    async def coords_to_address(self, lat: float, lng: float) -> dict[str, Any] | None:
        """Resolve coordinates to ``{"address"}``."""

    async def lookup(self, kind: GeocodeKind, query: dict[str, Any]) -> dict[str, Any] | None:
        """Run the lookup for ``kind`` against normalized ``query`` parameters.

        Args:
            kind: Lookup kind.
            query: ``{"pincode": ...}`` or ``{"lat": ..., "lng": ...}``.

        Returns:
            Result payload, or None if the provider found no match.
        """
        if kind == GeocodeKind.COORDS:
            return await self.pincode_to_coords(query["pincode"])
        if kind == GeocodeKind.CITY:
            return await self.pincode_to_city(query["pincode"])
        if kind == GeocodeKind.REVERSE:
            return await self.coords_to_pincode(query["lat"], query["lng"])
        return await self.coords_to_address(query["lat"], query["lng"])
