"""Geocoder library: pluggable pincode/coordinate geocoding.

Public API:
    - GeocodeKind: The four lookup kinds
    - BaseGeocoder: Abstract provider interface
    - NominatimGeocoder: OpenStreetMap Nominatim provider
    - GoogleMapsGeocoder: Google Maps provider
    - DirectGeocoder: Ordered provider chain used by the fallback path
    - GeocodeJob / JobStatus: Asynchronous job record
    - build_key / bounds_key: Deterministic cache keys
    - normalize_query / validate_pincode / validate_coordinates: Input validation
    - get_geocoder: Provider factory/registry
    - get_configured_providers: Get providers that are enabled and configured
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from locallens.lib.geocoder.base import (
    BaseGeocoder,
    GeocodeKind,
    GeocodeNotFoundError,
    GeocodingProviderError,
    ProvidersExhaustedError,
)
from locallens.lib.geocoder.chain import DirectGeocodeFn, DirectGeocoder
from locallens.lib.geocoder.google_maps import GoogleMapsGeocoder
from locallens.lib.geocoder.jobs import GeocodeJob, JobStatus
from locallens.lib.geocoder.keys import bounds_key, build_key
from locallens.lib.geocoder.nominatim import NominatimGeocoder
from locallens.lib.geocoder.validation import (
    InvalidInputError,
    normalize_query,
    validate_coordinates,
    validate_pincode,
)

if TYPE_CHECKING:
    from locallens.core.config import Settings

# Provider registry (all known providers)
_PROVIDERS: dict[str, type[BaseGeocoder]] = {
    "google": GoogleMapsGeocoder,
    "nominatim": NominatimGeocoder,
}


def get_available_providers() -> list[str]:
    """Return the names of all registered geocoder providers."""
    return sorted(_PROVIDERS.keys())


def get_geocoder(provider: str = "nominatim", **kwargs: Any) -> BaseGeocoder:
    """Get a geocoder instance by provider name.

    Args:
        provider: Provider name (e.g., "nominatim").
        **kwargs: Additional arguments forwarded to the provider constructor
            (e.g., ``timeout=2.0``).

    Returns:
        An instance of the requested geocoder provider.

    Raises:
        ValueError: If the provider is not registered.
    """
    cls = _PROVIDERS.get(provider)
    if cls is None:
        msg = f"Unknown geocoder provider: {provider!r}. Available: {list(_PROVIDERS.keys())}"
        raise ValueError(msg)
    return cls(**kwargs)


def get_configured_providers(settings: Settings) -> list[BaseGeocoder]:
    """Get geocoder instances for all providers that are properly configured.

    Args:
        settings: Application settings.

    Returns:
        List of configured BaseGeocoder instances, in fallback order.
    """
    provider_kwargs: dict[str, dict[str, Any]] = {
        "google": {
            "api_key": settings.geocoder_google_api_key or "",
            "timeout": settings.geocoder_google_timeout,
        },
        "nominatim": {
            "timeout": settings.geocoder_nominatim_timeout,
            "email": settings.geocoder_nominatim_email,
            "user_agent": settings.geocoder_nominatim_user_agent,
        },
    }

    providers: list[BaseGeocoder] = []
    seen: set[str] = set()
    for name in settings.geocoder_fallback_order_list:
        if name in seen:
            continue
        seen.add(name)
        try:
            geocoder = get_geocoder(name, **provider_kwargs.get(name, {}))
        except (ValueError, TypeError):
            continue
        if geocoder.is_configured:
            providers.append(geocoder)

    return providers


def build_direct_geocoder(settings: Settings) -> DirectGeocoder:
    """Build the provider chain used for direct (fallback) lookups."""
    return DirectGeocoder(get_configured_providers(settings), timeout=settings.provider_call_timeout)


__all__ = [
    "BaseGeocoder",
    "DirectGeocodeFn",
    "DirectGeocoder",
    "GeocodeJob",
    "GeocodeKind",
    "GeocodeNotFoundError",
    "GeocodingProviderError",
    "GoogleMapsGeocoder",
    "InvalidInputError",
    "JobStatus",
    "NominatimGeocoder",
    "ProvidersExhaustedError",
    "bounds_key",
    "build_direct_geocoder",
    "build_key",
    "get_available_providers",
    "get_configured_providers",
    "get_geocoder",
    "normalize_query",
    "validate_coordinates",
    "validate_pincode",
]
