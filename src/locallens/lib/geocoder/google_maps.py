"""Google Maps Geocoding API provider.

Uses the Google Maps Geocoding API
(https://developers.google.com/maps/documentation/geocoding/)
for forward and reverse lookups. Requires an API key.
"""

from typing import Any

import httpx
from loguru import logger

from locallens.lib.geocoder.base import BaseGeocoder, GeocodingProviderError, coords_payload

GOOGLE_API_URL = "https://maps.googleapis.com/maps/api/geocode/json"
DEFAULT_TIMEOUT = 5.0

# address_components types that name a city, most specific first
_CITY_TYPES = ("locality", "postal_town", "sublocality", "administrative_area_level_3")


class GoogleMapsGeocoder(BaseGeocoder):
    """Google Maps geocoder provider."""

    def __init__(
        self,
        api_key: str,
        timeout: float = DEFAULT_TIMEOUT,
        region: str = "us",
    ) -> None:
        self._api_key = api_key
        self._timeout = timeout
        self._region = region

    @property
    def provider_name(self) -> str:
        return "google"

    @property
    def requires_api_key(self) -> bool:
        return True

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def pincode_to_coords(self, pincode: str) -> dict[str, Any] | None:
        results = await self._get(self._forward_params(pincode))
        if not results:
            return None
        best = results[0]
        try:
            location = best["geometry"]["location"]
            return coords_payload(location["lat"], location["lng"], best.get("formatted_address"))
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Failed to parse Google Maps response: {e}")
            raise GeocodingProviderError("google", f"Failed to parse response: {e}") from e

    async def pincode_to_city(self, pincode: str) -> dict[str, Any] | None:
        results = await self._get(self._forward_params(pincode))
        if not results:
            return None
        city = self._find_component(results, _CITY_TYPES)
        return {"city": city} if city else None

    async def coords_to_pincode(self, lat: float, lng: float) -> dict[str, Any] | None:
        results = await self._get({"latlng": f"{lat},{lng}", "result_type": "postal_code"})
        if not results:
            return None
        pincode = self._find_component(results, ("postal_code",))
        return {"pincode": pincode[:5]} if pincode else None

    async def coords_to_address(self, lat: float, lng: float) -> dict[str, Any] | None:
        results = await self._get({"latlng": f"{lat},{lng}"})
        if not results:
            return None
        formatted = results[0].get("formatted_address")
        return {"address": formatted} if formatted else None

    def _forward_params(self, pincode: str) -> dict[str, str]:
        return {"address": pincode, "components": "country:US"}

    @staticmethod
    def _find_component(results: list[dict], types: tuple[str, ...]) -> str | None:
        """Return the long_name of the first address component matching ``types``, in priority order."""
        for wanted in types:
            for result in results:
                for component in result.get("address_components", []):
                    if wanted in component.get("types", []):
                        return component.get("long_name")
        return None

    async def _get(self, params: dict[str, str]) -> list[dict]:
        """Call the Geocoding API and return its ``results`` list.

        Raises:
            GeocodingProviderError: On transport, service, or API-specific errors.
        """
        query = {**params, "key": self._api_key, "region": self._region}

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(GOOGLE_API_URL, params=query)
                response.raise_for_status()

            data = response.json()
            return self._parse_response(data)

        except httpx.TimeoutException as e:
            logger.warning("Google Maps geocoder timeout")
            raise GeocodingProviderError("google", "Geocoding request timed out") from e
        except httpx.HTTPStatusError as e:
            logger.warning(f"Google Maps geocoder HTTP error {e.response.status_code}")
            raise GeocodingProviderError(
                "google",
                f"Provider returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.ConnectError as e:
            logger.warning("Google Maps geocoder connection error")
            raise GeocodingProviderError("google", "Connection to geocoding provider failed") from e
        except GeocodingProviderError:
            raise
        except Exception as e:
            logger.exception("Google Maps geocoder unexpected error")
            raise GeocodingProviderError("google", f"Unexpected error: {e}") from e

    def _parse_response(self, data: dict) -> list[dict]:
        """Validate the API status and return the results list.

        Args:
            data: Raw JSON response from Google Maps API.

        Returns:
            List of result dicts (empty when there is no match).

        Raises:
            GeocodingProviderError: On API-specific error statuses.
        """
        api_status = data.get("status", "UNKNOWN")

        if api_status == "ZERO_RESULTS":
            return []

        if api_status in ("REQUEST_DENIED", "OVER_QUERY_LIMIT", "INVALID_REQUEST"):
            msg = data.get("error_message", api_status)
            raise GeocodingProviderError("google", f"API error: {msg}")

        if api_status != "OK":
            raise GeocodingProviderError("google", f"Unexpected API status: {api_status}")

        return data.get("results", [])
