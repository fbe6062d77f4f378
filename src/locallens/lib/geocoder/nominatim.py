"""OpenStreetMap Nominatim geocoder provider.

Uses the Nominatim search and reverse APIs
(https://nominatim.org/release-docs/develop/api/Overview/) for pincode and
coordinate lookups. Free, no API key, but rate-limited to 1 req/sec.
"""

import re
from typing import Any

import httpx
from loguru import logger

from locallens.lib.geocoder.base import BaseGeocoder, GeocodingProviderError, coords_payload

NOMINATIM_BASE_URL = "https://nominatim.openstreetmap.org"
DEFAULT_TIMEOUT = 5.0
DEFAULT_USER_AGENT = "LocalLens/1.0"

# Address fields that name a settlement, most specific first
_CITY_FIELDS = ("city", "town", "village", "hamlet", "municipality", "suburb")

_ZIP5_RE = re.compile(r"\d{5}")


class NominatimGeocoder(BaseGeocoder):
    """OpenStreetMap Nominatim geocoder provider."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        email: str = "",
        user_agent: str = DEFAULT_USER_AGENT,
        base_url: str = NOMINATIM_BASE_URL,
    ) -> None:
        self._timeout = timeout
        self._email = email
        self._user_agent = user_agent
        self._base_url = base_url.rstrip("/")

    @property
    def provider_name(self) -> str:
        return "nominatim"

    async def pincode_to_coords(self, pincode: str) -> dict[str, Any] | None:
        data = await self._get("search", self._search_params(pincode))
        return self._parse_coords(data)

    async def pincode_to_city(self, pincode: str) -> dict[str, Any] | None:
        data = await self._get("search", self._search_params(pincode))
        return self._parse_city(data)

    async def coords_to_pincode(self, lat: float, lng: float) -> dict[str, Any] | None:
        data = await self._get("reverse", self._reverse_params(lat, lng))
        return self._parse_pincode(data)

    async def coords_to_address(self, lat: float, lng: float) -> dict[str, Any] | None:
        data = await self._get("reverse", self._reverse_params(lat, lng))
        return self._parse_address(data)

    def _search_params(self, pincode: str) -> dict[str, str | int]:
        return {
            "postalcode": pincode,
            "countrycodes": "us",
            "format": "json",
            "limit": 1,
            "addressdetails": 1,
        }

    @staticmethod
    def _reverse_params(lat: float, lng: float) -> dict[str, str | int | float]:
        return {
            "lat": lat,
            "lon": lng,
            "format": "json",
            "addressdetails": 1,
            "zoom": 18,
        }

    async def _get(self, endpoint: str, params: dict[str, Any]) -> Any:
        """Call a Nominatim endpoint and return the decoded JSON body.

        Raises:
            GeocodingProviderError: On transport or service errors.
        """
        if self._email:
            params = {**params, "email": self._email}
        headers = {"User-Agent": self._user_agent}

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(f"{self._base_url}/{endpoint}", params=params, headers=headers)
                response.raise_for_status()
            return response.json()

        except httpx.TimeoutException as e:
            logger.warning(f"Nominatim {endpoint} timeout")
            raise GeocodingProviderError("nominatim", "Geocoding request timed out") from e
        except httpx.HTTPStatusError as e:
            logger.warning(f"Nominatim {endpoint} HTTP error {e.response.status_code}")
            raise GeocodingProviderError(
                "nominatim",
                f"Provider returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.ConnectError as e:
            logger.warning("Nominatim connection error")
            raise GeocodingProviderError("nominatim", "Connection to geocoding provider failed") from e
        except Exception as e:
            logger.exception(f"Nominatim {endpoint} unexpected error")
            raise GeocodingProviderError("nominatim", f"Unexpected error: {e}") from e

    def _parse_coords(self, data: list[dict]) -> dict[str, Any] | None:
        """Parse a search response into a coords payload.

        Args:
            data: Raw JSON response (list of places) from the search API.

        Returns:
            Coords payload or None if no match found.
        """
        if not data:
            return None

        best = data[0]
        try:
            return coords_payload(best["lat"], best["lon"], best.get("display_name"))
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Failed to parse Nominatim response: {e}")
            raise GeocodingProviderError("nominatim", f"Failed to parse response: {e}") from e

    def _parse_city(self, data: list[dict]) -> dict[str, Any] | None:
        if not data:
            return None
        address = data[0].get("address") or {}
        for field in _CITY_FIELDS:
            if address.get(field):
                return {"city": address[field]}
        return None

    def _parse_pincode(self, data: dict) -> dict[str, Any] | None:
        if not data or "error" in data:
            return None
        postcode = (data.get("address") or {}).get("postcode")
        if not postcode:
            return None
        match = _ZIP5_RE.search(str(postcode))
        return {"pincode": match.group(0)} if match else None

    def _parse_address(self, data: dict) -> dict[str, Any] | None:
        if not data or "error" in data:
            return None
        display_name = data.get("display_name")
        return {"address": display_name} if display_name else None
