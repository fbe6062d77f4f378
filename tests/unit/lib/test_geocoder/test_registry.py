"""Unit tests for the provider registry and configured provider selection."""

import pytest

from locallens.core.config import Settings
from locallens.lib.geocoder import (
    GoogleMapsGeocoder,
    NominatimGeocoder,
    build_direct_geocoder,
    get_available_providers,
    get_configured_providers,
    get_geocoder,
)


class TestRegistry:
    """Tests for get_geocoder and get_available_providers."""

    def test_available_providers(self) -> None:
        assert get_available_providers() == ["google", "nominatim"]

    def test_get_geocoder_default(self) -> None:
        assert isinstance(get_geocoder(), NominatimGeocoder)

    def test_get_geocoder_kwargs(self) -> None:
        geocoder = get_geocoder("google", api_key="k", timeout=2.0)
        assert isinstance(geocoder, GoogleMapsGeocoder)
        assert geocoder._timeout == 2.0

    def test_unknown_provider(self) -> None:
        with pytest.raises(ValueError, match="Unknown geocoder provider"):
            get_geocoder("census")


class TestConfiguredProviders:
    """Tests for get_configured_providers."""

    def test_google_skipped_without_key(self) -> None:
        settings = Settings(_env_file=None, geocoder_google_api_key=None)  # type: ignore[call-arg]
        names = [p.provider_name for p in get_configured_providers(settings)]
        assert names == ["nominatim"]

    def test_fallback_order_with_key(self) -> None:
        settings = Settings(_env_file=None, geocoder_google_api_key="k")  # type: ignore[call-arg]
        names = [p.provider_name for p in get_configured_providers(settings)]
        assert names == ["google", "nominatim"]

    def test_custom_order_and_duplicates(self) -> None:
        settings = Settings(  # type: ignore[call-arg]
            _env_file=None, geocoder_google_api_key="k", geocoder_fallback_order="nominatim,google,nominatim"
        )
        names = [p.provider_name for p in get_configured_providers(settings)]
        assert names == ["nominatim", "google"]

    def test_build_direct_geocoder(self) -> None:
        settings = Settings(_env_file=None, provider_call_timeout=3.0)  # type: ignore[call-arg]
        chain = build_direct_geocoder(settings)
        assert chain.provider_names == ["nominatim"]
        assert chain._timeout == 3.0
