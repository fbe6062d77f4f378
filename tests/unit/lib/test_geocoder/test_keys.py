"""Unit tests for deterministic cache key construction."""

from locallens.lib.geocoder.keys import (
    bounds_key,
    build_key,
    format_value,
    geocode_cache_key,
    inflight_key,
    job_key,
)


class TestBuildKey:
    """Tests for build_key."""

    def test_pincode_key(self) -> None:
        assert build_key("coords", {"pincode": "07307"}) == "coords:07307"

    def test_independent_of_mapping_order(self) -> None:
        a = build_key("reverse", {"lat": 40.7488, "lng": -74.04})
        b = build_key("reverse", {"lng": -74.04, "lat": 40.7488})
        assert a == b

    def test_equal_floats_with_different_formatting(self) -> None:
        a = build_key("reverse", {"lat": 40.7488170000, "lng": -74.0})
        b = build_key("reverse", {"lat": float("40.748817"), "lng": -74.00})
        assert a == b == "reverse:40.748817:-74.000000"

    def test_repeated_calls_identical(self) -> None:
        params = {"lat": 33.7490, "lng": -84.3880}
        assert build_key("reverse-address", params) == build_key("reverse-address", dict(params))

    def test_integral_coordinates_share_key(self) -> None:
        assert build_key("reverse", {"lat": 40, "lng": -74}) == build_key("reverse", {"lat": 40.0, "lng": -74.0})

    def test_kinds_do_not_collide(self) -> None:
        assert build_key("coords", {"pincode": "07307"}) != build_key("city", {"pincode": "07307"})


class TestFormatValue:
    """Tests for format_value."""

    def test_negative_zero_folded(self) -> None:
        assert format_value(-0.0) == format_value(0.0) == "0.000000"

    def test_bool(self) -> None:
        assert format_value(True) == "1"
        assert format_value(False) == "0"

    def test_int_rendered_as_float(self) -> None:
        assert format_value(40) == format_value(40.0) == "40.000000"
        assert format_value(-74) == "-74.000000"

    def test_str_verbatim(self) -> None:
        assert format_value("07307") == "07307"


class TestPrefixedKeys:
    """Tests for store key helpers."""

    def test_cache_key(self) -> None:
        assert geocode_cache_key("coords", {"pincode": "07307"}) == "geocoding:cache:coords:07307"

    def test_inflight_key(self) -> None:
        assert inflight_key("city", {"pincode": "30303"}) == "geocoding:inflight:city:30303"

    def test_job_key(self) -> None:
        assert job_key("abc") == "geocoding:result:abc"


class TestBoundsKey:
    """Tests for bounds_key."""

    def test_layout(self) -> None:
        key = bounds_key("incidents", 40.74, 40.76, -74.05, -74.03, 100)
        assert key == "incidents:query:40.740000_40.760000_-74.050000_-74.030000_100"

    def test_equal_bounds_different_types(self) -> None:
        a = bounds_key("events", 40, 41, -74, -73, 50)
        b = bounds_key("events", 40.0, 41.00, -74.000, -73.0, 50)
        assert a == b
