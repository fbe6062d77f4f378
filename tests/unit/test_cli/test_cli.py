"""Unit tests for the locallens CLI commands."""

import json
import re
from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from locallens.cli.app import app
from locallens.lib.cache import ResultStore
from locallens.lib.geocoder import GeocodeKind

runner = CliRunner()


def _strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences from text."""
    return re.sub(r"\x1b\[[0-9;]*m", "", text)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Run each command without a .env file or provider keys."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("GEOCODER_GOOGLE_API_KEY", raising=False)
    monkeypatch.delenv("GEOCODER_FALLBACK_ORDER", raising=False)
    monkeypatch.setenv("LOG_LEVEL", "WARNING")


class TestRootApp:
    """Tests for command registration."""

    def test_help_lists_commands(self) -> None:
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        output = _strip_ansi(result.output)
        for command in ("serve", "worker", "geocode", "cache"):
            assert command in output

    def test_serve_runs_uvicorn_factory(self) -> None:
        with patch("uvicorn.run") as mock_run:
            result = runner.invoke(app, ["serve", "--port", "9000"])

        assert result.exit_code == 0
        mock_run.assert_called_once()
        assert mock_run.call_args.args[0] == "locallens.main:create_app"
        assert mock_run.call_args.kwargs["factory"] is True
        assert mock_run.call_args.kwargs["port"] == 9000


class TestGeocodeCommands:
    """Tests for the geocode subcommands."""

    def test_lookup_invalid_pincode(self) -> None:
        result = runner.invoke(app, ["geocode", "lookup", "coords", "--pincode", "12"])
        assert result.exit_code == 2
        assert "Invalid input" in result.output

    def test_lookup_direct_prints_json(self) -> None:
        chain = AsyncMock(return_value={"city": "Jersey City", "provider": "nominatim"})
        with patch("locallens.lib.geocoder.build_direct_geocoder", return_value=chain):
            result = runner.invoke(app, ["geocode", "lookup", "city", "--pincode", "07307", "--direct"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data == {"kind": "city", "source": "direct", "result": {"city": "Jersey City", "provider": "nominatim"}}
        chain.assert_awaited_once_with(GeocodeKind.CITY, {"pincode": "07307"})

    def test_providers(self) -> None:
        result = runner.invoke(app, ["geocode", "providers"])

        assert result.exit_code == 0
        lines = dict(line.split(None, 1) for line in result.output.strip().splitlines())
        assert lines["google"] == "not configured"
        assert lines["nominatim"] == "#1"

    def test_status_unknown_job(self) -> None:
        with patch("locallens.services.geocoding_service.read_job", new=AsyncMock(return_value=None)):
            result = runner.invoke(app, ["geocode", "status", "missing-job"])

        assert result.exit_code == 1
        assert "not found or expired" in result.output


class TestCacheCommands:
    """Tests for the cache subcommands."""

    def test_invalidate_spatial(self, store: ResultStore, fake_redis) -> None:
        fake_redis.data["incidents:query:all_100"] = json.dumps({"items": [], "cachedAt": 1})
        fake_redis.data["events:query:all_100"] = json.dumps({"items": [], "cachedAt": 1})

        with patch("locallens.cli.cache_cmd._store", return_value=store):
            result = runner.invoke(app, ["cache", "invalidate-spatial", "incidents"])

        assert result.exit_code == 0
        assert "Deleted 1 cached incidents query" in result.output
        assert "events:query:all_100" in fake_redis.data

    def test_invalidate_lookup(self, store: ResultStore, fake_redis) -> None:
        fake_redis.data["geocoding:cache:coords:07307"] = json.dumps({"result": {"lat": 1.0, "lng": 2.0}})

        with patch("locallens.cli.cache_cmd._store", return_value=store):
            result = runner.invoke(app, ["cache", "invalidate-lookup", "coords", "--pincode", "07307"])

        assert result.exit_code == 0
        assert "Invalidated coords:07307 (1 key(s) removed)" in result.output
        assert "geocoding:cache:coords:07307" not in fake_redis.data

    def test_invalidate_lookup_store_down(self, down_store: ResultStore) -> None:
        with patch("locallens.cli.cache_cmd._store", return_value=down_store):
            result = runner.invoke(app, ["cache", "invalidate-lookup", "reverse", "--lat", "40.7", "--lng", "-74.0"])

        assert result.exit_code == 1
        assert "unavailable" in result.output

    def test_invalidate_lookup_invalid_coordinates(self) -> None:
        result = runner.invoke(app, ["cache", "invalidate-lookup", "reverse", "--lat", "95", "--lng", "0"])
        assert result.exit_code == 2


class TestWorkerCommand:
    """Tests for the worker command."""

    def test_exits_without_providers(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GEOCODER_FALLBACK_ORDER", "google")

        result = runner.invoke(app, ["worker"])

        assert result.exit_code == 1
        assert "No geocoding providers" in result.output
