"""Tests for the CLI module."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

import pytest
from click.testing import CliRunner

from price_cache.cli import cli
from price_cache.core.exceptions import FetchError


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def isolated(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Clean env and restore root logging after each CLI invocation."""
    for key in list(os.environ):
        if key.startswith("PRICE_CACHE_") or key in ("ENABLE_CRON", "PORT", "ADMIN_SECRET"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)

    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_file(tmp_path: Path, snapshot_path: Path) -> str:
    catalog = tmp_path / "assets.json"
    catalog.write_text(
        json.dumps(
            [
                {"symbol": "AAA", "name": "Alpha Corp.", "inception": "2020-01-01"},
                {"symbol": "BBB", "name": "Beta Holdings", "inception": "2024-03-01"},
            ]
        ),
        encoding="utf-8",
    )
    path = tmp_path / "price-cache.yml"
    path.write_text(
        f"cache:\n"
        f"  snapshot_path: {snapshot_path}\n"
        f"  catalog_path: {catalog}\n"
        f"refresh:\n"
        f"  retry_backoff_seconds: 0\n"
        f"logging:\n"
        f"  level: ERROR\n",
        encoding="utf-8",
    )
    return str(path)


@pytest.fixture
def fake_client(monkeypatch: pytest.MonkeyPatch, provider):
    """Swap the Yahoo client for the scripted provider."""

    class _Client:
        def __init__(self, config=None):
            self.config = config

        async def __aenter__(self):
            return provider

        async def __aexit__(self, *exc):
            return None

    monkeypatch.setattr("price_cache.prices.YahooFinanceClient", _Client)
    return provider


# ---------------------------------------------------------------------------
# Group
# ---------------------------------------------------------------------------


class TestGroup:
    def test_help(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("serve", "refresh", "refresh-symbol", "chart", "assets", "status"):
            assert command in result.output

    def test_missing_config_file(self, runner, tmp_path):
        result = runner.invoke(cli, ["--config", str(tmp_path / "nope.yml"), "assets"])
        assert result.exit_code == 2


# ---------------------------------------------------------------------------
# assets / status
# ---------------------------------------------------------------------------


class TestAssets:
    def test_bundled_catalog(self, runner):
        result = runner.invoke(cli, ["assets"])
        assert result.exit_code == 0, result.output
        assert "80 assets" in result.output
        assert "AAPL" in result.output

    def test_configured_catalog(self, runner, config_file):
        result = runner.invoke(cli, ["--config", config_file, "assets"])
        assert result.exit_code == 0, result.output
        assert "2 assets" in result.output
        assert "AAA" in result.output


class TestStatus:
    def test_empty_cache(self, runner, config_file):
        result = runner.invoke(cli, ["--config", config_file, "status"])
        assert result.exit_code == 0, result.output
        assert "Cached symbols" in result.output
        assert "N/A" in result.output

    def test_after_refresh(self, runner, config_file, fake_client, points):
        fake_client.script("AAA", points(("2024-04-30", 12.0)))
        runner.invoke(cli, ["--config", config_file, "refresh", "--mode", "full"])

        result = runner.invoke(cli, ["--config", config_file, "status"])
        assert result.exit_code == 0, result.output
        assert "N/A" not in result.output


# ---------------------------------------------------------------------------
# refresh
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_full(self, runner, config_file, fake_client, snapshot_path, points):
        fake_client.script("AAA", points(("2024-04-29", 11.0), ("2024-04-30", 12.0)))
        fake_client.script("BBB", points(("2024-04-30", 20.0)))

        result = runner.invoke(cli, ["--config", config_file, "refresh", "--mode", "full"])

        assert result.exit_code == 0, result.output
        assert "Full refresh" in result.output
        snapshot = json.loads(snapshot_path.read_text(encoding="utf-8"))
        assert set(snapshot) == {"AAA", "BBB"}

    def test_incremental_is_default(self, runner, config_file, fake_client, points):
        fake_client.script("AAA", points(("2024-04-30", 12.0)))

        result = runner.invoke(cli, ["--config", config_file, "refresh"])

        assert result.exit_code == 0, result.output
        assert "Incremental refresh" in result.output
        assert {c[3].value for c in fake_client.calls} == {"1wk"}

    def test_failures_exit_nonzero(self, runner, config_file, fake_client, points):
        fake_client.script("AAA", FetchError("HTTP 500"))
        fake_client.script("BBB", points(("2024-04-30", 20.0)))

        result = runner.invoke(cli, ["--config", config_file, "refresh", "--mode", "full"])

        assert result.exit_code == 1
        assert "AAA" in result.output

    def test_invalid_mode(self, runner, config_file):
        result = runner.invoke(cli, ["--config", config_file, "refresh", "--mode", "weekly"])
        assert result.exit_code == 2


class TestRefreshSymbol:
    def test_refreshed(self, runner, config_file, fake_client, points):
        fake_client.script("AAA", points(("2024-04-29", 11.0), ("2024-04-30", 12.0)))
        result = runner.invoke(cli, ["--config", config_file, "refresh-symbol", "aaa"])
        assert result.exit_code == 0, result.output
        assert "Refreshed AAA" in result.output

    def test_empty(self, runner, config_file, fake_client):
        result = runner.invoke(cli, ["--config", config_file, "refresh-symbol", "AAA"])
        assert result.exit_code == 0, result.output
        assert "No data returned" in result.output

    def test_failure(self, runner, config_file, fake_client):
        fake_client.script("AAA", FetchError("HTTP 500"))
        result = runner.invoke(cli, ["--config", config_file, "refresh-symbol", "AAA"])
        assert result.exit_code == 1
        assert "Refresh failed" in result.output


# ---------------------------------------------------------------------------
# chart
# ---------------------------------------------------------------------------


class TestChart:
    def test_json(self, runner, config_file, fake_client, points):
        fake_client.script("AAA", points(("2024-04-29", 11.0), ("2024-04-30", 12.0)))

        result = runner.invoke(
            cli, ["--config", config_file, "chart", "AAA", "--format", "json"]
        )

        assert result.exit_code == 0, result.output
        body = json.loads(result.output)
        assert body["source"] == "live"
        assert body["data"][-1] == {"date": "2024-04-30", "close": 12.0}

    def test_table(self, runner, config_file, fake_client, points):
        fake_client.script("AAA", points(("2024-04-30", 12.0)))
        result = runner.invoke(cli, ["--config", config_file, "chart", "AAA"])
        assert result.exit_code == 0, result.output
        assert "2024-04-30" in result.output
        assert "1 records total" in result.output

    def test_no_data(self, runner, config_file, fake_client):
        fake_client.script("ZZZ", FetchError("HTTP 404"))
        result = runner.invoke(cli, ["--config", config_file, "chart", "ZZZ"])
        assert result.exit_code == 1
        assert "No data available" in result.output

    def test_bad_date(self, runner, config_file):
        result = runner.invoke(
            cli, ["--config", config_file, "chart", "AAA", "--start", "May 1st"]
        )
        assert result.exit_code == 2


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


class TestServe:
    def test_uses_config_defaults(self, runner, config_file, monkeypatch):
        calls = []
        monkeypatch.setattr("price_cache.cli.uvicorn.run", lambda *a, **kw: calls.append((a, kw)))

        result = runner.invoke(cli, ["--config", config_file, "serve"])

        assert result.exit_code == 0, result.output
        (args, kwargs), = calls
        assert args == ("price_cache.api.app:create_app",)
        assert kwargs["factory"] is True
        assert (kwargs["host"], kwargs["port"]) == ("0.0.0.0", 5000)
        assert os.environ.pop("PRICE_CACHE_CONFIG") == str(Path(config_file).resolve())

    def test_overrides(self, runner, config_file, monkeypatch):
        calls = []
        monkeypatch.setattr("price_cache.cli.uvicorn.run", lambda *a, **kw: calls.append(kw))

        result = runner.invoke(
            cli, ["--config", config_file, "serve", "--host", "127.0.0.1", "--port", "8001"]
        )

        assert result.exit_code == 0, result.output
        assert (calls[0]["host"], calls[0]["port"]) == ("127.0.0.1", 8001)
        os.environ.pop("PRICE_CACHE_CONFIG", None)
