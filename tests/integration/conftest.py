"""Integration test fixtures: real client, store and snapshot, mocked HTTP."""

from __future__ import annotations

import json
from datetime import date, datetime, time, timezone
from pathlib import Path

import httpx
import pytest

from price_cache.core.config import ProviderConfig

BASE = "https://yahoo.test"


def _midday(day: date) -> int:
    return int(datetime.combine(day, time(14, 30), tzinfo=timezone.utc).timestamp())


class FakeYahoo:
    """Serves chart JSON from an in-memory price table, honouring period1/period2."""

    def __init__(self) -> None:
        self.prices: dict[str, dict[date, float]] = {}
        self.failing: set[str] = set()
        self.requests: list[httpx.Request] = []

    def set_prices(self, symbol: str, rows: dict[str, float]) -> None:
        self.prices[symbol] = {date.fromisoformat(d): c for d, c in rows.items()}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        symbol = request.url.path.rsplit("/", 1)[-1]
        if symbol in self.failing:
            return httpx.Response(500, text="upstream error")
        if symbol not in self.prices:
            return httpx.Response(
                404,
                json={"chart": {"result": None, "error": {"code": "Not Found", "description": "No data found"}}},
            )

        lo = int(request.url.params["period1"])
        hi = int(request.url.params["period2"])
        rows = sorted(
            (d, c) for d, c in self.prices[symbol].items() if lo <= _midday(d) < hi
        )
        return httpx.Response(
            200,
            json={
                "chart": {
                    "result": [
                        {
                            "meta": {"symbol": symbol},
                            "timestamp": [_midday(d) for d, _ in rows],
                            "indicators": {"quote": [{"close": [c for _, c in rows]}]},
                        }
                    ],
                    "error": None,
                }
            },
        )


@pytest.fixture
def fake_yahoo() -> FakeYahoo:
    return FakeYahoo()


@pytest.fixture
def provider_config() -> ProviderConfig:
    return ProviderConfig(base_url=BASE, rate_limit=100, max_concurrent=2)


@pytest.fixture
def integration_catalog(tmp_path: Path) -> str:
    path = tmp_path / "assets.json"
    path.write_text(
        json.dumps(
            [
                {"symbol": "AAA", "name": "Alpha Corp.", "inception": "2024-01-02"},
                {"symbol": "BBB", "name": "Beta Holdings", "inception": "2024-03-01"},
            ]
        ),
        encoding="utf-8",
    )
    return str(path)
