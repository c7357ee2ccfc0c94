"""Shared pytest fixtures for price-cache."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest

from price_cache.cache.coordinator import CacheCoordinator
from price_cache.catalog import AssetCatalog
from price_cache.core.config import CacheConfig, RefreshConfig
from price_cache.core.models import Asset, PriceInterval, PricePoint
from price_cache.prices.store import PriceStore


def make_points(*pairs: tuple[str, float]) -> list[PricePoint]:
    return [PricePoint(date=date.fromisoformat(d), close=c) for d, c in pairs]


class FakeProvider:
    """Scripted SeriesProvider.

    Each symbol maps to a list of outcomes (a point list or an exception).
    Outcomes are consumed in order; the last one repeats. Unscripted
    symbols answer with an empty list.
    """

    def __init__(self) -> None:
        self.scripts: dict[str, list] = {}
        self.calls: list[tuple[str, date, date, PriceInterval]] = []

    def script(self, symbol: str, *outcomes) -> None:
        self.scripts[symbol.upper()] = list(outcomes)

    def calls_for(self, symbol: str) -> list[tuple[str, date, date, PriceInterval]]:
        return [c for c in self.calls if c[0] == symbol.upper()]

    async def fetch_series(
        self,
        symbol: str,
        start: date,
        end: date,
        interval: PriceInterval = PriceInterval.DAILY,
    ) -> list[PricePoint]:
        symbol = symbol.upper()
        self.calls.append((symbol, start, end, PriceInterval(interval)))
        outcomes = self.scripts.get(symbol)
        if not outcomes:
            return []
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return list(outcome)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def points():
    return make_points


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def sample_assets() -> list[Asset]:
    return [
        Asset(symbol="AAA", name="Alpha Corp.", inception_date=date(2020, 1, 1)),
        Asset(symbol="BBB", name="Beta Holdings", inception_date=date(2024, 3, 1)),
        Asset(symbol="CCC", name="Gamma Index Fund", inception_date=date(2010, 6, 15)),
    ]


@pytest.fixture
def catalog(sample_assets: list[Asset]) -> AssetCatalog:
    return AssetCatalog(sample_assets)


@pytest.fixture
def snapshot_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "prices.json"


@pytest.fixture
def store(snapshot_path: Path) -> PriceStore:
    return PriceStore(snapshot_path)


@pytest.fixture
def refresh_config() -> RefreshConfig:
    return RefreshConfig(max_retries=2, retry_backoff_seconds=0.0)


@pytest.fixture
def coordinator(
    store: PriceStore,
    provider: FakeProvider,
    catalog: AssetCatalog,
    refresh_config: RefreshConfig,
    clock: FixedClock,
) -> CacheCoordinator:
    return CacheCoordinator(
        store=store,
        provider=provider,
        catalog=catalog,
        cache_config=CacheConfig(ttl_hours=24, default_start=date(2015, 1, 1)),
        refresh_config=refresh_config,
        clock=clock,
    )
