"""Cache coordinator: the read path and the batch refresh path.

Per-symbol entry lifecycle::

    Absent ──fetch ok──▶ Populated(fresh) ──ttl elapses──▶ Populated(stale)
                               ▲                                 │
                               └────────── fetch ok ─────────────┘

A failed fetch never changes state. On the read path a failure against an
existing entry is answered from cache as ``stale-cache``; against an
absent entry it raises ``NoDataAvailable`` and nothing is created.

An empty provider answer is treated as "no new information": it never
creates an entry and never erases an existing one.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone

from price_cache.catalog import AssetCatalog
from price_cache.core.config import CacheConfig, RefreshConfig
from price_cache.core.exceptions import FetchError, NoDataAvailable, StorageError
from price_cache.core.models import (
    Asset,
    ChartResult,
    ChartSource,
    PriceInterval,
    PricePoint,
    RefreshMode,
    RefreshPlan,
    RefreshReport,
    RefreshWindow,
    SeriesEntry,
    WriteStrategy,
)
from price_cache.prices.provider import SeriesProvider
from price_cache.prices.store import PriceStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CacheCoordinator:
    """Decides cache-vs-live per read and applies batch refreshes.

    Parameters
    ----------
    store : PriceStore
        Owner of the symbol → entry map and its snapshot.
    provider : SeriesProvider
        Market data source (normally ``YahooFinanceClient``).
    catalog : AssetCatalog
        The symbols batch refreshes iterate over.
    cache_config : CacheConfig | None
        TTL and default read window.
    refresh_config : RefreshConfig | None
        Batch window, intervals, retry and concurrency settings.
    clock : Callable[[], datetime] | None
        Source of "now" (aware UTC). Injected by tests.
    """

    def __init__(
        self,
        store: PriceStore,
        provider: SeriesProvider,
        catalog: AssetCatalog,
        cache_config: CacheConfig | None = None,
        refresh_config: RefreshConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._catalog = catalog
        self._cache_config = cache_config or CacheConfig()
        self._refresh_config = refresh_config or RefreshConfig()
        self._clock = clock or utc_now
        self.ttl = timedelta(hours=self._cache_config.ttl_hours)

    @property
    def store(self) -> PriceStore:
        return self._store

    @property
    def catalog(self) -> AssetCatalog:
        return self._catalog

    @property
    def default_start(self) -> date:
        return self._cache_config.default_start

    def today(self) -> date:
        return self._clock().astimezone(timezone.utc).date()

    # --- Freshness ---

    def is_fresh(self, entry: SeriesEntry, now: datetime | None = None) -> bool:
        """True while ``now - last_updated < ttl``. Exactly ``ttl`` is stale."""
        now = now or self._clock()
        return now - entry.last_updated < self.ttl

    # --- Read path ---

    async def get_chart(
        self,
        symbol: str,
        start: date | None = None,
        end: date | None = None,
        interval: PriceInterval = PriceInterval.DAILY,
    ) -> ChartResult:
        """Serve a symbol's series from cache when fresh, else fetch live.

        A live fetch replaces the entry with exactly the requested window.

        Raises:
            NoDataAvailable: Nothing cached and the provider failed or
                returned nothing.
        """
        symbol = symbol.strip().upper()
        entry = self._store.get(symbol)

        if entry is not None and self.is_fresh(entry):
            return _chart(entry, ChartSource.CACHE)

        start = start or self.default_start
        end = end or self.today()

        try:
            points = await self._provider.fetch_series(symbol, start, end, interval)
        except FetchError as e:
            logger.error("Live fetch failed for %s: %s", symbol, e)
            return self._fallback(symbol, entry, reason=str(e))

        if not points:
            logger.warning("Live fetch for %s returned no data", symbol)
            return self._fallback(symbol, entry, reason="provider returned no data")

        updated = await self._store.replace(symbol, points, self._clock())
        logger.info("Refreshed %s live (%d records)", symbol, len(updated))
        await self._persist_quietly()
        return _chart(updated, ChartSource.LIVE)

    def _fallback(self, symbol: str, entry: SeriesEntry | None, reason: str) -> ChartResult:
        if entry is None:
            raise NoDataAvailable(
                f"No data available for {symbol}",
                context={"symbol": symbol, "reason": reason},
            )
        logger.warning(
            "Serving stale cache for %s (last updated %s)",
            symbol,
            entry.last_updated.isoformat(),
        )
        return _chart(entry, ChartSource.STALE_CACHE)

    async def _persist_quietly(self) -> None:
        try:
            await self._store.persist()
        except StorageError as e:
            logger.error("Snapshot persist failed; memory remains authoritative: %s", e)

    # --- Manual single-symbol refresh ---

    async def refresh_symbol(self, symbol: str) -> SeriesEntry | None:
        """Overwrite one symbol with a fresh default-range daily fetch.

        Returns the new entry, or None when the provider returned nothing
        (the existing entry is left as it was).

        Raises:
            FetchError: The provider call failed.
        """
        symbol = symbol.strip().upper()
        points = await self._provider.fetch_series(
            symbol, self.default_start, self.today(), PriceInterval.DAILY
        )
        if not points:
            logger.warning("Manual refresh of %s returned no data; entry untouched", symbol)
            return None

        entry = await self._store.replace(symbol, points, self._clock())
        logger.info("Manually refreshed %s (%d records)", symbol, len(entry))
        await self._persist_quietly()
        return entry

    # --- Batch refresh ---

    def plan_for(self, mode: RefreshMode) -> RefreshPlan:
        """The canonical plan for a named batch job."""
        cfg = self._refresh_config
        if mode == RefreshMode.INCREMENTAL:
            return RefreshPlan(
                mode=mode,
                window=RefreshWindow.RECENT,
                strategy=WriteStrategy.MERGE,
                interval=cfg.incremental_interval,
                window_days=cfg.incremental_window_days,
            )
        return RefreshPlan(
            mode=mode,
            window=RefreshWindow.FULL,
            strategy=WriteStrategy.REPLACE,
            interval=cfg.full_interval,
        )

    async def refresh_incremental(self) -> RefreshReport:
        """Top up every asset with its trailing window, merged by date."""
        return await self.refresh(self.plan_for(RefreshMode.INCREMENTAL))

    async def refresh_full(self) -> RefreshReport:
        """Rebuild every asset from inception, replacing its entry."""
        return await self.refresh(self.plan_for(RefreshMode.FULL))

    async def refresh(self, plan: RefreshPlan) -> RefreshReport:
        """Run one batch pass over the catalog and persist once at the end.

        Per-symbol failures are retried with backoff, then logged and
        recorded; they never abort the pass. A persist failure is recorded
        in the report rather than raised.
        """
        started = self._clock()
        today = self.today()
        logger.info(
            "Starting %s refresh for %d assets (%s, %s)",
            plan.mode,
            len(self._catalog),
            plan.strategy,
            plan.interval,
        )

        refreshed: list[str] = []
        empty: list[str] = []
        failed: dict[str, str] = {}
        gate = asyncio.Semaphore(self._refresh_config.max_concurrent_symbols)

        async def run(asset: Asset) -> None:
            async with gate:
                try:
                    count = await self._refresh_asset(asset, plan, today)
                except FetchError as e:
                    logger.error("Failed to refresh %s: %s", asset.symbol, e)
                    failed[asset.symbol] = str(e)
                    return
                except Exception as e:
                    logger.exception("Unexpected error refreshing %s", asset.symbol)
                    failed[asset.symbol] = f"{type(e).__name__}: {e}"
                    return
            if count:
                refreshed.append(asset.symbol)
            else:
                logger.warning("No data returned for %s", asset.symbol)
                empty.append(asset.symbol)

        await asyncio.gather(*(run(asset) for asset in self._catalog))

        persisted, persist_error = True, None
        try:
            await self._store.persist()
        except StorageError as e:
            logger.error("Snapshot persist failed after %s refresh: %s", plan.mode, e)
            persisted, persist_error = False, str(e)

        report = RefreshReport(
            mode=plan.mode,
            started_at=started,
            finished_at=self._clock(),
            refreshed=sorted(refreshed),
            empty=sorted(empty),
            failed=dict(sorted(failed.items())),
            persisted=persisted,
            persist_error=persist_error,
        )
        logger.info(
            "%s refresh finished: %d refreshed, %d empty, %d failed, persisted=%s",
            plan.mode,
            len(report.refreshed),
            len(report.empty),
            len(report.failed),
            report.persisted,
        )
        return report

    def window_start(self, asset: Asset, plan: RefreshPlan, today: date) -> date:
        if plan.window == RefreshWindow.FULL:
            return asset.inception_date
        return max(today - timedelta(days=plan.window_days), asset.inception_date)

    async def _refresh_asset(self, asset: Asset, plan: RefreshPlan, today: date) -> int:
        """Fetch and write one asset. Returns the number of points fetched."""
        start = self.window_start(asset, plan, today)
        points = await self._fetch_with_retry(asset.symbol, start, today, plan.interval)
        if not points:
            return 0

        if plan.strategy == WriteStrategy.MERGE:
            entry = await self._store.merge(asset.symbol, points, self._clock())
        else:
            entry = await self._store.replace(asset.symbol, points, self._clock())
        logger.info(
            "Updated %s (%d fetched, %d records)", asset.symbol, len(points), len(entry)
        )
        return len(points)

    async def _fetch_with_retry(
        self,
        symbol: str,
        start: date,
        end: date,
        interval: PriceInterval,
    ) -> list[PricePoint]:
        """Provider call with bounded exponential backoff.

        Retry policy:
            - FetchError: retry up to ``max_retries`` times, sleeping
              ``retry_backoff_seconds * 2**attempt`` between attempts.
            - Final failure: re-raise the last FetchError.
        """
        cfg = self._refresh_config
        for attempt in range(cfg.max_retries + 1):
            try:
                return await self._provider.fetch_series(symbol, start, end, interval)
            except FetchError as e:
                if attempt >= cfg.max_retries:
                    raise
                delay = cfg.retry_backoff_seconds * 2**attempt
                logger.warning(
                    "Fetch failed for %s, retrying in %.1fs (attempt %d/%d): %s",
                    symbol,
                    delay,
                    attempt + 1,
                    cfg.max_retries,
                    e,
                )
                await asyncio.sleep(delay)

        # Should not reach here, but just in case
        raise FetchError(
            f"Fetch failed after all retries: {symbol}",
            context={"symbol": symbol},
        )


def _chart(entry: SeriesEntry, source: ChartSource) -> ChartResult:
    return ChartResult(
        symbol=entry.symbol,
        source=source,
        last_updated=entry.last_updated,
        data=entry.series,
    )
