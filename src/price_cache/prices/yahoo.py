"""Yahoo Finance market data client: direct HTTP implementation.

Uses the unauthenticated ``/v8/finance/chart/`` endpoint via httpx.

The chart endpoint provides closing prices without authentication for
daily, weekly, and monthly intervals with full history available.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

import httpx
from aiolimiter import AsyncLimiter

from price_cache.core.config import ProviderConfig
from price_cache.core.exceptions import FetchError
from price_cache.core.models import PriceInterval, PricePoint
from price_cache.prices.series import normalize_series

logger = logging.getLogger(__name__)

_CHART_PATH = "/v8/finance/chart"


def _epoch(day: date) -> int:
    """UTC midnight of ``day`` as Unix seconds."""
    return int(datetime.combine(day, time.min, tzinfo=timezone.utc).timestamp())


class YahooChartAdapter:
    """Transforms a Yahoo Finance ``chart.result[0]`` object into PricePoints.

    Timestamps are truncated to their UTC calendar day. Points with a null
    close (holidays, halted sessions) are dropped, as are points whose
    timestamp or close is not a finite number. If two timestamps land on
    the same day the later one wins.
    """

    def adapt(self, raw_data: Any, symbol: str) -> list[PricePoint]:
        if not isinstance(raw_data, dict):
            return []

        timestamps = raw_data.get("timestamp")
        if not isinstance(timestamps, list) or not timestamps:
            return []

        indicators = raw_data.get("indicators")
        quotes = indicators.get("quote") if isinstance(indicators, dict) else None
        quote = quotes[0] if isinstance(quotes, list) and quotes else None
        closes = quote.get("close") if isinstance(quote, dict) else None
        if not isinstance(closes, list):
            logger.warning("Yahoo Finance result for %s has no close series", symbol)
            return []

        points: list[PricePoint] = []
        skipped = 0
        for ts, close in zip(timestamps, closes):
            if ts is None or close is None:
                continue
            point = _point(ts, close)
            if point is None:
                skipped += 1
                continue
            points.append(point)

        if skipped:
            logger.warning("Skipped %d malformed points for %s", skipped, symbol)
        return list(normalize_series(points))


def _point(ts: Any, close: Any) -> PricePoint | None:
    """One PricePoint, or None when either value is not a usable number."""
    if isinstance(ts, bool) or isinstance(close, bool):
        return None
    if not isinstance(ts, (int, float)) or not isinstance(close, (int, float)):
        return None
    if not math.isfinite(close):
        return None
    try:
        day = datetime.fromtimestamp(ts, tz=timezone.utc).date()
    except (OverflowError, OSError, ValueError):
        return None
    return PricePoint(date=day, close=float(close))


class YahooFinanceClient:
    """Fetches closing-price series from Yahoo Finance's chart API.

    Every request carries a bounded timeout. In-flight requests are capped
    by a semaphore and paced by a token bucket sized to the provider's
    rate limit. There is no retry here; callers decide.

    Use via ``async with YahooFinanceClient(config) as client:``.

    Parameters
    ----------
    config : ProviderConfig
        Base URL, timeout, rate limit, and concurrency cap.
    adapter : YahooChartAdapter | None
        Custom adapter instance. Uses default if None.
    http_client : httpx.AsyncClient | None
        Pre-built client (for tests). Created from config if None.
    """

    def __init__(
        self,
        config: ProviderConfig | None = None,
        adapter: YahooChartAdapter | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or ProviderConfig()
        self._adapter = adapter or YahooChartAdapter()
        self._limiter = AsyncLimiter(max_rate=self._config.rate_limit, time_period=1.0)
        self._inflight = asyncio.Semaphore(self._config.max_concurrent)
        self._client = http_client or httpx.AsyncClient(
            headers={"User-Agent": self._config.user_agent},
            timeout=httpx.Timeout(self._config.timeout_seconds),
            follow_redirects=True,
        )

    async def __aenter__(self) -> YahooFinanceClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client. Called automatically by __aexit__."""
        await self._client.aclose()

    async def fetch_series(
        self,
        symbol: str,
        start: date,
        end: date,
        interval: PriceInterval = PriceInterval.DAILY,
    ) -> list[PricePoint]:
        """Fetch closing prices for one symbol, inclusive of both dates.

        Raises:
            FetchError: Transport error, timeout, non-2xx status,
                undecodable body, or an API-level error object.

        Returns:
            Points sorted ascending by date. Empty when Yahoo answers
            successfully but without a usable result.
        """
        symbol = symbol.strip().upper()
        raw = await self._fetch_chart(symbol, start, end, PriceInterval(interval))
        if raw is None:
            return []

        points = self._adapter.adapt(raw, symbol)
        # Yahoo pads the range; trim to what was asked for
        return [p for p in points if start <= p.date <= end]

    async def _fetch_chart(
        self,
        symbol: str,
        start: date,
        end: date,
        interval: PriceInterval,
    ) -> dict | None:
        """Fetch the raw ``chart.result[0]`` object, or None if absent."""
        url = f"{self._config.base_url}{_CHART_PATH}/{symbol}"
        params = {
            "interval": interval.value,
            "period1": str(_epoch(start)),
            "period2": str(_epoch(end + timedelta(days=1))),
            "events": "history",
            "includeAdjustedClose": "true",
        }

        async with self._inflight:
            await self._limiter.acquire()
            try:
                resp = await self._client.get(url, params=params)
            except httpx.TimeoutException as e:
                raise FetchError(
                    f"Yahoo Finance timed out for {symbol}",
                    context={"symbol": symbol, "error": str(e)},
                ) from e
            except httpx.RequestError as e:
                raise FetchError(
                    f"Yahoo Finance request failed for {symbol}: {e}",
                    context={"symbol": symbol, "error": str(e)},
                ) from e

        if not resp.is_success:
            raise FetchError(
                f"Yahoo Finance HTTP {resp.status_code} for {symbol}",
                context={
                    "symbol": symbol,
                    "status_code": resp.status_code,
                    "body": resp.text[:200],
                },
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise FetchError(
                f"Yahoo Finance returned undecodable JSON for {symbol}",
                context={"symbol": symbol, "status_code": resp.status_code},
            ) from e

        chart = data.get("chart") if isinstance(data, dict) else None
        if not isinstance(chart, dict):
            logger.warning("Yahoo Finance response for %s has no chart object", symbol)
            return None

        err = chart.get("error")
        if err:
            if not isinstance(err, dict):
                err = {"description": str(err)}
            raise FetchError(
                f"Yahoo Finance API error for {symbol}: "
                f"{err.get('code')}: {err.get('description')}",
                context={"symbol": symbol, "code": err.get("code")},
            )

        results = chart.get("result")
        if not isinstance(results, list) or not results:
            logger.warning("Yahoo Finance returned no results for %s", symbol)
            return None

        return results[0]
