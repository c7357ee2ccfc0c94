"""Price series acquisition and storage.

Architecture
------------
Uses the adapter pattern to decouple the market data source from the cache:

    Yahoo chart JSON → YahooChartAdapter → list[PricePoint] → PriceStore

Key abstractions:

- ``SeriesProvider``: Async interface the cache coordinator fetches through.
- ``SeriesAdapter``: Turns a raw provider payload into ``PricePoint`` records.
- ``PriceStore``: In-memory map of ``SeriesEntry`` with an atomic JSON snapshot.
- ``merge_series`` / ``normalize_series``: date-keyed series arithmetic.

Built-in implementations:

- ``YahooFinanceClient``: Fetches from the Yahoo Finance chart API.
- ``YahooChartAdapter``: Parses Yahoo Finance chart JSON.
"""

from price_cache.prices.provider import SeriesAdapter, SeriesProvider
from price_cache.prices.series import merge_series, normalize_series
from price_cache.prices.store import PriceStore
from price_cache.prices.yahoo import YahooChartAdapter, YahooFinanceClient

__all__ = [
    # Protocols
    "SeriesAdapter",
    "SeriesProvider",
    # Series helpers
    "merge_series",
    "normalize_series",
    # Storage
    "PriceStore",
    # Yahoo Finance
    "YahooChartAdapter",
    "YahooFinanceClient",
]
