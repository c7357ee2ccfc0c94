"""Provider and adapter protocols: the source-agnostic interface layer.

    RawSource → SeriesAdapter → list[PricePoint] → SeriesProvider → Consumer

- **SeriesProvider** is what the cache coordinator depends on. Anything
  that can answer ``fetch_series`` can stand in for Yahoo Finance,
  including the scripted fakes used in tests.

- **SeriesAdapter** turns one raw provider payload into normalized
  ``PricePoint`` records.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Protocol, runtime_checkable

from price_cache.core.models import PriceInterval, PricePoint


@runtime_checkable
class SeriesAdapter(Protocol):
    """Transforms a raw provider payload into PricePoint records.

    Returns points sorted ascending by date, one per date, with missing
    prices dropped. An unrecognizable payload yields an empty list.
    """

    def adapt(self, raw_data: Any, symbol: str) -> list[PricePoint]: ...


@runtime_checkable
class SeriesProvider(Protocol):
    """Consumer-facing interface for fetching one symbol's series."""

    async def fetch_series(
        self,
        symbol: str,
        start: date,
        end: date,
        interval: PriceInterval = PriceInterval.DAILY,
    ) -> list[PricePoint]:
        """Fetch closing prices for ``symbol`` between ``start`` and ``end``.

        Raises
        ------
        FetchError
            Transport failure, timeout, or non-success response.

        Returns
        -------
        list[PricePoint]
            Possibly empty. Empty means the provider answered but had
            nothing recognizable, which is not an error.
        """
        ...
