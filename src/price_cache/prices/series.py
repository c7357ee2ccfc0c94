"""Pure functions over ordered price series.

Every series handed to ``SeriesEntry`` goes through one of these, so the
strictly-ascending, one-point-per-date shape holds after any mutation.
"""

from __future__ import annotations

from collections.abc import Iterable

from price_cache.core.models import PricePoint


def normalize_series(points: Iterable[PricePoint]) -> tuple[PricePoint, ...]:
    """Sort ascending by date, keeping the last point seen for each date."""
    by_date: dict = {}
    for point in points:
        by_date[point.date] = point
    return tuple(by_date[d] for d in sorted(by_date))


def merge_series(
    existing: Iterable[PricePoint],
    incoming: Iterable[PricePoint],
) -> tuple[PricePoint, ...]:
    """Merge two point sets keyed by date; incoming wins on overlap.

    Existing points whose date is absent from ``incoming`` are kept
    untouched. Applying the same ``incoming`` twice gives the same result
    as applying it once.

    >>> from datetime import date
    >>> old = [PricePoint(date=date(2024, 1, 1), close=100.0)]
    >>> new = [PricePoint(date=date(2024, 1, 1), close=101.0)]
    >>> [p.close for p in merge_series(old, new)]
    [101.0]
    """
    by_date = {point.date: point for point in existing}
    for point in incoming:
        by_date[point.date] = point
    return tuple(by_date[d] for d in sorted(by_date))
