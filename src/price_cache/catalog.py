"""Static asset catalog: the fixed universe of symbols the cache serves.

The catalog file is a JSON array of ``{"symbol", "name", "inception"}``
records. ``inception`` is the earliest date with valid trades and bounds
the full-history rebuild. A bundled catalog ships in ``price_cache/data``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from datetime import date
from importlib import resources
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from price_cache.core.exceptions import CatalogError
from price_cache.core.models import Asset

logger = logging.getLogger(__name__)

_BUNDLED_CATALOG = "assets.json"
_INCEPTION_KEYS = ("inception", "inception_date", "inceptionDate")


class AssetCatalog:
    """Read-only, symbol-keyed view of the asset list."""

    def __init__(self, assets: list[Asset]) -> None:
        self._assets: dict[str, Asset] = {}
        for asset in assets:
            if asset.symbol in self._assets:
                raise CatalogError(
                    f"Duplicate symbol in catalog: {asset.symbol}",
                    context={"symbol": asset.symbol},
                )
            self._assets[asset.symbol] = asset

    def __len__(self) -> int:
        return len(self._assets)

    def __iter__(self) -> Iterator[Asset]:
        return iter(self._assets.values())

    def __contains__(self, symbol: object) -> bool:
        return isinstance(symbol, str) and symbol.strip().upper() in self._assets

    def all(self) -> list[Asset]:
        return list(self._assets.values())

    def symbols(self) -> list[str]:
        return list(self._assets)

    def get(self, symbol: str) -> Asset | None:
        """Look up an asset by symbol (case-insensitive)."""
        return self._assets.get(symbol.strip().upper())

    def inception(self, symbol: str) -> date | None:
        """Earliest valid trade date for a symbol, or None if not listed."""
        asset = self.get(symbol)
        return asset.inception_date if asset else None


def load_catalog(path: str | None = None) -> AssetCatalog:
    """Load the catalog from a JSON file, or the bundled one if path is None.

    Raises:
        CatalogError: The file is missing, unparseable, or holds an
            invalid or duplicated record. Treated as fatal at startup.
    """
    source = path or f"<bundled {_BUNDLED_CATALOG}>"
    try:
        if path is None:
            text = (
                resources.files("price_cache.data")
                .joinpath(_BUNDLED_CATALOG)
                .read_text(encoding="utf-8")
            )
        else:
            text = Path(path).read_text(encoding="utf-8")
        raw = json.loads(text)
    except (OSError, json.JSONDecodeError) as e:
        raise CatalogError(
            f"Failed to load asset catalog {source}: {e}",
            context={"path": source},
        ) from e

    if not isinstance(raw, list):
        raise CatalogError(
            f"Asset catalog must be a JSON array, got {type(raw).__name__}",
            context={"path": source},
        )

    assets = [_parse_record(record, source) for record in raw]
    catalog = AssetCatalog(assets)
    logger.info("Loaded %d assets from %s", len(catalog), source)
    return catalog


def _parse_record(record: Any, source: str) -> Asset:
    if not isinstance(record, dict):
        raise CatalogError(
            f"Catalog record must be an object, got {type(record).__name__}",
            context={"path": source},
        )
    inception = next((record[k] for k in _INCEPTION_KEYS if k in record), None)
    try:
        return Asset(
            symbol=record.get("symbol", ""),
            name=record.get("name", ""),
            inception_date=inception,
        )
    except ValidationError as e:
        raise CatalogError(
            f"Invalid catalog record {record!r}: {e}",
            context={"path": source, "symbol": record.get("symbol")},
        ) from e
