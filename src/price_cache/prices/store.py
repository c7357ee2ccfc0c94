"""Snapshot-backed in-memory price store.

Holds one ``SeriesEntry`` per symbol and mirrors the whole map to a JSON
snapshot file. The snapshot is written atomically (temp file in the same
directory, fsync, rename) so a reader never observes a partial file.

Snapshot format::

    {
      "AAPL": {
        "lastUpdated": "2024-05-01T00:10:00.123456Z",
        "data": [{"date": "2024-04-30", "close": 170.33}, ...]
      },
      ...
    }

Mutation goes through ``merge`` and ``replace`` only; each holds that
symbol's own lock for the read-modify-write. Reads never lock.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from collections.abc import Iterable
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from price_cache.core.exceptions import StorageError
from price_cache.core.models import PricePoint, SeriesEntry
from price_cache.prices.series import merge_series, normalize_series

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _canonical(symbol: str) -> str:
    return symbol.strip().upper()


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _format_timestamp(ts: datetime) -> str:
    return _as_utc(ts).isoformat().replace("+00:00", "Z")


class PriceStore:
    """In-memory symbol → SeriesEntry map with a durable JSON snapshot.

    Parameters
    ----------
    snapshot_path : str | Path
        Location of the snapshot file. Parent directories are created on
        first persist.
    """

    def __init__(self, snapshot_path: str | Path) -> None:
        self._path = Path(snapshot_path)
        self._entries: dict[str, SeriesEntry] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._persist_lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, symbol: object) -> bool:
        return isinstance(symbol, str) and _canonical(symbol) in self._entries

    def symbols(self) -> list[str]:
        return sorted(self._entries)

    # --- Load boundary ---

    def load(self) -> int:
        """Replace the in-memory map with the snapshot's contents.

        A missing or corrupt snapshot yields an empty map; this is logged
        but never raised. Returns the number of symbols loaded.
        """
        self._entries = self._read_entries()
        logger.info("Loaded %d symbols from %s", len(self._entries), self._path)
        return len(self._entries)

    async def reload(self) -> int:
        """Resynchronize with the snapshot written by another run or process.

        For each symbol, whichever of memory and disk carries the newer
        ``last_updated`` is kept, so a reload never moves a symbol's
        timestamp backwards.
        """
        on_disk = await asyncio.to_thread(self._read_entries)
        for symbol, entry in on_disk.items():
            async with self.lock(symbol):
                current = self._entries.get(symbol)
                if current is None or entry.last_updated > current.last_updated:
                    self._entries[symbol] = entry
        logger.info("Reloaded snapshot %s (%d symbols in memory)", self._path, len(self))
        return len(self._entries)

    def _read_entries(self) -> dict[str, SeriesEntry]:
        if not self._path.exists():
            logger.warning("No snapshot at %s; starting with an empty cache", self._path)
            return {}

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(
                "Snapshot %s is unreadable (%s); starting with an empty cache",
                self._path,
                e,
            )
            return {}

        if not isinstance(raw, dict):
            logger.warning(
                "Snapshot %s is not a mapping; starting with an empty cache", self._path
            )
            return {}

        entries: dict[str, SeriesEntry] = {}
        for key, value in raw.items():
            entry = _entry_from_snapshot(key, value)
            if entry is None:
                logger.warning("Skipping invalid snapshot entry for %r", key)
                continue
            existing = entries.get(entry.symbol)
            if existing is not None:
                logger.warning(
                    "Snapshot holds %s under more than one key; keeping the newer entry",
                    entry.symbol,
                )
                if existing.last_updated >= entry.last_updated:
                    continue
            entries[entry.symbol] = entry
        return entries

    # --- Reads ---

    def get(self, symbol: str) -> SeriesEntry | None:
        return self._entries.get(_canonical(symbol))

    # --- Mutation ---

    def lock(self, symbol: str) -> asyncio.Lock:
        """The lock guarding one symbol's read-modify-write."""
        key = _canonical(symbol)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def put(self, symbol: str, entry: SeriesEntry) -> None:
        """Replace the in-memory entry without taking the symbol lock."""
        key = _canonical(symbol)
        if entry.symbol != key:
            entry = entry.model_copy(update={"symbol": key})
        self._entries[key] = entry

    async def merge(
        self,
        symbol: str,
        points: Iterable[PricePoint],
        updated_at: datetime,
    ) -> SeriesEntry:
        """Merge ``points`` into the stored series by date; new points win."""
        key = _canonical(symbol)
        async with self.lock(key):
            existing = self._entries.get(key)
            series = merge_series(existing.series if existing else (), points)
            return self._write(key, existing, series, updated_at)

    async def replace(
        self,
        symbol: str,
        points: Iterable[PricePoint],
        updated_at: datetime,
    ) -> SeriesEntry:
        """Replace the stored series wholesale with ``points``."""
        key = _canonical(symbol)
        async with self.lock(key):
            existing = self._entries.get(key)
            return self._write(key, existing, normalize_series(points), updated_at)

    def _write(
        self,
        key: str,
        existing: SeriesEntry | None,
        series: tuple[PricePoint, ...],
        updated_at: datetime,
    ) -> SeriesEntry:
        stamp = _as_utc(updated_at)
        if existing is not None and existing.last_updated > stamp:
            stamp = existing.last_updated
        entry = SeriesEntry(symbol=key, last_updated=stamp, series=series)
        self._entries[key] = entry
        return entry

    # --- Persist boundary ---

    def to_snapshot(self) -> dict[str, Any]:
        """Serialize the whole map into the snapshot structure."""
        return {
            symbol: {
                "lastUpdated": _format_timestamp(entry.last_updated),
                "data": [
                    {"date": p.date.isoformat(), "close": p.close} for p in entry.series
                ],
            }
            for symbol, entry in sorted(self._entries.items())
        }

    async def persist(self) -> None:
        """Write the entire map to the snapshot, atomically.

        Raises:
            StorageError: The snapshot could not be written. The previous
                snapshot, if any, is left intact.
        """
        async with self._persist_lock:
            payload = self.to_snapshot()
            try:
                await asyncio.to_thread(self._write_atomic, payload)
            except (OSError, TypeError, ValueError) as e:
                raise StorageError(
                    f"Failed to write snapshot {self._path}: {e}",
                    context={"operation": "persist", "path": str(self._path)},
                ) from e
        logger.info("Persisted %d symbols to %s", len(payload), self._path)

    def _write_atomic(self, payload: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def read_raw(self) -> Any | None:
        """Return the snapshot file's JSON verbatim, or None if absent.

        Raises:
            StorageError: The file exists but cannot be read or parsed.
        """
        if not self._path.exists():
            return None
        try:
            text = await asyncio.to_thread(self._path.read_text, encoding="utf-8")
            return json.loads(text)
        except (OSError, ValueError) as e:
            raise StorageError(
                f"Failed to read snapshot {self._path}: {e}",
                context={"operation": "read_raw", "path": str(self._path)},
            ) from e

    # --- Introspection ---

    def stats(self) -> dict[str, Any]:
        """Basic statistics over the in-memory map."""
        entries = list(self._entries.values())
        stamps = [e.last_updated for e in entries]
        return {
            "symbols": len(entries),
            "points": sum(len(e) for e in entries),
            "oldest_update": min(stamps) if stamps else None,
            "newest_update": max(stamps) if stamps else None,
        }


def _entry_from_snapshot(key: Any, value: Any) -> SeriesEntry | None:
    """Parse one snapshot record; None if it cannot be salvaged."""
    if not isinstance(key, str) or not key.strip() or not isinstance(value, dict):
        return None

    data = value.get("data")
    if not isinstance(data, list):
        return None

    points: list[PricePoint] = []
    for item in data:
        if not isinstance(item, dict) or item.get("close") is None:
            continue
        try:
            points.append(
                PricePoint(date=date.fromisoformat(str(item["date"])), close=item["close"])
            )
        except (KeyError, ValueError, ValidationError):
            continue

    raw_stamp = value.get("lastUpdated")
    try:
        stamp = datetime.fromisoformat(raw_stamp) if raw_stamp else _EPOCH
    except (TypeError, ValueError):
        return None

    try:
        return SeriesEntry(
            symbol=_canonical(key), last_updated=stamp, series=normalize_series(points)
        )
    except ValidationError:
        return None
