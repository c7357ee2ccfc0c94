"""Pydantic data models: the system's type contracts."""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# --- Type Aliases ---

Symbol = str

# --- Enumerations ---


class PriceInterval(StrEnum):
    """Supported price data intervals."""

    DAILY = "1d"
    WEEKLY = "1wk"
    MONTHLY = "1mo"


class ChartSource(StrEnum):
    """Where the data in a chart response came from."""

    CACHE = "cache"
    LIVE = "live"
    STALE_CACHE = "stale-cache"


class RefreshMode(StrEnum):
    """Named batch refresh jobs."""

    INCREMENTAL = "incremental"
    FULL = "full"


class RefreshWindow(StrEnum):
    """How far back a batch refresh fetches."""

    RECENT = "recent"
    FULL = "full"


class WriteStrategy(StrEnum):
    """How fetched points are combined with the stored series."""

    MERGE = "merge"
    REPLACE = "replace"


# --- Catalog ---


class Asset(BaseModel):
    """A tradable instrument from the static catalog."""

    model_config = ConfigDict(frozen=True)

    symbol: Symbol
    name: str
    inception_date: date

    @field_validator("symbol")
    @classmethod
    def symbol_canonical(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("symbol must not be empty")
        return v


# --- Price series ---


class PricePoint(BaseModel):
    """One closing price on one calendar day."""

    model_config = ConfigDict(frozen=True)

    date: date
    close: float


class SeriesEntry(BaseModel):
    """The cached series for one symbol.

    ``series`` is strictly ascending by date with no duplicate dates.
    ``last_updated`` is always timezone-aware UTC; naive values are
    assumed to be UTC already.
    """

    model_config = ConfigDict(frozen=True)

    symbol: Symbol
    last_updated: datetime
    series: tuple[PricePoint, ...] = ()

    @field_validator("symbol")
    @classmethod
    def symbol_upper(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("last_updated")
    @classmethod
    def last_updated_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @model_validator(mode="after")
    def series_strictly_ascending(self) -> SeriesEntry:
        for prev, cur in zip(self.series, self.series[1:]):
            if cur.date <= prev.date:
                raise ValueError(
                    f"series must be strictly ascending by date: "
                    f"{cur.date} follows {prev.date}"
                )
        return self

    def __len__(self) -> int:
        return len(self.series)

    @property
    def first_date(self) -> date | None:
        return self.series[0].date if self.series else None

    @property
    def last_date(self) -> date | None:
        return self.series[-1].date if self.series else None


class ChartResult(BaseModel):
    """Answer to a chart read: the series plus where it came from."""

    model_config = ConfigDict(frozen=True)

    symbol: Symbol
    source: ChartSource
    last_updated: datetime
    data: tuple[PricePoint, ...]


# --- Refresh ---


class RefreshPlan(BaseModel):
    """Parameters of one batch refresh pass.

    The two named jobs are presets of this: incremental is
    ``(RECENT, MERGE, 1wk)`` and full is ``(FULL, REPLACE, 1d)``.
    """

    model_config = ConfigDict(frozen=True)

    mode: RefreshMode
    window: RefreshWindow
    strategy: WriteStrategy
    interval: PriceInterval = PriceInterval.DAILY
    window_days: int = Field(default=365, ge=1)


class RefreshReport(BaseModel):
    """Outcome of a batch refresh across the catalog."""

    model_config = ConfigDict(frozen=True)

    mode: RefreshMode
    started_at: datetime
    finished_at: datetime
    refreshed: list[Symbol] = Field(default_factory=list)
    empty: list[Symbol] = Field(default_factory=list)
    failed: dict[Symbol, str] = Field(default_factory=dict)
    persisted: bool = False
    persist_error: str | None = None

    @property
    def total(self) -> int:
        return len(self.refreshed) + len(self.empty) + len(self.failed)

    @property
    def partial(self) -> bool:
        """True when some symbols failed or the snapshot was not written."""
        return bool(self.failed) or not self.persisted

    @property
    def ok(self) -> bool:
        return not self.partial
