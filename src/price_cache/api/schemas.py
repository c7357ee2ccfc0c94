"""API-specific request/response schemas (Pydantic v2)."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field


# -- Error --


class ErrorResponse(BaseModel):
    """Standard error envelope."""

    error: str
    detail: str | None = None


# -- Chart --


class PricePointResponse(BaseModel):
    """One point of a chart series."""

    date: date
    close: float


class ChartResponse(BaseModel):
    """Chart read result. ``source`` is cache, live, or stale-cache."""

    model_config = ConfigDict(populate_by_name=True)

    symbol: str
    source: str
    last_updated: datetime = Field(alias="lastUpdated")
    data: list[PricePointResponse]


# -- Manual refresh --


class RefreshSymbolResponse(BaseModel):
    """Result of POST /api/refresh/{symbol}."""

    model_config = ConfigDict(populate_by_name=True)

    ok: bool
    refreshed: bool
    symbol: str
    points: int = 0
    last_updated: datetime | None = Field(default=None, alias="lastUpdated")
    error: str | None = None


# -- Catalog --


class AssetResponse(BaseModel):
    """Catalog entry in API response format."""

    symbol: str
    name: str
    inception_date: date
    cached: bool


# -- Jobs --


class JobResponse(BaseModel):
    """Response for async refresh job submission."""

    job_id: str
    job: str
    status: str
    created_at: datetime
    message: str


class JobStatusResponse(BaseModel):
    """Response for job status polling."""

    job_id: str
    job: str
    status: str
    created_at: datetime
    completed_at: datetime | None = None
    result: dict | None = None
    error: str | None = None


# -- Health --


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    status: str = "ok"
    version: str
    assets: int
    cached_symbols: int
    scheduler_enabled: bool
    running_jobs: list[str]
