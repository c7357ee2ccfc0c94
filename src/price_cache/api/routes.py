"""FastAPI route definitions for the price-cache API."""

from __future__ import annotations

import logging
from datetime import UTC as _UTC, date, datetime
from uuid import uuid4

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

import price_cache
from price_cache.api.deps import (
    AppState,
    JobStatus,
    get_app_state,
    get_coordinator,
    get_scheduler,
    get_store,
)
from price_cache.api.schemas import (
    AssetResponse,
    ChartResponse,
    HealthResponse,
    JobResponse,
    JobStatusResponse,
    PricePointResponse,
    RefreshSymbolResponse,
)
from price_cache.cache.coordinator import CacheCoordinator
from price_cache.cache.scheduler import RefreshScheduler
from price_cache.core.exceptions import FetchError, JobAlreadyRunning
from price_cache.core.models import PriceInterval, RefreshMode
from price_cache.prices.store import PriceStore

logger = logging.getLogger(__name__)

router = APIRouter()


# -- Health --


@router.get("/health", response_model=HealthResponse)
async def health_check(state: AppState = Depends(get_app_state)):
    """Service health and cache coverage."""
    return HealthResponse(
        status="ok",
        version=price_cache.__version__,
        assets=len(state.catalog),
        cached_symbols=len(state.store),
        scheduler_enabled=state.scheduler.enabled,
        running_jobs=[
            str(m) for m in RefreshMode if state.scheduler.is_running(m) or str(m) in state.active
        ],
    )


# -- Catalog --


@router.get("/assets", response_model=list[AssetResponse])
async def list_assets(state: AppState = Depends(get_app_state)):
    """The static asset catalog, flagged with cache coverage."""
    return [
        AssetResponse(
            symbol=a.symbol,
            name=a.name,
            inception_date=a.inception_date,
            cached=a.symbol in state.store,
        )
        for a in state.catalog
    ]


# -- Chart --


@router.get("/chart/{symbol}", response_model=ChartResponse)
async def get_chart(
    symbol: str,
    start: date | None = Query(None, description="First date (default: cache.default_start)"),
    end: date | None = Query(None, description="Last date (default: today, UTC)"),
    interval: PriceInterval = Query(PriceInterval.DAILY),
    coordinator: CacheCoordinator = Depends(get_coordinator),
):
    """Cache-first chart read with stale-cache fallback."""
    if start and end and end < start:
        raise HTTPException(
            status_code=422,
            detail=f"end ({end}) must not be before start ({start})",
        )

    result = await coordinator.get_chart(symbol, start, end, interval)
    return ChartResponse(
        symbol=result.symbol,
        source=str(result.source),
        last_updated=result.last_updated,
        data=[PricePointResponse(date=p.date, close=p.close) for p in result.data],
    )


# -- Manual single-symbol refresh --


@router.post("/refresh/{symbol}", response_model=RefreshSymbolResponse)
async def refresh_symbol(
    symbol: str,
    coordinator: CacheCoordinator = Depends(get_coordinator),
):
    """Overwrite one symbol's entry with a fresh default-range fetch."""
    symbol = symbol.strip().upper()
    try:
        entry = await coordinator.refresh_symbol(symbol)
    except FetchError as e:
        body = RefreshSymbolResponse(ok=False, refreshed=False, symbol=symbol, error=str(e))
        return JSONResponse(
            status_code=502,
            content=body.model_dump(mode="json", by_alias=True),
        )

    if entry is None:
        return RefreshSymbolResponse(ok=True, refreshed=False, symbol=symbol)

    return RefreshSymbolResponse(
        ok=True,
        refreshed=True,
        symbol=symbol,
        points=len(entry),
        last_updated=entry.last_updated,
    )


# -- Raw snapshot --


@router.get("/snapshot")
async def get_snapshot(store: PriceStore = Depends(get_store)):
    """The persisted snapshot, verbatim."""
    raw = await store.read_raw()
    if raw is None:
        raise HTTPException(status_code=404, detail="No snapshot has been written yet")
    return JSONResponse(content=raw)


# -- Admin batch triggers --


@router.post("/admin/refresh/{mode}", response_model=JobResponse, status_code=202)
async def trigger_refresh(
    mode: RefreshMode,
    background_tasks: BackgroundTasks,
    state: AppState = Depends(get_app_state),
    scheduler: RefreshScheduler = Depends(get_scheduler),
):
    """Trigger an incremental or full batch refresh (async job)."""
    if scheduler.is_running(mode) or str(mode) in state.active:
        raise JobAlreadyRunning(
            f"A {mode} refresh is already running",
            context={"job": str(mode)},
        )

    job_id = f"{mode}-{uuid4().hex[:8]}"
    now = datetime.now(tz=_UTC).isoformat()
    job = JobStatus(job_id=job_id, job=str(mode), status="pending", created_at=now)
    state.add_job(job)

    background_tasks.add_task(_run_refresh_job, state, job, mode)

    return JobResponse(
        job_id=job_id,
        job=str(mode),
        status="pending",
        created_at=datetime.fromisoformat(now),
        message=f"{mode.capitalize()} refresh queued for {len(state.catalog)} assets",
    )


# -- Jobs --


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def get_job_status(
    job_id: str,
    state: AppState = Depends(get_app_state),
):
    """Poll job status."""
    job = state.jobs.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Job '{job_id}' not found")

    return JobStatusResponse(
        job_id=job.job_id,
        job=job.job,
        status=job.status,
        created_at=datetime.fromisoformat(job.created_at),
        completed_at=(datetime.fromisoformat(job.completed_at) if job.completed_at else None),
        result=job.result,
        error=job.error,
    )


# -- Helpers --


async def _run_refresh_job(state: AppState, job: JobStatus, mode: RefreshMode) -> None:
    """Execute a batch refresh in background."""
    job.status = "running"
    try:
        report = await state.scheduler.trigger(mode)

        job.status = "completed"
        job.completed_at = datetime.now(tz=_UTC).isoformat()
        job.result = {**report.model_dump(mode="json"), "partial": report.partial}

    except Exception as e:
        logger.exception("Refresh job %s failed", job.job_id)
        job.status = "failed"
        job.completed_at = datetime.now(tz=_UTC).isoformat()
        job.error = str(e)
    finally:
        state.finish_job(job)
