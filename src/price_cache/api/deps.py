"""Dependency injection for FastAPI routes."""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field

from fastapi import Request
from fastapi.responses import JSONResponse

from price_cache.cache.coordinator import CacheCoordinator
from price_cache.cache.scheduler import RefreshScheduler
from price_cache.catalog import AssetCatalog
from price_cache.core.config import PriceCacheConfig
from price_cache.prices.store import PriceStore


@dataclass
class JobStatus:
    """Tracks a background refresh job."""

    job_id: str
    job: str  # "incremental" | "full"
    status: str  # "pending" | "running" | "completed" | "failed"
    created_at: str  # ISO-8601
    completed_at: str | None = None
    result: dict | None = None
    error: str | None = None


MAX_FINISHED_JOBS = 100


@dataclass
class AppState:
    """Shared application state, attached to app.state during lifespan.

    ``active`` maps a job name to the id of its accepted, unfinished job.
    It is claimed in the request handler itself so a second trigger is
    rejected even before the first job's background task has started.
    """

    config: PriceCacheConfig
    catalog: AssetCatalog
    store: PriceStore
    coordinator: CacheCoordinator
    scheduler: RefreshScheduler
    jobs: dict[str, JobStatus] = field(default_factory=dict)
    active: dict[str, str] = field(default_factory=dict)
    max_finished_jobs: int = MAX_FINISHED_JOBS

    def add_job(self, job: JobStatus) -> None:
        """Register an accepted job and claim its name."""
        self.jobs[job.job_id] = job
        self.active[job.job] = job.job_id
        self._evict_finished()

    def finish_job(self, job: JobStatus) -> None:
        """Release the job's name once it has completed or failed."""
        if self.active.get(job.job) == job.job_id:
            del self.active[job.job]
        self._evict_finished()

    def _evict_finished(self) -> None:
        finished = [
            job_id
            for job_id, job in self.jobs.items()
            if job.status in ("completed", "failed")
        ]
        # insertion order is creation order; drop the oldest first
        for job_id in finished[: max(0, len(finished) - self.max_finished_jobs)]:
            del self.jobs[job_id]


def get_app_state(request: Request) -> AppState:
    """Dependency: retrieve AppState from the request."""
    return request.app.state.app_state


def get_store(request: Request) -> PriceStore:
    """Dependency: retrieve the price store."""
    return request.app.state.app_state.store


def get_coordinator(request: Request) -> CacheCoordinator:
    """Dependency: retrieve the cache coordinator."""
    return request.app.state.app_state.coordinator


def get_scheduler(request: Request) -> RefreshScheduler:
    """Dependency: retrieve the refresh scheduler."""
    return request.app.state.app_state.scheduler


ADMIN_PREFIX = "/api/admin/"
ADMIN_SECRET_HEADER = "X-Admin-Secret"


async def admin_secret_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware: require the shared secret on admin routes when one is configured."""
    if not request.url.path.startswith(ADMIN_PREFIX):
        return await call_next(request)

    config = request.app.state.app_state.config
    expected = config.api.admin_secret
    if expected:
        supplied = request.headers.get(ADMIN_SECRET_HEADER, "")
        if not secrets.compare_digest(supplied.encode(), expected.encode()):
            return JSONResponse(
                status_code=401,
                content={"error": "Unauthorized", "detail": "Invalid or missing admin secret"},
            )
    return await call_next(request)
