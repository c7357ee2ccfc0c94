"""Refresh scheduler: periodic and on-demand batch jobs.

The periodic loop is feature-gated (``scheduler.enabled``, off by default)
and only ever runs the incremental job: once at startup, then daily at
``hour:minute`` UTC. On-demand triggers work whether or not the loop runs.

Overlap policy: reject. Each job name has its own lock; triggering a job
that is already running raises ``JobAlreadyRunning`` and leaves the running
job alone. Incremental and full may run side by side; their writes to the
same symbol are serialized by the store's per-symbol lock.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone

from price_cache.cache.coordinator import CacheCoordinator, Clock, utc_now
from price_cache.core.config import SchedulerConfig
from price_cache.core.exceptions import JobAlreadyRunning
from price_cache.core.models import RefreshMode, RefreshReport

logger = logging.getLogger(__name__)


class RefreshScheduler:
    """Runs and serializes the incremental and full refresh jobs."""

    def __init__(
        self,
        coordinator: CacheCoordinator,
        config: SchedulerConfig | None = None,
        clock: Clock | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._coordinator = coordinator
        self._config = config or SchedulerConfig()
        self._clock = clock or utc_now
        self._sleep = sleep
        self._locks = {mode: asyncio.Lock() for mode in RefreshMode}
        self._task: asyncio.Task | None = None
        self.last_reports: dict[RefreshMode, RefreshReport] = {}

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    @property
    def started(self) -> bool:
        return self._task is not None and not self._task.done()

    def is_running(self, job: RefreshMode | str) -> bool:
        return self._locks[RefreshMode(job)].locked()

    def next_run_at(self, now: datetime | None = None) -> datetime:
        """The next daily slot strictly after ``now``."""
        now = (now or self._clock()).astimezone(timezone.utc)
        target = now.replace(
            hour=self._config.hour, minute=self._config.minute, second=0, microsecond=0
        )
        if target <= now:
            target += timedelta(days=1)
        return target

    # --- On demand ---

    async def trigger(self, job: RefreshMode | str) -> RefreshReport:
        """Run a batch job now, then resynchronize the store from the snapshot.

        Raises:
            JobAlreadyRunning: The same job is already in progress.
        """
        mode = RefreshMode(job)
        lock = self._locks[mode]
        if lock.locked():
            raise JobAlreadyRunning(
                f"A {mode} refresh is already running",
                context={"job": str(mode)},
            )

        async with lock:
            if mode == RefreshMode.INCREMENTAL:
                report = await self._coordinator.refresh_incremental()
            else:
                report = await self._coordinator.refresh_full()

            if report.persisted:
                await self._coordinator.store.reload()
            else:
                logger.warning(
                    "Skipping store reload after %s refresh: snapshot not persisted", mode
                )

        self.last_reports[mode] = report
        return report

    # --- Periodic ---

    async def start(self) -> None:
        """Start the daily loop if the schedule is enabled."""
        if not self.enabled:
            logger.info("Refresh schedule disabled; on-demand triggers only")
            return
        if self.started:
            return
        logger.info(
            "Refresh schedule enabled: daily incremental at %02d:%02d UTC",
            self._config.hour,
            self._config.minute,
        )
        self._task = asyncio.create_task(self._run_loop(), name="price-cache-refresh")

    async def stop(self) -> None:
        """Cancel the daily loop, including any refresh it is running."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run_loop(self) -> None:
        if self._config.run_on_startup:
            await self._run_scheduled()

        while True:
            now = self._clock()
            target = self.next_run_at(now)
            logger.info("Next incremental refresh at %s", target.isoformat())
            await self._sleep((target - now).total_seconds())
            await self._run_scheduled()

    async def _run_scheduled(self) -> None:
        try:
            await self.trigger(RefreshMode.INCREMENTAL)
        except JobAlreadyRunning:
            logger.warning("Scheduled incremental refresh skipped: already running")
        except Exception:
            # keep the schedule alive; the next slot will try again
            logger.exception("Scheduled incremental refresh failed")
