"""Tests for price_cache.cache.scheduler (RefreshScheduler)."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from price_cache.cache.coordinator import CacheCoordinator
from price_cache.cache.scheduler import RefreshScheduler
from price_cache.core.config import SchedulerConfig
from price_cache.core.exceptions import JobAlreadyRunning, StorageError
from price_cache.core.models import RefreshMode


async def _wait_until(predicate, attempts: int = 100) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


@pytest.fixture
def gate() -> asyncio.Event:
    return asyncio.Event()


@pytest.fixture
def gated_coordinator(coordinator: CacheCoordinator, provider, gate: asyncio.Event, monkeypatch):
    """Coordinator whose provider calls block until ``gate`` is set."""
    original = provider.fetch_series

    async def gated_fetch(*args, **kwargs):
        await gate.wait()
        return await original(*args, **kwargs)

    monkeypatch.setattr(provider, "fetch_series", gated_fetch)
    return coordinator


class TestTrigger:
    async def test_runs_incremental(self, coordinator: CacheCoordinator, clock):
        scheduler = RefreshScheduler(coordinator, clock=clock)
        report = await scheduler.trigger("incremental")
        assert report.mode == RefreshMode.INCREMENTAL
        assert scheduler.last_reports[RefreshMode.INCREMENTAL] is report

    async def test_runs_full(self, coordinator: CacheCoordinator, provider, points):
        provider.script("AAA", points(("2024-04-30", 1.0)))
        scheduler = RefreshScheduler(coordinator)
        report = await scheduler.trigger(RefreshMode.FULL)
        assert report.mode == RefreshMode.FULL
        assert report.refreshed == ["AAA"]

    async def test_unknown_job_rejected(self, coordinator: CacheCoordinator):
        with pytest.raises(ValueError):
            await RefreshScheduler(coordinator).trigger("weekly")

    async def test_reloads_store_after_persist(self, coordinator: CacheCoordinator, store, monkeypatch):
        reloads = []

        async def fake_reload() -> int:
            reloads.append(1)
            return 0

        monkeypatch.setattr(store, "reload", fake_reload)
        await RefreshScheduler(coordinator).trigger("incremental")
        assert reloads == [1]

    async def test_skips_reload_when_not_persisted(self, coordinator: CacheCoordinator, store, monkeypatch):
        reloads = []

        async def fake_reload() -> int:
            reloads.append(1)
            return 0

        async def failing_persist() -> None:
            raise StorageError("read-only file system")

        monkeypatch.setattr(store, "reload", fake_reload)
        monkeypatch.setattr(store, "persist", failing_persist)

        report = await RefreshScheduler(coordinator).trigger("incremental")

        assert not report.persisted
        assert reloads == []


class TestOverlap:
    async def test_same_job_rejected_while_running(self, gated_coordinator, gate: asyncio.Event):
        scheduler = RefreshScheduler(gated_coordinator)
        running = asyncio.create_task(scheduler.trigger(RefreshMode.FULL))
        await _wait_until(lambda: scheduler.is_running(RefreshMode.FULL))

        with pytest.raises(JobAlreadyRunning) as exc_info:
            await scheduler.trigger(RefreshMode.FULL)
        assert exc_info.value.context["job"] == "full"

        gate.set()
        report = await running
        assert report.mode == RefreshMode.FULL
        assert not scheduler.is_running("full")

    async def test_other_job_may_run_alongside(self, gated_coordinator, gate: asyncio.Event):
        scheduler = RefreshScheduler(gated_coordinator)
        full = asyncio.create_task(scheduler.trigger(RefreshMode.FULL))
        await _wait_until(lambda: scheduler.is_running(RefreshMode.FULL))

        incremental = asyncio.create_task(scheduler.trigger(RefreshMode.INCREMENTAL))
        await _wait_until(lambda: scheduler.is_running(RefreshMode.INCREMENTAL))

        gate.set()
        reports = await asyncio.gather(full, incremental)
        assert [r.mode for r in reports] == [RefreshMode.FULL, RefreshMode.INCREMENTAL]


class TestNextRun:
    def _scheduler(self, coordinator, **kwargs) -> RefreshScheduler:
        return RefreshScheduler(coordinator, SchedulerConfig(**kwargs))

    def test_later_today(self, coordinator):
        scheduler = self._scheduler(coordinator, hour=0, minute=5)
        now = datetime(2024, 5, 1, 0, 4, tzinfo=timezone.utc)
        assert scheduler.next_run_at(now) == datetime(2024, 5, 1, 0, 5, tzinfo=timezone.utc)

    def test_tomorrow(self, coordinator):
        scheduler = self._scheduler(coordinator, hour=0, minute=5)
        now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        assert scheduler.next_run_at(now) == datetime(2024, 5, 2, 0, 5, tzinfo=timezone.utc)

    def test_exact_slot_moves_to_next_day(self, coordinator):
        scheduler = self._scheduler(coordinator, hour=6, minute=30)
        now = datetime(2024, 5, 1, 6, 30, tzinfo=timezone.utc)
        assert scheduler.next_run_at(now) == datetime(2024, 5, 2, 6, 30, tzinfo=timezone.utc)

    def test_month_rollover(self, coordinator):
        scheduler = self._scheduler(coordinator, hour=0, minute=5)
        now = datetime(2024, 1, 31, 23, 0, tzinfo=timezone.utc)
        assert scheduler.next_run_at(now) == datetime(2024, 2, 1, 0, 5, tzinfo=timezone.utc)


class TestLoop:
    def _recording_sleep(self, parked: asyncio.Event, limit: int):
        delays: list[float] = []

        async def sleep(seconds: float) -> None:
            delays.append(seconds)
            if len(delays) >= limit:
                parked.set()
                await asyncio.Event().wait()

        return sleep, delays

    def _counting_refresh(self, coordinator, monkeypatch, fail_first: bool = False):
        runs: list[int] = []
        original = coordinator.refresh_incremental

        async def refresh():
            runs.append(1)
            if fail_first and len(runs) == 1:
                raise RuntimeError("provider exploded")
            return await original()

        monkeypatch.setattr(coordinator, "refresh_incremental", refresh)
        return runs

    async def test_disabled_does_not_start(self, coordinator):
        scheduler = RefreshScheduler(coordinator, SchedulerConfig(enabled=False))
        await scheduler.start()
        assert not scheduler.started
        await scheduler.stop()

    async def test_runs_at_startup_then_daily(self, coordinator, clock, monkeypatch):
        runs = self._counting_refresh(coordinator, monkeypatch)
        parked = asyncio.Event()
        sleep, delays = self._recording_sleep(parked, limit=2)
        scheduler = RefreshScheduler(
            coordinator,
            SchedulerConfig(enabled=True, run_on_startup=True, hour=0, minute=5),
            clock=clock,
            sleep=sleep,
        )

        await scheduler.start()
        assert scheduler.started
        await asyncio.wait_for(parked.wait(), timeout=5)

        # startup run, one sleep, one scheduled run, then parked in the second sleep
        assert len(runs) == 2
        # 12:00 -> 00:05 next day
        assert delays == [12 * 3600 + 5 * 60] * 2

        await scheduler.stop()
        assert not scheduler.started

    async def test_no_startup_run(self, coordinator, clock, monkeypatch):
        runs = self._counting_refresh(coordinator, monkeypatch)
        parked = asyncio.Event()
        sleep, _ = self._recording_sleep(parked, limit=1)
        scheduler = RefreshScheduler(
            coordinator,
            SchedulerConfig(enabled=True, run_on_startup=False),
            clock=clock,
            sleep=sleep,
        )

        await scheduler.start()
        await asyncio.wait_for(parked.wait(), timeout=5)
        assert runs == []
        await scheduler.stop()

    async def test_failed_run_keeps_schedule_alive(self, coordinator, clock, monkeypatch):
        runs = self._counting_refresh(coordinator, monkeypatch, fail_first=True)
        parked = asyncio.Event()
        sleep, _ = self._recording_sleep(parked, limit=2)
        scheduler = RefreshScheduler(
            coordinator,
            SchedulerConfig(enabled=True, run_on_startup=True),
            clock=clock,
            sleep=sleep,
        )

        await scheduler.start()
        await asyncio.wait_for(parked.wait(), timeout=5)
        assert len(runs) == 2
        assert not scheduler.is_running(RefreshMode.INCREMENTAL)
        await scheduler.stop()

    async def test_scheduled_run_skipped_when_busy(self, coordinator, monkeypatch):
        scheduler = RefreshScheduler(coordinator)

        async def busy(job):
            raise JobAlreadyRunning("busy", context={"job": str(job)})

        monkeypatch.setattr(scheduler, "trigger", busy)
        await scheduler._run_scheduled()
