"""Testes para application/maintenance.py."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from server_pool.application.maintenance import MaintenanceScheduler


class _Sleeper:
    """Espera falsa: retorna na hora até ``free`` chamadas, depois bloqueia."""

    def __init__(self, free: int = 0) -> None:
        self.calls: list[float] = []
        self._free = free

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if len(self.calls) > self._free:
            await asyncio.Event().wait()
        await asyncio.sleep(0)


def _engine() -> MagicMock:
    engine = MagicMock()
    engine.prune_blacklist = AsyncMock(return_value=0)
    engine.fetch_bulk = AsyncMock()
    return engine


async def _settle() -> None:
    for _ in range(20):
        await asyncio.sleep(0)


class TestMaintenanceScheduler:
    @pytest.mark.asyncio
    async def test_fetch_on_startup(self) -> None:
        engine = _engine()
        sleeper = _Sleeper()
        scheduler = MaintenanceScheduler(
            engine,
            prune_interval_seconds=3600,
            refresh_interval_seconds=300,
            fetch_on_startup=True,
            sleep=sleeper,
        )

        scheduler.start()
        await _settle()

        engine.fetch_bulk.assert_awaited_once()
        engine.prune_blacklist.assert_not_awaited()
        assert sorted(sleeper.calls) == [300, 3600]
        assert scheduler.running

        await scheduler.stop()
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_without_startup_fetch_waits_first(self) -> None:
        engine = _engine()
        scheduler = MaintenanceScheduler(engine, fetch_on_startup=False, sleep=_Sleeper())

        scheduler.start()
        await _settle()

        engine.fetch_bulk.assert_not_awaited()
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_jobs_repeat(self) -> None:
        engine = _engine()
        scheduler = MaintenanceScheduler(engine, fetch_on_startup=False, sleep=_Sleeper(free=6))

        scheduler.start()
        await _settle()

        assert engine.prune_blacklist.await_count >= 2
        assert engine.fetch_bulk.await_count >= 2
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self) -> None:
        scheduler = MaintenanceScheduler(_engine(), sleep=_Sleeper())
        scheduler.start()
        tasks = list(scheduler._tasks)
        scheduler.start()
        assert scheduler._tasks == tasks
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_schedule(self) -> None:
        engine = _engine()
        engine.fetch_bulk = AsyncMock(side_effect=[RuntimeError("boom"), None, None, None])
        scheduler = MaintenanceScheduler(engine, fetch_on_startup=True, sleep=_Sleeper(free=4))

        scheduler.start()
        await _settle()

        assert engine.fetch_bulk.await_count >= 2
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_run_job_isolates_errors(self) -> None:
        scheduler = MaintenanceScheduler(_engine(), sleep=_Sleeper())
        action = AsyncMock(side_effect=ValueError("bad"))
        assert await scheduler.run_job("cache_refresh", action) is None

    @pytest.mark.asyncio
    async def test_run_job_propagates_cancel(self) -> None:
        scheduler = MaintenanceScheduler(_engine(), sleep=_Sleeper())
        action = AsyncMock(side_effect=asyncio.CancelledError())
        with pytest.raises(asyncio.CancelledError):
            await scheduler.run_job("cache_refresh", action)

    @pytest.mark.asyncio
    async def test_stop_without_start(self) -> None:
        scheduler = MaintenanceScheduler(_engine(), sleep=_Sleeper())
        await scheduler.stop()
        assert not scheduler.running
