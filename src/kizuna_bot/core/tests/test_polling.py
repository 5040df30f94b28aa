"""
Tests for the polling driver shared by all engines.

These tests verify:
- Ticks run on the interval and never overlap
- stop() wakes an idle loop and no tick starts afterwards
- An in-flight tick gets the grace period, then is cancelled
- A raising tick does not kill the loop
"""
import asyncio

import pytest

from kizuna_bot.core.polling import PollingEngine
from kizuna_bot.errors import InvalidConfigError


class CountingEngine(PollingEngine):
    name = "counting"

    def __init__(self, interval=0.01, grace=1.0, tick_body=None):
        super().__init__(interval, shutdown_grace_seconds=grace)
        self.ticks = 0
        self._tick_body = tick_body

    async def _tick(self):
        self.ticks += 1
        if self._tick_body is not None:
            await self._tick_body(self)


class TestLifecycle:
    """Tests for start/stop."""

    def test_rejects_non_positive_interval(self):
        with pytest.raises(InvalidConfigError):
            CountingEngine(interval=0)

    @pytest.mark.asyncio
    async def test_ticks_until_stopped(self):
        engine = CountingEngine(interval=0.01)

        await engine.start()
        assert engine.is_running
        await asyncio.sleep(0.08)
        await engine.stop()

        assert engine.ticks >= 2
        assert not engine.is_running

        count = engine.ticks
        await asyncio.sleep(0.05)
        assert engine.ticks == count

    @pytest.mark.asyncio
    async def test_stop_wakes_idle_loop_immediately(self):
        engine = CountingEngine(interval=60)
        await engine.start()

        await asyncio.wait_for(engine.stop(), timeout=1.0)

        assert engine.ticks == 0

    @pytest.mark.asyncio
    async def test_run_immediately(self):
        engine = CountingEngine(interval=60)

        await engine.start(run_immediately=True)
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        await engine.stop()

        assert engine.ticks == 1

    @pytest.mark.asyncio
    async def test_double_start_is_ignored(self):
        engine = CountingEngine(interval=60)
        await engine.start()
        task = engine._task

        await engine.start()

        assert engine._task is task
        await engine.stop()

    @pytest.mark.asyncio
    async def test_stop_when_not_running_is_noop(self):
        engine = CountingEngine()
        await engine.stop()
        assert not engine.is_running

    @pytest.mark.asyncio
    async def test_restart_after_stop(self):
        engine = CountingEngine(interval=0.01)
        await engine.start()
        await engine.stop()

        await engine.start(interval_seconds=0.02)
        await asyncio.sleep(0.07)
        await engine.stop()

        assert engine.interval_seconds == 0.02
        assert engine.ticks >= 1


class TestTicks:
    """Tests for tick execution."""

    @pytest.mark.asyncio
    async def test_overlapping_run_tick_is_skipped(self):
        release = asyncio.Event()

        async def slow(engine):
            await release.wait()

        engine = CountingEngine(tick_body=slow)
        first = asyncio.create_task(engine.run_tick())
        await asyncio.sleep(0)

        assert await engine.run_tick() is False

        release.set()
        assert await first is True
        assert engine.ticks == 1
        assert engine.tick_count == 1

    @pytest.mark.asyncio
    async def test_raising_tick_keeps_loop_alive(self):
        async def broken(engine):
            raise RuntimeError("tick failed")

        engine = CountingEngine(interval=0.01, tick_body=broken)
        await engine.start()
        await asyncio.sleep(0.08)
        await engine.stop()

        assert engine.ticks >= 2

    @pytest.mark.asyncio
    async def test_in_flight_tick_finishes_within_grace(self):
        finished = []

        async def slowish(engine):
            await asyncio.sleep(0.05)
            finished.append(True)

        engine = CountingEngine(interval=0.01, grace=1.0, tick_body=slowish)
        await engine.start()
        await asyncio.sleep(0.03)  # First tick is in flight
        await engine.stop()

        assert finished == [True]

    @pytest.mark.asyncio
    async def test_in_flight_tick_cancelled_after_grace(self):
        cancelled = []

        async def stuck(engine):
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(True)
                raise

        engine = CountingEngine(interval=0.01, grace=0.05, tick_body=stuck)
        await engine.start()
        await asyncio.sleep(0.03)

        await asyncio.wait_for(engine.stop(), timeout=1.0)

        assert cancelled == [True]

    @pytest.mark.asyncio
    async def test_stop_from_inside_tick(self):
        async def stop_self(engine):
            await engine.stop()

        engine = CountingEngine(interval=0.01, tick_body=stop_self)
        await engine.start()
        await asyncio.sleep(0.08)

        assert not engine.is_running
        assert engine.ticks == 1
