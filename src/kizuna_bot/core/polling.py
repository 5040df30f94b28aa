"""
PollingEngine - Base class for the periodic engines.

One asyncio task per engine waits on a stop event with the tick interval as
timeout, then runs one tick. Ticks never overlap: a slow tick delays the
next one, and run_tick() called while a tick is in flight is skipped.

Stopping sets the stop event, which wakes an idle loop immediately. A tick
already in flight gets a grace period to finish (so submitted transfers are
recorded) before it is cancelled.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from kizuna_bot.errors import InvalidConfigError

logger = logging.getLogger(__name__)


class PollingEngine:
    """
    Non-overlapping periodic driver. Subclasses implement ``_tick``.

    Usage:
        engine = SomeEngine(...)
        await engine.start(interval_seconds=5.0)
        ...
        await engine.stop()
    """

    name = "engine"

    def __init__(
        self,
        interval_seconds: float,
        shutdown_grace_seconds: float = 5.0,
    ) -> None:
        if interval_seconds <= 0:
            raise InvalidConfigError(f"interval must be > 0, got {interval_seconds}")
        self._interval = interval_seconds
        self._shutdown_grace = shutdown_grace_seconds

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._tick_lock = asyncio.Lock()
        self._tick_count = 0

    @property
    def is_running(self) -> bool:
        """Whether the polling loop is running."""
        return self._running

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def tick_count(self) -> int:
        """Number of ticks executed so far."""
        return self._tick_count

    def set_interval(self, interval_seconds: float) -> None:
        """Change the tick interval. Takes effect after the current wait."""
        if interval_seconds <= 0:
            raise InvalidConfigError(f"interval must be > 0, got {interval_seconds}")
        self._interval = interval_seconds

    async def start(
        self,
        interval_seconds: Optional[float] = None,
        run_immediately: bool = False,
    ) -> None:
        """Start the polling loop."""
        if self._running:
            logger.warning(f"{self.name} already running")
            return

        if interval_seconds is not None:
            self.set_interval(interval_seconds)

        self._running = True
        # Fresh event per run: a loop stopped from inside its own tick
        # must not see a later restart
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(
            self._loop(self._stop_event, run_immediately),
            name=f"{self.name}_loop",
        )
        logger.info(f"Started {self.name} (interval={self._interval}s)")

    async def stop(self) -> None:
        """Stop the loop. No tick starts after this returns."""
        if not self._running:
            return

        self._running = False
        self._stop_event.set()

        task, self._task = self._task, None
        if task is None or task.done():
            logger.info(f"Stopped {self.name}")
            return

        if task is asyncio.current_task():
            # Stopped from inside our own tick; the loop exits after it
            logger.info(f"Stopping {self.name} after current tick")
            return

        try:
            await asyncio.wait_for(task, timeout=self._shutdown_grace)
        except asyncio.TimeoutError:
            logger.warning(
                f"{self.name} tick still running after {self._shutdown_grace}s, cancelled"
            )
        except asyncio.CancelledError:
            pass

        logger.info(f"Stopped {self.name}")

    async def run_tick(self) -> bool:
        """
        Run one tick now.

        Returns:
            False if skipped because another tick is in flight
        """
        if self._tick_lock.locked():
            logger.debug(f"{self.name} tick already in flight, skipping")
            return False

        async with self._tick_lock:
            self._tick_count += 1
            await self._tick()
        return True

    async def _tick(self) -> None:
        raise NotImplementedError

    async def _safe_tick(self) -> None:
        try:
            await self.run_tick()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in {self.name} tick: {e}", exc_info=True)

    async def _loop(self, stop_event: asyncio.Event, run_immediately: bool) -> None:
        if run_immediately and not stop_event.is_set():
            await self._safe_tick()

        while not stop_event.is_set():
            try:
                # Wait for interval or stop
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self._interval)
                    break  # Stop requested
                except asyncio.TimeoutError:
                    pass

                if stop_event.is_set():
                    break

                await self._safe_tick()

            except asyncio.CancelledError:
                break
