"""
Sleep/wake detection
====================

Portable suspend detection without OS power notifications: a short
watchdog tick compares the wall clock against the monotonic clock.  The
monotonic clock stops while the machine is suspended, so a wall-clock gap
well beyond the monotonic one means the system slept in between.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

log = logging.getLogger(__name__)

WATCH_INTERVAL = 5
SLEEP_GAP = 30


class SleepWatcher:
    """Call *on_wake(suspended_at, woke_at)* with wall-clock times after a detected sleep."""

    def __init__(
        self,
        on_wake: Callable[[float, float], None],
        interval: float = WATCH_INTERVAL,
        gap: float = SLEEP_GAP,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.on_wake = on_wake
        self.interval = interval
        self.gap = gap
        self._clock = clock
        self._monotonic = monotonic
        self._last_wall = clock()
        self._last_mono = monotonic()
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        if self._task is None:
            self.mark()
            self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def mark(self) -> None:
        self._last_wall = self._clock()
        self._last_mono = self._monotonic()

    def check(self) -> bool:
        """Compare both clocks against the last mark; return True if a sleep was detected."""
        wall, mono = self._clock(), self._monotonic()
        lost = (wall - self._last_wall) - (mono - self._last_mono)
        suspended_at = self._last_wall
        self._last_wall, self._last_mono = wall, mono
        if lost < self.gap:
            return False

        log.info('Detected system sleep of about %.0fs', lost)
        self.on_wake(suspended_at, wall)
        return True

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.check()
            except Exception:
                log.exception('Wake handler failed')
