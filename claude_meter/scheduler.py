"""
Polling scheduler
=================

Decides *when* to fetch usage and how far to back off after failures.

All state is mutated on the event loop thread.  The repeating timer is an
``asyncio`` task; every tick and every externally triggered refresh passes
through the single-flight guard, so at most one fetch is ever outstanding
and ticks that fire during a fetch are dropped rather than queued.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from .config import PollingConfig

log = logging.getLogger(__name__)

Tick = Callable[[], Awaitable[Any]]


class Phase(enum.Enum):
    IDLE = 'idle'
    RUNNING = 'running'
    PAUSED = 'paused'
    BACKGROUND = 'background'


@dataclass
class SchedulerState:
    phase: Phase = Phase.IDLE
    current_interval: float = 0.0
    consecutive_failures: int = 0
    in_failure_backoff: bool = False
    last_usage: float = 0.0
    in_flight: bool = False
    sleep_started_at: float | None = None
    last_sleep_duration: float = 0.0
    network_available: bool = True


def interval_for_usage(usage: float, config: PollingConfig) -> float:
    """Return the polling interval for a usage percentage.

    A step function that polls faster as usage rises, to notice a limit
    reset sooner.  With defaults: >=90 -> 30s, >=75 -> 45s, >=50 -> 60s,
    otherwise 90s (capped at ``max_interval``).
    """
    if usage >= config.critical_usage_threshold:
        return config.min_interval
    if usage >= config.high_usage_threshold:
        return (config.min_interval + config.default_interval) / 2
    if usage >= config.medium_usage_threshold:
        return config.default_interval
    return min(config.default_interval * 1.5, config.max_interval)


class PollingScheduler:
    """Adaptive repeating timer with a circuit breaker and sleep/wake bookkeeping."""

    def __init__(self, config: PollingConfig | None = None, clock: Callable[[], float] = time.time) -> None:
        self.config = config or PollingConfig()
        # Wall clock: a monotonic clock may not advance during system sleep
        self._clock = clock
        self.state = SchedulerState(current_interval=self.config.default_interval)
        self._tick: Tick | None = None
        self._timer: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    # ── Properties ──

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def current_interval(self) -> float:
        return self.state.current_interval

    @property
    def is_running(self) -> bool:
        return self.state.phase is Phase.RUNNING

    @property
    def in_failure_backoff(self) -> bool:
        return self.state.in_failure_backoff

    @property
    def is_fetching(self) -> bool:
        return self.state.in_flight

    # ── Lifecycle ──

    def start(self, tick: Tick) -> asyncio.Task[Any] | None:
        """Start polling with *tick* and fire one guarded tick immediately.

        Must be called from the event loop, and only while idle.
        """
        self._tick = tick
        self.state.phase = Phase.RUNNING
        self._schedule(self.state.current_interval)
        log.info('Polling started (interval=%.0fs)', self.state.current_interval)
        return self.trigger()

    def stop(self) -> None:
        self._cancel_timer()
        self.state.phase = Phase.IDLE
        log.info('Polling stopped')

    def pause(self) -> None:
        self._cancel_timer()
        self.state.phase = Phase.PAUSED

    def resume(self) -> None:
        if self.state.phase not in (Phase.PAUSED, Phase.BACKGROUND):
            return
        self.state.phase = Phase.RUNNING
        self._schedule(self._normal_interval())

    def on_foreground(self) -> asyncio.Task[Any] | None:
        """Return to the adaptive interval and refresh immediately."""
        if self.state.phase is not Phase.BACKGROUND:
            return None
        self.state.phase = Phase.RUNNING
        self._schedule(self._normal_interval())
        return self.trigger()

    def on_background(self) -> None:
        if self.state.phase is not Phase.RUNNING:
            return
        self.state.phase = Phase.BACKGROUND
        # The adaptive interval is kept for the return to the foreground
        self._schedule(self.config.background_interval, keep_interval=True)

    # ── Interval adaptation ──

    def calculate_interval(self, usage: float) -> float:
        return interval_for_usage(usage, self.config)

    def update_for_usage(self, usage: float) -> None:
        """Adapt the interval to *usage*, ignoring changes within the hysteresis band."""
        self.state.last_usage = usage
        if self.state.phase is not Phase.RUNNING or self.state.in_failure_backoff:
            return

        new_interval = self.calculate_interval(usage)
        if abs(new_interval - self.state.current_interval) > self.config.interval_change_threshold:
            log.info('Polling interval %.0fs -> %.0fs (usage %.0f%%)', self.state.current_interval, new_interval, usage)
            self._schedule(new_interval)

    def update_config(self, config: PollingConfig) -> None:
        self.config = config
        if self.state.phase is Phase.RUNNING:
            self._schedule(self._normal_interval())

    def set_default_interval(self, seconds: float) -> None:
        """Clamp *seconds* into the polling bounds and apply the resulting interval.

        While idle or paused the interval is only recorded, so the next timer starts from it.
        """
        cfg = self.config
        cfg.default_interval = max(cfg.min_interval, min(seconds, cfg.max_interval))
        if not self.state.in_failure_backoff:
            self._apply_interval(self.calculate_interval(self.state.last_usage))

    # ── Circuit breaker ──

    def record_success(self) -> None:
        self.state.consecutive_failures = 0
        if not self.state.in_failure_backoff:
            return

        self.state.in_failure_backoff = False
        interval = self.calculate_interval(self.state.last_usage)
        log.info('Fetch succeeded, leaving failure backoff (interval=%.0fs)', interval)
        self._apply_interval(interval)

    def record_failure(self) -> None:
        self.state.consecutive_failures += 1
        if self.state.in_failure_backoff or self.state.consecutive_failures < self.config.max_consecutive_failures:
            return

        self.state.in_failure_backoff = True
        log.warning(
            '%d consecutive failures, backing off to %.0fs',
            self.state.consecutive_failures, self.config.failure_backoff_interval,
        )
        self._apply_interval(self.config.failure_backoff_interval)

    # ── Sleep / wake ──

    def on_suspend(self, at: float | None = None) -> None:
        """Pause polling; *at* backdates the suspend time when it is detected late."""
        self.state.sleep_started_at = self._clock() if at is None else at
        self.pause()
        log.info('System going to sleep, polling paused')

    def on_resume(self) -> float:
        """Record the wake-up and return the sleep duration in seconds.

        Leaves the timer unscheduled; the caller runs wake recovery and then
        calls :meth:`schedule_post_wake_timer`.
        """
        started = self.state.sleep_started_at
        duration = max(0.0, self._clock() - started) if started is not None else 0.0
        self.state.sleep_started_at = None
        self.state.last_sleep_duration = duration
        self.state.phase = Phase.RUNNING
        log.info('System woke after %.0fs sleep', duration)
        return duration

    def schedule_post_wake_timer(self) -> None:
        if self.state.phase is not Phase.RUNNING:
            return
        self._schedule(self._normal_interval())
        log.info('Post-wake timer scheduled at %.0fs interval', self.state.current_interval)

    # ── Network ──

    def set_network_available(self, available: bool) -> bool:
        """Record reachability; return True when the network just came back."""
        was_available = self.state.network_available
        self.state.network_available = available
        if was_available and not available:
            log.warning('Network became unavailable')
        restored = available and not was_available
        if restored:
            log.info('Network became available')
        return restored

    # ── Single-flight guard ──

    def begin_fetch(self) -> bool:
        if self.state.in_flight:
            log.debug('Fetch already in progress, skipping')
            return False
        self.state.in_flight = True
        return True

    def end_fetch(self) -> None:
        self.state.in_flight = False

    async def run_guarded(self, fetch: Tick) -> bool:
        """Run *fetch* under the single-flight guard; return False if it was skipped."""
        if not self.begin_fetch():
            return False
        try:
            await fetch()
        finally:
            self.end_fetch()
        return True

    def trigger(self) -> asyncio.Task[Any] | None:
        """Fire one guarded tick now. Returns the tick task, or None if dropped."""
        if self._tick is None:
            return None
        loop = asyncio.get_running_loop()
        if not self.begin_fetch():
            return None
        tick = self._tick

        async def guarded() -> None:
            try:
                await tick()
            except Exception:
                log.exception('Polling tick failed')
            finally:
                self.end_fetch()

        task = loop.create_task(guarded())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ── Timer ──

    def _normal_interval(self) -> float:
        if self.state.in_failure_backoff:
            return self.config.failure_backoff_interval
        return self.calculate_interval(self.state.last_usage)

    def _apply_interval(self, interval: float) -> None:
        if self.state.phase is Phase.RUNNING:
            self._schedule(interval)
        else:
            self.state.current_interval = interval

    def _schedule(self, interval: float, keep_interval: bool = False) -> None:
        self._cancel_timer()
        if not keep_interval:
            self.state.current_interval = interval
        self._timer = asyncio.get_running_loop().create_task(self._run_timer(interval))

    async def _run_timer(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.trigger()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
