"""
Usage monitor
=============

Wires the polling scheduler, the usage client and the threshold engine to
the credential, cache and notification collaborators.

Every method here runs on the event loop.  Fetches from any source (timer,
manual refresh, wake recovery, network restore) share the scheduler's
single-flight guard.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol

from .api import UsageClient
from .config import NotificationConfig, Settings, WakeRecoveryConfig
from .credentials import CredentialProvider
from .errors import AuthenticationError, CredentialsExpiredError, MeterError, UnauthorizedError
from .models import Credentials, UsageSnapshot
from .notifier import NotificationSink
from .scheduler import PollingScheduler
from .thresholds import Alert, ThresholdEngine

log = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class UsageCache(Protocol):
    def store(self, snapshot: UsageSnapshot) -> None: ...

    def load_last_known(self, max_age: float | None = None) -> UsageSnapshot | None: ...

    def clear(self) -> None: ...


@dataclass(frozen=True)
class MonitorStatus:
    usage: UsageSnapshot | None
    error: MeterError | None
    is_loading: bool
    last_update: datetime | None
    from_cache: bool
    degraded: bool

    @property
    def needs_login(self) -> bool:
        return isinstance(self.error, AuthenticationError)


class UsageMonitor:
    """Application core: polling, fetching, alerting and sleep/wake recovery."""

    def __init__(
        self,
        credentials: CredentialProvider,
        client: UsageClient,
        scheduler: PollingScheduler,
        engine: ThresholdEngine,
        cache: UsageCache,
        sink: NotificationSink,
        settings: Settings | None = None,
        wake_config: WakeRecoveryConfig | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.credentials = credentials
        self.client = client
        self.scheduler = scheduler
        self.engine = engine
        self.cache = cache
        self.sink = sink
        self.settings = (settings or Settings()).validate()
        self.wake_config = wake_config or WakeRecoveryConfig()
        self._sleep = sleep

        self.usage_data: UsageSnapshot | None = None
        self.error: MeterError | None = None
        self.is_loading = False
        self.last_update: datetime | None = None
        self.from_cache = False

        # Last successfully fetched snapshot; survives invalidation of the displayed data
        self._last_success: UsageSnapshot | None = None
        self._blocked_token: str | None = None
        self._wake_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._listeners: list[Callable[[MonitorStatus], None]] = []

    @property
    def notification_config(self) -> NotificationConfig:
        return self.engine.config

    @property
    def status(self) -> MonitorStatus:
        return MonitorStatus(
            usage=self.usage_data,
            error=self.error,
            is_loading=self.is_loading,
            last_update=self.last_update,
            from_cache=self.from_cache,
            degraded=self.scheduler.in_failure_backoff,
        )

    def add_listener(self, callback: Callable[[MonitorStatus], None]) -> None:
        self._listeners.append(callback)

    # ── Lifecycle ──

    def start(self) -> asyncio.Task[Any] | None:
        """Show the last cached reading, then start polling with an immediate fetch."""
        cached = self.cache.load_last_known()
        if cached is not None and self.usage_data is None:
            log.info('Loaded cached usage from %s', cached.fetched_at)
            self.usage_data = self._last_success = cached
            self.from_cache = True
            self._publish()

        self.scheduler.set_default_interval(self.settings.refresh_interval)
        return self.scheduler.start(self._poll)

    def stop(self) -> None:
        self._cancel_wake_recovery()
        self.scheduler.stop()

    def apply_settings(self, settings: Settings) -> None:
        self.settings = settings.validate()
        self.scheduler.set_default_interval(self.settings.refresh_interval)

    async def refresh(self) -> bool:
        """User-requested refresh; also retries credentials blocked by a 401.

        Returns False if a fetch was already in flight.
        """
        self._blocked_token = None
        return await self.scheduler.run_guarded(self._poll)

    async def force_refresh(self) -> bool:
        self.cache.clear()
        return await self.refresh()

    async def validate_credentials(self) -> bool:
        try:
            creds = self.credentials.get_token()
        except MeterError:
            return False
        return await self.client.validate_token(creds.access_token)

    def on_foreground(self) -> None:
        self.scheduler.on_foreground()

    def on_background(self) -> None:
        self.scheduler.on_background()

    # ── Fetch ──

    async def _poll(self) -> None:
        creds: Credentials | None = None
        self.is_loading = True
        try:
            creds = self.credentials.get_token()
            if self._blocked_token is not None:
                if creds.access_token == self._blocked_token:
                    log.debug('Credentials unchanged since the last 401, skipping fetch')
                    return
                log.info('Credentials changed, resuming polling')
                self._blocked_token = None

            if not creds.is_valid():
                raise CredentialsExpiredError()
            self._warn_if_expiring(creds)

            snapshot = await self.client.fetch_with_retry(creds.access_token)
        except MeterError as e:
            self._on_failure(e, creds)
        else:
            self._on_success(snapshot)
        finally:
            self.is_loading = False
            self._publish()

    def _on_success(self, snapshot: UsageSnapshot) -> None:
        previous = self._last_success
        self._last_success = snapshot
        self.usage_data = snapshot
        self.error = None
        self.from_cache = False
        self.last_update = datetime.now(timezone.utc)
        self.cache.store(snapshot)

        if self.settings.notifications_enabled:
            try:
                evaluation = self.engine.evaluate(snapshot, previous, self.settings.notify_at)
            except OSError as e:
                log.error('Notification state not saved, skipping alerts: %s', e)
            else:
                self._dispatch(evaluation.alerts)

        self.scheduler.update_for_usage(snapshot.max_utilization())
        self.scheduler.record_success()

    def _on_failure(self, error: MeterError, creds: Credentials | None) -> None:
        self.error = error
        self.scheduler.record_failure()

        if isinstance(error, UnauthorizedError) and creds is not None:
            self._blocked_token = creds.access_token
            log.warning('Token rejected (401), automatic fetches paused until credentials change')
        else:
            log.warning('Usage fetch failed: %s', error)

        # Cached data must not hide an authentication problem
        if error.retryable and self.usage_data is None:
            cached = self.cache.load_last_known()
            if cached is not None:
                log.info('Showing cached usage from %s', cached.fetched_at)
                self.usage_data = cached
                self.from_cache = True

    def _warn_if_expiring(self, creds: Credentials) -> None:
        threshold = self.notification_config.credential_expiry_warning
        if not self.settings.notifications_enabled or not creds.is_expiring_soon(threshold):
            return
        try:
            alert = self.engine.credential_expiring(creds.seconds_until_expiry())
        except OSError as e:
            log.error('Notification state not saved: %s', e)
            return
        if alert is not None:
            self._dispatch([alert])

    def _dispatch(self, alerts: list[Alert]) -> None:
        for alert in alerts:
            try:
                self.sink.send(alert.title, alert.body, alert.dedupe_id)
            except Exception:
                log.exception('Failed to deliver notification %s', alert.dedupe_id)

    def _publish(self) -> None:
        status = self.status
        for callback in self._listeners:
            try:
                callback(status)
            except Exception:
                log.exception('Status listener failed')

    # ── Sleep / wake ──

    def invalidate_stale_data(self) -> None:
        """Drop the displayed reading so the UI shows loading instead of outdated values."""
        self.usage_data = None
        self.error = None
        self.is_loading = True
        self._publish()
        log.info('Stale data invalidated')

    def on_suspend(self, at: float | None = None) -> None:
        self._cancel_wake_recovery()
        self.scheduler.on_suspend(at)

    def on_resume(self) -> asyncio.Task[None]:
        """Start wake recovery, replacing any recovery still in progress."""
        self._cancel_wake_recovery()
        duration = self.scheduler.on_resume()
        if duration >= self.wake_config.significant_sleep:
            log.info('Significant sleep (%.0fs)', duration)
            self.invalidate_stale_data()

        self._wake_task = asyncio.get_running_loop().create_task(self._wake_recovery())
        return self._wake_task

    async def _wake_recovery(self) -> None:
        cfg = self.wake_config
        try:
            await self._sleep(cfg.initial_delay)
            total = len(cfg.retry_delays)
            for index, delay in enumerate(cfg.retry_delays):
                log.info('Wake recovery attempt %d/%d', index + 1, total)
                await self.scheduler.run_guarded(self._poll)

                if self.error is None and self.usage_data is not None:
                    log.info('Wake recovery succeeded on attempt %d', index + 1)
                    self.scheduler.schedule_post_wake_timer()
                    return

                if index < total - 1:
                    await self._sleep(delay)

            log.info('Wake recovery exhausted all retries, falling back to normal polling')
            self.scheduler.schedule_post_wake_timer()
        except asyncio.CancelledError:
            log.debug('Wake recovery cancelled')
            raise

    def _cancel_wake_recovery(self) -> None:
        if self._wake_task is not None and not self._wake_task.done():
            self._wake_task.cancel()
        self._wake_task = None

    # ── Network ──

    def on_network_change(self, available: bool) -> None:
        if self.scheduler.set_network_available(available):
            self.on_network_restored()

    def on_network_restored(self) -> asyncio.Task[Any] | None:
        """Fetch immediately if polling is running and no data is held."""
        if not self.scheduler.is_running or self.usage_data is not None:
            return None

        log.info('Network available with no data, refreshing')
        task = asyncio.get_running_loop().create_task(self.scheduler.run_guarded(self._poll))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
