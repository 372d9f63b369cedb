"""
Threshold engine
================

Turns two successive usage snapshots into a minimal set of alerts.

Per window, a threshold fires once when usage crosses it upward and is
re-armed only after usage falls more than the hysteresis buffer below it.
A large drop to a low value counts as a window reset, which re-arms every
threshold of that window.  Crossings from one evaluation are aggregated
into a single alert, and every alert kind is throttled independently.

The notification memory is persisted before it replaces the in-memory
copy, so the two never disagree after a failed write.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Protocol

from .config import NotificationConfig
from .models import UsageSnapshot, WindowName

log = logging.getLogger(__name__)

KIND_RESET = 'limit_reset'
KIND_CREDENTIAL_EXPIRING = 'credential_expiring'

NotifiedKey = tuple[WindowName, int]


def threshold_kind(threshold: int) -> str:
    return f'threshold_{threshold}'


def threshold_title(threshold: int) -> str:
    if threshold >= 95:
        return 'Critical Usage'
    if threshold >= 90:
        return 'High Usage Alert'
    return 'Usage Warning'


@dataclass
class NotificationMemory:
    """Already-notified thresholds and the last send time per alert kind."""

    notified_keys: set[NotifiedKey] = field(default_factory=set)
    last_sent_at: dict[str, float] = field(default_factory=dict)

    def copy(self) -> NotificationMemory:
        return NotificationMemory(set(self.notified_keys), dict(self.last_sent_at))

    def clear_window(self, window: WindowName) -> None:
        self.notified_keys = {key for key in self.notified_keys if key[0] is not window}

    def to_dict(self) -> dict[str, object]:
        return {
            'notified': sorted(f'{w.key}_{t}' for w, t in self.notified_keys),
            'last_sent_at': dict(sorted(self.last_sent_at.items())),
        }

    @classmethod
    def from_dict(cls, data: dict) -> NotificationMemory:
        by_key = {w.key: w for w in WindowName}
        keys: set[NotifiedKey] = set()
        for raw in data.get('notified', []):
            prefix, _, threshold = str(raw).rpartition('_')
            if prefix in by_key and threshold.isdigit():
                keys.add((by_key[prefix], int(threshold)))
            else:
                log.debug('Dropping unknown notification key %r', raw)

        sent = {str(k): float(v) for k, v in dict(data.get('last_sent_at', {})).items()}
        return cls(keys, sent)


class NotificationStore(Protocol):
    def load(self) -> NotificationMemory: ...

    def save(self, memory: NotificationMemory) -> None: ...


@dataclass(frozen=True)
class Crossing:
    window: WindowName
    threshold: int
    utilization: float


@dataclass(frozen=True)
class Alert:
    kind: str
    title: str
    body: str
    dedupe_id: str


@dataclass
class Evaluation:
    crossings: list[Crossing] = field(default_factory=list)
    resets: list[WindowName] = field(default_factory=list)
    alerts: list[Alert] = field(default_factory=list)


class ThresholdEngine:
    """Crossing detection with hysteresis, reset detection and throttling."""

    def __init__(
        self,
        store: NotificationStore,
        config: NotificationConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or NotificationConfig()
        self.store = store
        self._clock = clock
        self.memory = store.load()

    def evaluate(
        self,
        current: UsageSnapshot,
        previous: UsageSnapshot | None,
        thresholds: Iterable[int] | None = None,
    ) -> Evaluation:
        """Compare *current* with the immediately preceding snapshot.

        Parameters
        ----------
        current : UsageSnapshot
            The snapshot just fetched.
        previous : UsageSnapshot or None
            The previous successful snapshot. Unknown previous usage counts as 0
            for crossings and disables reset detection.
        thresholds : iterable of int, optional
            Threshold percentages; defaults to the configured ones.

        Returns
        -------
        Evaluation
            Crossed thresholds, reset windows and the alerts that survived
            throttling. Alerts are already recorded as sent.

        Raises
        ------
        OSError
            If the notification memory could not be persisted. The in-memory
            state is left unchanged in that case.
        """
        cfg = self.config
        ordered = sorted(set(thresholds if thresholds is not None else cfg.thresholds))
        memory = self.memory.copy()
        result = Evaluation()

        for window, usage in current.windows():
            now_pct = usage.utilization
            before = previous.utilization(window) if previous is not None else None
            before_pct = before if before is not None else 0.0

            for threshold in ordered:
                key = (window, threshold)
                if now_pct >= threshold and before_pct < threshold and key not in memory.notified_keys:
                    result.crossings.append(Crossing(window, threshold, now_pct))
                    memory.notified_keys.add(key)
                if now_pct < threshold - cfg.hysteresis_buffer:
                    memory.notified_keys.discard(key)

            if before is not None and before - now_pct > cfg.reset_drop_threshold and now_pct < cfg.reset_low_threshold:
                result.resets.append(window)
                memory.clear_window(window)

        now = self._clock()
        if result.crossings:
            alert = self._crossing_alert(result.crossings)
            if self._allowed(memory, alert.kind, now):
                memory.last_sent_at[alert.kind] = now
                result.alerts.append(alert)
            else:
                log.info('Suppressed %s alert (throttled)', alert.kind)

        if result.resets:
            alert = self._reset_alert(result.resets)
            if self._allowed(memory, alert.kind, now):
                memory.last_sent_at[alert.kind] = now
                result.alerts.append(alert)
            else:
                log.info('Suppressed reset alert (throttled)')

        self._commit(memory)
        return result

    def credential_expiring(self, seconds_left: float) -> Alert | None:
        """Return a throttled credential-expiry alert, or None if one was sent recently."""
        memory = self.memory.copy()
        now = self._clock()
        if not self._allowed(memory, KIND_CREDENTIAL_EXPIRING, now):
            return None

        minutes = max(0, int(seconds_left // 60))
        alert = Alert(
            kind=KIND_CREDENTIAL_EXPIRING,
            title='Credentials Expiring',
            body=f'Your Claude credentials will expire in {minutes} minutes. Please re-authenticate.',
            dedupe_id=KIND_CREDENTIAL_EXPIRING,
        )
        memory.last_sent_at[alert.kind] = now
        self._commit(memory)
        return alert

    def reset_state(self) -> None:
        self._commit(NotificationMemory())

    def _allowed(self, memory: NotificationMemory, kind: str, now: float) -> bool:
        last = memory.last_sent_at.get(kind)
        return last is None or now - last >= self.config.throttle_interval

    def _commit(self, memory: NotificationMemory) -> None:
        if memory == self.memory:
            return
        self.store.save(memory)
        self.memory = memory

    @staticmethod
    def _crossing_alert(crossings: list[Crossing]) -> Alert:
        # The highest threshold drives the title; each window is listed once
        top = max(c.threshold for c in crossings)
        usage: dict[WindowName, float] = {}
        for c in crossings:
            usage[c.window] = c.utilization
        body = ', '.join(f'{w.title}: {pct:.0f}%' for w, pct in usage.items())
        return Alert(kind=threshold_kind(top), title=threshold_title(top), body=body, dedupe_id=f'aggregated_{top}')

    @staticmethod
    def _reset_alert(windows: list[WindowName]) -> Alert:
        names = ', '.join(w.title for w in windows)
        noun = 'usage has' if len(windows) == 1 else 'usage limits have'
        return Alert(
            kind=KIND_RESET,
            title='Usage Reset',
            body=f"Your {names} {noun} been reset. You're good to go!",
            dedupe_id='reset_aggregated',
        )
