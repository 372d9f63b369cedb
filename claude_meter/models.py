"""
Models
======

Immutable usage snapshots and OAuth credentials.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterator

from .errors import DecodingError


class WindowName(enum.Enum):
    """The independently tracked rate-limit windows, in display order."""

    FIVE_HOUR = 'five_hour'
    SEVEN_DAY = 'seven_day'
    SEVEN_DAY_OPUS = 'seven_day_opus'

    @property
    def key(self) -> str:
        return {'five_hour': '5h', 'seven_day': '7d', 'seven_day_opus': 'opus'}[self.value]

    @property
    def title(self) -> str:
        return {'five_hour': '5-Hour', 'seven_day': '7-Day', 'seven_day_opus': 'Opus'}[self.value]


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp, assuming UTC when no offset is given."""
    if not isinstance(value, str):
        raise ValueError(f'expected an ISO 8601 string, got {type(value).__name__}')
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class UsageWindow:
    utilization: float  # 0-100
    resets_at: datetime | None = None

    @classmethod
    def from_api(cls, entry: Any) -> UsageWindow | None:
        """Decode one window object; ``None`` or a missing utilization means absent."""
        if entry is None:
            return None
        if not isinstance(entry, dict):
            raise DecodingError(f'window must be an object, got {type(entry).__name__}')

        raw = entry.get('utilization')
        if raw is None:
            return None
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            raise DecodingError(f'utilization must be a number, got {raw!r}')

        resets_at = entry.get('resets_at')
        try:
            reset = parse_timestamp(resets_at) if resets_at else None
        except (TypeError, ValueError) as e:
            raise DecodingError(f'bad resets_at {resets_at!r}') from e

        return cls(utilization=max(0.0, min(100.0, float(raw))), resets_at=reset)

    def to_dict(self) -> dict[str, Any]:
        return {
            'utilization': self.utilization,
            'resets_at': self.resets_at.isoformat() if self.resets_at else None,
        }


@dataclass(frozen=True)
class UsageSnapshot:
    """One successful reading of all usage windows.

    An absent window means "not applicable" for the account, never zero usage.
    """

    five_hour: UsageWindow | None = None
    seven_day: UsageWindow | None = None
    seven_day_opus: UsageWindow | None = None
    fetched_at: datetime | None = None

    @classmethod
    def from_api(cls, payload: Any, fetched_at: datetime | None = None) -> UsageSnapshot:
        """Decode the JSON body of ``GET /api/oauth/usage``.

        Parameters
        ----------
        payload : Any
            Parsed JSON body.
        fetched_at : datetime or None
            Time of the fetch. Falls back to a ``fetched_at`` key in the payload,
            then to the current time.

        Returns
        -------
        UsageSnapshot
            Snapshot with absent windows left as ``None``.

        Raises
        ------
        DecodingError
            When the body is not an object or a window is malformed.
        """
        if not isinstance(payload, dict):
            raise DecodingError(f'expected a JSON object, got {type(payload).__name__}')

        if fetched_at is None:
            raw = payload.get('fetched_at')
            try:
                fetched_at = parse_timestamp(raw) if raw else datetime.now(timezone.utc)
            except (TypeError, ValueError) as e:
                raise DecodingError(f'bad fetched_at {raw!r}') from e

        return cls(
            five_hour=UsageWindow.from_api(payload.get('five_hour')),
            seven_day=UsageWindow.from_api(payload.get('seven_day')),
            seven_day_opus=UsageWindow.from_api(payload.get('seven_day_opus')),
            fetched_at=fetched_at,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UsageSnapshot:
        return cls.from_api(data)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for name, window in self.windows():
            data[name.value] = window.to_dict()
        data['fetched_at'] = self.fetched_at.isoformat() if self.fetched_at else None
        return data

    def window(self, name: WindowName) -> UsageWindow | None:
        return getattr(self, name.value)

    def windows(self) -> Iterator[tuple[WindowName, UsageWindow]]:
        for name in WindowName:
            window = self.window(name)
            if window is not None:
                yield name, window

    def utilization(self, name: WindowName) -> float | None:
        window = self.window(name)
        return window.utilization if window is not None else None

    def max_utilization(self) -> float:
        return max((w.utilization for _, w in self.windows()), default=0.0)


@dataclass(frozen=True)
class Credentials:
    access_token: str
    expires_at: datetime
    refresh_token: str = ''
    subscription_type: str = 'pro'

    def is_valid(self, now: datetime | None = None) -> bool:
        return (now or datetime.now(timezone.utc)) < self.expires_at

    def seconds_until_expiry(self, now: datetime | None = None) -> float:
        return (self.expires_at - (now or datetime.now(timezone.utc))).total_seconds()

    def is_expiring_soon(self, threshold: float, now: datetime | None = None) -> bool:
        return self.seconds_until_expiry(now) < threshold
