from datetime import datetime, timedelta, timezone

import pytest

from claude_meter.models import Credentials, UsageSnapshot, UsageWindow


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records delays and returns immediately."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_snapshot(five_hour=None, seven_day=None, opus=None, resets_in=None):
    reset = datetime.now(timezone.utc) + resets_in if resets_in is not None else None

    def window(pct):
        return None if pct is None else UsageWindow(utilization=float(pct), resets_at=reset)

    return UsageSnapshot(
        five_hour=window(five_hour),
        seven_day=window(seven_day),
        seven_day_opus=window(opus),
        fetched_at=datetime.now(timezone.utc),
    )


def make_credentials(token="token-a", expires_in=timedelta(hours=8)):
    return Credentials(access_token=token, expires_at=datetime.now(timezone.utc) + expires_in)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()
