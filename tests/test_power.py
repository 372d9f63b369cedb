from claude_meter.power import SleepWatcher

from conftest import FakeClock


def test_detects_wall_clock_gap():
    wall, mono = FakeClock(1000.0), FakeClock(50.0)
    wakes = []
    watcher = SleepWatcher(lambda start, end: wakes.append((start, end)), clock=wall, monotonic=mono)

    wall.advance(5)
    mono.advance(5)
    assert watcher.check() is False

    wall.advance(905)
    mono.advance(5)
    assert watcher.check() is True
    assert wakes == [(1005.0, 1910.0)]


def test_small_drift_is_ignored():
    wall, mono = FakeClock(), FakeClock(0.0)
    watcher = SleepWatcher(lambda start, end: None, clock=wall, monotonic=mono)
    wall.advance(12)
    mono.advance(5)
    assert watcher.check() is False
