import pytest

from claude_meter.config import NotificationConfig
from claude_meter.models import WindowName
from claude_meter.storage import MemoryNotificationStore
from claude_meter.thresholds import (
    KIND_CREDENTIAL_EXPIRING,
    KIND_RESET,
    NotificationMemory,
    ThresholdEngine,
    threshold_title,
)

from conftest import make_snapshot


class FailingStore(MemoryNotificationStore):
    def save(self, memory):
        raise OSError("disk full")


def run_sequence(engine, values, clock=None, step=0):
    """Feed 5-hour utilizations one by one; return all crossings and alerts."""
    crossings, alerts = [], []
    previous = None
    for value in values:
        current = make_snapshot(five_hour=value)
        result = engine.evaluate(current, previous)
        crossings.extend(result.crossings)
        alerts.extend(result.alerts)
        previous = current
        if clock is not None:
            clock.advance(step)
    return crossings, alerts


def test_threshold_fires_once_while_above(clock):
    engine = ThresholdEngine(MemoryNotificationStore(), clock=clock)
    crossings, alerts = run_sequence(engine, [60, 76, 76, 76])

    assert [(c.window, c.threshold) for c in crossings] == [(WindowName.FIVE_HOUR, 75)]
    assert len(alerts) == 1
    assert alerts[0].title == "Usage Warning"
    assert alerts[0].body == "5-Hour: 76%"


def test_small_dip_does_not_rearm(clock):
    engine = ThresholdEngine(MemoryNotificationStore(), clock=clock)
    crossings, _ = run_sequence(engine, [80, 72, 77])
    assert len(crossings) == 1


def test_dip_below_hysteresis_rearms(clock):
    engine = ThresholdEngine(MemoryNotificationStore(), clock=clock)
    crossings, alerts = run_sequence(engine, [80, 68, 77])
    assert len(crossings) == 2
    # Second alert of the same kind falls inside the throttle window
    assert len(alerts) == 1


def test_rearmed_threshold_alerts_again_after_throttle(clock):
    engine = ThresholdEngine(MemoryNotificationStore(), clock=clock)
    crossings, alerts = run_sequence(engine, [80, 68, 77], clock=clock, step=3601)
    assert len(crossings) == 2
    assert len(alerts) == 2


def test_unknown_previous_counts_as_zero(clock):
    engine = ThresholdEngine(MemoryNotificationStore(), clock=clock)
    result = engine.evaluate(make_snapshot(five_hour=92), None)
    assert sorted(c.threshold for c in result.crossings) == [75, 90]
    assert result.resets == []


def test_crossings_aggregate_into_one_alert(clock):
    engine = ThresholdEngine(MemoryNotificationStore(), clock=clock)
    previous = make_snapshot(five_hour=70, seven_day=50)
    current = make_snapshot(five_hour=96, seven_day=80)
    result = engine.evaluate(current, previous)

    assert len(result.crossings) == 4
    assert len(result.alerts) == 1
    alert = result.alerts[0]
    assert alert.title == "Critical Usage"
    assert alert.kind == "threshold_95"
    assert alert.dedupe_id == "aggregated_95"
    assert alert.body == "5-Hour: 96%, 7-Day: 80%"


def test_reset_clears_window_and_alerts(clock):
    store = MemoryNotificationStore()
    engine = ThresholdEngine(store, clock=clock)
    engine.evaluate(make_snapshot(five_hour=95), make_snapshot(five_hour=70))
    assert (WindowName.FIVE_HOUR, 95) in engine.memory.notified_keys

    result = engine.evaluate(make_snapshot(five_hour=10), make_snapshot(five_hour=95))
    assert result.resets == [WindowName.FIVE_HOUR]
    assert not any(w is WindowName.FIVE_HOUR for w, _ in engine.memory.notified_keys)
    assert [a.kind for a in result.alerts] == [KIND_RESET]
    assert result.alerts[0].title == "Usage Reset"
    assert result.alerts[0].dedupe_id == "reset_aggregated"


def test_drop_to_moderate_usage_is_not_a_reset(clock):
    engine = ThresholdEngine(MemoryNotificationStore(), clock=clock)
    result = engine.evaluate(make_snapshot(five_hour=25), make_snapshot(five_hour=95))
    assert result.resets == []


def test_reset_needs_window_in_both_snapshots(clock):
    engine = ThresholdEngine(MemoryNotificationStore(), clock=clock)
    result = engine.evaluate(make_snapshot(five_hour=5, opus=5), make_snapshot(five_hour=90))
    assert result.resets == [WindowName.FIVE_HOUR]


def test_windows_are_tracked_independently(clock):
    engine = ThresholdEngine(MemoryNotificationStore(), clock=clock)
    engine.evaluate(make_snapshot(five_hour=80, seven_day=10), None)
    clock.advance(4000)
    result = engine.evaluate(make_snapshot(five_hour=80, seven_day=80), make_snapshot(five_hour=80, seven_day=10))
    assert [(c.window, c.threshold) for c in result.crossings] == [(WindowName.SEVEN_DAY, 75)]


def test_custom_thresholds(clock):
    engine = ThresholdEngine(MemoryNotificationStore(), clock=clock)
    result = engine.evaluate(make_snapshot(five_hour=55), None, thresholds=[50, 80])
    assert [c.threshold for c in result.crossings] == [50]
    assert result.alerts[0].title == "Usage Warning"


def test_failed_save_leaves_memory_unchanged(clock):
    engine = ThresholdEngine(FailingStore(), clock=clock)
    with pytest.raises(OSError):
        engine.evaluate(make_snapshot(five_hour=80), make_snapshot(five_hour=60))
    assert engine.memory == NotificationMemory()

    # The crossing is still pending once the store works again
    engine.store = MemoryNotificationStore()
    result = engine.evaluate(make_snapshot(five_hour=80), make_snapshot(five_hour=60))
    assert len(result.alerts) == 1


def test_memory_persisted_only_on_change(clock):
    store = MemoryNotificationStore()
    engine = ThresholdEngine(store, clock=clock)
    engine.evaluate(make_snapshot(five_hour=10), make_snapshot(five_hour=12))
    assert store.saves == 0

    engine.evaluate(make_snapshot(five_hour=80), make_snapshot(five_hour=12))
    assert store.saves == 1
    assert store.memory == engine.memory


def test_memory_loaded_from_store(clock):
    store = MemoryNotificationStore(NotificationMemory({(WindowName.FIVE_HOUR, 75)}, {}))
    engine = ThresholdEngine(store, clock=clock)
    result = engine.evaluate(make_snapshot(five_hour=80), make_snapshot(five_hour=60))
    assert result.crossings == []


def test_credential_expiry_alert_is_throttled(clock):
    engine = ThresholdEngine(MemoryNotificationStore(), clock=clock)
    alert = engine.credential_expiring(240)
    assert alert.kind == KIND_CREDENTIAL_EXPIRING
    assert "4 minutes" in alert.body

    clock.advance(600)
    assert engine.credential_expiring(120) is None
    clock.advance(3600)
    assert engine.credential_expiring(60) is not None


def test_reset_state_forgets_everything(clock):
    store = MemoryNotificationStore()
    engine = ThresholdEngine(store, clock=clock)
    engine.evaluate(make_snapshot(five_hour=80), None)
    engine.reset_state()
    assert engine.memory == NotificationMemory()
    assert store.memory == NotificationMemory()


def test_memory_serialization_keys():
    memory = NotificationMemory({(WindowName.FIVE_HOUR, 75), (WindowName.SEVEN_DAY_OPUS, 90)}, {"threshold_75": 1.0})
    data = memory.to_dict()
    assert data["notified"] == ["5h_75", "opus_90"]
    assert NotificationMemory.from_dict(data) == memory


def test_threshold_titles():
    assert threshold_title(75) == "Usage Warning"
    assert threshold_title(90) == "High Usage Alert"
    assert threshold_title(95) == "Critical Usage"


def test_custom_config_buffer(clock):
    engine = ThresholdEngine(MemoryNotificationStore(), NotificationConfig(hysteresis_buffer=1.0), clock=clock)
    crossings, _ = run_sequence(engine, [80, 73, 77])
    assert len(crossings) == 2
