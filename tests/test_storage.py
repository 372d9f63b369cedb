import json

from claude_meter.models import WindowName
from claude_meter.storage import FileCache, JsonNotificationStore, write_json_atomic
from claude_meter.thresholds import NotificationMemory

from conftest import make_snapshot


def test_write_json_atomic_leaves_no_temp_files(tmp_path):
    target = tmp_path / "nested" / "state.json"
    write_json_atomic(target, {"a": 1})
    write_json_atomic(target, {"a": 2})
    assert json.loads(target.read_text()) == {"a": 2}
    assert [p.name for p in target.parent.iterdir()] == ["state.json"]


def test_cache_round_trip(tmp_path, clock):
    cache = FileCache(tmp_path / "usage.json", clock=clock)
    snapshot = make_snapshot(five_hour=40, seven_day=10)
    cache.store(snapshot)

    clock.advance(60)
    assert cache.load_last_known() == snapshot


def test_cache_entry_format(tmp_path, clock):
    path = tmp_path / "usage.json"
    FileCache(path, clock=clock).store(make_snapshot(five_hour=40))
    entry = json.loads(path.read_text())
    assert entry["version"] == 1
    assert entry["timestamp"] == clock()
    assert entry["data"]["five_hour"]["utilization"] == 40


def test_expired_cache_is_deleted(tmp_path, clock):
    path = tmp_path / "usage.json"
    cache = FileCache(path, clock=clock)
    cache.store(make_snapshot(five_hour=40))

    clock.advance(24 * 3600)
    assert cache.load_last_known() is None
    assert not path.exists()


def test_cache_custom_max_age(tmp_path, clock):
    cache = FileCache(tmp_path / "usage.json", clock=clock)
    cache.store(make_snapshot(five_hour=40))
    clock.advance(120)
    assert cache.load_last_known(max_age=60) is None


def test_corrupt_cache_is_ignored(tmp_path, clock):
    path = tmp_path / "usage.json"
    path.write_text("{not json")
    cache = FileCache(path, clock=clock)
    assert cache.load_last_known() is None


def test_cache_with_other_version_is_ignored(tmp_path, clock):
    path = tmp_path / "usage.json"
    path.write_text(json.dumps({"data": {}, "timestamp": clock(), "version": 99}))
    assert FileCache(path, clock=clock).load_last_known() is None


def test_clear(tmp_path, clock):
    cache = FileCache(tmp_path / "usage.json", clock=clock)
    cache.store(make_snapshot(five_hour=40))
    cache.clear()
    cache.clear()
    assert cache.load_last_known() is None


def test_notification_store_round_trip(tmp_path):
    store = JsonNotificationStore(tmp_path / "notifications.json")
    assert store.load() == NotificationMemory()

    memory = NotificationMemory({(WindowName.SEVEN_DAY, 90)}, {"threshold_90": 1700000000.0})
    store.save(memory)
    assert store.load() == memory


def test_corrupt_notification_state_starts_empty(tmp_path):
    path = tmp_path / "notifications.json"
    path.write_text("[1, 2")
    assert JsonNotificationStore(path).load() == NotificationMemory()


def test_cache_with_numeric_reset_time_is_discarded(tmp_path, clock):
    path = tmp_path / "usage.json"
    data = {"five_hour": {"utilization": 40, "resets_at": 7}, "fetched_at": "2025-06-01T12:00:00Z"}
    path.write_text(json.dumps({"data": data, "timestamp": clock(), "version": 1}))
    assert FileCache(path, clock=clock).load_last_known() is None
