from unittest.mock import MagicMock

from claude_meter.notifier import MemoryNotificationSink, TrayNotificationSink


def test_tray_sink_replaces_repeated_notification():
    icon = MagicMock()
    sink = TrayNotificationSink(icon)

    sink.send("Usage Warning", "5-Hour: 76%", "aggregated_75")
    icon.remove_notification.assert_not_called()
    sink.send("Usage Warning", "5-Hour: 77%", "aggregated_75")
    icon.remove_notification.assert_called_once()
    sink.send("Usage Reset", "done", "reset_aggregated")

    assert icon.notify.call_args_list[0].args == ("5-Hour: 76%", "Usage Warning")
    assert icon.remove_notification.call_count == 1


def test_memory_sink_records():
    sink = MemoryNotificationSink()
    sink.send("t", "b", "id")
    assert sink.sent == [("t", "b", "id")]
