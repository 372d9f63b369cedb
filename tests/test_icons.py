from datetime import datetime, timedelta, timezone

from claude_meter.errors import MaxRetriesExceededError, NoCredentialsError
from claude_meter.icons import (
    BAR_GAP,
    BAR_HEIGHT,
    SIZE,
    create_icon_image,
    create_status_image,
    format_tooltip,
    load_font,
    render_icon,
    status_image,
    time_until,
)
from claude_meter.monitor import MonitorStatus

from conftest import make_snapshot


def make_status(usage=None, error=None, is_loading=False, from_cache=False, degraded=False):
    return MonitorStatus(
        usage=usage, error=error, is_loading=is_loading, last_update=None, from_cache=from_cache, degraded=degraded
    )


def test_icon_images_are_square_rgba():
    for img in (create_icon_image(20, 40), create_icon_image(75, 10, light_taskbar=True), create_icon_image(100, 100)):
        assert img.size == (SIZE, SIZE)
        assert img.mode == "RGBA"


def test_usage_bars_fill_proportionally():
    img = create_icon_image(50, 0)
    bottom_left = img.getpixel((0, SIZE - 1))
    bottom_right = img.getpixel((SIZE - 1, SIZE - 1))
    # 7-day bar is empty: track colour only
    assert bottom_left == bottom_right

    upper_bar_y = SIZE - BAR_HEIGHT - BAR_GAP - 1
    assert img.getpixel((2, upper_bar_y))[3] == 255
    assert img.getpixel((SIZE - 2, upper_bar_y))[3] == 80


def test_status_image_per_state():
    assert status_image(make_status(error=NoCredentialsError())).size == (SIZE, SIZE)
    assert status_image(make_status(is_loading=True)).mode == "RGBA"
    assert status_image(make_status(usage=make_snapshot(five_hour=10, seven_day=5))).size == (SIZE, SIZE)
    assert create_status_image("!").size == (SIZE, SIZE)


def test_status_icon_has_no_bars():
    img = render_icon("?", load_font(46))
    # nothing drawn along the bottom edge where usage bars would sit
    assert img.getpixel((0, SIZE - 1))[3] == 0
    assert img.getpixel((SIZE - 1, SIZE - 1))[3] == 0


def test_single_bar_sits_on_bottom_edge():
    img = render_icon("C", load_font(42), bars=(100,))
    assert img.getpixel((SIZE - 1, SIZE - 1))[3] == 255
    assert img.getpixel((SIZE - 1, SIZE - BAR_HEIGHT))[3] == 255
    assert img.getpixel((SIZE - 1, SIZE - BAR_HEIGHT - 1))[3] == 0


def test_time_until_same_day():
    now = datetime.now(timezone.utc).astimezone().replace(hour=10, minute=0, second=0, microsecond=0)
    assert time_until(now + timedelta(hours=2, minutes=20), now).startswith("resets in 2h 20m (")
    assert time_until(now + timedelta(minutes=45), now).startswith("resets in 45m (")


def test_time_until_later_days():
    now = datetime.now(timezone.utc).astimezone().replace(hour=10, minute=0, second=0, microsecond=0)
    assert time_until(now + timedelta(days=1), now) == "resets tomorrow, 10:00"
    assert time_until(now + timedelta(days=3), now).endswith(", 10:00")
    assert time_until(now - timedelta(minutes=5), now) == ""


def test_tooltip_lists_windows():
    text = format_tooltip(make_status(usage=make_snapshot(five_hour=42, seven_day=7)))
    assert text.splitlines() == ["Claude Meter", "5h: 42%", "7d: 7%"]


def test_tooltip_states():
    assert "Login required" in format_tooltip(make_status(error=NoCredentialsError()))
    assert "claude login" in format_tooltip(make_status(error=NoCredentialsError()))
    assert "Error" in format_tooltip(make_status(error=MaxRetriesExceededError()))
    assert format_tooltip(make_status(is_loading=True)).endswith("Loading…")
    assert format_tooltip(make_status(usage=make_snapshot(five_hour=1), from_cache=True)).endswith("Showing cached data")
    assert format_tooltip(make_status(usage=make_snapshot(five_hour=1), degraded=True)).endswith("updating less often")
