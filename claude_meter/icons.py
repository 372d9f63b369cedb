"""
Tray icon images and tooltip text
=================================

Monochrome 64x64 icons: a "C" at the top (or the 5-hour percentage once
it passes 50%, or a cross at 100%) and two thin bars at the bottom for
the 5-hour and 7-day windows.
"""
from __future__ import annotations

import functools
from datetime import datetime, timedelta, timezone
from typing import Any

from PIL import Image, ImageDraw, ImageFont

from .models import UsageSnapshot, WindowName
from .monitor import MonitorStatus

ICON_LIGHT = {  # Light icons for dark taskbars (default)
    'fg': (255, 255, 255, 255),
    'fg_half': (255, 255, 255, 80),
    'fg_dim': (255, 255, 255, 140),
}
ICON_DARK = {  # Dark icons for light taskbars
    'fg': (0, 0, 0, 255),
    'fg_half': (0, 0, 0, 80),
    'fg_dim': (0, 0, 0, 140),
}
TRANSPARENT = (0, 0, 0, 0)
SIZE = 64

FONT_NAMES = ('arialbd.ttf', 'Arial Bold.ttf', 'DejaVuSans-Bold.ttf', 'arial.ttf', 'DejaVuSans.ttf')
SYMBOL_FONT_NAMES = ('seguisym.ttf', 'Apple Symbols.ttf', 'DejaVuSans.ttf')


@functools.lru_cache(maxsize=None)
def load_font(size: int, symbol: bool = False) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """Load font at given size. Use symbol=True for Unicode glyphs not in Arial."""
    for name in SYMBOL_FONT_NAMES if symbol else FONT_NAMES:
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue

    return ImageFont.load_default()


BAR_HEIGHT = 9
BAR_GAP = 3


def _draw_label(draw: ImageDraw.ImageDraw, text: str, font: Any, fill: tuple, stroke_width: int = 0, middle: bool = False) -> None:
    """Center *text* horizontally; at the top edge, or vertically too with *middle*."""
    left, top, right, bottom = draw.textbbox((0, 0), text, font=font, stroke_width=stroke_width)
    x = (SIZE - (right - left)) / 2 - left
    y = (SIZE - (bottom - top)) / 2 - top if middle else -top
    draw.text((x, y), text, fill=fill, font=font, stroke_width=stroke_width, stroke_fill=fill)


def _draw_bars(draw: ImageDraw.ImageDraw, percentages: tuple[float, ...], fill: tuple, track: tuple) -> None:
    """Full-width bars stacked flush to the bottom edge, first bar on top."""
    y = SIZE - len(percentages) * (BAR_HEIGHT + BAR_GAP) + BAR_GAP
    for pct in percentages:
        draw.rectangle([0, y, SIZE - 1, y + BAR_HEIGHT - 1], fill=track)
        filled = max(0, min(SIZE, int(SIZE * pct / 100)))
        if filled:
            draw.rectangle([0, y, filled - 1, y + BAR_HEIGHT - 1], fill=fill)
        y += BAR_HEIGHT + BAR_GAP


def render_icon(
    text: str,
    font: Any,
    bars: tuple[float, ...] = (),
    light_taskbar: bool = False,
    stroke_width: int = 0,
) -> Image.Image:
    """Draw one tray icon: a label plus optional usage bars.

    With bars the label sits at the top in full colour; without bars it is
    centered and dimmed, which marks a status rather than a reading.
    """
    colors = ICON_DARK if light_taskbar else ICON_LIGHT
    img = Image.new('RGBA', (SIZE, SIZE), TRANSPARENT)
    draw = ImageDraw.Draw(img)

    if bars:
        _draw_label(draw, text, font, colors['fg'], stroke_width)
        _draw_bars(draw, bars, colors['fg'], colors['fg_half'])
    else:
        _draw_label(draw, text, font, colors['fg_dim'], stroke_width, middle=True)
    return img


def create_icon_image(pct_5h: float, pct_7d: float, light_taskbar: bool = False) -> Image.Image:
    """Usage icon: "C", the 5-hour percentage once above 50%, or a cross at 100%."""
    if pct_5h >= 100:
        return render_icon('✕', load_font(36, symbol=True), (pct_5h, pct_7d), light_taskbar, stroke_width=2)
    if pct_5h > 50:
        return render_icon(f'{pct_5h:.0f}', load_font(40), (pct_5h, pct_7d), light_taskbar)
    return render_icon('C', load_font(42), (pct_5h, pct_7d), light_taskbar)


def create_status_image(text: str, light_taskbar: bool = False) -> Image.Image:
    return render_icon(text, load_font(46), light_taskbar=light_taskbar)


def status_image(status: MonitorStatus, light_taskbar: bool = False) -> Image.Image:
    """Pick the icon for a monitor status; cached data is still drawn as usage."""
    usage = status.usage
    if status.needs_login:
        return create_status_image('C!', light_taskbar)
    if usage is None:
        return create_status_image('!' if status.error else '…', light_taskbar)

    return create_icon_image(
        usage.utilization(WindowName.FIVE_HOUR) or 0,
        usage.utilization(WindowName.SEVEN_DAY) or 0,
        light_taskbar,
    )


def time_until(reset: datetime, now: datetime | None = None) -> str:
    """Return human-readable reset time.

    Same day:  "resets in 2h 20m (14:30)"
    Tomorrow:  "resets tomorrow, 12:00"
    Later:     "resets Sat, 12:00"
    """
    now = now or datetime.now(timezone.utc)
    total_min = max(0, int((reset - now).total_seconds() / 60))
    if total_min == 0:
        return ''

    reset_local = reset.astimezone()
    today = now.astimezone().date()
    if reset_local.second >= 30:
        reset_local = reset_local.replace(second=0) + timedelta(minutes=1)
    else:
        reset_local = reset_local.replace(second=0)
    reset_date = reset_local.date()
    clock = reset_local.strftime('%H:%M')

    if reset_date == today:
        duration = f'{total_min // 60}h {total_min % 60}m' if total_min >= 60 else f'{total_min}m'
        return f'resets in {duration} ({clock})'

    if reset_date == today + timedelta(days=1):
        return f'resets tomorrow, {clock}'

    return f"resets {reset_local.strftime('%a')}, {clock}"


def format_usage_lines(usage: UsageSnapshot, now: datetime | None = None) -> list[str]:
    lines = []
    for name, window in usage.windows():
        line = f'{name.key}: {window.utilization:.0f}%'
        reset = time_until(window.resets_at, now) if window.resets_at else ''
        if reset:
            line += f' ({reset})'
        lines.append(line)
    return lines


def format_tooltip(status: MonitorStatus, now: datetime | None = None) -> str:
    """Format the monitor status as short tooltip text."""
    if status.usage is None:
        if status.needs_login:
            return f'Claude Meter\nLogin required\n{status.error.recovery_hint}'
        if status.error is not None:
            return f'Claude Meter\nError\n{status.error.user_message[:80]}'
        return 'Claude Meter\nLoading…'

    lines = ['Claude Meter']
    lines.extend(format_usage_lines(status.usage, now))
    if status.needs_login:
        lines.append('Login required')
    elif status.degraded:
        lines.append('Offline, updating less often')
    elif status.from_cache:
        lines.append('Showing cached data')
    return '\n'.join(lines)
