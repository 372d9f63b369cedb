"""
Tray application
================

pystray shell around :class:`~claude_meter.monitor.UsageMonitor`.

pystray owns the main thread (required on macOS), so the monitor's event
loop runs in a daemon thread.  Menu callbacks arrive on pystray's thread
and are handed to the loop with ``run_coroutine_threadsafe`` /
``call_soon_threadsafe``; status listeners run on the loop and only touch
the icon's image and title, which pystray allows from any thread.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable

import pystray  # type: ignore[import-untyped]  # no type stubs available

from .errors import MeterError
from .icons import create_status_image, format_tooltip, status_image
from .monitor import MonitorStatus, UsageMonitor
from .network import ReachabilityMonitor
from .notifier import NotificationSink, TrayNotificationSink
from .power import SleepWatcher

log = logging.getLogger(__name__)

APP_TITLE = 'Claude Meter'


class TrayApp:
    """System tray application displaying Claude usage."""

    def __init__(self, build_monitor: Callable[[NotificationSink], UsageMonitor], light_taskbar: bool = False) -> None:
        self._light_taskbar = light_taskbar
        self.icon = pystray.Icon(
            'claude_meter',
            icon=create_status_image('…', light_taskbar),
            title=f'{APP_TITLE}\nLoading…',
            menu=pystray.Menu(
                pystray.MenuItem('Refresh', self.on_refresh, default=True),
                pystray.MenuItem('Quit', self.on_quit),
            ),
        )
        self.monitor = build_monitor(TrayNotificationSink(self.icon))
        self.monitor.add_listener(self.render)

        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run_loop, name='claude-meter-loop', daemon=True)
        self.reachability = ReachabilityMonitor(self.monitor.client.config.base_url, self.monitor.on_network_change)
        self.sleep_watcher = SleepWatcher(self._on_wake)

    # ── Menu ──

    def on_refresh(self, icon: Any = None, item: Any = None) -> None:
        asyncio.run_coroutine_threadsafe(self.monitor.refresh(), self.loop)

    def on_quit(self, icon: Any = None, item: Any = None) -> None:
        if self.loop.is_running():
            self.loop.call_soon_threadsafe(self._shutdown)
        self.icon.stop()

    # ── Rendering ──

    def render(self, status: MonitorStatus) -> None:
        self.icon.icon = status_image(status, self._light_taskbar)
        self.icon.title = format_tooltip(status)

    # ── Event loop ──

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self.loop)
        try:
            self.loop.run_forever()
        finally:
            self.loop.close()

    def _start(self) -> None:
        self.monitor.start()
        self.reachability.start()
        self.sleep_watcher.start()

    def _shutdown(self) -> None:
        self.sleep_watcher.stop()
        self.reachability.stop()
        self.monitor.stop()
        self.monitor.client.close()
        self.loop.stop()
        log.info('Shut down')

    def _on_wake(self, suspended_at: float, woke_at: float) -> None:
        self.monitor.on_suspend(at=suspended_at)
        self.monitor.on_resume()

    def _on_icon_ready(self, icon: Any) -> None:
        """Called by pystray in a separate thread once the tray icon is set up."""
        icon.visible = True
        try:
            self.monitor.credentials.get_token()
        except MeterError as e:
            icon.notify(f'{e.user_message}\n{e.recovery_hint or ""}'.strip(), APP_TITLE)

        self._thread.start()
        self.loop.call_soon_threadsafe(self._start)

    def run(self) -> None:
        self.icon.run(setup=self._on_icon_ready)
