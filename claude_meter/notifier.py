"""Notification sinks: where alerts end up."""
from __future__ import annotations

import logging
from typing import Any, Protocol

log = logging.getLogger(__name__)


class NotificationSink(Protocol):
    def send(self, title: str, body: str, dedupe_id: str) -> None: ...


class TrayNotificationSink:
    """Deliver alerts as system notifications through a ``pystray.Icon``.

    A notification with the same *dedupe_id* as the one still shown replaces it.
    """

    def __init__(self, icon: Any) -> None:
        self.icon = icon
        self._last_id: str | None = None

    def send(self, title: str, body: str, dedupe_id: str) -> None:
        if self._last_id == dedupe_id:
            self.icon.remove_notification()
        self.icon.notify(body, title)
        self._last_id = dedupe_id
        log.info('Notification sent: %s - %s', title, body)


class MemoryNotificationSink:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send(self, title: str, body: str, dedupe_id: str) -> None:
        self.sent.append((title, body, dedupe_id))
