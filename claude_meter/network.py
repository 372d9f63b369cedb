"""
Network reachability
====================

Socket-level connectivity check against the API host, independent of the
network interface in use.  :class:`ReachabilityMonitor` connects on an
interval and reports transitions back on the event loop.
"""
from __future__ import annotations

import asyncio
import logging
import socket
from typing import Callable
from urllib.parse import urlsplit

log = logging.getLogger(__name__)

CONNECT_TIMEOUT = 4
CHECK_INTERVAL = 15


def is_online(url: str, timeout: float = CONNECT_TIMEOUT) -> bool:
    """Return True if a TCP connection to the host of *url* can be established."""
    parts = urlsplit(url)
    host = parts.hostname or ''
    port = parts.port or (443 if parts.scheme == 'https' else 80)
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


class ReachabilityMonitor:
    """Periodically connect to *url* and call *on_change(available)* when reachability flips."""

    def __init__(
        self,
        url: str,
        on_change: Callable[[bool], None],
        interval: float = CHECK_INTERVAL,
        is_reachable: Callable[[str], bool] = is_online,
    ) -> None:
        self.url = url
        self.on_change = on_change
        self.interval = interval
        self.available = True
        self._is_reachable = is_reachable
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def check(self) -> bool:
        """Test the connection once off-loop and report a change; returns current reachability."""
        available = await asyncio.to_thread(self._is_reachable, self.url)
        if available != self.available:
            self.available = available
            self.on_change(available)
        return available

    async def _run(self) -> None:
        while True:
            try:
                await self.check()
            except Exception:
                log.exception('Reachability check failed')
            await asyncio.sleep(self.interval)
