"""
Storage
=======

On-disk and in-memory stores for the last successful usage snapshot and
for the notification memory.  File stores write a temp file and rename it
over the target, so a crash never leaves a half-written file behind.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Callable

from .config import CACHE_FILE, CACHE_MAX_AGE, NOTIFICATION_STATE_FILE
from .errors import DecodingError
from .models import UsageSnapshot
from .thresholds import NotificationMemory

log = logging.getLogger(__name__)

CACHE_VERSION = 1


def write_json_atomic(path: Path, data: Any) -> None:
    """Write *data* as JSON to *path* via a temp file in the same directory."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f'.{path.name}.', dir=path.parent)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


# ── Usage cache ───────────────────────────────────────────────

class FileCache:
    """Last successful snapshot, stored as ``{data, timestamp, version}``."""

    def __init__(self, path: Path = CACHE_FILE, max_age: float = CACHE_MAX_AGE, clock: Callable[[], float] = time.time) -> None:
        self.path = path
        self.max_age = max_age
        self._clock = clock

    def store(self, snapshot: UsageSnapshot) -> None:
        entry = {'data': snapshot.to_dict(), 'timestamp': self._clock(), 'version': CACHE_VERSION}
        try:
            write_json_atomic(self.path, entry)
        except OSError as e:
            log.warning('Failed to cache usage data: %s', e)

    def _read_entry(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        try:
            entry = json.loads(self.path.read_text(encoding='utf-8'))
            if not isinstance(entry, dict) or entry.get('version') != CACHE_VERSION:
                return None
            float(entry['timestamp'])
            return entry
        except (json.JSONDecodeError, OSError, KeyError, TypeError, ValueError) as e:
            log.warning('Failed to read cached usage data: %s', e)
            return None

    def load_last_known(self, max_age: float | None = None) -> UsageSnapshot | None:
        """Return the cached snapshot if younger than *max_age* (default: 24h).

        An expired entry is deleted.
        """
        entry = self._read_entry()
        if entry is None:
            return None

        limit = self.max_age if max_age is None else max_age
        if self._clock() - float(entry['timestamp']) >= limit:
            self.path.unlink(missing_ok=True)
            return None

        try:
            return UsageSnapshot.from_dict(entry['data'])
        except (DecodingError, KeyError) as e:
            log.warning('Discarding malformed cache entry: %s', e)
            return None

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class MemoryCache:
    def __init__(self, snapshot: UsageSnapshot | None = None) -> None:
        self.snapshot = snapshot
        self.stored: list[UsageSnapshot] = []

    def store(self, snapshot: UsageSnapshot) -> None:
        self.snapshot = snapshot
        self.stored.append(snapshot)

    def load_last_known(self, max_age: float | None = None) -> UsageSnapshot | None:
        return self.snapshot

    def clear(self) -> None:
        self.snapshot = None


# ── Notification memory ───────────────────────────────────────

class JsonNotificationStore:
    def __init__(self, path: Path = NOTIFICATION_STATE_FILE) -> None:
        self.path = path

    def load(self) -> NotificationMemory:
        if not self.path.exists():
            return NotificationMemory()
        try:
            return NotificationMemory.from_dict(json.loads(self.path.read_text(encoding='utf-8')))
        except (json.JSONDecodeError, OSError, TypeError, ValueError, AttributeError) as e:
            log.warning('Resetting unreadable notification state %s: %s', self.path, e)
            return NotificationMemory()

    def save(self, memory: NotificationMemory) -> None:
        write_json_atomic(self.path, memory.to_dict())


class MemoryNotificationStore:
    def __init__(self, memory: NotificationMemory | None = None) -> None:
        self.memory = memory or NotificationMemory()
        self.saves = 0

    def load(self) -> NotificationMemory:
        return self.memory.copy()

    def save(self, memory: NotificationMemory) -> None:
        self.memory = memory.copy()
        self.saves += 1
