"""
Configuration
=============

Defaults, grouped runtime configuration, persisted user settings and
logging setup for Claude Meter.
"""
from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path

log = logging.getLogger(__name__)

# ── Polling ───────────────────────────────────────────────────
POLL_DEFAULT = 60  # Seconds between updates at moderate usage
POLL_MIN = 30  # Fastest polling, used at critical usage
POLL_MAX = 300  # Upper cap for the low-usage interval
POLL_BACKGROUND = 900  # Fixed interval while the app is in the background
HIGH_USAGE = 75.0
CRITICAL_USAGE = 90.0
MEDIUM_USAGE = 50.0
MAX_CONSECUTIVE_FAILURES = 5  # Circuit breaker ceiling
FAILURE_BACKOFF = 600  # Interval while the breaker is open
INTERVAL_CHANGE_THRESHOLD = 10  # Ignore interval changes smaller than this

# ── Remote API ────────────────────────────────────────────────
API_BASE_URL = 'https://api.anthropic.com'
API_USAGE_PATH = '/api/oauth/usage'
API_BETA = 'oauth-2025-04-20'
USER_AGENT = 'claude-meter/1.0'
REQUEST_TIMEOUT = 30
RESOURCE_TIMEOUT = 60

# ── Retry ─────────────────────────────────────────────────────
MAX_RETRIES = 3
RETRY_INITIAL_DELAY = 2.0
RETRY_MAX_DELAY = 30.0
RETRY_MULTIPLIER = 2.0
SERVER_ERROR_MIN_DELAY = 30.0

# ── Notifications ─────────────────────────────────────────────
NOTIFY_THRESHOLDS = (75, 90, 95)
THROTTLE_INTERVAL = 3600
HYSTERESIS_BUFFER = 5.0
RESET_DROP_THRESHOLD = 40.0
RESET_LOW_THRESHOLD = 20.0
CREDENTIAL_EXPIRY_WARNING = 5 * 60

# ── Sleep / wake ──────────────────────────────────────────────
SIGNIFICANT_SLEEP = 300
WAKE_INITIAL_DELAY = 2.0
WAKE_RETRY_DELAYS = (2.0, 4.0, 8.0)

# ── Settings bounds ───────────────────────────────────────────
MIN_REFRESH_INTERVAL = 30
MAX_REFRESH_INTERVAL = POLL_MAX

# ── Paths ─────────────────────────────────────────────────────
if sys.platform == 'win32':
    DATA_DIR = Path(os.environ.get('APPDATA', Path.home())) / 'ClaudeMeter'
else:
    DATA_DIR = Path(os.environ.get('XDG_CONFIG_HOME', Path.home() / '.config')) / 'claude-meter'

SETTINGS_FILE = DATA_DIR / 'settings.json'
NOTIFICATION_STATE_FILE = DATA_DIR / 'notification_state.json'
CACHE_FILE = DATA_DIR / 'usage_data.json'
LOG_FILE = DATA_DIR / 'claude-meter.log'
CACHE_MAX_AGE = 24 * 3600
# ───────────────────────────────────────────────────────────────


@dataclass
class PollingConfig:
    default_interval: float = POLL_DEFAULT
    min_interval: float = POLL_MIN
    max_interval: float = POLL_MAX
    background_interval: float = POLL_BACKGROUND
    medium_usage_threshold: float = MEDIUM_USAGE
    high_usage_threshold: float = HIGH_USAGE
    critical_usage_threshold: float = CRITICAL_USAGE
    max_consecutive_failures: int = MAX_CONSECUTIVE_FAILURES
    failure_backoff_interval: float = FAILURE_BACKOFF
    interval_change_threshold: float = INTERVAL_CHANGE_THRESHOLD


@dataclass
class RetryConfig:
    max_retries: int = MAX_RETRIES
    initial_delay: float = RETRY_INITIAL_DELAY
    max_delay: float = RETRY_MAX_DELAY
    multiplier: float = RETRY_MULTIPLIER
    server_error_min_delay: float = SERVER_ERROR_MIN_DELAY


@dataclass
class ApiConfig:
    base_url: str = API_BASE_URL
    usage_path: str = API_USAGE_PATH
    beta: str = API_BETA
    user_agent: str = USER_AGENT
    request_timeout: float = REQUEST_TIMEOUT
    resource_timeout: float = RESOURCE_TIMEOUT

    @property
    def usage_url(self) -> str:
        return self.base_url.rstrip('/') + self.usage_path


@dataclass
class NotificationConfig:
    thresholds: tuple[int, ...] = NOTIFY_THRESHOLDS
    throttle_interval: float = THROTTLE_INTERVAL
    hysteresis_buffer: float = HYSTERESIS_BUFFER
    reset_drop_threshold: float = RESET_DROP_THRESHOLD
    reset_low_threshold: float = RESET_LOW_THRESHOLD
    credential_expiry_warning: float = CREDENTIAL_EXPIRY_WARNING


@dataclass
class WakeRecoveryConfig:
    initial_delay: float = WAKE_INITIAL_DELAY
    retry_delays: tuple[float, ...] = WAKE_RETRY_DELAYS
    significant_sleep: float = SIGNIFICANT_SLEEP


@dataclass
class Settings:
    """User-facing settings, persisted as JSON."""

    refresh_interval: int = POLL_DEFAULT
    notify_at: list[int] = field(default_factory=lambda: list(NOTIFY_THRESHOLDS))
    notifications_enabled: bool = True

    def validate(self) -> Settings:
        """Clamp out-of-range values in place and return ``self``.

        The refresh interval is bounded to ``[MIN_REFRESH_INTERVAL, MAX_REFRESH_INTERVAL]``,
        thresholds outside ``(0, 100]`` are dropped, and an empty threshold list falls
        back to the defaults.
        """
        self.refresh_interval = max(MIN_REFRESH_INTERVAL, min(int(self.refresh_interval), MAX_REFRESH_INTERVAL))
        self.notify_at = sorted({int(t) for t in self.notify_at if 0 < int(t) <= 100})
        if not self.notify_at:
            self.notify_at = list(NOTIFY_THRESHOLDS)
        return self

    @classmethod
    def load(cls, path: Path = SETTINGS_FILE) -> Settings:
        """Load settings from *path*, falling back to defaults on a missing or corrupt file."""
        if not path.exists():
            return cls()

        try:
            raw = json.loads(path.read_text(encoding='utf-8'))
            settings = cls(
                refresh_interval=raw.get('refresh_interval', POLL_DEFAULT),
                notify_at=list(raw.get('notify_at', NOTIFY_THRESHOLDS)),
                notifications_enabled=bool(raw.get('notifications_enabled', True)),
            )
        except (json.JSONDecodeError, OSError, TypeError, ValueError, AttributeError) as e:
            log.warning('Ignoring unreadable settings file %s: %s', path, e)
            return cls()

        return settings.validate()

    def save(self, path: Path = SETTINGS_FILE) -> None:
        self.validate()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(asdict(self), indent=2), encoding='utf-8')
        log.info('Settings saved to %s', path)


# ── Logging ───────────────────────────────────────────────────

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'
LOG_MAX_BYTES = 1_000_000


def setup_logging(level: int = logging.INFO, log_file: Path | None = LOG_FILE) -> logging.Logger:
    """Attach file and console handlers to the ``claude_meter`` logger.

    The log file is truncated on start once it grows past ``LOG_MAX_BYTES``.

    Parameters
    ----------
    level : int
        Logging level for both handlers.
    log_file : Path or None
        Destination file, or ``None`` to log to the console only.

    Returns
    -------
    logging.Logger
        The configured package logger.
    """
    logger = logging.getLogger('claude_meter')
    logger.setLevel(level)
    logger.handlers.clear()
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            if log_file.exists() and log_file.stat().st_size > LOG_MAX_BYTES:
                log_file.write_text('')
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            print(f'Cannot open log file {log_file}: {e}', file=sys.stderr)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger
