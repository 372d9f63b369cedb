"""Entry point: ``python -m claude_meter`` or the ``claude-meter`` script."""
from __future__ import annotations

import argparse
import logging
import sys

from . import __version__
from .api import UsageClient
from .config import LOG_FILE, Settings, setup_logging
from .credentials import default_provider
from .monitor import UsageMonitor
from .notifier import NotificationSink
from .scheduler import PollingScheduler
from .storage import FileCache, JsonNotificationStore
from .thresholds import ThresholdEngine

log = logging.getLogger('claude_meter')


def build_monitor(sink: NotificationSink, settings: Settings | None = None) -> UsageMonitor:
    return UsageMonitor(
        credentials=default_provider(),
        client=UsageClient(),
        scheduler=PollingScheduler(),
        engine=ThresholdEngine(JsonNotificationStore()),
        cache=FileCache(),
        sink=sink,
        settings=settings,
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog='claude-meter', description='Show Claude usage limits in the system tray.')
    parser.add_argument('--debug', action='store_true', help='log at debug level')
    parser.add_argument('--no-log-file', action='store_true', help='log to the console only')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.debug else logging.INFO, None if args.no_log_file else LOG_FILE)
    log.info('Claude Meter %s starting', __version__)

    # pystray picks its backend at import time
    from .tray import TrayApp

    settings = Settings.load()
    try:
        app = TrayApp(lambda sink: build_monitor(sink, settings))
        app.run()
    except Exception:
        log.exception('Claude Meter crashed')
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
