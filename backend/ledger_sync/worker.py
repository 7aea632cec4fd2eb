"""Standalone worker process: runs every queue's worker pool until signalled."""

from __future__ import annotations

import logging

from ledger_sync.core.config import get_settings
from ledger_sync.core.logging import configure_logging
from ledger_sync.runtime import build_runtime

logger = logging.getLogger(__name__)


def main() -> int:
    settings = get_settings()
    configure_logging(settings.log_level)

    runtime = build_runtime(settings)
    runtime.start(start_workers=True)
    runtime.shutdown.install_signal_handlers()
    logger.info(f"{settings.app_name} worker running; waiting for SIGTERM/SIGINT")

    # Event.wait with a timeout keeps the main thread responsive to signals
    while not runtime.shutdown.stopped.wait(timeout=1.0):
        pass

    report = runtime.stop()
    if not report.drained:
        logger.warning(f"Exited with active jobs on {', '.join(report.forced_queues)}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
