"""Graceful shutdown: pause every queue, drain active jobs, then close."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import logging
import signal
import threading
import time

from ledger_sync.queueing.manager import QueueManager

logger = logging.getLogger(__name__)


@dataclass
class ShutdownReport:
    drained: bool
    forced_queues: list[str] = field(default_factory=list)
    elapsed: float = 0.0


class ShutdownCoordinator:
    """Runs the shutdown sequence once, bounded by a single global timeout.

    Jobs still waiting stay in the store for the next startup; only the jobs
    already active in this process are waited for.
    """

    def __init__(
        self,
        manager: QueueManager,
        timeout: float = 30.0,
        on_complete: Callable[[ShutdownReport], None] | None = None,
    ) -> None:
        self.manager = manager
        self.timeout = timeout
        self.on_complete = on_complete
        self._lock = threading.Lock()
        self._report: ShutdownReport | None = None
        self.stopped = threading.Event()

    @property
    def report(self) -> ShutdownReport | None:
        return self._report

    def shutdown(self) -> ShutdownReport:
        with self._lock:
            if self._report is not None:
                return self._report
            self._report = self._run()
        self.stopped.set()
        if self.on_complete:
            self.on_complete(self._report)
        return self._report

    def _run(self) -> ShutdownReport:
        started = time.monotonic()
        deadline = started + self.timeout
        logger.info(f"Shutting down queues (timeout={self.timeout}s)")

        self.manager.metrics.stop()
        pools = list(self.manager.pools.values())
        for pool in pools:
            pool.pause()

        forced = []
        for pool in pools:
            remaining = max(deadline - time.monotonic(), 0)
            if not pool.wait_idle(remaining):
                forced.append(pool.name)

        for pool in pools:
            pool.close(timeout=max(deadline - time.monotonic(), 0.1))
        self.manager.mark_stopped()

        if forced:
            logger.error(
                f"Shutdown timeout after {self.timeout}s; forcing exit with active jobs "
                f"on: {', '.join(forced)}"
            )

        self.manager.store.close()
        elapsed = time.monotonic() - started
        logger.info(f"Queue shutdown finished in {elapsed:.2f}s")
        return ShutdownReport(drained=not forced, forced_queues=forced, elapsed=elapsed)

    def install_signal_handlers(self) -> None:
        """Run the shutdown sequence on SIGTERM/SIGINT (main thread only)."""

        def _handler(signum, frame):
            logger.info(f"Received signal {signum}, starting graceful shutdown")
            threading.Thread(target=self.shutdown, name="shutdown", daemon=True).start()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                signal.signal(sig, _handler)
            except ValueError:
                logger.warning(f"Cannot install handler for signal {sig} outside the main thread")
