"""Per-queue metrics and health tracking.

Terminal events update counters and the running mean in O(1); a background
poller refreshes the job counts and derives health from the paused flag and
from whether the store answered.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
import logging
import threading
import time
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ledger_sync.queueing.queue import NamedQueue

logger = logging.getLogger(__name__)


class QueueHealth(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class MetricsSnapshot:
    queue_name: str
    processed: int = 0
    failed: int = 0
    active: int = 0
    waiting: int = 0
    delayed: int = 0
    completed: int = 0
    failed_jobs: int = 0
    paused: bool = False
    health: QueueHealth = QueueHealth.HEALTHY
    average_processing_time: float = 0.0
    error_rate: float = 0.0
    last_polled_at: float | None = None
    last_error: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["health"] = self.health.value
        return data


class MetricsMonitor:
    def __init__(self, poll_interval: float = 30.0) -> None:
        self.poll_interval = poll_interval
        self._lock = threading.Lock()
        self._queues: dict[str, NamedQueue] = {}
        self._snapshots: dict[str, MetricsSnapshot] = {}
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def register(self, queue: NamedQueue) -> None:
        with self._lock:
            self._queues[queue.name] = queue
            self._snapshots.setdefault(queue.name, MetricsSnapshot(queue_name=queue.name))

    def record_completed(self, queue_name: str, duration: float) -> None:
        with self._lock:
            snap = self._snapshot(queue_name)
            snap.processed += 1
            snap.average_processing_time += (
                duration - snap.average_processing_time
            ) / snap.processed
            self._update_error_rate(snap)

    def record_failed(self, queue_name: str) -> None:
        with self._lock:
            snap = self._snapshot(queue_name)
            snap.failed += 1
            self._update_error_rate(snap)

    def report_error(self, queue_name: str, error: Exception) -> None:
        """The queue's backing connection raised; mark it unhealthy until the next good poll."""
        with self._lock:
            snap = self._snapshot(queue_name)
            snap.health = QueueHealth.UNHEALTHY
            snap.last_error = str(error)
        logger.error(f"Queue {queue_name} connection error: {error}")

    def mark_paused(self, queue_name: str, paused: bool) -> None:
        with self._lock:
            snap = self._snapshot(queue_name)
            snap.paused = paused
            snap.health = QueueHealth.DEGRADED if paused else QueueHealth.HEALTHY

    def poll_once(self) -> None:
        with self._lock:
            queues = list(self._queues.values())
        now = time.time()
        for queue in queues:
            try:
                counts = queue.counts()
                paused = queue.is_paused()
            except Exception as exc:
                logger.warning(f"Metrics poll failed for queue {queue.name}: {exc}")
                with self._lock:
                    snap = self._snapshot(queue.name)
                    snap.health = QueueHealth.DEGRADED
                    snap.last_error = str(exc)
                continue
            with self._lock:
                snap = self._snapshot(queue.name)
                snap.waiting = counts["waiting"]
                snap.active = counts["active"]
                snap.delayed = counts["delayed"]
                snap.completed = counts["completed"]
                snap.failed_jobs = counts["failed"]
                snap.paused = paused
                snap.health = QueueHealth.DEGRADED if paused else QueueHealth.HEALTHY
                snap.last_polled_at = now
                if not paused:
                    snap.last_error = None

    def snapshot(self, queue_name: str) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(**asdict(self._snapshot(queue_name)))

    def snapshots(self) -> dict[str, MetricsSnapshot]:
        with self._lock:
            return {
                name: MetricsSnapshot(**asdict(snap)) for name, snap in self._snapshots.items()
            }

    def is_healthy(self) -> bool:
        """No queue is unhealthy (paused queues are degraded, not down)."""
        with self._lock:
            return all(s.health is not QueueHealth.UNHEALTHY for s in self._snapshots.values())

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="metrics-poller", daemon=True
        )
        self._thread.start()
        logger.info(f"Metrics poller started (interval={self.poll_interval}s)")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Metrics poller stopped")

    def _run(self) -> None:
        while not self._stop.is_set():
            self.poll_once()
            self._stop.wait(self.poll_interval)

    def _snapshot(self, queue_name: str) -> MetricsSnapshot:
        snap = self._snapshots.get(queue_name)
        if snap is None:
            snap = self._snapshots[queue_name] = MetricsSnapshot(queue_name=queue_name)
        return snap

    @staticmethod
    def _update_error_rate(snap: MetricsSnapshot) -> None:
        total = snap.processed + snap.failed
        snap.error_rate = (snap.failed / total * 100) if total else 0.0
