"""Threaded worker pool that drains one named queue.

Each pool runs ``concurrency`` worker threads plus a stall checker. Workers
claim ready jobs through the store, dispatch them to the registry and report
the outcome back through token-checked transitions. Retry and stall decisions
are made here against the queue's ``RetryPolicy``.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any
import uuid

from ledger_sync.core.errors import (
    FatalJobError,
    LedgerRejectedError,
    QueueBackendError,
    ValidationFailedError,
)
from ledger_sync.queueing.metrics import MetricsMonitor
from ledger_sync.queueing.models import JobRecord, JobState
from ledger_sync.queueing.queue import NamedQueue
from ledger_sync.queueing.registry import ProcessorRegistry
from ledger_sync.services.audit import (
    JOB_ACTIVE,
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_RETRY_SCHEDULED,
    JOB_STALLED,
    AuditEntry,
    AuditStore,
)

logger = logging.getLogger(__name__)

NON_RETRYABLE = (FatalJobError, ValidationFailedError, LedgerRejectedError)


class JobContext:
    """Handed to processors so they can report progress and heartbeat."""

    def __init__(self, pool: WorkerPool, record: JobRecord) -> None:
        self._pool = pool
        self.job = record
        self.lock_lost = False

    @property
    def job_id(self) -> str:
        return self.job.id

    def heartbeat(self) -> bool:
        return self._beat(None)

    def update_progress(self, progress: int) -> bool:
        progress = max(0, min(int(progress), 100))
        self.job.progress = progress
        return self._beat(progress)

    def _beat(self, progress: int | None) -> bool:
        queue = self._pool.queue
        try:
            held = queue.store.heartbeat(
                queue.name, self.job.id, self.job.lock_token, queue.clock(), progress
            )
        except QueueBackendError as exc:
            self._pool.metrics.report_error(queue.name, exc)
            return False
        if not held:
            self.lock_lost = True
            logger.warning(f"Job {self.job.id} on {queue.name} lost its lock (stalled?)")
        return held


class WorkerPool:
    def __init__(
        self,
        queue: NamedQueue,
        registry: ProcessorRegistry,
        metrics: MetricsMonitor,
        audit: AuditStore | None = None,
        *,
        idle_poll: float = 0.5,
        stall_check_interval: float | None = None,
    ) -> None:
        self.queue = queue
        self.registry = registry
        self.metrics = metrics
        self.audit = audit
        self.idle_poll = idle_poll
        self.stall_check_interval = stall_check_interval or (
            queue.policy.stalled_interval / 2
        )
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._active = 0
        self._paused = False
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def name(self) -> str:
        return self.queue.name

    @property
    def concurrency(self) -> int:
        return self.queue.config.concurrency

    @property
    def active_count(self) -> int:
        with self._lock:
            return self._active

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    @property
    def paused(self) -> bool:
        with self._lock:
            return self._paused

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._threads = [
            threading.Thread(
                target=self._worker_loop,
                name=f"{self.name}-worker-{i + 1}",
                daemon=True,
            )
            for i in range(self.concurrency)
        ]
        self._threads.append(
            threading.Thread(
                target=self._stall_loop, name=f"{self.name}-stall-checker", daemon=True
            )
        )
        for thread in self._threads:
            thread.start()
        logger.info(f"Started worker pool for {self.name} (concurrency={self.concurrency})")

    def pause(self) -> None:
        """Stop claiming new jobs in this process; active jobs keep running."""
        with self._lock:
            self._paused = True

    def resume(self) -> None:
        with self._lock:
            self._paused = False

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no job is active in this pool; False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: self._active == 0, timeout)

    def close(self, timeout: float = 1.0) -> None:
        self._stop.set()
        deadline = time.monotonic() + timeout
        for thread in self._threads:
            thread.join(max(deadline - time.monotonic(), 0))
        alive = [t.name for t in self._threads if t.is_alive()]
        if alive:
            logger.warning(f"Worker pool {self.name} closed with busy threads: {alive}")
        else:
            logger.info(f"Worker pool {self.name} closed")

    def _worker_loop(self) -> None:
        while not self._stop.is_set():
            record = self._claim_next()
            if record is None:
                self._stop.wait(self.idle_poll)
                continue
            try:
                self._process(record)
            finally:
                with self._idle:
                    self._active -= 1
                    self._idle.notify_all()

    def _claim_next(self) -> JobRecord | None:
        with self._lock:
            if self._paused or self._stop.is_set():
                return None
            try:
                if self.queue.is_paused():
                    return None
                record = self.queue.store.claim(
                    self.name, uuid.uuid4().hex, self.queue.clock()
                )
            except QueueBackendError as exc:
                self.metrics.report_error(self.name, exc)
                return None
            if record is not None:
                self._active += 1
            return record

    def _process(self, record: JobRecord) -> None:
        started = time.monotonic()
        self._audit(JOB_ACTIVE, record, {"attempt": record.attempts_made + 1})
        context = JobContext(self, record)
        try:
            result = self.registry.dispatch(record, context)
        except Exception as exc:
            self._handle_failure(record, exc, time.monotonic() - started)
            return
        self._handle_success(record, result, time.monotonic() - started)

    def _handle_success(self, record: JobRecord, result: Any, duration: float) -> None:
        try:
            updated = self.queue.store.complete(
                self.name,
                record.id,
                record.lock_token,
                self.queue.clock(),
                return_value=result,
                keep=self.queue.config.remove_on_complete,
            )
        except QueueBackendError as exc:
            self.metrics.report_error(self.name, exc)
            return
        if updated is None:
            logger.warning(
                f"Discarding result of job {record.id} on {self.name}: lock no longer held"
            )
            return
        self.metrics.record_completed(self.name, duration)
        logger.info(f"Job {record.id} ({record.type}) completed in {duration:.2f}s")
        self._audit(
            JOB_COMPLETED,
            updated,
            {"duration": round(duration, 3), "result": _summarize_result(result)},
        )

    def _handle_failure(self, record: JobRecord, exc: Exception, duration: float) -> None:
        policy = self.queue.policy
        attempts = record.attempts_made + 1
        retryable = not isinstance(exc, NON_RETRYABLE)
        retry_at = None
        if retryable and policy.should_retry(attempts, record.max_attempts):
            retry_at = self.queue.clock() + policy.backoff_delay(attempts)
        try:
            updated = self.queue.store.fail(
                self.name,
                record.id,
                record.lock_token,
                self.queue.clock(),
                reason=str(exc) or exc.__class__.__name__,
                retry_at=retry_at,
                keep=self.queue.config.remove_on_fail,
            )
        except QueueBackendError as backend_exc:
            self.metrics.report_error(self.name, backend_exc)
            return
        if updated is None:
            logger.warning(
                f"Discarding failure of job {record.id} on {self.name}: lock no longer held"
            )
            return
        self.metrics.record_failed(self.name)

        outcome = {
            "duration": round(duration, 3),
            "error": str(exc),
            "error_type": exc.__class__.__name__,
            "attempts_made": updated.attempts_made,
        }
        if retry_at is not None:
            logger.warning(
                f"Job {record.id} ({record.type}) failed attempt {attempts}/"
                f"{record.max_attempts}, retrying in {retry_at - self.queue.clock():.1f}s: {exc}"
            )
            self._audit(JOB_RETRY_SCHEDULED, updated, {**outcome, "retry_at": retry_at})
        else:
            logger.error(
                f"Job {record.id} ({record.type}) failed permanently after "
                f"{updated.attempts_made} attempt(s): {exc}",
                exc_info=not isinstance(exc, NON_RETRYABLE),
            )
            self._audit(JOB_FAILED, updated, outcome)

    def _stall_loop(self) -> None:
        while not self._stop.wait(self.stall_check_interval):
            try:
                self.check_stalled()
            except QueueBackendError as exc:
                self.metrics.report_error(self.name, exc)

    def check_stalled(self) -> list[JobRecord]:
        """Requeue or fail active jobs whose heartbeat is older than the stalled interval."""
        policy = self.queue.policy
        now = self.queue.clock()
        handled = []
        for record in self.queue.store.find_stalled(self.name, now, policy.stalled_interval):
            requeue = policy.should_requeue_stalled(
                record.stalled_count, record.attempts_made, record.max_attempts
            )
            updated = self.queue.store.mark_stalled(
                self.name,
                record.id,
                record.lock_token,
                now,
                requeue,
                keep=self.queue.config.remove_on_fail,
            )
            if updated is None:
                continue
            handled.append(updated)
            if requeue:
                logger.warning(f"Job {record.id} on {self.name} stalled; requeued")
            else:
                logger.error(f"Job {record.id} on {self.name} stalled too many times; failed")
                self.metrics.record_failed(self.name)
            self._audit(
                JOB_STALLED,
                updated,
                {
                    "previous_state": JobState.STALLED.value,
                    "requeued": requeue,
                    "stalled_count": updated.stalled_count,
                    "attempts_made": updated.attempts_made,
                },
            )
        return handled

    def _audit(self, action: str, record: JobRecord, outcome: dict[str, Any]) -> None:
        if self.audit is None:
            return
        try:
            self.audit.append(
                AuditEntry(
                    action=action,
                    entity_type="queue_job",
                    entity_id=record.id,
                    outcome={
                        "queue": self.name,
                        "type": record.type,
                        "state": record.state.value,
                        "payload": record.summary(),
                        **outcome,
                    },
                )
            )
        except Exception as exc:
            logger.error(f"Audit write failed for {action} on job {record.id}: {exc}", exc_info=True)


def _summarize_result(result: Any) -> Any:
    if isinstance(result, dict):
        return {k: v for k, v in result.items() if isinstance(v, (str, int, float, bool))}
    if isinstance(result, (str, int, float, bool)) or result is None:
        return result
    return repr(result)[:200]


def build_pools(
    queues: list[NamedQueue],
    registry: ProcessorRegistry,
    metrics: MetricsMonitor,
    audit: AuditStore | None,
    **options: Any,
) -> dict[str, WorkerPool]:
    return {q.name: WorkerPool(q, registry, metrics, audit, **options) for q in queues}
