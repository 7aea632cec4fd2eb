"""Named queues and their default configuration."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
import logging
import time
from typing import Any

from ledger_sync.core.errors import UnknownJobTypeError
from ledger_sync.queueing import payloads
from ledger_sync.queueing.models import JobRecord
from ledger_sync.queueing.policy import BackoffType, RetryPolicy
from ledger_sync.queueing.store import JobStore
from ledger_sync.services.audit import JOB_ENQUEUED, SYSTEM_ACTOR, AuditEntry, AuditStore

logger = logging.getLogger(__name__)

HIGH_PRIORITY_QUEUE = "ledger-sync-high-priority"
NORMAL_QUEUE = "ledger-sync-normal"
BATCH_QUEUE = "ledger-sync-batch"


@dataclass(frozen=True)
class QueueConfig:
    name: str
    concurrency: int
    retry_policy: RetryPolicy
    job_types: frozenset[str] = field(default_factory=frozenset)
    remove_on_complete: int | None = 100
    remove_on_fail: int | None = 200

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ValueError(f"Queue {self.name} needs a concurrency of at least 1")


def default_queue_configs() -> list[QueueConfig]:
    """The three ledger queues: isolated budgets keep ledger pressure bounded."""
    return [
        QueueConfig(
            name=HIGH_PRIORITY_QUEUE,
            concurrency=3,
            retry_policy=RetryPolicy(
                max_attempts=5,
                backoff_type=BackoffType.EXPONENTIAL,
                base_delay=2.0,
                stalled_interval=30.0,
                max_stalled_count=1,
            ),
            job_types=frozenset({payloads.SYNC_TIMESHEET, payloads.HEALTH_CHECK}),
            remove_on_complete=100,
            remove_on_fail=200,
        ),
        QueueConfig(
            name=NORMAL_QUEUE,
            concurrency=5,
            retry_policy=RetryPolicy(
                max_attempts=3,
                backoff_type=BackoffType.EXPONENTIAL,
                base_delay=5.0,
                stalled_interval=60.0,
                max_stalled_count=2,
            ),
            job_types=frozenset(
                {payloads.SYNC_TIMESHEET, payloads.SYNC_PROJECT, payloads.SYNC_CLIENT}
            ),
            remove_on_complete=50,
            remove_on_fail=100,
        ),
        QueueConfig(
            name=BATCH_QUEUE,
            concurrency=2,
            retry_policy=RetryPolicy(
                max_attempts=2,
                backoff_type=BackoffType.EXPONENTIAL,
                base_delay=10.0,
                stalled_interval=120.0,
                max_stalled_count=1,
            ),
            job_types=frozenset({payloads.BATCH_SYNC, payloads.CLEANUP}),
            remove_on_complete=20,
            remove_on_fail=50,
        ),
    ]


class NamedQueue:
    """Producer-side handle for one queue; the worker pool consumes it."""

    def __init__(
        self,
        config: QueueConfig,
        store: JobStore,
        audit: AuditStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.store = store
        self.audit = audit
        self.clock = clock

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def policy(self) -> RetryPolicy:
        return self.config.retry_policy

    def accepts(self, job_type: str) -> bool:
        return job_type in self.config.job_types

    def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any],
        *,
        attempts: int | None = None,
        delay: float = 0.0,
        priority: int = 0,
        job_id: str | None = None,
        actor: str = SYSTEM_ACTOR,
    ) -> JobRecord:
        if not self.accepts(job_type):
            raise UnknownJobTypeError(f"Queue {self.name} does not accept {job_type} jobs")
        if attempts is not None and attempts < 1:
            raise ValueError("attempts must be at least 1")

        now = self.clock()
        record = JobRecord(
            queue_name=self.name,
            type=job_type,
            payload=dict(payload),
            max_attempts=attempts or self.policy.max_attempts,
            priority=priority,
            created_at=now,
            available_at=now + max(delay, 0.0),
        )
        if job_id:
            record.id = job_id
        stored = self.store.add(record)
        if stored is not record:
            logger.info(
                f"Job {record.id} already exists on {self.name} ({stored.state.value}); "
                f"keeping the existing record"
            )
            return stored
        logger.info(
            f"Enqueued {job_type} job {record.id} on {self.name} "
            f"(delay={delay}s, attempts={record.max_attempts})"
        )
        self._audit(
            AuditEntry(
                action=JOB_ENQUEUED,
                entity_type="queue_job",
                entity_id=record.id,
                actor=actor,
                outcome={
                    "queue": self.name,
                    "type": job_type,
                    "payload": record.summary(),
                    "delay": delay,
                    "max_attempts": record.max_attempts,
                },
            )
        )
        return record

    def get_job(self, job_id: str) -> JobRecord | None:
        return self.store.get(self.name, job_id)

    def counts(self) -> dict[str, int]:
        return self.store.counts(self.name, self.clock())

    def list_jobs(self, states: Iterable[str], limit: int = 100) -> list[JobRecord]:
        return self.store.list_jobs(self.name, states, self.clock(), limit)

    def pause(self) -> None:
        """Pause globally (persisted in the store, seen by every worker process)."""
        self.store.set_paused(self.name, True)

    def resume(self) -> None:
        self.store.set_paused(self.name, False)

    def is_paused(self) -> bool:
        return self.store.is_paused(self.name)

    def clear_failed(self) -> int:
        return self.store.clean(self.name, ["failed"], self.clock())

    def retry_jobs(self, job_ids: Iterable[str] | None = None) -> int:
        return self.store.retry(self.name, job_ids, self.clock())

    def remove_jobs(self, job_ids: Iterable[str]) -> int:
        return self.store.remove(self.name, job_ids)

    def clean(self, states: Iterable[str], job_types: Iterable[str] | None = None) -> int:
        return self.store.clean(self.name, states, self.clock(), job_types)

    def _audit(self, entry: AuditEntry) -> None:
        if self.audit is None:
            return
        try:
            self.audit.append(entry)
        except Exception as exc:
            logger.error(
                f"Audit write failed for {entry.action} on {entry.entity_id}: {exc}",
                exc_info=True,
            )
