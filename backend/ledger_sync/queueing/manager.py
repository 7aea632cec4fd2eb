"""Process-wide handle over every named queue, its pool and the metrics monitor."""

from __future__ import annotations

from collections.abc import Iterable
import logging
from typing import Any

from ledger_sync.core.errors import QueueNotFoundError
from ledger_sync.queueing import payloads
from ledger_sync.queueing.metrics import MetricsMonitor, MetricsSnapshot
from ledger_sync.queueing.models import JobRecord
from ledger_sync.queueing.queue import (
    BATCH_QUEUE,
    HIGH_PRIORITY_QUEUE,
    NORMAL_QUEUE,
    NamedQueue,
    QueueConfig,
)
from ledger_sync.queueing.registry import ProcessorRegistry
from ledger_sync.queueing.store import JobStore
from ledger_sync.queueing.worker_pool import WorkerPool, build_pools
from ledger_sync.services.audit import (
    JOBS_REMOVED,
    JOBS_RETRIED,
    QUEUE_CLEARED,
    QUEUE_PAUSED,
    QUEUE_RESUMED,
    SYSTEM_ACTOR,
    AuditEntry,
    AuditStore,
)

logger = logging.getLogger(__name__)

# Non-priority timesheet syncs wait a little so bursts of approvals coalesce
NORMAL_SYNC_DELAY = 5.0


class QueueManager:
    def __init__(
        self,
        store: JobStore,
        registry: ProcessorRegistry,
        configs: Iterable[QueueConfig],
        *,
        audit: AuditStore | None = None,
        metrics: MetricsMonitor | None = None,
        idle_poll: float = 0.5,
        stall_check_interval: float | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.audit = audit
        self.metrics = metrics or MetricsMonitor()
        self.queues: dict[str, NamedQueue] = {
            config.name: NamedQueue(config, store, audit) for config in configs
        }
        for queue in self.queues.values():
            self.metrics.register(queue)
        self.pools: dict[str, WorkerPool] = build_pools(
            list(self.queues.values()),
            registry,
            self.metrics,
            audit,
            idle_poll=idle_poll,
            stall_check_interval=stall_check_interval,
        )
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self, *, start_workers: bool = True, start_metrics: bool = True) -> None:
        for queue in self.queues.values():
            missing = queue.config.job_types - self.registry.job_types(queue.name)
            if missing:
                logger.warning(f"Queue {queue.name} has no processor for {sorted(missing)}")
        if start_workers:
            for pool in self.pools.values():
                pool.start()
        if start_metrics:
            self.metrics.start()
        self._running = True
        logger.info(f"Queue manager started with queues: {', '.join(self.queues)}")

    def mark_stopped(self) -> None:
        self._running = False

    def get_queue(self, name: str) -> NamedQueue:
        try:
            return self.queues[name]
        except KeyError:
            raise QueueNotFoundError(f"Queue {name} not found") from None

    def enqueue(
        self,
        queue_name: str,
        job_type: str,
        payload: dict[str, Any],
        **options: Any,
    ) -> JobRecord:
        return self.get_queue(queue_name).enqueue(job_type, payload, **options)

    def enqueue_timesheet_sync(
        self,
        submission_id: str,
        *,
        priority: str = "normal",
        trigger: str = "manual",
        requested_by: str | None = None,
        bulk_job_id: str | None = None,
    ) -> JobRecord:
        """Route a timesheet sync: approvals and high priority skip the normal delay."""
        payload = {
            "submission_id": submission_id,
            "priority": priority,
            "trigger": trigger,
            "requested_by": requested_by,
            "bulk_job_id": bulk_job_id,
        }
        if priority == "high" or trigger == "approval":
            return self.enqueue(
                HIGH_PRIORITY_QUEUE,
                payloads.SYNC_TIMESHEET,
                payload,
                attempts=5,
                delay=0,
                priority=1,
                actor=requested_by or SYSTEM_ACTOR,
            )
        return self.enqueue(
            NORMAL_QUEUE,
            payloads.SYNC_TIMESHEET,
            payload,
            attempts=3,
            delay=NORMAL_SYNC_DELAY,
            priority=5,
            actor=requested_by or SYSTEM_ACTOR,
        )

    def enqueue_entity_sync(
        self,
        job_type: str,
        entity_id: str,
        *,
        overwrite_existing: bool = False,
        requested_by: str | None = None,
    ) -> JobRecord:
        return self.enqueue(
            NORMAL_QUEUE,
            job_type,
            {
                "entity_id": entity_id,
                "overwrite_existing": overwrite_existing,
                "requested_by": requested_by,
            },
            actor=requested_by or SYSTEM_ACTOR,
        )

    def enqueue_batch_sync(
        self,
        submission_ids: list[str],
        *,
        requested_by: str | None = None,
        bulk_job_id: str | None = None,
        priority: int = 10,
    ) -> JobRecord:
        return self.enqueue(
            BATCH_QUEUE,
            payloads.BATCH_SYNC,
            {
                "submission_ids": submission_ids,
                "requested_by": requested_by,
                "bulk_job_id": bulk_job_id,
            },
            attempts=2,
            priority=priority,
            actor=requested_by or SYSTEM_ACTOR,
        )

    def enqueue_health_check(self) -> JobRecord:
        return self.enqueue(
            HIGH_PRIORITY_QUEUE,
            payloads.HEALTH_CHECK,
            {"check_ledger": True},
            attempts=1,
        )

    def pause_queue(self, name: str, actor: str = SYSTEM_ACTOR) -> None:
        self.get_queue(name).pause()
        self.metrics.mark_paused(name, True)
        self._audit(QUEUE_PAUSED, name, actor, {})
        logger.info(f"Queue {name} paused by {actor}")

    def resume_queue(self, name: str, actor: str = SYSTEM_ACTOR) -> None:
        self.get_queue(name).resume()
        self.metrics.mark_paused(name, False)
        self._audit(QUEUE_RESUMED, name, actor, {})
        logger.info(f"Queue {name} resumed by {actor}")

    def clear_failed_jobs(self, name: str, actor: str = SYSTEM_ACTOR) -> int:
        removed = self.get_queue(name).clear_failed()
        self._audit(QUEUE_CLEARED, name, actor, {"states": ["failed"], "removed": removed})
        return removed

    def retry_jobs(
        self, name: str, job_ids: Iterable[str] | None = None, actor: str = SYSTEM_ACTOR
    ) -> int:
        ids = list(job_ids) if job_ids is not None else None
        retried = self.get_queue(name).retry_jobs(ids)
        self._audit(JOBS_RETRIED, name, actor, {"job_ids": ids, "retried": retried})
        logger.info(f"Retried {retried} failed job(s) on {name} for {actor}")
        return retried

    def remove_jobs(self, name: str, job_ids: Iterable[str], actor: str = SYSTEM_ACTOR) -> int:
        ids = list(job_ids)
        removed = self.get_queue(name).remove_jobs(ids)
        self._audit(JOBS_REMOVED, name, actor, {"job_ids": ids, "removed": removed})
        logger.info(f"Removed {removed} job(s) from {name} for {actor}")
        return removed

    def clear_queue(
        self,
        name: str,
        job_types: Iterable[str] | None = None,
        states: Iterable[str] = ("waiting", "delayed", "failed"),
        actor: str = SYSTEM_ACTOR,
    ) -> int:
        states = list(states)
        types = list(job_types) if job_types else None
        removed = self.get_queue(name).clean(states, types)
        self._audit(
            QUEUE_CLEARED,
            name,
            actor,
            {"states": states, "job_types": types, "removed": removed},
        )
        logger.info(f"Cleared {removed} job(s) from {name}")
        return removed

    def get_metrics(
        self, name: str | None = None
    ) -> MetricsSnapshot | dict[str, MetricsSnapshot]:
        if name is not None:
            self.get_queue(name)
            return self.metrics.snapshot(name)
        return self.metrics.snapshots()

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "healthy": self._running and self.metrics.is_healthy(),
            "queue_names": list(self.queues),
        }

    def _audit(self, action: str, queue_name: str, actor: str, outcome: dict[str, Any]) -> None:
        if self.audit is None:
            return
        try:
            self.audit.append(
                AuditEntry(
                    action=action,
                    entity_type="queue",
                    entity_id=queue_name,
                    actor=actor,
                    outcome=outcome,
                )
            )
        except Exception as exc:
            logger.error(f"Audit write failed for {action} on {queue_name}: {exc}", exc_info=True)
