"""Queue processors: one handler per job type, registered on every queue that accepts it."""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta
import logging
from typing import Any

from sqlalchemy import delete
from sqlalchemy.orm import Session, sessionmaker

from ledger_sync.core.errors import LedgerUnavailableError
from ledger_sync.db.models.sync_log import SyncLog
from ledger_sync.queueing import payloads
from ledger_sync.queueing.manager import QueueManager
from ledger_sync.queueing.queue import QueueConfig
from ledger_sync.queueing.registry import ProcessorRegistry
from ledger_sync.queueing.worker_pool import JobContext
from ledger_sync.services.overrides import OverrideService
from ledger_sync.services.sync_orchestrator import SyncOrchestrator
from ledger_sync.services.validation_engine import KIND_CONTACT, KIND_PROJECT
from ledger_sync.utils.dates import utcnow

logger = logging.getLogger(__name__)


class SyncProcessors:
    """Job handlers bound to the services they call."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        session_factory: sessionmaker[Session],
        queues: QueueManager,
        overrides: OverrideService | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self._session_factory = session_factory
        self.queues = queues
        self.overrides = overrides or orchestrator.overrides

    def sync_timesheet(
        self, payload: payloads.SyncTimesheetPayload, context: JobContext
    ) -> dict[str, Any]:
        logger.info(
            f"Processing timesheet sync job {context.job_id} for submission "
            f"{payload.submission_id} (trigger={payload.trigger})"
        )
        context.update_progress(10)
        result = self.orchestrator.sync_timesheet(
            payload.submission_id, requested_by=payload.requested_by
        )
        context.update_progress(100)
        return result

    def sync_project(self, payload: payloads.SyncEntityPayload, context: JobContext) -> dict[str, Any]:
        context.heartbeat()
        return self.orchestrator.sync_entity(
            KIND_PROJECT,
            payload.entity_id,
            payload.requested_by,
            overwrite_existing=payload.overwrite_existing,
        )

    def sync_client(self, payload: payloads.SyncEntityPayload, context: JobContext) -> dict[str, Any]:
        context.heartbeat()
        return self.orchestrator.sync_entity(
            KIND_CONTACT,
            payload.entity_id,
            payload.requested_by,
            overwrite_existing=payload.overwrite_existing,
        )

    def batch_sync(self, payload: payloads.BatchSyncPayload, context: JobContext) -> dict[str, Any]:
        def _progress(done: int, total: int) -> None:
            context.update_progress(round(done / total * 100))

        result = self.orchestrator.sync_batch(
            payload.submission_ids, requested_by=payload.requested_by, on_item=_progress
        )
        # Retry the whole batch only when nothing went through and every failure was transient
        if result.failed and not result.successful and all(i.transient for i in result.results):
            raise LedgerUnavailableError(
                f"Batch of {result.processed} timesheets failed with transient errors"
            )
        return {
            "processed": result.processed,
            "successful": result.successful,
            "failed": result.failed,
            "overrides": result.overrides,
            "errors": result.errors,
        }

    def health_check(
        self, payload: payloads.HealthCheckPayload, context: JobContext
    ) -> dict[str, Any]:
        status = self.queues.get_status()
        if payload.check_ledger:
            connection = self.orchestrator.ledger.get_connection_status()
            if not connection.get("connected"):
                raise LedgerUnavailableError("Ledger connection check failed")
            status["ledger"] = connection
        return status

    def cleanup(self, payload: payloads.CleanupPayload, context: JobContext) -> dict[str, Any]:
        cutoff = utcnow() - timedelta(days=payload.older_than_days)
        with self._session_factory() as session:
            deleted = session.execute(delete(SyncLog).where(SyncLog.created_at < cutoff)).rowcount
            session.commit()
        context.heartbeat()

        expired = self.overrides.expire_stale()

        cleaned = {}
        for name in payload.queue_names or list(self.queues.queues):
            cleaned[name] = self.queues.clear_queue(name, states=("completed",))
        logger.info(
            f"Cleanup removed {deleted} sync log(s), expired {expired} override(s), "
            f"cleaned jobs {cleaned}"
        )
        return {"sync_logs_deleted": deleted, "overrides_expired": expired, "jobs_cleaned": cleaned}

    def handlers(self) -> dict[str, Callable[[Any, JobContext], Any]]:
        return {
            payloads.SYNC_TIMESHEET: self.sync_timesheet,
            payloads.SYNC_PROJECT: self.sync_project,
            payloads.SYNC_CLIENT: self.sync_client,
            payloads.BATCH_SYNC: self.batch_sync,
            payloads.HEALTH_CHECK: self.health_check,
            payloads.CLEANUP: self.cleanup,
        }


def register_processors(
    registry: ProcessorRegistry,
    processors: SyncProcessors,
    configs: list[QueueConfig],
) -> None:
    """Register a handler for each job type a queue accepts."""
    handlers = processors.handlers()
    for config in configs:
        for job_type in sorted(config.job_types):
            registry.register(
                config.name,
                job_type,
                handlers[job_type],
                payloads.PAYLOAD_MODELS[job_type],
            )
