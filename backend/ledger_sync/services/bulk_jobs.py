"""Bulk reprocessing runs triggered by admins, tracked in the ``bulk_jobs`` table."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, time as dt_time, timezone
import logging
import threading
import time
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from ledger_sync.core.errors import BulkJobNotFoundError
from ledger_sync.db.models.bulk_job import BulkJob
from ledger_sync.db.models.sync_log import SyncLog
from ledger_sync.db.models.timesheet import TimesheetSubmission
from ledger_sync.queueing.manager import QueueManager
from ledger_sync.services.audit import (
    BULK_JOB_CANCELLED,
    BULK_JOB_COMPLETED,
    BULK_JOB_FAILED,
    BULK_JOB_STARTED,
    SYSTEM_ACTOR,
    AuditEntry,
    AuditStore,
)
from ledger_sync.services.progress_tracker import ProgressTracker
from ledger_sync.utils.batching import chunked
from ledger_sync.utils.dates import ensure_aware, start_of_day, utcnow

logger = logging.getLogger(__name__)

REPROCESS_FAILED = "reprocess_failed"
REPROCESS_SPECIFIC = "reprocess_specific"
REPROCESS_DATE_RANGE = "reprocess_date_range"
CLEAR_QUEUE = "clear_queue"
OPERATION_TYPES = (REPROCESS_FAILED, REPROCESS_SPECIFIC, REPROCESS_DATE_RANGE, CLEAR_QUEUE)

STATUS_PENDING = "pending"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"

CLEARABLE_STATES = ("waiting", "delayed", "failed")


def _parse_date(value: Any) -> date | None:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _day_bounds(date_from: date | None, date_to: date | None) -> tuple[datetime | None, datetime | None]:
    start = start_of_day(date_from) if date_from else None
    end = datetime.combine(date_to, dt_time.max, tzinfo=timezone.utc) if date_to else None
    return start, end


class BulkJobTracker:
    """Creates bulk jobs, runs them batch by batch and aggregates their progress.

    Execution happens on a background thread by default; a custom
    ``dispatcher`` (for example the Celery task's ``delay``) can take over.
    Either way the work itself is ``run(job_id)``, and cancellation is read
    back from the database at every batch boundary.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        queues: QueueManager,
        audit: AuditStore | None = None,
        *,
        progress: ProgressTracker | None = None,
        dispatcher: Callable[[str], None] | None = None,
        default_batch_size: int = 10,
        default_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session_factory = session_factory
        self.queues = queues
        self.audit = audit
        self.progress = progress or ProgressTracker(None)
        self.dispatcher = dispatcher or self._dispatch_thread
        self.default_batch_size = default_batch_size
        self.default_delay = default_delay
        self.sleep = sleep

    # Public API

    def start(
        self,
        operation_type: str,
        filters: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
        actor: str = SYSTEM_ACTOR,
    ) -> str:
        filters = {
            key: value.isoformat() if isinstance(value, date) else value
            for key, value in (filters or {}).items()
        }
        options = self._normalize_options(options or {})
        self._check_request(operation_type, filters)

        with self._session_factory() as session:
            job = BulkJob(
                operation_type=operation_type,
                status=STATUS_PENDING,
                filters=filters,
                options=options,
                dry_run=options["dry_run"],
                created_by=actor,
                errors=[],
                created_at=utcnow(),
            )
            session.add(job)
            session.commit()
            job_id = job.id

        try:
            self._append(
                BULK_JOB_STARTED,
                job_id,
                actor,
                {"operation_type": operation_type, "filters": filters, "options": options},
            )
        except Exception as exc:
            logger.error(f"Bulk job {job_id} could not be audited; marking it failed: {exc}", exc_info=True)
            self._fail_pending(job_id, f"Audit write failed: {exc}")
            raise
        logger.info(f"Bulk job {job_id} ({operation_type}) created by {actor}")
        self.dispatcher(job_id)
        return job_id

    def get_status(self, job_id: str) -> dict[str, Any]:
        with self._session_factory() as session:
            job = session.get(BulkJob, job_id)
            if job is None:
                raise BulkJobNotFoundError(f"Bulk job {job_id} not found")
            data = self._to_dict(job)
        data["live_progress"] = self.progress.fetch_progress(job_id)
        return data

    def list_jobs(self, limit: int = 50, status: str | None = None) -> list[dict[str, Any]]:
        with self._session_factory() as session:
            query = select(BulkJob)
            if status:
                query = query.where(BulkJob.status == status)
            jobs = session.scalars(query.order_by(BulkJob.created_at.desc()).limit(limit)).all()
            return [self._to_dict(job) for job in jobs]

    def cancel(self, job_id: str, actor: str = SYSTEM_ACTOR) -> dict[str, Any]:
        """Request cancellation; honoured when the running job reaches its next batch."""
        with self._session_factory() as session:
            job = session.get(BulkJob, job_id)
            if job is None:
                raise BulkJobNotFoundError(f"Bulk job {job_id} not found")
            changed = session.execute(
                update(BulkJob)
                .where(BulkJob.id == job_id, BulkJob.status == STATUS_RUNNING)
                .values(status=STATUS_CANCELLED, completed_at=utcnow())
            ).rowcount
            session.commit()
        if not changed:
            raise ValueError(f"Bulk job {job_id} is {job.status}; only running jobs can be cancelled")

        self._append(BULK_JOB_CANCELLED, job_id, actor, {})
        logger.info(f"Bulk job {job_id} cancelled by {actor}")
        return self.get_status(job_id)

    # Execution

    def run(self, job_id: str) -> None:
        with self._session_factory() as session:
            job = session.get(BulkJob, job_id)
            if job is None:
                raise BulkJobNotFoundError(f"Bulk job {job_id} not found")
            if job.status != STATUS_PENDING:
                logger.warning(f"Bulk job {job_id} is already {job.status}; not running it again")
                return
            job.status = STATUS_RUNNING
            job.started_at = utcnow()
            session.commit()
            operation_type = job.operation_type
            filters = dict(job.filters or {})
            options = dict(job.options or {})
            actor = job.created_by

        try:
            self._execute(job_id, operation_type, filters, options, actor)
        except Exception as exc:
            logger.error(f"Bulk job {job_id} failed: {exc}", exc_info=True)
            finished = self._finish(job_id, STATUS_FAILED, extra_error=str(exc))
            if finished:
                try:
                    self._append(BULK_JOB_FAILED, job_id, actor, {"error": str(exc)})
                except Exception as audit_exc:
                    logger.error(f"Audit write failed for bulk job {job_id}: {audit_exc}", exc_info=True)
                self.progress.publish_progress(job_id, 1.0, str(exc), status=STATUS_FAILED)

    def _execute(
        self,
        job_id: str,
        operation_type: str,
        filters: dict[str, Any],
        options: dict[str, Any],
        actor: str,
    ) -> None:
        items = self._resolve_items(operation_type, filters)
        with self._session_factory() as session:
            session.execute(update(BulkJob).where(BulkJob.id == job_id).values(total_items=len(items)))
            session.commit()
        logger.info(f"Bulk job {job_id} resolved {len(items)} item(s)")

        batch_size = options["batch_size"]
        processed = success = failed = 0
        batches = list(chunked(items, batch_size))
        for index, batch in enumerate(batches):
            if self._is_cancelled(job_id):
                logger.info(f"Bulk job {job_id} stopped at batch {index + 1}/{len(batches)}")
                self.progress.publish_progress(
                    job_id,
                    processed / len(items),
                    "Cancelled",
                    status=STATUS_CANCELLED,
                    meta={"processed": processed, "total": len(items)},
                )
                return

            errors = []
            for item in batch:
                error = self._process_item(job_id, operation_type, item, filters, options, actor)
                if error is None:
                    success += 1
                else:
                    failed += 1
                    errors.append({"entity_id": item, "message": error, "timestamp": utcnow().isoformat()})
            processed += len(batch)
            self._save_counters(job_id, processed, success, failed, errors)
            self.progress.publish_progress(
                job_id,
                processed / len(items),
                message=f"Processed {processed}/{len(items)} items",
                status=STATUS_RUNNING,
                meta={"processed": processed, "total": len(items), "success": success, "errors": failed},
            )
            if index < len(batches) - 1 and options["delay_between_batches"] > 0:
                self.sleep(options["delay_between_batches"])

        if self._finish(job_id, STATUS_COMPLETED):
            outcome = {"processed": processed, "success": success, "errors": failed}
            self._append(BULK_JOB_COMPLETED, job_id, actor, outcome)
            self.progress.publish_progress(job_id, 1.0, "Bulk job complete", status=STATUS_COMPLETED, meta=outcome)
            logger.info(f"Bulk job {job_id} completed: {outcome}")

    def _process_item(
        self,
        job_id: str,
        operation_type: str,
        item: str,
        filters: dict[str, Any],
        options: dict[str, Any],
        actor: str,
    ) -> str | None:
        """Return an error message for a failed item, or None."""
        if options["dry_run"]:
            return None
        try:
            if operation_type == CLEAR_QUEUE:
                self.queues.clear_queue(
                    item, job_types=filters.get("job_types"), states=CLEARABLE_STATES, actor=actor
                )
            else:
                self.queues.enqueue_timesheet_sync(
                    item,
                    priority=options["priority"],
                    trigger="bulk",
                    requested_by=actor,
                    bulk_job_id=job_id,
                )
        except Exception as exc:
            logger.warning(f"Bulk job {job_id} item {item} failed: {exc}")
            return str(exc)
        return None

    def _resolve_items(self, operation_type: str, filters: dict[str, Any]) -> list[str]:
        if operation_type == REPROCESS_SPECIFIC:
            return list(dict.fromkeys(filters["submission_ids"]))
        if operation_type == CLEAR_QUEUE:
            return list(filters.get("queue_names") or self.queues.queues)

        date_from = _parse_date(filters.get("date_from"))
        date_to = _parse_date(filters.get("date_to"))
        user_ids = filters.get("user_ids")
        with self._session_factory() as session:
            if operation_type == REPROCESS_FAILED:
                start, end = _day_bounds(date_from, date_to)
                query = select(SyncLog.entity_id).where(
                    SyncLog.status == "FAILED", SyncLog.entity_type == "TIMESHEET"
                )
                if start:
                    query = query.where(SyncLog.created_at >= start)
                if end:
                    query = query.where(SyncLog.created_at <= end)
                if user_ids:
                    query = query.where(SyncLog.user_id.in_(user_ids))
                if filters.get("operations"):
                    query = query.where(SyncLog.operation.in_(filters["operations"]))
                ids = session.scalars(query.order_by(SyncLog.created_at)).all()
            else:
                query = select(TimesheetSubmission.id).where(TimesheetSubmission.status == "APPROVED")
                if date_from:
                    query = query.where(TimesheetSubmission.week_start_date >= date_from)
                if date_to:
                    query = query.where(TimesheetSubmission.week_start_date <= date_to)
                if user_ids:
                    query = query.where(TimesheetSubmission.user_id.in_(user_ids))
                ids = session.scalars(query.order_by(TimesheetSubmission.week_start_date)).all()
        return [i for i in dict.fromkeys(ids) if i]

    # Persistence helpers

    def _is_cancelled(self, job_id: str) -> bool:
        with self._session_factory() as session:
            status = session.scalar(select(BulkJob.status).where(BulkJob.id == job_id))
        return status == STATUS_CANCELLED

    def _save_counters(
        self, job_id: str, processed: int, success: int, failed: int, errors: list[dict[str, Any]]
    ) -> None:
        with self._session_factory() as session:
            job = session.get(BulkJob, job_id)
            # Counters only; status may have been flipped to cancelled meanwhile
            session.execute(
                update(BulkJob)
                .where(BulkJob.id == job_id)
                .values(
                    processed_items=processed,
                    success_count=success,
                    error_count=failed,
                    errors=list(job.errors or []) + errors,
                )
            )
            session.commit()

    def _finish(self, job_id: str, status: str, extra_error: str | None = None) -> bool:
        """Move a running job to a terminal status; False if it already left running."""
        values: dict[str, Any] = {"status": status, "completed_at": utcnow()}
        with self._session_factory() as session:
            if extra_error:
                job = session.get(BulkJob, job_id)
                values["errors"] = list(job.errors or []) + [
                    {"entity_id": None, "message": extra_error, "timestamp": utcnow().isoformat()}
                ]
            changed = session.execute(
                update(BulkJob)
                .where(BulkJob.id == job_id, BulkJob.status == STATUS_RUNNING)
                .values(**values)
            ).rowcount
            session.commit()
        return bool(changed)

    def _fail_pending(self, job_id: str, message: str) -> None:
        """Fail a job that never left pending so it does not sit there forever."""
        with self._session_factory() as session:
            session.execute(
                update(BulkJob)
                .where(BulkJob.id == job_id, BulkJob.status == STATUS_PENDING)
                .values(
                    status=STATUS_FAILED,
                    completed_at=utcnow(),
                    errors=[{"entity_id": None, "message": message, "timestamp": utcnow().isoformat()}],
                )
            )
            session.commit()

    def _append(self, action: str, job_id: str, actor: str, outcome: dict[str, Any]) -> None:
        if self.audit is not None:
            self.audit.append(
                AuditEntry(action=action, entity_type="bulk_job", entity_id=job_id, actor=actor, outcome=outcome)
            )

    def _dispatch_thread(self, job_id: str) -> None:
        threading.Thread(target=self.run, args=(job_id,), name=f"bulk-{job_id[:8]}", daemon=True).start()

    def _normalize_options(self, options: dict[str, Any]) -> dict[str, Any]:
        batch_size = int(options.get("batch_size") or self.default_batch_size)
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        delay = options.get("delay_between_batches")
        return {
            "priority": options.get("priority") or "normal",
            "batch_size": batch_size,
            "delay_between_batches": float(self.default_delay if delay is None else delay),
            "dry_run": bool(options.get("dry_run", False)),
        }

    def _check_request(self, operation_type: str, filters: dict[str, Any]) -> None:
        if operation_type not in OPERATION_TYPES:
            raise ValueError(f"Unknown bulk operation type: {operation_type}")
        if operation_type == REPROCESS_SPECIFIC and not filters.get("submission_ids"):
            raise ValueError("reprocess_specific requires submission_ids")
        if operation_type == REPROCESS_DATE_RANGE and not (
            filters.get("date_from") and filters.get("date_to")
        ):
            raise ValueError("reprocess_date_range requires date_from and date_to")
        if operation_type == CLEAR_QUEUE:
            for name in filters.get("queue_names") or []:
                self.queues.get_queue(name)

    @staticmethod
    def _to_dict(job: BulkJob) -> dict[str, Any]:
        total = job.total_items or 0
        return {
            "id": job.id,
            "operation_type": job.operation_type,
            "status": job.status,
            "total_items": total,
            "processed_items": job.processed_items,
            "success_count": job.success_count,
            "error_count": job.error_count,
            "progress": round(job.processed_items / total * 100, 1) if total else 0.0,
            "errors": list(job.errors or []),
            "filters": job.filters,
            "options": job.options,
            "dry_run": job.dry_run,
            "created_by": job.created_by,
            "created_at": ensure_aware(job.created_at),
            "started_at": ensure_aware(job.started_at),
            "completed_at": ensure_aware(job.completed_at),
        }
