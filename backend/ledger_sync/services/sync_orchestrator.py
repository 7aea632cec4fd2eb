"""Decide what needs syncing, run it, and interpret the outcomes.

This is the only component that knows about the ledger domain. It enumerates
candidate entities, enqueues queue jobs for full and incremental runs, and
performs the per-item sync (transform, validate, override gate, ledger call)
used by both the manual endpoint and the queue processors. A run never aborts
because one entity failed; it returns a ``SyncRunResult`` with the per-item
outcomes instead.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
import logging
from typing import Any, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from ledger_sync.core.errors import (
    LedgerRejectedError,
    LedgerSyncError,
    PayloadError,
    TransientError,
    ValidationFailedError,
)
from ledger_sync.db.models.client import Client
from ledger_sync.db.models.ledger_connection import LedgerConnection
from ledger_sync.db.models.project import Project
from ledger_sync.db.models.sync_log import SyncLog
from ledger_sync.db.models.timesheet import TimeEntry, TimesheetSubmission
from ledger_sync.queueing import payloads
from ledger_sync.queueing.manager import QueueManager
from ledger_sync.services.audit import SYNC_RUN, SYSTEM_ACTOR, AuditEntry, AuditStore
from ledger_sync.services.overrides import OverrideService
from ledger_sync.services.quarantine import (
    REASON_API_ERROR,
    REASON_VALIDATION_FAILED,
    QuarantineService,
)
from ledger_sync.services.readiness import CategoryReadiness, ReadinessReport, build_report
from ledger_sync.services.transform import LedgerTransformer
from ledger_sync.services.validation_engine import (
    KIND_CONTACT,
    KIND_PROJECT,
    KIND_TIME_ENTRY,
    KIND_TIMESHEET,
    ValidationEngine,
)
from ledger_sync.utils.batching import chunked
from ledger_sync.utils.dates import ensure_aware, utcnow

logger = logging.getLogger(__name__)

MODE_FULL = "full"
MODE_INCREMENTAL = "incremental"

SYNCABLE_PROJECT_STATUSES = ("ACTIVE", "COMPLETED")
MAX_ERROR_DETAILS = 20

LOG_ENTITY_TYPES = {
    KIND_TIMESHEET: "TIMESHEET",
    KIND_PROJECT: "PROJECT",
    KIND_CONTACT: "CONTACT",
}
KIND_MODELS = {
    KIND_TIMESHEET: TimesheetSubmission,
    KIND_PROJECT: Project,
    KIND_CONTACT: Client,
}
KIND_JOB_TYPES = {
    KIND_PROJECT: payloads.SYNC_PROJECT,
    KIND_CONTACT: payloads.SYNC_CLIENT,
}
LOG_KINDS = {log_type: kind for kind, log_type in LOG_ENTITY_TYPES.items()}
# Reference data: once synced it is re-posted only on overwrite
REFERENCE_KINDS = (KIND_CONTACT, KIND_PROJECT)


def ineligibility(kind: str, entity: Any) -> str | None:
    """Why an entity may not be sent to the ledger at all, or None."""
    if kind == KIND_TIMESHEET and entity.status != "APPROVED":
        return f"is {entity.status}; only APPROVED timesheets are synced"
    if kind == KIND_PROJECT and entity.status not in SYNCABLE_PROJECT_STATUSES:
        return f"is {entity.status}; only {', '.join(SYNCABLE_PROJECT_STATUSES)} projects are synced"
    if kind == KIND_CONTACT and not entity.is_active:
        return "is inactive; only active clients are synced"
    return None


class LedgerGateway(Protocol):
    def post_entry(self, payload: dict[str, Any], kind: str = ...) -> dict[str, Any]: ...

    def get_connection_status(self) -> dict[str, Any]: ...

    def get_organization_info(self) -> dict[str, Any]: ...


@dataclass
class SyncOptions:
    dry_run: bool = False
    overwrite_existing: bool = False
    sync_contacts: bool = True
    sync_projects: bool = True
    sync_time_entries: bool = True
    date_from: date | None = None
    date_to: date | None = None
    project_ids: list[str] | None = None
    user_ids: list[str] | None = None
    submission_ids: list[str] | None = None
    batch_size: int | None = None
    priority: str = "normal"


@dataclass
class ItemResult:
    entity_id: str
    entity_type: str
    status: str  # success | error
    ledger_reference: str | None = None
    overridden: bool = False
    errors: list[str] = field(default_factory=list)
    transient: bool = False
    already_synced: bool = False


@dataclass
class SyncRunResult:
    success: bool
    processed: int
    successful: int
    failed: int
    overrides: int
    validations: int
    results: list[ItemResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @classmethod
    def from_items(cls, items: list[ItemResult], validations: int) -> SyncRunResult:
        failed = [i for i in items if i.status == "error"]
        return cls(
            success=not failed,
            processed=len(items),
            successful=len(items) - len(failed),
            failed=len(failed),
            overrides=sum(1 for i in items if i.overridden),
            validations=validations,
            results=items,
            errors=[f"{i.entity_type} {i.entity_id}: {'; '.join(i.errors)}" for i in failed],
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DryRunReport:
    total: int
    valid: int
    errors: int
    results: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"dry_run": True, **asdict(self)}


@dataclass
class EnqueueSummary:
    mode: str
    enqueued: int
    job_ids: list[str]
    by_type: dict[str, int]
    date_from: date | None = None
    date_to: date | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SyncOrchestrator:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        queues: QueueManager,
        ledger: LedgerGateway,
        *,
        validator: ValidationEngine | None = None,
        transformer: LedgerTransformer | None = None,
        overrides: OverrideService | None = None,
        quarantine: QuarantineService | None = None,
        audit: AuditStore | None = None,
        lookback_days: int = 7,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self.queues = queues
        self.ledger = ledger
        self.validator = validator or ValidationEngine()
        self.transformer = transformer or LedgerTransformer()
        self.overrides = overrides or OverrideService(session_factory, audit)
        self.quarantine = quarantine or QuarantineService(session_factory, audit)
        self.audit = audit
        self.lookback_days = lookback_days
        self.clock = clock

    # Enumeration

    def _submissions(self, session: Session, options: SyncOptions) -> list[TimesheetSubmission]:
        query = select(TimesheetSubmission).where(TimesheetSubmission.status == "APPROVED")
        if options.submission_ids:
            query = query.where(TimesheetSubmission.id.in_(options.submission_ids))
        if options.date_from:
            query = query.where(TimesheetSubmission.week_start_date >= options.date_from)
        if options.date_to:
            query = query.where(TimesheetSubmission.week_start_date <= options.date_to)
        if options.user_ids:
            query = query.where(TimesheetSubmission.user_id.in_(options.user_ids))
        if options.project_ids:
            query = query.where(
                TimesheetSubmission.id.in_(
                    select(TimeEntry.submission_id).where(
                        TimeEntry.project_id.in_(options.project_ids)
                    )
                )
            )
        query = query.order_by(TimesheetSubmission.week_start_date)
        return list(session.scalars(query).unique().all())

    def _projects(self, session: Session, options: SyncOptions) -> list[Project]:
        query = select(Project).where(Project.status.in_(SYNCABLE_PROJECT_STATUSES))
        if options.project_ids:
            query = query.where(Project.id.in_(options.project_ids))
        return list(session.scalars(query.order_by(Project.name)).unique().all())

    def _clients(self, session: Session) -> list[Client]:
        query = select(Client).where(Client.is_active.is_(True)).order_by(Client.name)
        return list(session.scalars(query).all())

    def _candidates(self, session: Session, options: SyncOptions) -> list[tuple[str, Any]]:
        candidates: list[tuple[str, Any]] = []
        if options.sync_contacts and not options.submission_ids:
            candidates.extend((KIND_CONTACT, c) for c in self._clients(session))
        if options.sync_projects and not options.submission_ids:
            candidates.extend((KIND_PROJECT, p) for p in self._projects(session, options))
        if options.sync_time_entries:
            candidates.extend((KIND_TIMESHEET, s) for s in self._submissions(session, options))
        return candidates

    # Full / incremental

    def enqueue_sync(
        self,
        options: SyncOptions,
        mode: str = MODE_FULL,
        actor: str = SYSTEM_ACTOR,
    ) -> EnqueueSummary | DryRunReport:
        """Enqueue one job per entity (or per batch of timesheets)."""
        if mode not in (MODE_FULL, MODE_INCREMENTAL):
            raise ValueError(f"Unknown sync mode: {mode}")
        started_at = self.clock()
        if mode == MODE_INCREMENTAL:
            last_sync = self.get_last_sync_at()
            options.date_from = (last_sync or started_at - timedelta(days=self.lookback_days)).date()
            options.date_to = started_at.date()

        if options.dry_run:
            return self.dry_run(options)

        job_ids: list[str] = []
        by_type: dict[str, int] = {}

        def _track(job_type: str, job_id: str) -> None:
            job_ids.append(job_id)
            by_type[job_type] = by_type.get(job_type, 0) + 1

        with self._session_factory() as session:
            if options.sync_contacts:
                for client in self._clients(session):
                    job = self.queues.enqueue_entity_sync(
                        payloads.SYNC_CLIENT,
                        client.id,
                        overwrite_existing=options.overwrite_existing,
                        requested_by=actor,
                    )
                    _track(job.type, job.id)
            if options.sync_projects:
                for project in self._projects(session, options):
                    job = self.queues.enqueue_entity_sync(
                        payloads.SYNC_PROJECT,
                        project.id,
                        overwrite_existing=options.overwrite_existing,
                        requested_by=actor,
                    )
                    _track(job.type, job.id)
            if options.sync_time_entries:
                submission_ids = [s.id for s in self._submissions(session, options)]
                trigger = "scheduled" if mode == MODE_INCREMENTAL else "manual"
                if options.batch_size:
                    for batch in chunked(submission_ids, options.batch_size):
                        job = self.queues.enqueue_batch_sync(batch, requested_by=actor)
                        _track(job.type, job.id)
                else:
                    for submission_id in submission_ids:
                        job = self.queues.enqueue_timesheet_sync(
                            submission_id,
                            priority=options.priority,
                            trigger=trigger,
                            requested_by=actor,
                        )
                        _track(job.type, job.id)

        if mode == MODE_INCREMENTAL:
            self._set_last_sync_at(started_at)

        summary = EnqueueSummary(
            mode=mode,
            enqueued=len(job_ids),
            job_ids=job_ids,
            by_type=by_type,
            date_from=options.date_from,
            date_to=options.date_to,
        )
        logger.info(f"{mode.capitalize()} sync enqueued {summary.enqueued} job(s): {by_type}")
        self._audit_run(actor, {"mode": mode, "enqueued": summary.enqueued, "by_type": by_type})
        return summary

    # Dry run

    def dry_run(self, options: SyncOptions) -> DryRunReport:
        """Transform and validate only; never calls the ledger."""
        results = []
        with self._session_factory() as session:
            for kind, entity in self._candidates(session, options):
                payload = self.transformer.transform(entity)
                validation = self.validator.validate(payload, kind)
                results.append(
                    {
                        "entity_id": entity.id,
                        "entity_type": LOG_ENTITY_TYPES[kind],
                        "valid": validation.is_valid,
                        "errors": [issue.to_dict() for issue in validation.errors],
                        "warnings": [issue.to_dict() for issue in validation.warnings],
                    }
                )
        valid = sum(1 for r in results if r["valid"])
        logger.info(f"Dry run checked {len(results)} entities, {valid} valid")
        return DryRunReport(
            total=len(results),
            valid=valid,
            errors=len(results) - valid,
            results=results,
        )

    # Per-item sync

    def _sync_entity(
        self,
        session: Session,
        kind: str,
        entity: Any,
        actor: str | None,
        overwrite_existing: bool = False,
    ) -> ItemResult:
        """Sync one entity; raises on failure after recording the sync log."""
        log_type = LOG_ENTITY_TYPES[kind]
        reason = ineligibility(kind, entity)
        if reason:
            raise PayloadError(f"{log_type.title()} {entity.id} {reason}")

        if not overwrite_existing and kind in REFERENCE_KINDS:
            reference = self._synced_reference(session, log_type, entity.id)
            if reference:
                logger.info(f"{log_type} {entity.id} already synced as {reference}; skipping")
                self._record(
                    session,
                    log_type,
                    entity.id,
                    "SKIPPED",
                    ledger_reference=reference,
                    message=f"{log_type.title()} {entity.id} already synced as {reference}",
                    user_id=actor,
                )
                return ItemResult(
                    entity_id=entity.id,
                    entity_type=log_type,
                    status="success",
                    ledger_reference=reference,
                    already_synced=True,
                )

        payload = self.transformer.transform(entity)
        validation = self.validator.validate(payload, kind)

        overridden = False
        if not validation.is_valid:
            decision = self.overrides.check(entity.id, validation.error_ids, log_type)
            if not decision.covered:
                message = "Validation failed: " + "; ".join(validation.messages())
                self._record(
                    session,
                    log_type,
                    entity.id,
                    "FAILED",
                    message=message,
                    user_id=actor,
                    details={"error_ids": sorted(validation.error_ids)},
                )
                self._quarantine(
                    log_type,
                    entity.id,
                    [issue.to_dict() for issue in validation.errors],
                    REASON_VALIDATION_FAILED,
                    payload,
                )
                raise ValidationFailedError(message, sorted(validation.error_ids))
            overridden = True
            logger.info(
                f"{log_type} {entity.id} failed {sorted(decision.covered_rules)} "
                f"but is waived by override(s) {decision.override_ids}"
            )

        try:
            response = self.ledger.post_entry(payload, kind)
        except LedgerRejectedError as exc:
            self._record(session, log_type, entity.id, "FAILED", message=str(exc), user_id=actor)
            self._quarantine(
                log_type,
                entity.id,
                [
                    {
                        "id": "ledger_rejected",
                        "field": None,
                        "message": str(exc),
                        "severity": "high",
                        "status_code": exc.status_code,
                    }
                ],
                REASON_API_ERROR,
                payload,
            )
            raise

        reference = response.get("invoice_id")
        self._record(
            session,
            log_type,
            entity.id,
            "SUCCESS",
            ledger_reference=reference,
            message=f"Synced {log_type.lower()} {entity.id} to ledger entry {reference}",
            user_id=actor,
            details={"overridden": overridden},
        )
        self._release_quarantine(log_type, entity.id, actor)
        return ItemResult(
            entity_id=entity.id,
            entity_type=log_type,
            status="success",
            ledger_reference=reference,
            overridden=overridden,
        )

    def sync_entity(
        self,
        kind: str,
        entity_id: str,
        requested_by: str | None = None,
        overwrite_existing: bool = False,
    ) -> dict[str, Any]:
        """Single-item path used by queue processors; errors propagate for retry."""
        with self._session_factory() as session:
            entity = session.get(KIND_MODELS[kind], entity_id)
            if entity is None:
                raise PayloadError(f"{LOG_ENTITY_TYPES[kind].title()} {entity_id} not found")
            result = self._sync_entity(session, kind, entity, requested_by, overwrite_existing)
        return {
            "entity_id": result.entity_id,
            "invoice_id": result.ledger_reference,
            "overridden": result.overridden,
            "already_synced": result.already_synced,
        }

    def sync_timesheet(self, submission_id: str, requested_by: str | None = None) -> dict[str, Any]:
        return self.sync_entity(KIND_TIMESHEET, submission_id, requested_by)

    def recheck(self, kind: str, entity_id: str) -> list[str]:
        """Problems that would still stop ``entity_id`` syncing; empty when it is ready."""
        with self._session_factory() as session:
            entity = session.get(KIND_MODELS[kind], entity_id)
            if entity is None:
                return [f"{LOG_ENTITY_TYPES[kind].title()} {entity_id} not found"]
            reason = ineligibility(kind, entity)
            if reason:
                return [f"{LOG_ENTITY_TYPES[kind].title()} {entity_id} {reason}"]
            validation = self.validator.validate(self.transformer.transform(entity), kind)
        if validation.is_valid:
            return []
        decision = self.overrides.check(entity_id, validation.error_ids, LOG_ENTITY_TYPES[kind])
        return [] if decision.covered else validation.messages()

    def sync_submissions(self, options: SyncOptions, actor: str = SYSTEM_ACTOR) -> SyncRunResult:
        """Synchronously sync each matching timesheet, collecting per-item outcomes."""
        items: list[ItemResult] = []
        validations = 0
        with self._session_factory() as session:
            submissions = self._submissions(session, options)
            for submission in submissions:
                validations += 1
                items.append(self._sync_safely(session, KIND_TIMESHEET, submission, actor))

        result = SyncRunResult.from_items(items, validations)
        logger.info(
            f"Manual sync processed {result.processed}: {result.successful} ok, "
            f"{result.failed} failed, {result.overrides} overridden"
        )
        self._audit_run(
            actor,
            {
                "mode": "manual",
                "processed": result.processed,
                "successful": result.successful,
                "failed": result.failed,
                "overrides": result.overrides,
            },
        )
        return result

    def _sync_safely(self, session: Session, kind: str, entity: Any, actor: str | None) -> ItemResult:
        log_type = LOG_ENTITY_TYPES[kind]
        try:
            return self._sync_entity(session, kind, entity, actor)
        except ValidationFailedError as exc:
            return ItemResult(entity.id, log_type, "error", errors=[str(exc)])
        except TransientError as exc:
            logger.warning(f"Transient failure syncing {log_type} {entity.id}: {exc}")
            session.rollback()
            self._record(session, log_type, entity.id, "FAILED", message=str(exc), user_id=actor)
            return ItemResult(entity.id, log_type, "error", errors=[str(exc)], transient=True)
        except LedgerSyncError as exc:
            return ItemResult(entity.id, log_type, "error", errors=[str(exc)])
        except Exception as exc:
            logger.error(f"Unexpected error syncing {log_type} {entity.id}: {exc}", exc_info=True)
            session.rollback()
            return ItemResult(entity.id, log_type, "error", errors=[f"Unexpected error: {exc}"])

    def sync_batch(
        self,
        submission_ids: list[str],
        requested_by: str | None = None,
        on_item: Callable[[int, int], None] | None = None,
    ) -> SyncRunResult:
        """Sync a fixed list of timesheets; used by the batch-sync processor."""
        items: list[ItemResult] = []
        with self._session_factory() as session:
            for index, submission_id in enumerate(submission_ids, start=1):
                submission = session.get(TimesheetSubmission, submission_id)
                if submission is None:
                    items.append(
                        ItemResult(
                            submission_id,
                            LOG_ENTITY_TYPES[KIND_TIMESHEET],
                            "error",
                            errors=["Timesheet submission not found"],
                        )
                    )
                else:
                    items.append(
                        self._sync_safely(session, KIND_TIMESHEET, submission, requested_by)
                    )
                if on_item:
                    on_item(index, len(submission_ids))
        return SyncRunResult.from_items(items, validations=len(items))

    # Readiness and status

    def validate_readiness(self, options: SyncOptions | None = None) -> ReadinessReport:
        options = options or SyncOptions()
        categories = {
            "contacts": CategoryReadiness(),
            "projects": CategoryReadiness(),
            "time_entries": CategoryReadiness(),
        }
        with self._session_factory() as session:
            if options.sync_contacts:
                for client in self._clients(session):
                    self._tally(categories["contacts"], client.id, self.transformer.transform_contact(client), KIND_CONTACT)
            if options.sync_projects:
                for project in self._projects(session, options):
                    self._tally(categories["projects"], project.id, self.transformer.transform_project(project), KIND_PROJECT)
            if options.sync_time_entries:
                for submission in self._submissions(session, options):
                    for entry in submission.entries:
                        payload = self.transformer.transform_time_entry(entry, user_ref=submission.user_email)
                        self._tally(categories["time_entries"], entry.id, payload, KIND_TIME_ENTRY)
        return build_report(categories)

    def _tally(
        self, category: CategoryReadiness, entity_id: str, payload: dict[str, Any], kind: str
    ) -> None:
        result = self.validator.validate(payload, kind)
        if result.is_valid:
            category.valid += 1
            return
        category.errors += 1
        if len(category.error_details) < MAX_ERROR_DETAILS:
            category.error_details.append({"entity_id": entity_id, "errors": result.messages()})

    def get_sync_status(self) -> dict[str, Any]:
        since = self.clock() - timedelta(hours=24)
        with self._session_factory() as session:
            counts = dict(
                session.execute(
                    select(SyncLog.status, func.count(SyncLog.id))
                    .where(SyncLog.created_at >= since)
                    .group_by(SyncLog.status)
                ).all()
            )
            recent = session.scalars(
                select(SyncLog).order_by(SyncLog.created_at.desc(), SyncLog.id.desc()).limit(10)
            ).all()
            last_sync = self._connection(session)
            last_sync_at = ensure_aware(last_sync.last_sync_at) if last_sync else None
            recent_logs = [
                {
                    "id": log.id,
                    "entity_type": log.entity_type,
                    "entity_id": log.entity_id,
                    "operation": log.operation,
                    "status": log.status,
                    "ledger_reference": log.ledger_reference,
                    "message": log.message,
                    "created_at": ensure_aware(log.created_at),
                }
                for log in recent
            ]
        successful = counts.get("SUCCESS", 0)
        failed = counts.get("FAILED", 0)
        total = successful + failed
        return {
            "last_sync_at": last_sync_at,
            "last_24_hours": {
                "successful": successful,
                "failed": failed,
                "total": total,
                "success_rate": round(successful / total * 100, 1) if total else 0.0,
            },
            "recent_logs": recent_logs,
        }

    def get_last_sync_at(self) -> datetime | None:
        with self._session_factory() as session:
            connection = self._connection(session)
            return ensure_aware(connection.last_sync_at) if connection else None

    def _set_last_sync_at(self, value: datetime) -> None:
        with self._session_factory() as session:
            connection = self._connection(session)
            if connection is None:
                connection = LedgerConnection(is_active=True)
                session.add(connection)
            connection.last_sync_at = value
            session.commit()

    @staticmethod
    def _connection(session: Session) -> LedgerConnection | None:
        return session.scalars(
            select(LedgerConnection)
            .where(LedgerConnection.is_active.is_(True))
            .order_by(LedgerConnection.id)
            .limit(1)
        ).first()

    def _record(
        self,
        session: Session,
        entity_type: str,
        entity_id: str,
        status: str,
        *,
        ledger_reference: str | None = None,
        message: str | None = None,
        user_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        session.add(
            SyncLog(
                entity_type=entity_type,
                entity_id=entity_id,
                operation="SYNC",
                status=status,
                ledger_reference=ledger_reference,
                message=message,
                user_id=user_id,
                details=details,
                created_at=self.clock(),
            )
        )
        session.commit()

    @staticmethod
    def _synced_reference(session: Session, entity_type: str, entity_id: str) -> str | None:
        return session.scalars(
            select(SyncLog.ledger_reference)
            .where(
                SyncLog.entity_type == entity_type,
                SyncLog.entity_id == entity_id,
                SyncLog.status == "SUCCESS",
                SyncLog.ledger_reference.is_not(None),
            )
            .order_by(SyncLog.created_at.desc(), SyncLog.id.desc())
            .limit(1)
        ).first()

    def _quarantine(
        self,
        entity_type: str,
        entity_id: str,
        errors: list[dict[str, Any]],
        reason: str,
        payload: dict[str, Any],
    ) -> None:
        # Never masks the sync failure being reported
        try:
            self.quarantine.quarantine(
                entity_type=entity_type,
                entity_id=entity_id,
                errors=errors,
                reason=reason,
                payload=payload,
            )
        except Exception as exc:
            logger.error(f"Could not quarantine {entity_type} {entity_id}: {exc}", exc_info=True)

    def _release_quarantine(self, entity_type: str, entity_id: str, actor: str | None) -> None:
        try:
            released = self.quarantine.resolve_open(entity_type, entity_id, actor)
        except Exception as exc:
            logger.error(
                f"Could not resolve quarantine for {entity_type} {entity_id}: {exc}", exc_info=True
            )
            return
        if released:
            logger.info(f"{entity_type} {entity_id} synced; resolved {released} quarantine record(s)")

    def _audit_run(self, actor: str, outcome: dict[str, Any]) -> None:
        if self.audit is not None:
            self.audit.append(
                AuditEntry(
                    action=SYNC_RUN,
                    entity_type="ledger_sync",
                    entity_id=None,
                    actor=actor,
                    outcome=outcome,
                )
            )
