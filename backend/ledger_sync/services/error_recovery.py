"""Batch recovery of quarantined entities whose problems have since been fixed."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import logging
from typing import Any

from ledger_sync.core.errors import LedgerSyncError
from ledger_sync.db.models.quarantine_record import QuarantineRecord
from ledger_sync.queueing.manager import QueueManager
from ledger_sync.services.audit import ERROR_RECOVERY_RUN, SYSTEM_ACTOR, AuditEntry, AuditStore
from ledger_sync.services.quarantine import (
    PRIORITY_CRITICAL,
    PRIORITY_HIGH,
    STATUS_QUARANTINED,
    STATUS_RESOLVED,
    QuarantineService,
)
from ledger_sync.services.sync_orchestrator import (
    KIND_JOB_TYPES,
    LOG_KINDS,
    SyncOrchestrator,
)
from ledger_sync.services.validation_engine import KIND_TIMESHEET

logger = logging.getLogger(__name__)

MAX_RECOVERY_RECORDS = 500


@dataclass
class RecoveryResult:
    success: bool
    dry_run: bool
    examined: int = 0
    recovered: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    results: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ErrorRecoveryService:
    """Re-checks QUARANTINED records and re-queues the ones that would now sync.

    A record is recoverable when its entity is still eligible and either passes
    validation or has every failing rule waived by an override. Dry runs report
    what would be recovered without enqueueing or resolving anything.
    """

    def __init__(
        self,
        quarantine: QuarantineService,
        orchestrator: SyncOrchestrator,
        queues: QueueManager,
        audit: AuditStore | None = None,
    ) -> None:
        self.quarantine = quarantine
        self.orchestrator = orchestrator
        self.queues = queues
        self.audit = audit

    def recover(
        self,
        *,
        dry_run: bool = False,
        max_records: int = 100,
        priority_only: bool = False,
        entity_types: list[str] | None = None,
        actor: str = SYSTEM_ACTOR,
    ) -> RecoveryResult:
        if not 1 <= max_records <= MAX_RECOVERY_RECORDS:
            raise ValueError(f"max_records must be between 1 and {MAX_RECOVERY_RECORDS}")
        page = self.quarantine.list_records(
            statuses=[STATUS_QUARANTINED],
            priorities=[PRIORITY_CRITICAL, PRIORITY_HIGH] if priority_only else None,
            entity_types=entity_types,
            limit=max_records,
        )
        logger.info(
            f"Error recovery found {page.total} quarantined record(s); "
            f"examining {len(page.records)}{' (dry run)' if dry_run else ''}"
        )

        result = RecoveryResult(success=True, dry_run=dry_run)
        for record in page.records:
            result.examined += 1
            try:
                outcome = self._recover_one(record, dry_run, actor)
            except LedgerSyncError as exc:
                result.failed += 1
                result.errors.append(f"Failed to recover record {record.id}: {exc}")
                continue
            result.results.append(outcome)
            if outcome["recovered"]:
                result.recovered += 1
            else:
                result.failed += 1

        result.success = not result.errors
        logger.info(
            f"Error recovery {'checked' if dry_run else 'finished'}: "
            f"{result.recovered} recoverable, {result.failed} still blocked"
        )
        if self.audit is not None:
            self.audit.append(
                AuditEntry(
                    action=ERROR_RECOVERY_RUN,
                    entity_type="quarantine",
                    entity_id=None,
                    actor=actor,
                    outcome={
                        "dry_run": dry_run,
                        "examined": result.examined,
                        "recovered": result.recovered,
                        "failed": result.failed,
                    },
                )
            )
        return result

    def _recover_one(self, record: QuarantineRecord, dry_run: bool, actor: str) -> dict[str, Any]:
        outcome: dict[str, Any] = {
            "quarantine_id": record.id,
            "entity_type": record.entity_type,
            "entity_id": record.entity_id,
            "recovered": False,
            "job_id": None,
            "problems": [],
        }
        kind = LOG_KINDS.get(record.entity_type)
        if kind is None:
            outcome["problems"] = [f"Cannot recover {record.entity_type} records automatically"]
            return outcome

        problems = self.orchestrator.recheck(kind, record.entity_id)
        if problems:
            outcome["problems"] = problems
            return outcome

        outcome["recovered"] = True
        if dry_run:
            return outcome

        job = self._enqueue(kind, record, actor)
        outcome["job_id"] = job.id
        self.quarantine.review(
            record.id,
            status=STATUS_RESOLVED,
            reviewed_by=actor,
            notes=f"Automatically recovered; re-queued as job {job.id}",
        )
        return outcome

    def _enqueue(self, kind: str, record: QuarantineRecord, actor: str):
        if kind == KIND_TIMESHEET:
            urgent = record.priority in (PRIORITY_CRITICAL, PRIORITY_HIGH)
            return self.queues.enqueue_timesheet_sync(
                record.entity_id,
                priority="high" if urgent else "normal",
                trigger="manual",
                requested_by=actor,
            )
        # The last attempt failed, so the entity is re-posted even if synced before
        return self.queues.enqueue_entity_sync(
            KIND_JOB_TYPES[kind],
            record.entity_id,
            overwrite_existing=True,
            requested_by=actor,
        )
