"""Quarantine: park entities the ledger cannot take until someone reviews them.

A terminal sync failure (validation the overrides do not cover, or a ledger
rejection) opens a quarantine record for the entity. Each entity has at most
one open record; a repeat failure refreshes it. Reviewers resolve or reject
records, and a later successful sync resolves any open record automatically.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
import logging
import math
from typing import Any

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session, sessionmaker

from ledger_sync.core.errors import QuarantineNotFoundError
from ledger_sync.db.models.quarantine_record import QuarantineRecord
from ledger_sync.services.audit import (
    QUARANTINE_REJECTED,
    QUARANTINE_RESOLVED,
    QUARANTINE_UNDER_REVIEW,
    RECORD_QUARANTINED,
    SYSTEM_ACTOR,
    AuditEntry,
    AuditStore,
)
from ledger_sync.utils.dates import ensure_aware, utcnow

logger = logging.getLogger(__name__)

REASON_VALIDATION_FAILED = "VALIDATION_FAILED"
REASON_API_ERROR = "API_ERROR"
REASON_MANUAL = "MANUAL_QUARANTINE"
REASONS = (REASON_VALIDATION_FAILED, REASON_API_ERROR, REASON_MANUAL)

STATUS_QUARANTINED = "QUARANTINED"
STATUS_UNDER_REVIEW = "UNDER_REVIEW"
STATUS_RESOLVED = "RESOLVED"
STATUS_REJECTED = "REJECTED"
STATUSES = (STATUS_QUARANTINED, STATUS_UNDER_REVIEW, STATUS_RESOLVED, STATUS_REJECTED)
OPEN_STATUSES = (STATUS_QUARANTINED, STATUS_UNDER_REVIEW)
REVIEW_OUTCOMES = (STATUS_RESOLVED, STATUS_REJECTED)

PRIORITY_CRITICAL = "CRITICAL"
PRIORITY_HIGH = "HIGH"
PRIORITY_MEDIUM = "MEDIUM"
PRIORITY_LOW = "LOW"
# Most urgent first
PRIORITIES = (PRIORITY_CRITICAL, PRIORITY_HIGH, PRIORITY_MEDIUM, PRIORITY_LOW)

STATUS_ACTIONS = {
    STATUS_UNDER_REVIEW: QUARANTINE_UNDER_REVIEW,
    STATUS_RESOLVED: QUARANTINE_RESOLVED,
    STATUS_REJECTED: QUARANTINE_REJECTED,
}

SLOW_RESOLUTION_HOURS = 24
HIGH_VOLUME_THRESHOLD = 100


def priority_for(errors: Iterable[dict[str, Any]]) -> str:
    """Priority is the most severe issue; unknown severities count as LOW."""
    severities = {str(error.get("severity") or "").upper() for error in errors}
    for priority in PRIORITIES:
        if priority in severities:
            return priority
    return PRIORITY_LOW


@dataclass
class QuarantinePage:
    records: list[QuarantineRecord]
    total: int
    page: int
    total_pages: int


@dataclass
class QuarantineStats:
    total: int
    by_status: dict[str, int]
    by_priority: dict[str, int]
    by_reason: dict[str, int]
    avg_resolution_hours: float
    oldest_unresolved: datetime | None
    resolution_rate: float
    recommendations: list[str] = field(default_factory=list)


class QuarantineService:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        audit: AuditStore | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._audit = audit
        self.clock = clock

    def quarantine(
        self,
        *,
        entity_type: str,
        entity_id: str,
        errors: list[dict[str, Any]],
        reason: str = REASON_VALIDATION_FAILED,
        payload: dict[str, Any] | None = None,
        quarantined_by: str = SYSTEM_ACTOR,
        priority: str | None = None,
    ) -> QuarantineRecord:
        if reason not in REASONS:
            raise ValueError(f"Unknown quarantine reason: {reason}")
        priority = (priority or priority_for(errors)).upper()
        if priority not in PRIORITIES:
            raise ValueError(f"Unknown quarantine priority: {priority}")
        entity_type = entity_type.upper()

        with self._session_factory() as session:
            record = session.scalars(
                select(QuarantineRecord)
                .where(
                    QuarantineRecord.entity_type == entity_type,
                    QuarantineRecord.entity_id == entity_id,
                    QuarantineRecord.status.in_(OPEN_STATUSES),
                )
                .order_by(QuarantineRecord.quarantined_at.desc())
                .limit(1)
            ).first()
            repeat = record is not None
            if record is None:
                record = QuarantineRecord(
                    entity_type=entity_type,
                    entity_id=entity_id,
                    status=STATUS_QUARANTINED,
                    quarantined_at=self.clock(),
                )
                session.add(record)
            record.reason = reason
            record.priority = priority
            record.errors = list(errors)
            record.payload = payload
            record.quarantined_by = quarantined_by
            session.commit()
            session.refresh(record)

        if priority == PRIORITY_CRITICAL:
            logger.error(
                f"{entity_type} {entity_id} quarantined with critical errors "
                f"(record {record.id}); escalation required"
            )
        else:
            logger.warning(
                f"{entity_type} {entity_id} quarantined: {reason}, {len(errors)} error(s)"
            )
        self._append(
            AuditEntry(
                action=RECORD_QUARANTINED,
                entity_type=entity_type,
                entity_id=entity_id,
                actor=quarantined_by,
                outcome={
                    "quarantine_id": record.id,
                    "reason": reason,
                    "priority": priority,
                    "error_count": len(errors),
                    "repeat": repeat,
                },
            )
        )
        return record

    def get(self, record_id: str) -> QuarantineRecord:
        with self._session_factory() as session:
            record = session.get(QuarantineRecord, record_id)
        if record is None:
            raise QuarantineNotFoundError(f"Quarantine record {record_id} not found")
        return record

    def list_records(
        self,
        *,
        entity_types: list[str] | None = None,
        statuses: list[str] | None = None,
        priorities: list[str] | None = None,
        reasons: list[str] | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        reviewed_by: str | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> QuarantinePage:
        """Filtered page of records, most urgent then newest first."""
        if page < 1 or limit < 1:
            raise ValueError("page and limit must be at least 1")
        conditions = []
        if entity_types:
            conditions.append(QuarantineRecord.entity_type.in_([t.upper() for t in entity_types]))
        if statuses:
            conditions.append(QuarantineRecord.status.in_([s.upper() for s in statuses]))
        if priorities:
            conditions.append(QuarantineRecord.priority.in_([p.upper() for p in priorities]))
        if reasons:
            conditions.append(QuarantineRecord.reason.in_([r.upper() for r in reasons]))
        if date_from:
            conditions.append(QuarantineRecord.quarantined_at >= date_from)
        if date_to:
            conditions.append(QuarantineRecord.quarantined_at <= date_to)
        if reviewed_by:
            conditions.append(QuarantineRecord.reviewed_by == reviewed_by)

        rank = case(
            {p: i for i, p in enumerate(PRIORITIES)},
            value=QuarantineRecord.priority,
            else_=len(PRIORITIES),
        )
        with self._session_factory() as session:
            total = session.scalar(
                select(func.count(QuarantineRecord.id)).where(*conditions)
            ) or 0
            records = session.scalars(
                select(QuarantineRecord)
                .where(*conditions)
                .order_by(rank, QuarantineRecord.quarantined_at.desc(), QuarantineRecord.id)
                .offset((page - 1) * limit)
                .limit(limit)
            ).all()
        return QuarantinePage(
            records=list(records),
            total=total,
            page=page,
            total_pages=math.ceil(total / limit),
        )

    def review(
        self, record_id: str, *, status: str, reviewed_by: str, notes: str
    ) -> QuarantineRecord:
        """Close a record as RESOLVED or REJECTED."""
        status = status.upper()
        if status not in REVIEW_OUTCOMES:
            raise ValueError(f"A review must resolve or reject, not {status}")
        if not notes or not notes.strip():
            raise ValueError("A review needs resolution notes")
        return self._transition(record_id, status, reviewed_by, notes)

    def bulk_update(
        self,
        record_ids: list[str],
        *,
        status: str,
        reviewed_by: str,
        notes: str | None = None,
    ) -> dict[str, Any]:
        """Move several records at once; unknown ids are reported, not raised."""
        status = status.upper()
        if status not in STATUS_ACTIONS:
            raise ValueError(f"Cannot bulk update records to {status}")
        if not record_ids:
            raise ValueError("No quarantine records given")
        updated = 0
        errors: list[str] = []
        for record_id in record_ids:
            try:
                self._transition(record_id, status, reviewed_by, notes or "Bulk update")
            except QuarantineNotFoundError as exc:
                errors.append(f"Failed to update record {record_id}: {exc}")
                continue
            updated += 1
        logger.info(f"Bulk quarantine update to {status}: {updated} updated, {len(errors)} failed")
        return {"updated": updated, "errors": errors}

    def resolve_open(
        self,
        entity_type: str,
        entity_id: str,
        actor: str | None = None,
        notes: str = "Synced successfully",
    ) -> int:
        """Resolve every open record for an entity that has since synced."""
        entity_type = entity_type.upper()
        with self._session_factory() as session:
            open_ids = list(
                session.scalars(
                    select(QuarantineRecord.id).where(
                        QuarantineRecord.entity_type == entity_type,
                        QuarantineRecord.entity_id == entity_id,
                        QuarantineRecord.status.in_(OPEN_STATUSES),
                    )
                ).all()
            )
        for record_id in open_ids:
            self._transition(record_id, STATUS_RESOLVED, actor or SYSTEM_ACTOR, notes)
        return len(open_ids)

    def stats(
        self, date_from: datetime | None = None, date_to: datetime | None = None
    ) -> QuarantineStats:
        conditions = []
        if date_from:
            conditions.append(QuarantineRecord.quarantined_at >= date_from)
        if date_to:
            conditions.append(QuarantineRecord.quarantined_at <= date_to)

        def _counts(session: Session, column, keys: tuple[str, ...]) -> dict[str, int]:
            rows = dict(
                session.execute(
                    select(column, func.count(QuarantineRecord.id))
                    .where(*conditions)
                    .group_by(column)
                ).all()
            )
            return {key: rows.get(key, 0) for key in keys}

        with self._session_factory() as session:
            by_status = _counts(session, QuarantineRecord.status, STATUSES)
            by_priority = _counts(session, QuarantineRecord.priority, PRIORITIES)
            by_reason = _counts(session, QuarantineRecord.reason, REASONS)
            reviewed = session.execute(
                select(QuarantineRecord.quarantined_at, QuarantineRecord.reviewed_at).where(
                    *conditions, QuarantineRecord.reviewed_at.is_not(None)
                )
            ).all()
            oldest = session.scalar(
                select(func.min(QuarantineRecord.quarantined_at)).where(
                    *conditions, QuarantineRecord.status.in_(OPEN_STATUSES)
                )
            )

        total = sum(by_status.values())
        hours = [
            (ensure_aware(reviewed_at) - ensure_aware(quarantined_at)).total_seconds() / 3600
            for quarantined_at, reviewed_at in reviewed
        ]
        avg_hours = round(sum(hours) / len(hours), 2) if hours else 0.0
        resolution_rate = round(by_status[STATUS_RESOLVED] / total * 100, 1) if total else 0.0

        recommendations = []
        if by_priority[PRIORITY_CRITICAL]:
            recommendations.append(
                "Critical errors detected; the ledger integration needs immediate attention"
            )
        if avg_hours > SLOW_RESOLUTION_HOURS:
            recommendations.append(
                f"Average resolution time exceeds {SLOW_RESOLUTION_HOURS} hours; "
                "review the triage process"
            )
        if total > HIGH_VOLUME_THRESHOLD:
            recommendations.append(
                "High volume of quarantined records; review source data quality and transformation"
            )

        return QuarantineStats(
            total=total,
            by_status=by_status,
            by_priority=by_priority,
            by_reason=by_reason,
            avg_resolution_hours=avg_hours,
            oldest_unresolved=ensure_aware(oldest),
            resolution_rate=resolution_rate,
            recommendations=recommendations,
        )

    def _transition(
        self, record_id: str, status: str, reviewed_by: str, notes: str | None
    ) -> QuarantineRecord:
        with self._session_factory() as session:
            record = session.get(QuarantineRecord, record_id)
            if record is None:
                raise QuarantineNotFoundError(f"Quarantine record {record_id} not found")
            previous = record.status
            record.status = status
            record.reviewed_at = self.clock()
            record.reviewed_by = reviewed_by
            record.resolution_notes = notes
            session.commit()
            session.refresh(record)

        logger.info(f"Quarantine record {record_id} moved {previous} -> {status} by {reviewed_by}")
        self._append(
            AuditEntry(
                action=STATUS_ACTIONS[status],
                entity_type=record.entity_type,
                entity_id=record.entity_id,
                actor=reviewed_by,
                outcome={"quarantine_id": record_id, "previous": previous, "notes": notes},
            )
        )
        return record

    def _append(self, entry: AuditEntry) -> None:
        if self._audit is not None:
            self._audit.append(entry)
