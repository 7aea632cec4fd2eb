"""Append-only audit store for job transitions and admin actions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
import threading
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ledger_sync.db.models.audit_log import AuditLog
from ledger_sync.utils.dates import utcnow

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

# Queue engine
JOB_ENQUEUED = "JOB_ENQUEUED"
JOB_ACTIVE = "JOB_ACTIVE"
JOB_COMPLETED = "JOB_COMPLETED"
JOB_FAILED = "JOB_FAILED"
JOB_RETRY_SCHEDULED = "JOB_RETRY_SCHEDULED"
JOB_STALLED = "JOB_STALLED"
QUEUE_PAUSED = "QUEUE_PAUSED"
QUEUE_RESUMED = "QUEUE_RESUMED"
QUEUE_CLEARED = "QUEUE_CLEARED"
JOBS_RETRIED = "QUEUE_JOBS_RETRIED"
JOBS_REMOVED = "QUEUE_JOBS_REMOVED"

# Bulk jobs
BULK_JOB_STARTED = "BULK_JOB_STARTED"
BULK_JOB_COMPLETED = "BULK_JOB_COMPLETED"
BULK_JOB_FAILED = "BULK_JOB_FAILED"
BULK_JOB_CANCELLED = "BULK_JOB_CANCELLED"

# Overrides and sync runs
OVERRIDE_CREATED = "VALIDATION_OVERRIDE_CREATED"
OVERRIDE_REVOKED = "VALIDATION_OVERRIDE_REVOKED"
SYNC_RUN = "LEDGER_SYNC_RUN"

# Quarantine and recovery
RECORD_QUARANTINED = "RECORD_QUARANTINED"
QUARANTINE_UNDER_REVIEW = "QUARANTINE_UNDER_REVIEW"
QUARANTINE_RESOLVED = "QUARANTINE_RESOLVED"
QUARANTINE_REJECTED = "QUARANTINE_REJECTED"
ERROR_RECOVERY_RUN = "ERROR_RECOVERY_RUN"


@dataclass
class AuditEntry:
    action: str
    entity_type: str
    entity_id: str | None
    outcome: dict[str, Any] = field(default_factory=dict)
    actor: str = SYSTEM_ACTOR
    timestamp: datetime = field(default_factory=utcnow)


class AuditStore(Protocol):
    def append(self, entry: AuditEntry) -> None: ...


class MemoryAuditStore:
    """Keeps entries in a list; used by tests and the memory queue backend."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: list[AuditEntry] = []

    def append(self, entry: AuditEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    @property
    def entries(self) -> list[AuditEntry]:
        with self._lock:
            return list(self._entries)

    def actions(self, entity_id: str | None = None) -> list[str]:
        return [e.action for e in self.entries if entity_id is None or e.entity_id == entity_id]


class SqlAuditStore:
    """Writes each entry as one row in ``audit_logs``."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def append(self, entry: AuditEntry) -> None:
        session = self._session_factory()
        try:
            session.add(
                AuditLog(
                    actor=entry.actor,
                    action=entry.action,
                    entity_type=entry.entity_type,
                    entity_id=entry.entity_id,
                    outcome=entry.outcome,
                    created_at=entry.timestamp,
                )
            )
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            logger.error(f"Failed to write audit entry {entry.action}", exc_info=True)
            raise
        finally:
            session.close()

    def recent(self, limit: int = 50, action: str | None = None) -> list[AuditLog]:
        with self._session_factory() as session:
            query = select(AuditLog)
            if action:
                query = query.where(AuditLog.action == action)
            query = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)
            return list(session.scalars(query).all())
