"""Entities held back from the ledger until someone reviews them."""

import uuid

from sqlalchemy import Column, String, Text
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from ledger_sync.db.base import Base
from ledger_sync.db.types import JSONType


class QuarantineRecord(Base):
    __tablename__ = "quarantine_records"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # TIMESHEET | PROJECT | CONTACT
    entity_type = Column(String(32), nullable=False, index=True)
    entity_id = Column(String(64), nullable=False, index=True)
    # VALIDATION_FAILED | API_ERROR | MANUAL_QUARANTINE
    reason = Column(String(32), nullable=False)
    # QUARANTINED | UNDER_REVIEW | RESOLVED | REJECTED
    status = Column(String(16), nullable=False, default="QUARANTINED", index=True)
    # CRITICAL | HIGH | MEDIUM | LOW
    priority = Column(String(16), nullable=False, default="MEDIUM", index=True)
    errors = Column(JSONType, nullable=False, default=list)
    payload = Column(JSONType)
    quarantined_by = Column(String(255), nullable=False, default="system")
    quarantined_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
    reviewed_at = Column(DateTime(timezone=True))
    reviewed_by = Column(String(255))
    resolution_notes = Column(Text)
