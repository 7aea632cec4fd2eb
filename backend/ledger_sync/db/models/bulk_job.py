"""Track admin-triggered bulk reprocessing runs for UI polling."""

import uuid

from sqlalchemy import Boolean, Column, Integer, String
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from ledger_sync.db.base import Base
from ledger_sync.db.types import JSONType


class BulkJob(Base):
    __tablename__ = "bulk_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    operation_type = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False, default="pending", index=True)
    total_items = Column(Integer, nullable=False, default=0)
    processed_items = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    errors = Column(JSONType, nullable=False, default=list)
    filters = Column(JSONType, nullable=False, default=dict)
    options = Column(JSONType, nullable=False, default=dict)
    dry_run = Column(Boolean, nullable=False, default=False)
    created_by = Column(String(255), nullable=False, default="system")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
