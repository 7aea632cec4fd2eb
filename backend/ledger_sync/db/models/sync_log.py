"""Business-level record of each entity pushed (or not) to the ledger."""

from sqlalchemy import BigInteger, Column, Integer, String, Text
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from ledger_sync.db.base import Base
from ledger_sync.db.types import JSONType


class SyncLog(Base):
    __tablename__ = "sync_logs"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    # TIMESHEET | PROJECT | CONTACT | SYSTEM
    entity_type = Column(String(32), nullable=False)
    entity_id = Column(String(64), index=True)
    operation = Column(String(32), nullable=False, default="SYNC")
    # SUCCESS | FAILED | SKIPPED
    status = Column(String(16), nullable=False, index=True)
    ledger_reference = Column(String(128))
    message = Column(Text)
    user_id = Column(String(36), index=True)
    details = Column(JSONType)
    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
