"""Append-only audit trail for job transitions and admin actions."""

from sqlalchemy import BigInteger, Column, Integer, String
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from ledger_sync.db.base import Base
from ledger_sync.db.types import JSONType


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    actor = Column(String(255), nullable=False, default="system")
    action = Column(String(64), nullable=False, index=True)
    entity_type = Column(String(64), nullable=False)
    entity_id = Column(String(64), index=True)
    outcome = Column(JSONType)
    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
