"""Connection record for the external ledger tenant."""

from sqlalchemy import Boolean, Column, Integer, String
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from ledger_sync.db.base import Base


class LedgerConnection(Base):
    __tablename__ = "ledger_connections"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64))
    tenant_name = Column(String(255))
    is_active = Column(Boolean, nullable=False, default=True)
    last_sync_at = Column(DateTime(timezone=True))
    connected_at = Column(DateTime(timezone=True), server_default=func.now())
