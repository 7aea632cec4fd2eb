"""SQLAlchemy model for projects synced to the ledger."""

import uuid

from sqlalchemy import Column, Date, Float, ForeignKey, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from ledger_sync.db.base import Base


class Project(Base):
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    code = Column(String(64), nullable=False, index=True)
    # PLANNING | ACTIVE | ON_HOLD | COMPLETED | CANCELLED
    status = Column(String(32), nullable=False, default="ACTIVE")
    client_id = Column(String(36), ForeignKey("clients.id"), index=True)
    description = Column(Text)
    budget = Column(Float)
    default_bill_rate = Column(Float)
    start_date = Column(Date)
    end_date = Column(Date)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    client = relationship("Client", lazy="joined")
