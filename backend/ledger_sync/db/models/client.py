"""SQLAlchemy model for client records synced as ledger contacts."""

import uuid

from sqlalchemy import Boolean, Column, String, Text
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from ledger_sync.db.base import Base


class Client(Base):
    __tablename__ = "clients"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    email = Column(String(255))
    phone = Column(String(50))
    website = Column(String(255))
    address = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
