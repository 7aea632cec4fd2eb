"""Administrative waivers for specific validation rule failures."""

import uuid

from sqlalchemy import Column, String, Text
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from ledger_sync.db.base import Base
from ledger_sync.db.types import JSONType


class ValidationOverride(Base):
    __tablename__ = "validation_overrides"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    entity_id = Column(String(64), nullable=False, index=True)
    entity_type = Column(String(32), nullable=False)
    overridden_rules = Column(JSONType, nullable=False, default=list)
    # ACTIVE | EXPIRED | REVOKED
    status = Column(String(16), nullable=False, default="ACTIVE", index=True)
    justification = Column(Text, nullable=False)
    expires_at = Column(DateTime(timezone=True))
    created_by = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    revoked_at = Column(DateTime(timezone=True))
    revoked_by = Column(String(255))
