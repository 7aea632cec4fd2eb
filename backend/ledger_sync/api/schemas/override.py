"""Validation override payloads."""

from datetime import datetime

from pydantic import BaseModel, Field, field_serializer


class OverrideCreate(BaseModel):
    entity_id: str = Field(..., min_length=1)
    entity_type: str = Field(..., description="TIMESHEET, PROJECT or CONTACT")
    rules: list[str] = Field(..., min_length=1, description="Rule ids to waive, e.g. billing_rate")
    justification: str = Field(..., min_length=1)
    created_by: str
    expires_at: datetime | None = None


class OverrideRead(BaseModel):
    id: str
    entity_id: str
    entity_type: str
    overridden_rules: list[str]
    status: str
    justification: str
    expires_at: datetime | None = None
    created_by: str
    created_at: datetime | None = None
    revoked_at: datetime | None = None
    revoked_by: str | None = None

    @field_serializer("expires_at", "created_at", "revoked_at")
    def serialize_datetime(self, value: datetime | None) -> str | None:
        """Convert datetime to ISO format string."""
        if value is None:
            return None
        return value.isoformat()

    model_config = {"from_attributes": True}
