"""Quarantine and error recovery payloads."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_serializer


class QuarantineCreate(BaseModel):
    entity_type: Literal["TIMESHEET", "PROJECT", "CONTACT"]
    entity_id: str = Field(..., min_length=1)
    notes: str = Field(..., min_length=1, description="Why the entity is held back")
    priority: Literal["CRITICAL", "HIGH", "MEDIUM", "LOW"] = "MEDIUM"
    quarantined_by: str = "system"


class QuarantineReview(BaseModel):
    status: Literal["RESOLVED", "REJECTED"]
    resolution_notes: str = Field(..., min_length=1)
    reviewed_by: str = "system"


class QuarantineBulkUpdate(BaseModel):
    record_ids: list[str] = Field(..., min_length=1)
    status: Literal["UNDER_REVIEW", "RESOLVED", "REJECTED"]
    resolution_notes: str | None = None
    reviewed_by: str = "system"


class QuarantineBulkResult(BaseModel):
    updated: int
    errors: list[str]


class QuarantineRead(BaseModel):
    id: str
    entity_type: str
    entity_id: str
    reason: str
    status: str
    priority: str
    errors: list[dict[str, Any]]
    payload: dict[str, Any] | None = None
    quarantined_by: str
    quarantined_at: datetime | None = None
    reviewed_at: datetime | None = None
    reviewed_by: str | None = None
    resolution_notes: str | None = None

    @field_serializer("quarantined_at", "reviewed_at")
    def serialize_datetime(self, value: datetime | None) -> str | None:
        """Convert datetime to ISO format string."""
        if value is None:
            return None
        return value.isoformat()

    model_config = {"from_attributes": True}


class QuarantinePageRead(BaseModel):
    records: list[QuarantineRead]
    total: int
    page: int
    total_pages: int


class QuarantineStatsRead(BaseModel):
    total: int
    by_status: dict[str, int]
    by_priority: dict[str, int]
    by_reason: dict[str, int]
    avg_resolution_hours: float
    oldest_unresolved: datetime | None = None
    resolution_rate: float = Field(..., description="Percent of records resolved")
    recommendations: list[str]


class RecoveryRequest(BaseModel):
    dry_run: bool = False
    max_records: int = Field(100, ge=1, le=500)
    priority_only: bool = Field(False, description="Only CRITICAL and HIGH records")
    entity_types: list[Literal["TIMESHEET", "PROJECT", "CONTACT"]] | None = None
    requested_by: str = "system"


class RecoveryItem(BaseModel):
    quarantine_id: str
    entity_type: str
    entity_id: str
    recovered: bool
    job_id: str | None = None
    problems: list[str]


class RecoveryRead(BaseModel):
    success: bool
    dry_run: bool
    examined: int
    recovered: int
    failed: int
    errors: list[str]
    results: list[RecoveryItem]
