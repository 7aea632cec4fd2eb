"""Bulk reprocessing job payloads."""

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class BulkJobFilters(BaseModel):
    date_from: date | None = None
    date_to: date | None = None
    user_ids: list[str] | None = None
    operations: list[str] | None = None
    submission_ids: list[str] | None = None
    queue_names: list[str] | None = None
    job_types: list[str] | None = None


class BulkJobOptions(BaseModel):
    priority: Literal["high", "normal"] = "normal"
    batch_size: int = Field(10, ge=1, le=100)
    delay_between_batches: float = Field(1.0, ge=0)
    dry_run: bool = False


class BulkJobCreate(BaseModel):
    operation_type: Literal[
        "reprocess_failed", "reprocess_specific", "reprocess_date_range", "clear_queue"
    ]
    filters: BulkJobFilters = Field(default_factory=BulkJobFilters)
    options: BulkJobOptions = Field(default_factory=BulkJobOptions)
    requested_by: str = "system"


class BulkJobRead(BaseModel):
    id: str
    operation_type: str
    status: str = Field(..., description="pending|running|completed|failed|cancelled")
    total_items: int
    processed_items: int
    success_count: int
    error_count: int
    progress: float = Field(..., description="0-100 percent of items processed")
    errors: list[dict[str, Any]]
    filters: dict[str, Any] | None = None
    options: dict[str, Any] | None = None
    dry_run: bool
    created_by: str
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    live_progress: dict[str, Any] | None = None
