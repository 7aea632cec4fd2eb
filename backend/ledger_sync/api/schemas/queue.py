"""Queue administration payloads."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class EnqueueRequest(BaseModel):
    type: str = Field(..., description="Job type, e.g. sync-timesheet")
    payload: dict[str, Any] = Field(default_factory=dict)
    attempts: int | None = Field(None, ge=1)
    delay: float | None = Field(None, ge=0, description="Seconds before the job becomes ready")
    priority: int | None = Field(None, ge=1)
    job_id: str | None = None


class JobRead(BaseModel):
    id: str
    queue_name: str
    type: str
    state: str
    attempts_made: int
    max_attempts: int
    progress: int
    priority: int
    payload: dict[str, Any]
    created_at: datetime | None = None
    processed_at: datetime | None = None
    finished_at: datetime | None = None
    failed_reason: str | None = None
    return_value: Any = None


class QueueStatus(BaseModel):
    running: bool
    healthy: bool
    queue_names: list[str]


class QueueMetrics(BaseModel):
    queue_name: str
    processed: int
    failed: int
    active: int
    waiting: int
    delayed: int
    completed: int
    failed_jobs: int
    paused: bool
    health: str
    average_processing_time: float
    error_rate: float
    last_polled_at: datetime | None = None
    last_error: str | None = None


class QueueActionResult(BaseModel):
    queue_name: str
    action: str
    affected: int | None = None


class JobIdsRequest(BaseModel):
    job_ids: list[str] | None = Field(None, description="Omit to target every failed job")


class ClearQueueRequest(BaseModel):
    job_types: list[str] | None = None
    states: list[str] = Field(default_factory=lambda: ["waiting", "delayed", "failed"])
