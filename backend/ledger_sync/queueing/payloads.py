"""Typed job payloads, one model per job type."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

SYNC_TIMESHEET = "sync-timesheet"
SYNC_PROJECT = "sync-project"
SYNC_CLIENT = "sync-client"
BATCH_SYNC = "batch-sync"
HEALTH_CHECK = "health-check"
CLEANUP = "cleanup"


class SyncTimesheetPayload(BaseModel):
    submission_id: str = Field(..., min_length=1)
    trigger: Literal["approval", "manual", "scheduled", "bulk"] = "manual"
    priority: Literal["high", "normal"] = "normal"
    requested_by: str | None = None
    bulk_job_id: str | None = None


class SyncEntityPayload(BaseModel):
    """Payload for project and client (contact) sync jobs."""

    entity_id: str = Field(..., min_length=1)
    overwrite_existing: bool = False
    requested_by: str | None = None


class BatchSyncPayload(BaseModel):
    submission_ids: list[str] = Field(..., min_length=1)
    requested_by: str | None = None
    bulk_job_id: str | None = None


class HealthCheckPayload(BaseModel):
    check_ledger: bool = True


class CleanupPayload(BaseModel):
    older_than_days: int = Field(90, ge=1)
    queue_names: list[str] = Field(default_factory=list)


PAYLOAD_MODELS: dict[str, type[BaseModel]] = {
    SYNC_TIMESHEET: SyncTimesheetPayload,
    SYNC_PROJECT: SyncEntityPayload,
    SYNC_CLIENT: SyncEntityPayload,
    BATCH_SYNC: BatchSyncPayload,
    HEALTH_CHECK: HealthCheckPayload,
    CLEANUP: CleanupPayload,
}
