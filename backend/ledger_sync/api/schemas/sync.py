"""Sync run request and response payloads."""

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class SyncRequest(BaseModel):
    mode: Literal["full", "incremental"] = "full"
    dry_run: bool = False
    overwrite_existing: bool = False
    sync_contacts: bool = True
    sync_projects: bool = True
    sync_time_entries: bool = True
    date_from: date | None = None
    date_to: date | None = None
    project_ids: list[str] | None = None
    user_ids: list[str] | None = None
    batch_size: int | None = Field(None, ge=1, le=500)
    priority: Literal["high", "normal"] = "normal"
    requested_by: str = "system"


class ManualSyncRequest(BaseModel):
    submission_ids: list[str] | None = None
    date_from: date | None = None
    date_to: date | None = None
    user_ids: list[str] | None = None
    project_ids: list[str] | None = None
    requested_by: str = "system"


class ReadinessRequest(BaseModel):
    sync_contacts: bool = True
    sync_projects: bool = True
    sync_time_entries: bool = True
    date_from: date | None = None
    date_to: date | None = None
    project_ids: list[str] | None = None
    user_ids: list[str] | None = None


class ItemResultRead(BaseModel):
    entity_id: str
    entity_type: str
    status: str
    ledger_reference: str | None = None
    overridden: bool = False
    errors: list[str] = Field(default_factory=list)


class SyncRunRead(BaseModel):
    success: bool
    processed: int
    successful: int
    failed: int
    overrides: int
    validations: int
    results: list[ItemResultRead]
    errors: list[str]


class SyncStatusRead(BaseModel):
    last_sync_at: datetime | None = None
    last_24_hours: dict[str, Any]
    recent_logs: list[dict[str, Any]]
