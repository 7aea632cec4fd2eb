"""Ledger sync endpoints: full/incremental runs, manual sync, readiness, status."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends

from ledger_sync.api.dependencies.runtime import get_runtime
from ledger_sync.api.routers.error_mapping import to_http_exception
from ledger_sync.api.schemas.sync import (
    ManualSyncRequest,
    ReadinessRequest,
    SyncRequest,
    SyncRunRead,
    SyncStatusRead,
)
from ledger_sync.runtime import Runtime
from ledger_sync.services.sync_orchestrator import SyncOptions

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", summary="Start a full or incremental sync (or a dry run)")
def start_sync(
    request: SyncRequest,
    runtime: Runtime = Depends(get_runtime),
) -> dict[str, Any]:
    """Enqueue sync jobs for every matching entity.

    With ``dry_run`` the entities are only transformed and validated and the
    per-item report is returned; nothing is enqueued and the ledger is not called.
    """
    options = SyncOptions(**request.model_dump(exclude={"mode", "requested_by"}))
    try:
        result = runtime.orchestrator.enqueue_sync(
            options, mode=request.mode, actor=request.requested_by
        )
    except Exception as e:
        raise to_http_exception(e, f"start {request.mode} sync") from e
    return result.to_dict()


@router.post("/manual", summary="Sync approved timesheets now", response_model=SyncRunRead)
def manual_sync(
    request: ManualSyncRequest,
    runtime: Runtime = Depends(get_runtime),
) -> SyncRunRead:
    """Synchronously push each matching timesheet and report per-item outcomes."""
    options = SyncOptions(
        sync_contacts=False,
        sync_projects=False,
        **request.model_dump(exclude={"requested_by"}),
    )
    try:
        result = runtime.orchestrator.sync_submissions(options, actor=request.requested_by)
    except Exception as e:
        raise to_http_exception(e, "run manual sync") from e
    return SyncRunRead(**result.to_dict())


@router.post("/validate", summary="Pre-sync readiness report")
def validate_readiness(
    request: ReadinessRequest,
    runtime: Runtime = Depends(get_runtime),
) -> dict[str, Any]:
    options = SyncOptions(**request.model_dump())
    try:
        report = runtime.orchestrator.validate_readiness(options)
        connection = runtime.ledger.get_connection_status()
    except Exception as e:
        raise to_http_exception(e, "validate sync readiness") from e
    return {**report.to_dict(), "ledger_connection": connection}


@router.get("/status", summary="Recent sync outcomes", response_model=SyncStatusRead)
def sync_status(runtime: Runtime = Depends(get_runtime)) -> SyncStatusRead:
    try:
        return SyncStatusRead(**runtime.orchestrator.get_sync_status())
    except Exception as e:
        raise to_http_exception(e, "read sync status") from e
