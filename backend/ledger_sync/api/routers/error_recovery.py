"""Automated recovery of quarantined records."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from ledger_sync.api.dependencies.runtime import get_runtime
from ledger_sync.api.routers.error_mapping import to_http_exception
from ledger_sync.api.schemas.quarantine import RecoveryRead, RecoveryRequest
from ledger_sync.runtime import Runtime

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", summary="Re-check and re-queue quarantined records", response_model=RecoveryRead)
async def run_error_recovery(
    request: RecoveryRequest,
    runtime: Runtime = Depends(get_runtime),
) -> RecoveryRead:
    """Records that now pass are re-queued and resolved; ``dry_run`` only reports."""
    try:
        result = runtime.recovery.recover(
            dry_run=request.dry_run,
            max_records=request.max_records,
            priority_only=request.priority_only,
            entity_types=request.entity_types,
            actor=request.requested_by,
        )
    except Exception as e:
        raise to_http_exception(e, "run error recovery") from e
    return RecoveryRead(**result.to_dict())
