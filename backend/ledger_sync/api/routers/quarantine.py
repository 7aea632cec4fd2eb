"""Quarantine review endpoints."""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
import logging

from fastapi import APIRouter, Depends, Query, status

from ledger_sync.api.dependencies.runtime import get_runtime
from ledger_sync.api.routers.error_mapping import to_http_exception
from ledger_sync.api.schemas.quarantine import (
    QuarantineBulkResult,
    QuarantineBulkUpdate,
    QuarantineCreate,
    QuarantinePageRead,
    QuarantineRead,
    QuarantineReview,
    QuarantineStatsRead,
)
from ledger_sync.runtime import Runtime
from ledger_sync.services.quarantine import REASON_MANUAL

logger = logging.getLogger(__name__)
router = APIRouter()


def _split(value: str | None) -> list[str] | None:
    if not value:
        return None
    return [part.strip() for part in value.split(",") if part.strip()]


@router.get("/", summary="List quarantined records", response_model=QuarantinePageRead)
async def list_quarantine(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    entity_type: str | None = Query(None, description="Comma-separated: TIMESHEET,PROJECT,CONTACT"),
    status: str | None = Query(None, description="Comma-separated statuses"),
    priority: str | None = Query(None, description="Comma-separated priorities"),
    reason: str | None = Query(None, description="Comma-separated reasons"),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    runtime: Runtime = Depends(get_runtime),
) -> QuarantinePageRead:
    try:
        result = runtime.quarantine.list_records(
            entity_types=_split(entity_type),
            statuses=_split(status),
            priorities=_split(priority),
            reasons=_split(reason),
            date_from=date_from,
            date_to=date_to,
            page=page,
            limit=limit,
        )
    except Exception as e:
        raise to_http_exception(e, "list quarantined records") from e
    return QuarantinePageRead(
        records=[QuarantineRead.model_validate(r) for r in result.records],
        total=result.total,
        page=result.page,
        total_pages=result.total_pages,
    )


@router.get("/stats", summary="Quarantine statistics", response_model=QuarantineStatsRead)
async def quarantine_stats(
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    runtime: Runtime = Depends(get_runtime),
) -> QuarantineStatsRead:
    try:
        stats = runtime.quarantine.stats(date_from, date_to)
    except Exception as e:
        raise to_http_exception(e, "compute quarantine statistics") from e
    return QuarantineStatsRead(**asdict(stats))


@router.post(
    "/",
    summary="Quarantine an entity by hand",
    status_code=status.HTTP_201_CREATED,
    response_model=QuarantineRead,
)
async def quarantine_entity(
    payload: QuarantineCreate,
    runtime: Runtime = Depends(get_runtime),
) -> QuarantineRead:
    try:
        record = runtime.quarantine.quarantine(
            entity_type=payload.entity_type,
            entity_id=payload.entity_id,
            errors=[
                {
                    "id": "manual_quarantine",
                    "field": None,
                    "message": payload.notes,
                    "severity": payload.priority.lower(),
                }
            ],
            reason=REASON_MANUAL,
            quarantined_by=payload.quarantined_by,
            priority=payload.priority,
        )
    except Exception as e:
        raise to_http_exception(e, "quarantine entity") from e
    return QuarantineRead.model_validate(record)


@router.patch("/bulk", summary="Update several records", response_model=QuarantineBulkResult)
async def bulk_update_quarantine(
    payload: QuarantineBulkUpdate,
    runtime: Runtime = Depends(get_runtime),
) -> QuarantineBulkResult:
    try:
        result = runtime.quarantine.bulk_update(
            payload.record_ids,
            status=payload.status,
            reviewed_by=payload.reviewed_by,
            notes=payload.resolution_notes,
        )
    except Exception as e:
        raise to_http_exception(e, "bulk update quarantined records") from e
    return QuarantineBulkResult(**result)


@router.get("/{record_id}", summary="Get one quarantine record", response_model=QuarantineRead)
async def get_quarantine_record(
    record_id: str, runtime: Runtime = Depends(get_runtime)
) -> QuarantineRead:
    try:
        record = runtime.quarantine.get(record_id)
    except Exception as e:
        raise to_http_exception(e, f"fetch quarantine record {record_id}") from e
    return QuarantineRead.model_validate(record)


@router.patch("/{record_id}", summary="Resolve or reject a record", response_model=QuarantineRead)
async def review_quarantine_record(
    record_id: str,
    payload: QuarantineReview,
    runtime: Runtime = Depends(get_runtime),
) -> QuarantineRead:
    try:
        record = runtime.quarantine.review(
            record_id,
            status=payload.status,
            reviewed_by=payload.reviewed_by,
            notes=payload.resolution_notes,
        )
    except Exception as e:
        raise to_http_exception(e, f"review quarantine record {record_id}") from e
    return QuarantineRead.model_validate(record)
