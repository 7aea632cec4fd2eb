"""Bulk reprocessing endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, status

from ledger_sync.api.dependencies.runtime import get_runtime
from ledger_sync.api.routers.error_mapping import to_http_exception
from ledger_sync.api.schemas.bulk_job import BulkJobCreate, BulkJobRead
from ledger_sync.runtime import Runtime

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post(
    "/",
    summary="Start a bulk reprocessing job",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=BulkJobRead,
)
async def start_bulk_job(
    request: BulkJobCreate,
    runtime: Runtime = Depends(get_runtime),
) -> BulkJobRead:
    """Create the job record and hand it to a background runner.

    Returns immediately; poll ``GET /api/bulk-jobs/{id}`` for progress.
    """
    try:
        job_id = runtime.bulk_jobs.start(
            request.operation_type,
            filters=request.filters.model_dump(exclude_none=True),
            options=request.options.model_dump(),
            actor=request.requested_by,
        )
        return BulkJobRead(**runtime.bulk_jobs.get_status(job_id))
    except Exception as e:
        raise to_http_exception(e, "start bulk job") from e


@router.get("/", summary="List bulk jobs", response_model=list[BulkJobRead])
async def list_bulk_jobs(
    limit: int = Query(50, ge=1, le=500, description="Maximum number of jobs to return"),
    status: str | None = Query(None, description="Filter by status"),
    runtime: Runtime = Depends(get_runtime),
) -> list[BulkJobRead]:
    try:
        jobs = runtime.bulk_jobs.list_jobs(limit=limit, status=status)
    except Exception as e:
        raise to_http_exception(e, "list bulk jobs") from e
    return [BulkJobRead(**job) for job in jobs]


@router.get("/{job_id}", summary="Bulk job status and progress", response_model=BulkJobRead)
async def get_bulk_job(job_id: str, runtime: Runtime = Depends(get_runtime)) -> BulkJobRead:
    try:
        return BulkJobRead(**runtime.bulk_jobs.get_status(job_id))
    except Exception as e:
        raise to_http_exception(e, f"fetch bulk job {job_id}") from e


@router.delete("/{job_id}", summary="Cancel a running bulk job", response_model=BulkJobRead)
async def cancel_bulk_job(
    job_id: str,
    actor: str = Query("system"),
    runtime: Runtime = Depends(get_runtime),
) -> BulkJobRead:
    """Cancellation takes effect when the job reaches its next batch boundary."""
    try:
        return BulkJobRead(**runtime.bulk_jobs.cancel(job_id, actor=actor))
    except Exception as e:
        raise to_http_exception(e, f"cancel bulk job {job_id}") from e
