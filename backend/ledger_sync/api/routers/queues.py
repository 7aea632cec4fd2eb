"""Queue administration endpoints: status, metrics, enqueue, pause/resume, cleanup."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ledger_sync.api.dependencies.runtime import get_runtime
from ledger_sync.api.routers.error_mapping import to_http_exception
from ledger_sync.api.schemas.queue import (
    ClearQueueRequest,
    EnqueueRequest,
    JobIdsRequest,
    JobRead,
    QueueActionResult,
    QueueMetrics,
    QueueStatus,
)
from ledger_sync.runtime import Runtime

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/status", summary="Queue manager status", response_model=QueueStatus)
async def queue_status(runtime: Runtime = Depends(get_runtime)) -> QueueStatus:
    return QueueStatus(**runtime.queues.get_status())


@router.get(
    "/metrics",
    summary="Per-queue metrics snapshots",
    response_model=list[QueueMetrics],
)
async def queue_metrics(
    queue: str | None = Query(None, description="Restrict to one queue"),
    runtime: Runtime = Depends(get_runtime),
) -> list[QueueMetrics]:
    try:
        if queue is not None:
            snapshots = [runtime.queues.get_metrics(queue)]
        else:
            snapshots = list(runtime.queues.get_metrics().values())
    except Exception as e:
        raise to_http_exception(e, "read queue metrics") from e
    return [QueueMetrics(**snapshot.to_dict()) for snapshot in snapshots]


@router.post(
    "/{name}/jobs",
    summary="Enqueue a job",
    status_code=status.HTTP_201_CREATED,
    response_model=JobRead,
)
async def enqueue_job(
    name: str,
    request: EnqueueRequest,
    runtime: Runtime = Depends(get_runtime),
) -> JobRead:
    options = request.model_dump(exclude={"type", "payload"}, exclude_none=True)
    try:
        record = runtime.queues.enqueue(name, request.type, request.payload, **options)
    except Exception as e:
        raise to_http_exception(e, f"enqueue {request.type} on {name}") from e
    return JobRead(**record.to_public())


@router.get("/{name}/jobs", summary="List jobs in a queue", response_model=list[JobRead])
async def list_queue_jobs(
    name: str,
    states: list[str] = Query(["waiting", "delayed", "active", "failed"]),
    limit: int = Query(100, ge=1, le=1000),
    runtime: Runtime = Depends(get_runtime),
) -> list[JobRead]:
    try:
        records = runtime.queues.get_queue(name).list_jobs(states, limit)
    except Exception as e:
        raise to_http_exception(e, f"list jobs on {name}") from e
    return [JobRead(**record.to_public()) for record in records]


@router.get("/{name}/jobs/{job_id}", summary="Fetch one job", response_model=JobRead)
async def get_queue_job(
    name: str,
    job_id: str,
    runtime: Runtime = Depends(get_runtime),
) -> JobRead:
    try:
        record = runtime.queues.get_queue(name).get_job(job_id)
    except Exception as e:
        raise to_http_exception(e, f"fetch job {job_id}") from e
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return JobRead(**record.to_public())


@router.post("/{name}/pause", summary="Pause a queue", response_model=QueueActionResult)
async def pause_queue(
    name: str,
    actor: str = Query("system"),
    runtime: Runtime = Depends(get_runtime),
) -> QueueActionResult:
    try:
        runtime.queues.pause_queue(name, actor=actor)
    except Exception as e:
        raise to_http_exception(e, f"pause {name}") from e
    return QueueActionResult(queue_name=name, action="paused")


@router.post("/{name}/resume", summary="Resume a queue", response_model=QueueActionResult)
async def resume_queue(
    name: str,
    actor: str = Query("system"),
    runtime: Runtime = Depends(get_runtime),
) -> QueueActionResult:
    try:
        runtime.queues.resume_queue(name, actor=actor)
    except Exception as e:
        raise to_http_exception(e, f"resume {name}") from e
    return QueueActionResult(queue_name=name, action="resumed")


@router.post(
    "/{name}/clear-failed",
    summary="Remove every failed job",
    response_model=QueueActionResult,
)
async def clear_failed(
    name: str,
    actor: str = Query("system"),
    runtime: Runtime = Depends(get_runtime),
) -> QueueActionResult:
    try:
        removed = runtime.queues.clear_failed_jobs(name, actor=actor)
    except Exception as e:
        raise to_http_exception(e, f"clear failed jobs on {name}") from e
    return QueueActionResult(queue_name=name, action="cleared_failed", affected=removed)


@router.post("/{name}/retry", summary="Retry failed jobs", response_model=QueueActionResult)
async def retry_jobs(
    name: str,
    request: JobIdsRequest,
    actor: str = Query("system"),
    runtime: Runtime = Depends(get_runtime),
) -> QueueActionResult:
    try:
        retried = runtime.queues.retry_jobs(name, request.job_ids, actor=actor)
    except Exception as e:
        raise to_http_exception(e, f"retry jobs on {name}") from e
    return QueueActionResult(queue_name=name, action="retried", affected=retried)


@router.post("/{name}/remove", summary="Remove jobs by id", response_model=QueueActionResult)
async def remove_jobs(
    name: str,
    request: JobIdsRequest,
    actor: str = Query("system"),
    runtime: Runtime = Depends(get_runtime),
) -> QueueActionResult:
    if not request.job_ids:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="job_ids is required")
    try:
        removed = runtime.queues.remove_jobs(name, request.job_ids, actor=actor)
    except Exception as e:
        raise to_http_exception(e, f"remove jobs on {name}") from e
    return QueueActionResult(queue_name=name, action="removed", affected=removed)


@router.post("/{name}/clear", summary="Purge jobs by state and type", response_model=QueueActionResult)
async def clear_queue(
    name: str,
    request: ClearQueueRequest,
    actor: str = Query("system"),
    runtime: Runtime = Depends(get_runtime),
) -> QueueActionResult:
    try:
        removed = runtime.queues.clear_queue(
            name, job_types=request.job_types, states=request.states, actor=actor
        )
    except Exception as e:
        raise to_http_exception(e, f"clear {name}") from e
    return QueueActionResult(queue_name=name, action="cleared", affected=removed)
