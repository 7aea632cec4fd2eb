"""Celery task that runs one bulk reprocessing job."""

from __future__ import annotations

import logging

from ledger_sync.runtime import Runtime, build_runtime
from ledger_sync.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

_runtime: Runtime | None = None


def get_worker_runtime() -> Runtime:
    """One runtime per Celery worker process; queue workers stay in the sync worker."""
    global _runtime
    if _runtime is None:
        _runtime = build_runtime()
        _runtime.start(start_workers=False)
    return _runtime


@celery_app.task(bind=True, name="ledger_sync.workers.tasks.bulk_reprocess")
def bulk_reprocess_task(self, job_id: str) -> dict:
    """Run the bulk job's batches and return its final counters."""
    runtime = get_worker_runtime()
    logger.info(f"Celery task {self.request.id} running bulk job {job_id}")
    runtime.bulk_jobs.run(job_id)
    status = runtime.bulk_jobs.get_status(job_id)
    return {
        "job_id": job_id,
        "status": status["status"],
        "processed_items": status["processed_items"],
        "success_count": status["success_count"],
        "error_count": status["error_count"],
    }
