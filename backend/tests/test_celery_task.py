"""Bulk reprocessing through the Celery task, executed eagerly in-process."""

from ledger_sync import runtime as runtime_module
from ledger_sync.services.bulk_jobs import REPROCESS_SPECIFIC
from ledger_sync.workers.tasks import bulk_reprocess


def test_task_runs_bulk_job_and_returns_counters(runtime, monkeypatch):
    runtime.start(start_workers=False)
    monkeypatch.setattr(bulk_reprocess, "_runtime", runtime)
    monkeypatch.setattr(runtime.bulk_jobs, "dispatcher", lambda job_id: None)
    job_id = runtime.bulk_jobs.start(REPROCESS_SPECIFIC, filters={"submission_ids": ["s-1", "s-2"]})

    result = bulk_reprocess.bulk_reprocess_task.apply(args=[job_id]).get()

    assert result == {
        "job_id": job_id,
        "status": "completed",
        "processed_items": 2,
        "success_count": 2,
        "error_count": 0,
    }


def test_celery_dispatcher_enqueues_task(monkeypatch):
    sent = []
    monkeypatch.setattr(bulk_reprocess.bulk_reprocess_task, "delay", sent.append)

    runtime_module.dispatch_bulk_job_to_celery("job-1")

    assert sent == ["job-1"]


def test_task_routed_to_bulk_queue():
    routes = bulk_reprocess.celery_app.conf.task_routes
    assert routes[bulk_reprocess.bulk_reprocess_task.name] == {"queue": "bulk"}
