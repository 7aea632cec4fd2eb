"""Queue processors wired to the orchestrator, driven through real worker pools."""

import time

import pytest
from conftest import add_client, add_project, add_submission

from ledger_sync.core.errors import LedgerUnavailableError
from ledger_sync.db.models import SyncLog
from ledger_sync.queueing import payloads
from ledger_sync.queueing.models import JobRecord, JobState
from ledger_sync.queueing.queue import (
    BATCH_QUEUE,
    HIGH_PRIORITY_QUEUE,
    NORMAL_QUEUE,
    default_queue_configs,
)
from ledger_sync.queueing.worker_pool import JobContext
from ledger_sync.services.processors import SyncProcessors, register_processors
from ledger_sync.utils.dates import utcnow


@pytest.fixture
def processors(orchestrator, session_factory, manager, overrides):
    processors = SyncProcessors(orchestrator, session_factory, manager, overrides)
    register_processors(manager.registry, processors, default_queue_configs())
    return processors


def context_for(manager, record: JobRecord) -> JobContext:
    claimed = manager.store.claim(record.queue_name, "tok", time.time() + 10)
    return JobContext(manager.pools[record.queue_name], claimed)


def test_every_queue_job_type_has_a_processor(processors, manager):
    for queue in manager.queues.values():
        assert manager.registry.job_types(queue.name) == set(queue.config.job_types)


def test_timesheet_job_syncs_and_reports_progress(processors, manager, session_factory):
    project_id = add_project(session_factory)
    submission_id = add_submission(session_factory, project_id)
    record = manager.enqueue_timesheet_sync(submission_id, trigger="approval")
    context = context_for(manager, record)

    result = manager.registry.dispatch(context.job, context)

    assert result["invoice_id"] == "INV-1"
    assert manager.get_queue(HIGH_PRIORITY_QUEUE).get_job(record.id).progress == 100


def test_entity_jobs(processors, manager, session_factory, ledger):
    client_id = add_client(session_factory)
    project_id = add_project(session_factory, client_id=client_id)
    for job_type, entity_id in ((payloads.SYNC_CLIENT, client_id), (payloads.SYNC_PROJECT, project_id)):
        record = manager.enqueue_entity_sync(job_type, entity_id)
        context = context_for(manager, record)
        assert manager.registry.dispatch(context.job, context)["entity_id"] == entity_id
    assert [kind for kind, _ in ledger.posted] == ["contact", "project"]


def test_entity_jobs_honour_overwrite_flag(processors, manager, session_factory, ledger):
    client_id = add_client(session_factory)
    results = []
    for overwrite in (False, False, True):
        record = manager.enqueue_entity_sync(
            payloads.SYNC_CLIENT, client_id, overwrite_existing=overwrite
        )
        context = context_for(manager, record)
        results.append(manager.registry.dispatch(context.job, context))

    assert [r["already_synced"] for r in results] == [False, True, False]
    assert [kind for kind, _ in ledger.posted] == ["contact", "contact"]


def test_batch_job_retries_only_when_everything_was_transient(
    processors, manager, session_factory, ledger
):
    project_id = add_project(session_factory)
    first = add_submission(session_factory, project_id, user_id="user-1")
    second = add_submission(session_factory, project_id, user_id="user-2")
    ledger.unavailable_for.update({first, second})

    record = manager.enqueue_batch_sync([first, second])
    context = context_for(manager, record)
    with pytest.raises(LedgerUnavailableError):
        manager.registry.dispatch(context.job, context)

    ledger.unavailable_for.discard(second)
    record = manager.enqueue_batch_sync([first, second])
    context = context_for(manager, record)
    result = manager.registry.dispatch(context.job, context)
    assert result["successful"] == 1
    assert result["failed"] == 1


def test_health_check_fails_when_ledger_down(processors, manager, ledger):
    record = manager.enqueue_health_check()
    context = context_for(manager, record)
    assert manager.registry.dispatch(context.job, context)["ledger"] == {"connected": True}

    ledger.connected = False
    record = manager.enqueue_health_check()
    context = context_for(manager, record)
    with pytest.raises(LedgerUnavailableError):
        manager.registry.dispatch(context.job, context)


def test_cleanup_job(processors, manager, session_factory, overrides):
    with session_factory() as session:
        session.add(
            SyncLog(
                entity_type="TIMESHEET",
                entity_id="old",
                status="SUCCESS",
                created_at=utcnow().replace(year=2000),
            )
        )
        session.add(SyncLog(entity_type="TIMESHEET", entity_id="new", status="SUCCESS", created_at=utcnow()))
        session.commit()

    record = manager.enqueue(BATCH_QUEUE, payloads.CLEANUP, {"older_than_days": 30})
    context = context_for(manager, record)
    result = manager.registry.dispatch(context.job, context)

    assert result["sync_logs_deleted"] == 1
    assert result["overrides_expired"] == 0
    assert set(result["jobs_cleaned"]) == set(manager.queues)


def test_pool_runs_timesheet_jobs_end_to_end(processors, manager, session_factory, ledger):
    project_id = add_project(session_factory)
    submission_id = add_submission(session_factory, project_id)
    record = manager.enqueue_timesheet_sync(submission_id, priority="high")
    queue = manager.get_queue(HIGH_PRIORITY_QUEUE)

    manager.start(start_metrics=False)
    try:
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline:
            if queue.get_job(record.id).state is JobState.COMPLETED:
                break
            time.sleep(0.02)
    finally:
        for pool in manager.pools.values():
            pool.close()

    job = queue.get_job(record.id)
    assert job.state is JobState.COMPLETED
    assert job.return_value["invoice_id"] == "INV-1"
    assert len(ledger.posted) == 1
    assert manager.get_queue(NORMAL_QUEUE).counts()["active"] == 0
