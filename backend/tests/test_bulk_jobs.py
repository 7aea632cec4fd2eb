"""Bulk reprocessing: item resolution, counters, cancellation and failure handling."""

from datetime import date
import time

import fakeredis
import pytest
from conftest import add_project, add_submission

from ledger_sync.core.errors import BulkJobNotFoundError, QueueNotFoundError
from ledger_sync.db.models import SyncLog
from ledger_sync.queueing import payloads
from ledger_sync.queueing.queue import NORMAL_QUEUE
from ledger_sync.services.audit import (
    BULK_JOB_CANCELLED,
    BULK_JOB_COMPLETED,
    BULK_JOB_FAILED,
    BULK_JOB_STARTED,
    MemoryAuditStore,
)
from ledger_sync.services.bulk_jobs import (
    CLEAR_QUEUE,
    REPROCESS_DATE_RANGE,
    REPROCESS_FAILED,
    REPROCESS_SPECIFIC,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    BulkJobTracker,
)
from ledger_sync.services.progress_tracker import ProgressTracker
from ledger_sync.utils.dates import utcnow


@pytest.fixture
def tracker(session_factory, manager, audit):
    return BulkJobTracker(
        session_factory, manager, audit, dispatcher=lambda job_id: None, default_delay=0
    )


def assert_counters_consistent(status):
    assert status["processed_items"] == status["success_count"] + status["error_count"]
    assert status["processed_items"] <= status["total_items"]


def bulk_jobs_on(manager, job_id):
    queue = manager.get_queue(NORMAL_QUEUE)
    return [
        j for j in queue.list_jobs(["waiting", "delayed"]) if j.payload.get("bulk_job_id") == job_id
    ]


def test_reprocess_specific_enqueues_each_submission_once(tracker, manager, audit):
    job_id = tracker.start(
        REPROCESS_SPECIFIC, filters={"submission_ids": ["s-1", "s-2", "s-1"]}, actor="admin"
    )
    assert tracker.get_status(job_id)["status"] == STATUS_PENDING

    tracker.run(job_id)

    status = tracker.get_status(job_id)
    assert status["status"] == STATUS_COMPLETED
    assert status["total_items"] == 2
    assert status["success_count"] == 2
    assert status["progress"] == 100.0
    assert status["completed_at"] is not None
    assert_counters_consistent(status)

    jobs = bulk_jobs_on(manager, job_id)
    assert sorted(j.payload["submission_id"] for j in jobs) == ["s-1", "s-2"]
    assert all(j.payload["trigger"] == "bulk" for j in jobs)
    assert audit.actions(job_id) == [BULK_JOB_STARTED, BULK_JOB_COMPLETED]


def test_reprocess_failed_picks_failed_timesheet_logs(tracker, manager, session_factory):
    with session_factory() as session:
        for entity_id, status, entity_type in (
            ("s-1", "FAILED", "TIMESHEET"),
            ("s-1", "FAILED", "TIMESHEET"),
            ("s-2", "SUCCESS", "TIMESHEET"),
            ("p-1", "FAILED", "PROJECT"),
            ("s-3", "FAILED", "TIMESHEET"),
        ):
            session.add(
                SyncLog(entity_type=entity_type, entity_id=entity_id, status=status, created_at=utcnow())
            )
        session.commit()

    job_id = tracker.start(REPROCESS_FAILED)
    tracker.run(job_id)

    status = tracker.get_status(job_id)
    assert status["total_items"] == 2
    assert sorted(j.payload["submission_id"] for j in bulk_jobs_on(manager, job_id)) == ["s-1", "s-3"]


def test_reprocess_date_range_selects_approved_submissions(tracker, session_factory):
    project_id = add_project(session_factory)
    add_submission(session_factory, project_id, week_start=date(2024, 3, 4))
    add_submission(session_factory, project_id, week_start=date(2024, 3, 11))
    add_submission(session_factory, project_id, week_start=date(2024, 3, 4), status="SUBMITTED")
    add_submission(session_factory, project_id, week_start=date(2024, 4, 1))

    job_id = tracker.start(
        REPROCESS_DATE_RANGE,
        filters={"date_from": date(2024, 3, 1), "date_to": date(2024, 3, 31)},
    )
    tracker.run(job_id)

    status = tracker.get_status(job_id)
    assert status["filters"] == {"date_from": "2024-03-01", "date_to": "2024-03-31"}
    assert status["total_items"] == 2


def test_clear_queue_operation(tracker, manager):
    manager.enqueue_timesheet_sync("s-1")
    manager.enqueue_entity_sync(payloads.SYNC_PROJECT, "p-1")

    job_id = tracker.start(
        CLEAR_QUEUE,
        filters={"queue_names": [NORMAL_QUEUE], "job_types": [payloads.SYNC_TIMESHEET]},
    )
    tracker.run(job_id)

    assert tracker.get_status(job_id)["success_count"] == 1
    remaining = manager.get_queue(NORMAL_QUEUE).list_jobs(["waiting", "delayed"])
    assert [j.type for j in remaining] == [payloads.SYNC_PROJECT]


def test_dry_run_has_no_side_effects(tracker, manager):
    job_id = tracker.start(
        REPROCESS_SPECIFIC, filters={"submission_ids": ["s-1"]}, options={"dry_run": True}
    )
    tracker.run(job_id)

    status = tracker.get_status(job_id)
    assert status["dry_run"]
    assert status["success_count"] == 1
    assert bulk_jobs_on(manager, job_id) == []


def test_cancellation_stops_at_batch_boundary(session_factory, manager, audit):
    holder = {}

    def cancel_between_batches(seconds):
        tracker.cancel(holder["job_id"], actor="admin")

    tracker = BulkJobTracker(
        session_factory,
        manager,
        audit,
        dispatcher=lambda job_id: None,
        sleep=cancel_between_batches,
    )
    holder["job_id"] = job_id = tracker.start(
        REPROCESS_SPECIFIC,
        filters={"submission_ids": [f"s-{i}" for i in range(5)]},
        options={"batch_size": 2, "delay_between_batches": 0.5},
    )
    tracker.run(job_id)

    status = tracker.get_status(job_id)
    assert status["status"] == STATUS_CANCELLED
    assert status["processed_items"] == 2
    assert status["total_items"] == 5
    assert_counters_consistent(status)
    assert BULK_JOB_CANCELLED in audit.actions(job_id)
    assert BULK_JOB_COMPLETED not in audit.actions(job_id)
    assert len(bulk_jobs_on(manager, job_id)) == 2


def test_only_running_jobs_can_be_cancelled(tracker):
    job_id = tracker.start(REPROCESS_SPECIFIC, filters={"submission_ids": ["s-1"]})
    with pytest.raises(ValueError):
        tracker.cancel(job_id)

    tracker.run(job_id)
    with pytest.raises(ValueError):
        tracker.cancel(job_id)

    with pytest.raises(BulkJobNotFoundError):
        tracker.cancel("missing")


def test_run_is_not_repeated(tracker, manager):
    job_id = tracker.start(REPROCESS_SPECIFIC, filters={"submission_ids": ["s-1"]})
    tracker.run(job_id)
    tracker.run(job_id)
    assert len(bulk_jobs_on(manager, job_id)) == 1


def test_failure_marks_job_failed(tracker, audit, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(tracker, "_resolve_items", explode)
    job_id = tracker.start(REPROCESS_FAILED)
    tracker.run(job_id)

    status = tracker.get_status(job_id)
    assert status["status"] == STATUS_FAILED
    assert status["errors"][-1]["message"] == "database went away"
    assert audit.actions(job_id)[-1] == BULK_JOB_FAILED


class StartRefusingAudit(MemoryAuditStore):
    def append(self, entry):
        if entry.action == BULK_JOB_STARTED:
            raise RuntimeError("audit table locked")
        super().append(entry)


def test_start_audit_failure_marks_job_failed(session_factory, manager):
    dispatched = []
    tracker = BulkJobTracker(
        session_factory, manager, StartRefusingAudit(), dispatcher=dispatched.append
    )

    with pytest.raises(RuntimeError, match="audit table locked"):
        tracker.start(REPROCESS_SPECIFIC, filters={"submission_ids": ["s-1"]})

    assert dispatched == []
    jobs = tracker.list_jobs()
    assert len(jobs) == 1
    assert jobs[0]["status"] == STATUS_FAILED
    assert jobs[0]["completed_at"] is not None
    assert "audit table locked" in jobs[0]["errors"][0]["message"]
    assert tracker.list_jobs(status=STATUS_PENDING) == []


def test_item_errors_are_counted(tracker, manager, monkeypatch):
    original = manager.enqueue_timesheet_sync

    def flaky(submission_id, **kwargs):
        if submission_id == "s-2":
            raise RuntimeError("queue store unavailable")
        return original(submission_id, **kwargs)

    monkeypatch.setattr(manager, "enqueue_timesheet_sync", flaky)
    job_id = tracker.start(REPROCESS_SPECIFIC, filters={"submission_ids": ["s-1", "s-2", "s-3"]})
    tracker.run(job_id)

    status = tracker.get_status(job_id)
    assert status["status"] == STATUS_COMPLETED
    assert status["success_count"] == 2
    assert status["error_count"] == 1
    assert status["errors"][0]["entity_id"] == "s-2"
    assert_counters_consistent(status)


@pytest.mark.parametrize(
    "operation,filters,error",
    [
        ("reprocess_everything", {}, ValueError),
        (REPROCESS_SPECIFIC, {}, ValueError),
        (REPROCESS_DATE_RANGE, {"date_from": "2024-03-01"}, ValueError),
        (CLEAR_QUEUE, {"queue_names": ["nope"]}, QueueNotFoundError),
    ],
)
def test_invalid_requests_rejected(tracker, operation, filters, error):
    with pytest.raises(error):
        tracker.start(operation, filters=filters)
    assert tracker.list_jobs() == []


def test_live_progress_published_to_redis(session_factory, manager):
    client = fakeredis.FakeRedis(decode_responses=True)
    tracker = BulkJobTracker(
        session_factory,
        manager,
        progress=ProgressTracker(client),
        dispatcher=lambda job_id: None,
        default_delay=0,
    )
    job_id = tracker.start(REPROCESS_SPECIFIC, filters={"submission_ids": ["s-1", "s-2"]})
    tracker.run(job_id)

    live = tracker.get_status(job_id)["live_progress"]
    assert live["status"] == STATUS_COMPLETED
    assert live["progress"] == 1.0
    assert client.ttl(f"bulk-jobs:progress:{job_id}") > 0


def test_list_jobs_filters_by_status(tracker):
    done = tracker.start(REPROCESS_SPECIFIC, filters={"submission_ids": ["s-1"]})
    tracker.run(done)
    tracker.start(REPROCESS_SPECIFIC, filters={"submission_ids": ["s-2"]})

    assert len(tracker.list_jobs()) == 2
    assert [j["id"] for j in tracker.list_jobs(status=STATUS_COMPLETED)] == [done]


def test_default_dispatcher_runs_in_background(session_factory, manager):
    tracker = BulkJobTracker(session_factory, manager, default_delay=0)
    job_id = tracker.start(REPROCESS_SPECIFIC, filters={"submission_ids": ["s-1"]})

    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        if tracker.get_status(job_id)["status"] == STATUS_COMPLETED:
            break
        time.sleep(0.02)
    assert tracker.get_status(job_id)["status"] == STATUS_COMPLETED
