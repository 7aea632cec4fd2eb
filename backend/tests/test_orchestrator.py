"""Sync orchestration: dry runs, per-item outcomes, overrides and enqueue routing."""

from datetime import date, datetime, timezone

import pytest
from conftest import add_client, add_project, add_submission
from sqlalchemy import select

from ledger_sync.core.errors import (
    LedgerRejectedError,
    LedgerUnavailableError,
    PayloadError,
    ValidationFailedError,
)
from ledger_sync.db.models import SyncLog
from ledger_sync.queueing import payloads
from ledger_sync.queueing.queue import BATCH_QUEUE, HIGH_PRIORITY_QUEUE, NORMAL_QUEUE
from ledger_sync.services.audit import SYNC_RUN
from ledger_sync.services.quarantine import (
    REASON_API_ERROR,
    REASON_VALIDATION_FAILED,
    STATUS_QUARANTINED,
    STATUS_RESOLVED,
)
from ledger_sync.services.sync_orchestrator import (
    MODE_INCREMENTAL,
    DryRunReport,
    SyncOptions,
    SyncOrchestrator,
)
from ledger_sync.services.validation_engine import KIND_CONTACT, KIND_PROJECT


@pytest.fixture
def seeded(session_factory):
    client_id = add_client(session_factory)
    project_id = add_project(session_factory, client_id=client_id)
    good = add_submission(session_factory, project_id, user_id="user-1")
    bad = add_submission(session_factory, project_id, user_id="user-2", entries=[{"duration": 30}])
    return {"client": client_id, "project": project_id, "good": good, "bad": bad}


def test_dry_run_never_calls_the_ledger(orchestrator, manager, ledger, seeded):
    report = orchestrator.enqueue_sync(SyncOptions(dry_run=True))

    assert isinstance(report, DryRunReport)
    assert ledger.calls == 0
    assert report.total == 4
    assert report.valid == 3
    assert report.errors == 1
    invalid = [r for r in report.results if not r["valid"]]
    assert invalid[0]["entity_id"] == seeded["bad"]
    assert invalid[0]["errors"][0]["id"] == "duration_limit"
    assert all(q.counts()["waiting"] + q.counts()["delayed"] == 0 for q in manager.queues.values())


def test_manual_sync_aggregates_partial_failures(orchestrator, ledger, session_factory, seeded):
    project_id = seeded["project"]
    flaky = add_submission(session_factory, project_id, user_id="user-3")
    ledger.unavailable_for.add(flaky)

    result = orchestrator.sync_submissions(SyncOptions(), actor="admin")

    assert result.processed == 3
    assert result.successful == 1
    assert result.failed == 2
    assert not result.success
    by_id = {item.entity_id: item for item in result.results}
    assert by_id[seeded["good"]].ledger_reference == "INV-1"
    assert by_id[flaky].transient
    assert not by_id[seeded["bad"]].transient
    assert len(result.errors) == 2

    status = orchestrator.get_sync_status()
    assert status["last_24_hours"] == {
        "successful": 1,
        "failed": 2,
        "total": 3,
        "success_rate": 33.3,
    }
    assert len(status["recent_logs"]) == 3


def test_override_waives_covered_failure(orchestrator, overrides, ledger, seeded):
    overrides.create(
        entity_id=seeded["bad"],
        entity_type="TIMESHEET",
        rules=["duration_limit"],
        justification="Overnight deployment",
        created_by="admin",
    )

    result = orchestrator.sync_submissions(SyncOptions(submission_ids=[seeded["bad"]]))

    assert result.successful == 1
    assert result.overrides == 1
    assert result.results[0].overridden
    assert len(ledger.posted) == 1


def test_partial_override_still_fails(orchestrator, overrides, session_factory, ledger):
    project_id = add_project(session_factory, default_bill_rate=None)
    submission_id = add_submission(session_factory, project_id, entries=[{"duration": 30}])
    overrides.create(
        entity_id=submission_id,
        entity_type="TIMESHEET",
        rules=["duration_limit"],
        justification="Overnight deployment",
        created_by="admin",
    )

    with pytest.raises(ValidationFailedError) as excinfo:
        orchestrator.sync_timesheet(submission_id)

    assert excinfo.value.error_ids == ["billing_rate", "duration_limit"]
    assert ledger.calls == 0


def test_rejected_entry_is_not_transient(orchestrator, ledger, seeded):
    ledger.rejected_for.add(seeded["good"])
    result = orchestrator.sync_submissions(SyncOptions(submission_ids=[seeded["good"]]))
    item = result.results[0]
    assert item.status == "error"
    assert not item.transient
    assert "HTTP 400" in item.errors[0]


def test_single_item_sync(orchestrator, seeded):
    result = orchestrator.sync_timesheet(seeded["good"], requested_by="admin")
    assert result == {
        "entity_id": seeded["good"],
        "invoice_id": "INV-1",
        "overridden": False,
        "already_synced": False,
    }

    project = orchestrator.sync_entity(KIND_PROJECT, seeded["project"])
    assert project["invoice_id"] == "INV-2"


def test_single_item_missing_entity_is_fatal(orchestrator):
    with pytest.raises(PayloadError):
        orchestrator.sync_timesheet("does-not-exist")


def test_single_item_transient_error_propagates(orchestrator, ledger, seeded):
    ledger.unavailable_for.add(seeded["good"])
    with pytest.raises(LedgerUnavailableError):
        orchestrator.sync_timesheet(seeded["good"])
    assert orchestrator.get_sync_status()["last_24_hours"]["total"] == 0


def test_full_sync_enqueues_one_job_per_entity(orchestrator, manager, audit, seeded):
    summary = orchestrator.enqueue_sync(SyncOptions(), actor="admin")

    assert summary.enqueued == 4
    assert summary.by_type == {
        payloads.SYNC_CLIENT: 1,
        payloads.SYNC_PROJECT: 1,
        payloads.SYNC_TIMESHEET: 2,
    }
    normal = manager.get_queue(NORMAL_QUEUE)
    assert normal.counts()["delayed"] == 2
    assert normal.counts()["waiting"] == 2
    assert SYNC_RUN in audit.actions()


def test_high_priority_sync_routes_to_high_priority_queue(orchestrator, manager, seeded):
    orchestrator.enqueue_sync(
        SyncOptions(sync_contacts=False, sync_projects=False, priority="high")
    )
    assert manager.get_queue(HIGH_PRIORITY_QUEUE).counts()["waiting"] == 2


def test_batch_size_enqueues_batch_jobs(orchestrator, manager, session_factory, seeded):
    add_submission(session_factory, seeded["project"], user_id="user-3")

    summary = orchestrator.enqueue_sync(
        SyncOptions(sync_contacts=False, sync_projects=False, batch_size=2)
    )

    assert summary.by_type == {payloads.BATCH_SYNC: 2}
    jobs = manager.get_queue(BATCH_QUEUE).list_jobs(["waiting"])
    assert sorted(len(j.payload["submission_ids"]) for j in jobs) == [1, 2]


def test_incremental_sync_uses_lookback_then_last_sync(session_factory, manager, ledger, seeded):
    now = datetime(2024, 3, 8, 12, 0, tzinfo=timezone.utc)
    orchestrator = SyncOrchestrator(session_factory, manager, ledger, clock=lambda: now)

    first = orchestrator.enqueue_sync(
        SyncOptions(sync_contacts=False, sync_projects=False), mode=MODE_INCREMENTAL
    )
    assert first.date_from == date(2024, 3, 1)
    assert first.date_to == date(2024, 3, 8)
    assert first.enqueued == 2
    assert orchestrator.get_last_sync_at() == now

    second = orchestrator.enqueue_sync(
        SyncOptions(sync_contacts=False, sync_projects=False), mode=MODE_INCREMENTAL
    )
    assert second.date_from == date(2024, 3, 8)
    assert second.enqueued == 0


def test_unknown_mode_rejected(orchestrator):
    with pytest.raises(ValueError):
        orchestrator.enqueue_sync(SyncOptions(), mode="weekly")


def test_readiness_report(orchestrator, session_factory, seeded):
    add_client(session_factory, name="")

    report = orchestrator.validate_readiness()

    assert report.contacts.valid == 1
    assert report.contacts.errors == 1
    assert report.projects.valid == 1
    assert report.time_entries.valid == 1
    assert report.time_entries.errors == 1
    assert report.time_entries.error_details[0]["errors"] == [
        "Time entry duration exceeds 24 hours"
    ]


def test_unapproved_timesheet_is_never_posted(orchestrator, session_factory, ledger, seeded):
    draft = add_submission(session_factory, seeded["project"], status="DRAFT", user_id="user-9")

    with pytest.raises(PayloadError, match="only APPROVED"):
        orchestrator.sync_timesheet(draft)
    batch = orchestrator.sync_batch([draft, seeded["good"]])

    assert [payload["submission_id"] for _, payload in ledger.posted] == [seeded["good"]]
    assert batch.failed == 1
    assert "only APPROVED" in batch.results[0].errors[0]


def test_inactive_client_and_archived_project_are_refused(orchestrator, session_factory, ledger):
    client_id = add_client(session_factory, is_active=False)
    project_id = add_project(session_factory, client_id=client_id, status="ARCHIVED")

    with pytest.raises(PayloadError, match="inactive"):
        orchestrator.sync_entity(KIND_CONTACT, client_id)
    with pytest.raises(PayloadError, match="ARCHIVED"):
        orchestrator.sync_entity(KIND_PROJECT, project_id)
    assert ledger.calls == 0


def test_synced_project_skipped_unless_overwriting(orchestrator, ledger, seeded, session_factory):
    first = orchestrator.sync_entity(KIND_PROJECT, seeded["project"])
    again = orchestrator.sync_entity(KIND_PROJECT, seeded["project"])

    assert again["already_synced"]
    assert again["invoice_id"] == first["invoice_id"]
    assert ledger.calls == 1
    with session_factory() as session:
        statuses = session.scalars(
            select(SyncLog.status).where(SyncLog.entity_id == seeded["project"]).order_by(SyncLog.id)
        ).all()
    assert statuses == ["SUCCESS", "SKIPPED"]

    forced = orchestrator.sync_entity(KIND_PROJECT, seeded["project"], overwrite_existing=True)

    assert not forced["already_synced"]
    assert ledger.calls == 2
    assert forced["invoice_id"] != first["invoice_id"]


def test_contact_override_does_not_waive_timesheet(orchestrator, overrides, ledger, seeded):
    overrides.create(
        entity_id=seeded["bad"],
        entity_type="CONTACT",
        rules=["duration_limit"],
        justification="Wrong entity",
        created_by="admin",
    )

    with pytest.raises(ValidationFailedError):
        orchestrator.sync_timesheet(seeded["bad"])
    assert ledger.calls == 0


def test_terminal_failures_are_quarantined_and_released(orchestrator, overrides, ledger, seeded):
    with pytest.raises(ValidationFailedError):
        orchestrator.sync_timesheet(seeded["bad"])
    ledger.rejected_for.add(seeded["good"])
    with pytest.raises(LedgerRejectedError):
        orchestrator.sync_timesheet(seeded["good"])

    records = {r.entity_id: r for r in orchestrator.quarantine.list_records().records}
    assert records[seeded["bad"]].reason == REASON_VALIDATION_FAILED
    assert records[seeded["bad"]].errors[0]["id"] == "duration_limit"
    assert records[seeded["good"]].reason == REASON_API_ERROR
    assert records[seeded["good"]].priority == "HIGH"

    ledger.rejected_for.clear()
    orchestrator.sync_timesheet(seeded["good"])

    released = orchestrator.quarantine.get(records[seeded["good"]].id)
    assert released.status == STATUS_RESOLVED
    assert orchestrator.quarantine.get(records[seeded["bad"]].id).status == STATUS_QUARANTINED


def test_transient_failures_are_not_quarantined(orchestrator, ledger, seeded):
    ledger.unavailable_for.add(seeded["good"])
    with pytest.raises(LedgerUnavailableError):
        orchestrator.sync_timesheet(seeded["good"])
    assert orchestrator.quarantine.list_records().total == 0
