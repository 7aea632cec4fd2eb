"""HTTP surface exercised through FastAPI's TestClient over a memory runtime."""

import time

from fastapi.testclient import TestClient
import pytest
from conftest import add_client, add_project, add_submission

from ledger_sync import main
from ledger_sync.core.errors import QueueBackendError
from ledger_sync.main import create_app
from ledger_sync.queueing import payloads
from ledger_sync.queueing.models import JobState
from ledger_sync.queueing.queue import HIGH_PRIORITY_QUEUE, NORMAL_QUEUE
from ledger_sync.services.audit import JOBS_REMOVED, JOBS_RETRIED


@pytest.fixture
def client(runtime):
    with TestClient(create_app(runtime)) as test_client:
        yield test_client


def seed(runtime):
    client_id = add_client(runtime.session_factory)
    project_id = add_project(runtime.session_factory, client_id=client_id)
    good = add_submission(runtime.session_factory, project_id, user_id="user-1")
    bad = add_submission(runtime.session_factory, project_id, user_id="user-2", entries=[{"duration": 30}])
    return good, bad


def test_liveness(client):
    assert client.get("/health/live").json()["status"] == "ok"


def test_readiness_check(client, runtime, monkeypatch):
    body = client.get("/health/ready").json()
    assert body["status"] == "ok"
    assert body["checks"]["queue_store"]["status"] == "healthy"

    def down():
        raise QueueBackendError("connection refused")

    monkeypatch.setattr(runtime.store, "ping", down)
    response = client.get("/health/ready")
    assert response.status_code == 503
    assert response.json()["detail"]["checks"]["queue_store"]["status"] == "unhealthy"


def test_queue_status_and_metrics(client):
    status = client.get("/api/queues/status").json()
    assert status["running"] is True
    assert HIGH_PRIORITY_QUEUE in status["queue_names"]

    metrics = client.get("/api/queues/metrics").json()
    assert len(metrics) == 3
    one = client.get("/api/queues/metrics", params={"queue": NORMAL_QUEUE}).json()
    assert [m["queue_name"] for m in one] == [NORMAL_QUEUE]
    assert client.get("/api/queues/metrics", params={"queue": "nope"}).status_code == 404


def test_enqueue_and_fetch_job(client):
    response = client.post(
        f"/api/queues/{NORMAL_QUEUE}/jobs",
        json={"type": payloads.SYNC_PROJECT, "payload": {"entity_id": "p-1"}, "attempts": 2},
    )
    assert response.status_code == 201
    job = response.json()
    assert job["max_attempts"] == 2
    assert job["state"] == "waiting"

    fetched = client.get(f"/api/queues/{NORMAL_QUEUE}/jobs/{job['id']}").json()
    assert fetched["payload"] == {"entity_id": "p-1"}
    listed = client.get(f"/api/queues/{NORMAL_QUEUE}/jobs").json()
    assert [j["id"] for j in listed] == [job["id"]]
    assert client.get(f"/api/queues/{NORMAL_QUEUE}/jobs/missing").status_code == 404


def test_enqueue_rejects_unaccepted_job_type(client):
    response = client.post(
        f"/api/queues/{NORMAL_QUEUE}/jobs", json={"type": payloads.CLEANUP, "payload": {}}
    )
    assert response.status_code == 400


def test_unknown_queue_is_404(client):
    assert client.post("/api/queues/nope/pause").status_code == 404


def test_pause_resume_and_clear(client, runtime):
    assert client.post(f"/api/queues/{NORMAL_QUEUE}/pause", params={"actor": "ops"}).json()["action"] == "paused"
    assert runtime.queues.get_queue(NORMAL_QUEUE).is_paused()
    client.post(f"/api/queues/{NORMAL_QUEUE}/resume")
    assert not runtime.queues.get_queue(NORMAL_QUEUE).is_paused()

    runtime.queues.enqueue_timesheet_sync("s-1")
    runtime.queues.enqueue_timesheet_sync("s-2")
    cleared = client.post(
        f"/api/queues/{NORMAL_QUEUE}/clear", json={"job_types": [payloads.SYNC_TIMESHEET]}
    ).json()
    assert cleared["affected"] == 2


def test_remove_requires_job_ids(client):
    assert client.post(f"/api/queues/{NORMAL_QUEUE}/remove", json={}).status_code == 400


def test_retry_and_remove_are_audited(client, runtime, audit):
    job = runtime.queues.enqueue_entity_sync(payloads.SYNC_PROJECT, "p-1")
    later = time.time() + 60
    runtime.store.claim(NORMAL_QUEUE, "tok", later)
    runtime.store.fail(NORMAL_QUEUE, job.id, "tok", later, "Ledger rejected request: HTTP 400")

    retried = client.post(
        f"/api/queues/{NORMAL_QUEUE}/retry", params={"actor": "ops"}, json={"job_ids": [job.id]}
    ).json()
    assert retried["affected"] == 1
    assert runtime.queues.get_queue(NORMAL_QUEUE).get_job(job.id).state is JobState.WAITING

    removed = client.post(
        f"/api/queues/{NORMAL_QUEUE}/remove",
        params={"actor": "ops"},
        json={"job_ids": [job.id, "missing"]},
    ).json()
    assert removed["affected"] == 1

    queue_entries = [e for e in audit.entries if e.entity_id == NORMAL_QUEUE]
    assert [(e.action, e.actor, e.outcome) for e in queue_entries] == [
        (JOBS_RETRIED, "ops", {"job_ids": [job.id], "retried": 1}),
        (JOBS_REMOVED, "ops", {"job_ids": [job.id, "missing"], "removed": 1}),
    ]


def test_dry_run_sync(client, runtime, ledger):
    seed(runtime)
    body = client.post("/api/sync/", json={"dry_run": True}).json()
    assert body["dry_run"] is True
    assert body["total"] == 4
    assert body["errors"] == 1
    assert ledger.calls == 0


def test_full_sync_enqueues_jobs(client, runtime):
    seed(runtime)
    body = client.post("/api/sync/", json={"requested_by": "admin"}).json()
    assert body["mode"] == "full"
    assert body["enqueued"] == 4


def test_manual_sync_reports_items(client, runtime):
    good, bad = seed(runtime)
    body = client.post("/api/sync/manual", json={"requested_by": "admin"}).json()
    assert body["processed"] == 2
    assert body["successful"] == 1
    assert body["failed"] == 1
    failed = [r for r in body["results"] if r["status"] == "error"]
    assert failed[0]["entity_id"] == bad

    status = client.get("/api/sync/status").json()
    assert status["last_24_hours"]["total"] == 2


def test_readiness_endpoint(client, runtime):
    seed(runtime)
    body = client.post("/api/sync/validate", json={}).json()
    assert body["time_entries"]["valid"] == 1
    assert body["time_entries"]["errors"] == 1
    assert body["ledger_connection"] == {"connected": True}
    assert body["level"] in ("excellent", "good", "fair", "poor", "not_ready")


def test_override_lifecycle(client, runtime):
    _, bad = seed(runtime)
    created = client.post(
        "/api/validation-overrides/",
        json={
            "entity_id": bad,
            "entity_type": "TIMESHEET",
            "rules": ["duration_limit"],
            "justification": "Overnight migration",
            "created_by": "admin",
        },
    )
    assert created.status_code == 201
    override_id = created.json()["id"]

    body = client.post("/api/sync/manual", json={"submission_ids": [bad]}).json()
    assert body["overrides"] == 1

    listed = client.get("/api/validation-overrides/", params={"entity_id": bad}).json()
    assert [o["id"] for o in listed] == [override_id]

    revoked = client.delete(f"/api/validation-overrides/{override_id}", params={"revoked_by": "lead"})
    assert revoked.json()["status"] == "REVOKED"
    assert client.delete("/api/validation-overrides/missing").status_code == 404


def test_override_requires_rules(client):
    response = client.post(
        "/api/validation-overrides/",
        json={
            "entity_id": "s-1",
            "entity_type": "TIMESHEET",
            "rules": [],
            "justification": "x",
            "created_by": "admin",
        },
    )
    assert response.status_code == 422


def test_bulk_job_lifecycle(client):
    response = client.post(
        "/api/bulk-jobs/",
        json={
            "operation_type": "reprocess_specific",
            "filters": {"submission_ids": ["s-1", "s-2"]},
            "options": {"delay_between_batches": 0},
            "requested_by": "admin",
        },
    )
    assert response.status_code == 202
    job_id = response.json()["id"]

    deadline = time.monotonic() + 5
    status = {}
    while time.monotonic() < deadline:
        status = client.get(f"/api/bulk-jobs/{job_id}").json()
        if status["status"] == "completed":
            break
        time.sleep(0.02)
    assert status["status"] == "completed"
    assert status["success_count"] == 2
    assert status["created_by"] == "admin"

    assert [j["id"] for j in client.get("/api/bulk-jobs/").json()] == [job_id]
    # Finished jobs can no longer be cancelled
    assert client.delete(f"/api/bulk-jobs/{job_id}").status_code == 400
    assert client.get("/api/bulk-jobs/missing").status_code == 404


def test_bulk_job_validation(client):
    missing_ids = client.post("/api/bulk-jobs/", json={"operation_type": "reprocess_specific"})
    assert missing_ids.status_code == 400
    bad_type = client.post("/api/bulk-jobs/", json={"operation_type": "delete_everything"})
    assert bad_type.status_code == 422
    unknown_queue = client.post(
        "/api/bulk-jobs/",
        json={"operation_type": "clear_queue", "filters": {"queue_names": ["nope"]}},
    )
    assert unknown_queue.status_code == 404


def test_serve_runs_uvicorn_with_configured_address(monkeypatch, test_settings):
    settings = test_settings.model_copy(
        update={"api_host": "127.0.0.1", "api_port": 9001, "log_level": "DEBUG"}
    )
    calls = []
    monkeypatch.setattr(main, "get_settings", lambda: settings)
    monkeypatch.setattr(main, "configure_logging", lambda level: None)
    monkeypatch.setattr(main.uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))

    main.serve()

    assert calls == [
        ("ledger_sync.main:app", {"host": "127.0.0.1", "port": 9001, "log_level": "debug"})
    ]


def test_quarantine_review_flow(client, runtime):
    _, bad = seed(runtime)
    client.post("/api/sync/manual", json={"submission_ids": [bad]})

    listed = client.get("/api/quarantine/", params={"entity_type": "TIMESHEET,PROJECT"}).json()
    assert listed["total"] == 1
    record = listed["records"][0]
    assert (record["entity_id"], record["reason"], record["status"]) == (
        bad,
        "VALIDATION_FAILED",
        "QUARANTINED",
    )
    assert client.get(f"/api/quarantine/{record['id']}").json()["errors"][0]["id"] == "duration_limit"

    reviewed = client.patch(
        f"/api/quarantine/{record['id']}",
        json={"status": "REJECTED", "resolution_notes": "Duplicate timesheet", "reviewed_by": "lead"},
    ).json()
    assert reviewed["status"] == "REJECTED"
    assert reviewed["reviewed_at"] is not None

    stats = client.get("/api/quarantine/stats").json()
    assert stats["total"] == 1
    assert stats["by_status"]["REJECTED"] == 1
    assert stats["resolution_rate"] == 0.0


def test_manual_quarantine_and_bulk_update(client):
    created = client.post(
        "/api/quarantine/",
        json={
            "entity_type": "PROJECT",
            "entity_id": "p-1",
            "notes": "Budget under dispute",
            "priority": "HIGH",
            "quarantined_by": "lead",
        },
    )
    assert created.status_code == 201
    body = created.json()
    assert body["reason"] == "MANUAL_QUARANTINE"
    assert body["priority"] == "HIGH"
    assert body["errors"][0]["message"] == "Budget under dispute"

    result = client.patch(
        "/api/quarantine/bulk",
        json={"record_ids": [body["id"], "missing"], "status": "UNDER_REVIEW", "reviewed_by": "lead"},
    ).json()
    assert result["updated"] == 1
    assert len(result["errors"]) == 1
    under_review = client.get("/api/quarantine/", params={"status": "UNDER_REVIEW"}).json()
    assert [r["id"] for r in under_review["records"]] == [body["id"]]


def test_quarantine_errors_map_to_http(client):
    assert client.get("/api/quarantine/missing").status_code == 404
    not_found = client.patch(
        "/api/quarantine/missing",
        json={"status": "RESOLVED", "resolution_notes": "Fixed"},
    )
    assert not_found.status_code == 404
    bad_status = client.patch(
        "/api/quarantine/missing",
        json={"status": "QUARANTINED", "resolution_notes": "Fixed"},
    )
    assert bad_status.status_code == 422
    empty = client.patch("/api/quarantine/bulk", json={"record_ids": [], "status": "RESOLVED"})
    assert empty.status_code == 422


def test_error_recovery_endpoint(client, runtime):
    _, bad = seed(runtime)
    client.post("/api/sync/manual", json={"submission_ids": [bad]})

    blocked = client.post("/api/error-recovery/", json={"dry_run": True}).json()
    assert blocked["examined"] == 1
    assert blocked["recovered"] == 0
    assert blocked["results"][0]["problems"] == ["Time entry duration exceeds 24 hours"]

    client.post(
        "/api/validation-overrides/",
        json={
            "entity_id": bad,
            "entity_type": "TIMESHEET",
            "rules": ["duration_limit"],
            "justification": "Overnight migration",
            "created_by": "admin",
        },
    )
    recovered = client.post("/api/error-recovery/", json={"requested_by": "admin"}).json()
    assert recovered["success"] is True
    assert recovered["recovered"] == 1
    job_id = recovered["results"][0]["job_id"]
    assert client.get(f"/api/queues/{HIGH_PRIORITY_QUEUE}/jobs/{job_id}").status_code == 200

    assert client.post("/api/error-recovery/", json={"max_records": 0}).status_code == 422
