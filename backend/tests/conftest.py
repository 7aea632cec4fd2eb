"""Shared fixtures: SQLite database, fake ledger, seeded entities, memory runtime."""

from __future__ import annotations

from datetime import date
from typing import Any
import uuid

import pytest

from ledger_sync.core.config import Settings
from ledger_sync.core.errors import LedgerRejectedError, LedgerUnavailableError
from ledger_sync.db.models import Client, Project, TimeEntry, TimesheetSubmission
from ledger_sync.db.session import build_engine, build_session_factory, create_tables
from ledger_sync.queueing.manager import QueueManager
from ledger_sync.queueing.metrics import MetricsMonitor
from ledger_sync.queueing.queue import default_queue_configs
from ledger_sync.queueing.registry import ProcessorRegistry
from ledger_sync.queueing.store import MemoryJobStore
from ledger_sync.runtime import build_runtime
from ledger_sync.services.audit import MemoryAuditStore
from ledger_sync.services.overrides import OverrideService
from ledger_sync.services.sync_orchestrator import SyncOrchestrator


class FakeLedger:
    """Records every call; individual entity ids can be made to fail."""

    def __init__(self) -> None:
        self.posted: list[tuple[str, dict[str, Any]]] = []
        self.calls = 0
        self.unavailable_for: set[str] = set()
        self.rejected_for: set[str] = set()
        self.connected = True

    def post_entry(self, payload: dict[str, Any], kind: str = "timesheet") -> dict[str, Any]:
        self.calls += 1
        source_id = payload.get("source_id") or payload.get("submission_id")
        if source_id in self.unavailable_for:
            raise LedgerUnavailableError("Ledger unavailable: HTTP 503", status_code=503)
        if source_id in self.rejected_for:
            raise LedgerRejectedError("Ledger rejected request: HTTP 400", status_code=400)
        self.posted.append((kind, payload))
        return {"invoice_id": f"INV-{len(self.posted)}"}

    def get_connection_status(self) -> dict[str, Any]:
        self.calls += 1
        if self.connected:
            return {"connected": True}
        return {"connected": False, "error": "Ledger request failed"}

    def get_organization_info(self) -> dict[str, Any]:
        self.calls += 1
        return {"name": "Test Org"}


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'ledger_sync.db'}")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def audit():
    return MemoryAuditStore()


@pytest.fixture
def manager(audit):
    """Queue manager over a memory store; worker pools are not started."""
    return QueueManager(
        MemoryJobStore(),
        ProcessorRegistry(),
        default_queue_configs(),
        audit=audit,
        metrics=MetricsMonitor(poll_interval=60),
        idle_poll=0.01,
    )


@pytest.fixture
def overrides(session_factory, audit):
    return OverrideService(session_factory, audit)


@pytest.fixture
def orchestrator(session_factory, manager, ledger, overrides, audit):
    return SyncOrchestrator(session_factory, manager, ledger, overrides=overrides, audit=audit)


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'api.db'}",
        queue_backend="memory",
        start_workers=False,
        metrics_poll_interval=60,
        shutdown_timeout=2,
        worker_idle_poll=0.01,
        bulk_delay_between_batches=0,
    )


@pytest.fixture
def runtime(test_settings, ledger, audit):
    runtime = build_runtime(test_settings, ledger=ledger, audit=audit)
    yield runtime
    runtime.stop()


def add_client(session_factory, **fields) -> str:
    values = {"name": "Acme Corp", "email": "billing@acme.test", "is_active": True}
    values.update(fields)
    with session_factory() as session:
        client = Client(**values)
        session.add(client)
        session.commit()
        return client.id


def add_project(session_factory, client_id: str | None = None, **fields) -> str:
    values = {
        "name": "Website Rebuild",
        "code": f"PRJ-{uuid.uuid4().hex[:6].upper()}",
        "status": "ACTIVE",
        "client_id": client_id,
        "default_bill_rate": 120.0,
    }
    values.update(fields)
    with session_factory() as session:
        project = Project(**values)
        session.add(project)
        session.commit()
        return project.id


def add_submission(
    session_factory,
    project_id: str,
    *,
    status: str = "APPROVED",
    week_start: date = date(2024, 3, 4),
    user_id: str = "user-1",
    entries: list[dict[str, Any]] | None = None,
) -> str:
    """Create a submission; each entry dict overrides the valid defaults."""
    with session_factory() as session:
        submission = TimesheetSubmission(
            user_id=user_id,
            user_email=f"{user_id}@example.com",
            week_start_date=week_start,
            status=status,
        )
        session.add(submission)
        session.flush()
        for overrides in entries if entries is not None else [{}]:
            values = {
                "submission_id": submission.id,
                "project_id": project_id,
                "user_id": user_id,
                "task_name": "Development",
                "description": "Feature work",
                "duration": 7.5,
                "date": week_start,
                "billable": True,
                "bill_rate": None,
            }
            values.update(overrides)
            session.add(TimeEntry(**values))
        session.commit()
        return submission.id
