"""Map local entities onto the ledger's payload shapes."""

from __future__ import annotations

from typing import Any

from ledger_sync.db.models.client import Client
from ledger_sync.db.models.project import Project
from ledger_sync.db.models.timesheet import TimeEntry, TimesheetSubmission
from ledger_sync.services.validation_engine import (
    KIND_CONTACT,
    KIND_PROJECT,
    KIND_TIME_ENTRY,
    KIND_TIMESHEET,
)

PROJECT_STATUS_MAP = {
    "ACTIVE": "inProgress",
    "PLANNING": "inProgress",
    "COMPLETED": "completed",
    "ON_HOLD": "quote",
    "CANCELLED": "quote",
}


def entity_kind(entity: Any) -> str:
    if isinstance(entity, TimesheetSubmission):
        return KIND_TIMESHEET
    if isinstance(entity, TimeEntry):
        return KIND_TIME_ENTRY
    if isinstance(entity, Project):
        return KIND_PROJECT
    if isinstance(entity, Client):
        return KIND_CONTACT
    raise TypeError(f"Cannot transform {type(entity).__name__}")


class LedgerTransformer:
    """Builds ledger payload dicts; never talks to the ledger itself."""

    def transform(self, entity: Any) -> dict[str, Any]:
        kind = entity_kind(entity)
        if kind == KIND_TIMESHEET:
            return self.transform_timesheet(entity)
        if kind == KIND_TIME_ENTRY:
            return self.transform_time_entry(entity)
        if kind == KIND_PROJECT:
            return self.transform_project(entity)
        return self.transform_contact(entity)

    def transform_timesheet(self, submission: TimesheetSubmission) -> dict[str, Any]:
        return {
            "submission_id": submission.id,
            "user_id": submission.user_email or submission.user_id,
            "week_start": submission.week_start_date.isoformat(),
            "entries": [
                self.transform_time_entry(entry, user_ref=submission.user_email)
                for entry in submission.entries
            ],
        }

    def transform_time_entry(
        self, entry: TimeEntry, user_ref: str | None = None
    ) -> dict[str, Any]:
        project = entry.project
        rate = entry.bill_rate or (project.default_bill_rate if project else None)
        description = entry.description
        if not description and project is not None:
            description = project.name + (f" - {entry.task_name}" if entry.task_name else "")
        return {
            "source_id": entry.id,
            "user_id": user_ref or entry.user_id,
            "project_code": project.code if project else None,
            "task_name": entry.task_name,
            "description": description,
            "duration": round(entry.duration * 60),  # hours -> minutes
            "date_utc": f"{entry.date.isoformat()}T00:00:00Z",
            "billable_status": "billable" if entry.billable else "non-billable",
            "unit_amount": rate,
            "total_amount": round(rate * entry.duration, 2) if entry.billable and rate else None,
        }

    def transform_project(self, project: Project) -> dict[str, Any]:
        return {
            "source_id": project.id,
            "name": project.name,
            "code": project.code,
            "status": PROJECT_STATUS_MAP.get(project.status, "inProgress"),
            "contact_name": project.client.name if project.client else None,
            "description": project.description,
            "budget_amount": project.budget,
            "charge_rate": project.default_bill_rate,
            "start_date": project.start_date.isoformat() if project.start_date else None,
            "end_date": project.end_date.isoformat() if project.end_date else None,
        }

    def transform_contact(self, client: Client) -> dict[str, Any]:
        return {
            "source_id": client.id,
            "name": client.name,
            "email_address": client.email,
            "phone": client.phone,
            "website": client.website,
            "address": client.address,
            "is_customer": True,
        }
