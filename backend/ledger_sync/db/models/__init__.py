"""Database models package."""
from ledger_sync.db.models.audit_log import AuditLog
from ledger_sync.db.models.bulk_job import BulkJob
from ledger_sync.db.models.client import Client
from ledger_sync.db.models.ledger_connection import LedgerConnection
from ledger_sync.db.models.project import Project
from ledger_sync.db.models.quarantine_record import QuarantineRecord
from ledger_sync.db.models.sync_log import SyncLog
from ledger_sync.db.models.timesheet import TimeEntry, TimesheetSubmission
from ledger_sync.db.models.validation_override import ValidationOverride

__all__ = [
    "AuditLog",
    "BulkJob",
    "Client",
    "LedgerConnection",
    "Project",
    "QuarantineRecord",
    "SyncLog",
    "TimeEntry",
    "TimesheetSubmission",
    "ValidationOverride",
]
