"""Exception taxonomy shared by the queue engine and the sync services."""

from __future__ import annotations


class LedgerSyncError(Exception):
    """Base class for pipeline errors."""


class TransientError(LedgerSyncError):
    """Failure that may succeed on a later attempt; retried per queue policy."""


class LedgerUnavailableError(TransientError):
    """Ledger timed out, refused the connection or answered 429/5xx."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class QueueBackendError(TransientError):
    """The queue backing store could not be reached."""


class FatalJobError(LedgerSyncError):
    """Failure that no retry can fix; the job fails immediately."""


class PayloadError(FatalJobError):
    """Job payload is missing required fields or has the wrong shape."""


class UnknownJobTypeError(FatalJobError):
    """No processor is registered for the job type on this queue."""


class LedgerRejectedError(LedgerSyncError):
    """Ledger refused the entry (4xx other than 429)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ValidationFailedError(LedgerSyncError):
    """Entity failed business validation and no override waived it."""

    def __init__(self, message: str, error_ids: list[str] | None = None):
        super().__init__(message)
        self.error_ids = error_ids or []


class QueueNotFoundError(LedgerSyncError):
    """Named queue does not exist."""


class BulkJobNotFoundError(LedgerSyncError):
    """Bulk job id is unknown."""


class OverrideNotFoundError(LedgerSyncError):
    """Validation override id is unknown."""


class QuarantineNotFoundError(LedgerSyncError):
    """Quarantine record id is unknown."""
