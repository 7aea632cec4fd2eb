"""Shared mapping from pipeline errors to HTTP responses."""
from __future__ import annotations

import logging

from fastapi import HTTPException, status

from ledger_sync.core.errors import (
    BulkJobNotFoundError,
    FatalJobError,
    OverrideNotFoundError,
    QuarantineNotFoundError,
    QueueNotFoundError,
    TransientError,
)

logger = logging.getLogger(__name__)

NOT_FOUND_ERRORS = (
    QueueNotFoundError,
    BulkJobNotFoundError,
    OverrideNotFoundError,
    QuarantineNotFoundError,
)


def to_http_exception(exc: Exception, action: str) -> HTTPException:
    """Translate a service error raised while performing ``action``."""
    if isinstance(exc, HTTPException):
        return exc
    if isinstance(exc, NOT_FOUND_ERRORS):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (FatalJobError, ValueError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, TransientError):
        logger.warning(f"Backend unavailable while trying to {action}: {exc}")
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    logger.error(f"Unexpected error while trying to {action}: {exc}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )
