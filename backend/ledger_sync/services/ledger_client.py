"""HTTP client for the external accounting ledger."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from ledger_sync.core.errors import LedgerRejectedError, LedgerUnavailableError
from ledger_sync.services.validation_engine import (
    KIND_CONTACT,
    KIND_PROJECT,
    KIND_TIMESHEET,
)

logger = logging.getLogger(__name__)

ENDPOINTS = {
    KIND_TIMESHEET: "/time-entries",
    KIND_PROJECT: "/projects",
    KIND_CONTACT: "/contacts",
}


class LedgerClient:
    """Thin wrapper over httpx that maps transport failures onto our error taxonomy.

    Timeouts, connection errors, 429 and 5xx are transient
    (``LedgerUnavailableError``); any other 4xx is a permanent refusal
    (``LedgerRejectedError``).
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "Ledger-Sync-Pipeline/1.0",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def post_entry(self, payload: dict[str, Any], kind: str = KIND_TIMESHEET) -> dict[str, Any]:
        """Create the entry in the ledger and return ``{"invoice_id": ...}``."""
        data = self._request("POST", ENDPOINTS[kind], json=payload)
        invoice_id = data.get("invoice_id") or data.get("id")
        if not invoice_id:
            raise LedgerRejectedError(f"Ledger accepted {kind} entry but returned no id")
        return {"invoice_id": str(invoice_id)}

    def get_connection_status(self) -> dict[str, Any]:
        try:
            self._request("GET", "/connection")
        except (LedgerUnavailableError, LedgerRejectedError) as exc:
            return {"connected": False, "error": str(exc)}
        return {"connected": True}

    def get_organization_info(self) -> dict[str, Any]:
        return self._request("GET", "/organisation")

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        start_time = time.time()
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"Ledger {method} {path} timed out: {e}")
            raise LedgerUnavailableError(f"Ledger request timed out: {e}") from e
        except httpx.RequestError as e:
            logger.warning(f"Ledger {method} {path} request error: {e}")
            raise LedgerUnavailableError(f"Ledger request failed: {e}") from e

        elapsed_ms = int((time.time() - start_time) * 1000)
        status = response.status_code
        logger.debug(f"Ledger {method} {path}: status={status}, time={elapsed_ms}ms")

        if status == 429 or status >= 500:
            raise LedgerUnavailableError(
                f"Ledger unavailable: HTTP {status}: {response.text[:200]}", status_code=status
            )
        if status >= 400:
            raise LedgerRejectedError(
                f"Ledger rejected request: HTTP {status}: {response.text[:200]}",
                status_code=status,
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise LedgerRejectedError(f"Ledger returned invalid JSON: {e}") from e
