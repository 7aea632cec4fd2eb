"""Simple health and readiness endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ledger_sync.api.dependencies.runtime import get_runtime
from ledger_sync.core.errors import QueueBackendError
from ledger_sync.runtime import Runtime

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live", summary="Liveness check")
async def live() -> dict[str, str]:
    """Indicates API process is running.

    Used by orchestration systems (Kubernetes, Docker, etc.) to determine
    if the container/process should be restarted.
    """
    return {"status": "ok", "service": "ledger-sync-api"}


@router.get("/ready", summary="Readiness check")
async def ready(runtime: Runtime = Depends(get_runtime)) -> dict[str, Any]:
    """Check readiness of dependencies (database, queue store, queue health).

    Returns detailed status of all critical dependencies:
    - Database connectivity
    - Queue store connectivity (Redis or in-memory)
    - Queue manager running and no queue unhealthy

    Used by load balancers to determine if traffic should be routed to this instance.
    """
    checks: dict[str, Any] = {
        "status": "ok",
        "service": "ledger-sync-api",
        "checks": {},
    }
    all_healthy = True

    try:
        with runtime.engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        checks["checks"]["database"] = {
            "status": "healthy",
            "message": "Database connection successful",
        }
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        checks["checks"]["database"] = {
            "status": "unhealthy",
            "message": f"Database connection failed: {str(e)}",
        }
        all_healthy = False

    try:
        runtime.store.ping()
        checks["checks"]["queue_store"] = {
            "status": "healthy",
            "message": f"{type(runtime.store).__name__} reachable",
        }
    except QueueBackendError as e:
        logger.error(f"Queue store health check failed: {e}", exc_info=True)
        checks["checks"]["queue_store"] = {
            "status": "unhealthy",
            "message": f"Queue store connection failed: {str(e)}",
        }
        all_healthy = False

    queue_status = runtime.queues.get_status()
    checks["checks"]["queues"] = {
        "status": "healthy" if queue_status["healthy"] else "unhealthy",
        "running": queue_status["running"],
        "health": {
            name: snapshot.health.value
            for name, snapshot in runtime.queues.metrics.snapshots().items()
        },
    }
    if not queue_status["healthy"]:
        all_healthy = False

    if not all_healthy:
        checks["status"] = "unhealthy"
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=checks,
        )

    return checks
