"""FastAPI application bootstrap and router wiring."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
import uvicorn

from ledger_sync.api.routers import (
    bulk_jobs,
    error_recovery,
    health,
    overrides,
    quarantine,
    queues,
    sync,
)
from ledger_sync.core.config import get_settings
from ledger_sync.core.logging import configure_logging
from ledger_sync.runtime import Runtime, build_runtime

logger = logging.getLogger(__name__)


def create_app(runtime: Runtime | None = None) -> FastAPI:
    """Instantiate the FastAPI app and include top-level routers.

    The runtime (queues, workers, services) is built at startup unless one is
    injected, and shut down gracefully when the application stops.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        active = runtime or build_runtime()
        configure_logging(active.settings.log_level)
        active.start()
        app.state.runtime = active
        logger.info(f"{active.settings.app_name} started")
        try:
            yield
        finally:
            report = active.stop()
            logger.info(
                f"{active.settings.app_name} stopped (drained={report.drained}, "
                f"elapsed={report.elapsed:.2f}s)"
            )

    settings = get_settings()
    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)

    app.include_router(health.router)
    app.include_router(queues.router, prefix="/api/queues", tags=["queues"])
    app.include_router(sync.router, prefix="/api/sync", tags=["sync"])
    app.include_router(bulk_jobs.router, prefix="/api/bulk-jobs", tags=["bulk-jobs"])
    app.include_router(
        overrides.router, prefix="/api/validation-overrides", tags=["validation-overrides"]
    )
    app.include_router(quarantine.router, prefix="/api/quarantine", tags=["quarantine"])
    app.include_router(
        error_recovery.router, prefix="/api/error-recovery", tags=["error-recovery"]
    )

    return app


app = create_app()


def serve() -> None:
    """Run the API under uvicorn on the configured host and port."""
    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(
        "ledger_sync.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    serve()
