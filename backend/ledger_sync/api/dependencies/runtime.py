"""Runtime dependency: the services built once at application startup."""

from fastapi import Request

from ledger_sync.runtime import Runtime


def get_runtime(request: Request) -> Runtime:
    """FastAPI dependency returning the runtime stored on the app state."""
    return request.app.state.runtime
