"""Validation override endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, status

from ledger_sync.api.dependencies.runtime import get_runtime
from ledger_sync.api.routers.error_mapping import to_http_exception
from ledger_sync.api.schemas.override import OverrideCreate, OverrideRead
from ledger_sync.runtime import Runtime

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/", summary="List validation overrides", response_model=list[OverrideRead])
async def list_overrides(
    entity_id: str | None = Query(None),
    status: str | None = Query(None, description="ACTIVE, EXPIRED or REVOKED"),
    limit: int = Query(100, ge=1, le=500),
    runtime: Runtime = Depends(get_runtime),
) -> list[OverrideRead]:
    try:
        overrides = runtime.overrides.list_overrides(entity_id=entity_id, status=status, limit=limit)
    except Exception as e:
        raise to_http_exception(e, "list validation overrides") from e
    return [OverrideRead.model_validate(o) for o in overrides]


@router.post(
    "/",
    summary="Waive validation rules for one entity",
    status_code=status.HTTP_201_CREATED,
    response_model=OverrideRead,
)
async def create_override(
    payload: OverrideCreate,
    runtime: Runtime = Depends(get_runtime),
) -> OverrideRead:
    """The entity syncs only if the waived rules cover every failing rule."""
    try:
        override = runtime.overrides.create(
            entity_id=payload.entity_id,
            entity_type=payload.entity_type,
            rules=payload.rules,
            justification=payload.justification,
            created_by=payload.created_by,
            expires_at=payload.expires_at,
        )
    except Exception as e:
        raise to_http_exception(e, "create validation override") from e
    return OverrideRead.model_validate(override)


@router.delete("/{override_id}", summary="Revoke an override", response_model=OverrideRead)
async def revoke_override(
    override_id: str,
    revoked_by: str = Query("system"),
    runtime: Runtime = Depends(get_runtime),
) -> OverrideRead:
    try:
        override = runtime.overrides.revoke(override_id, revoked_by)
    except Exception as e:
        raise to_http_exception(e, f"revoke override {override_id}") from e
    return OverrideRead.model_validate(override)
