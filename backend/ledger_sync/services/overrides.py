"""Validation overrides: admin waivers for specific failing rules."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
import logging

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, sessionmaker

from ledger_sync.core.errors import OverrideNotFoundError
from ledger_sync.db.models.validation_override import ValidationOverride
from ledger_sync.services.audit import (
    OVERRIDE_CREATED,
    OVERRIDE_REVOKED,
    AuditEntry,
    AuditStore,
)
from ledger_sync.utils.dates import utcnow

logger = logging.getLogger(__name__)

STATUS_ACTIVE = "ACTIVE"
STATUS_EXPIRED = "EXPIRED"
STATUS_REVOKED = "REVOKED"


@dataclass
class OverrideDecision:
    covered: bool
    covered_rules: set[str] = field(default_factory=set)
    missing_rules: set[str] = field(default_factory=set)
    override_ids: list[str] = field(default_factory=list)


def covers(rules: Iterable[str], error_ids: Iterable[str]) -> bool:
    """True only when every failing error id is in the waived rule set."""
    error_ids = set(error_ids)
    return bool(error_ids) and error_ids <= set(rules)


class OverrideService:
    def __init__(
        self, session_factory: sessionmaker[Session], audit: AuditStore | None = None
    ) -> None:
        self._session_factory = session_factory
        self._audit = audit

    def create(
        self,
        *,
        entity_id: str,
        entity_type: str,
        rules: list[str],
        justification: str,
        created_by: str,
        expires_at: datetime | None = None,
    ) -> ValidationOverride:
        if not rules:
            raise ValueError("An override must name at least one rule")
        if not justification.strip():
            raise ValueError("An override needs a justification")

        entity_type = entity_type.upper()
        with self._session_factory() as session:
            override = ValidationOverride(
                entity_id=entity_id,
                entity_type=entity_type,
                overridden_rules=sorted(set(rules)),
                status=STATUS_ACTIVE,
                justification=justification,
                expires_at=expires_at,
                created_by=created_by,
            )
            session.add(override)
            session.commit()
            session.refresh(override)

        logger.info(f"Override {override.id} created for {entity_type} {entity_id} by {created_by}")
        self._append(
            AuditEntry(
                action=OVERRIDE_CREATED,
                entity_type=entity_type,
                entity_id=entity_id,
                actor=created_by,
                outcome={
                    "override_id": override.id,
                    "rules": override.overridden_rules,
                    "expires_at": expires_at.isoformat() if expires_at else None,
                    "justification": justification,
                },
            )
        )
        return override

    def revoke(self, override_id: str, revoked_by: str) -> ValidationOverride:
        with self._session_factory() as session:
            override = session.get(ValidationOverride, override_id)
            if override is None:
                raise OverrideNotFoundError(f"Validation override {override_id} not found")
            override.status = STATUS_REVOKED
            override.revoked_at = utcnow()
            override.revoked_by = revoked_by
            session.commit()
            session.refresh(override)

        self._append(
            AuditEntry(
                action=OVERRIDE_REVOKED,
                entity_type=override.entity_type,
                entity_id=override.entity_id,
                actor=revoked_by,
                outcome={"override_id": override_id},
            )
        )
        return override

    def list_overrides(
        self, entity_id: str | None = None, status: str | None = None, limit: int = 100
    ) -> list[ValidationOverride]:
        with self._session_factory() as session:
            query = select(ValidationOverride)
            if entity_id:
                query = query.where(ValidationOverride.entity_id == entity_id)
            if status:
                query = query.where(ValidationOverride.status == status)
            query = query.order_by(ValidationOverride.created_at.desc()).limit(limit)
            return list(session.scalars(query).all())

    def active_rules(
        self, entity_id: str, now: datetime | None = None, entity_type: str | None = None
    ) -> tuple[set[str], list[str]]:
        """Union of rule ids from active, unexpired overrides, plus their ids.

        With ``entity_type`` only overrides recorded for that type count, so a
        contact override never waives a timesheet that happens to share its id.
        """
        now = now or utcnow()
        query = select(ValidationOverride).where(
            ValidationOverride.entity_id == entity_id,
            ValidationOverride.status == STATUS_ACTIVE,
            or_(
                ValidationOverride.expires_at.is_(None),
                ValidationOverride.expires_at > now,
            ),
        )
        if entity_type:
            query = query.where(ValidationOverride.entity_type == entity_type.upper())
        with self._session_factory() as session:
            overrides = session.scalars(query).all()
        rules: set[str] = set()
        for override in overrides:
            rules.update(override.overridden_rules or [])
        return rules, [o.id for o in overrides]

    def check(
        self, entity_id: str, error_ids: Iterable[str], entity_type: str | None = None
    ) -> OverrideDecision:
        error_ids = set(error_ids)
        rules, override_ids = self.active_rules(entity_id, entity_type=entity_type)
        covered = error_ids & rules
        return OverrideDecision(
            covered=covers(rules, error_ids),
            covered_rules=covered,
            missing_rules=error_ids - rules,
            override_ids=override_ids,
        )

    def expire_stale(self, now: datetime | None = None) -> int:
        """Flip active overrides past their expiry to EXPIRED."""
        now = now or utcnow()
        with self._session_factory() as session:
            stale = session.scalars(
                select(ValidationOverride).where(
                    ValidationOverride.status == STATUS_ACTIVE,
                    ValidationOverride.expires_at.is_not(None),
                    ValidationOverride.expires_at <= now,
                )
            ).all()
            for override in stale:
                override.status = STATUS_EXPIRED
            session.commit()
        if stale:
            logger.info(f"Expired {len(stale)} validation override(s)")
        return len(stale)

    def _append(self, entry: AuditEntry) -> None:
        if self._audit is not None:
            self._audit.append(entry)
