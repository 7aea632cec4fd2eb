"""Validation overrides: coverage, expiry and revocation."""

from datetime import timedelta

import pytest

from ledger_sync.core.errors import OverrideNotFoundError
from ledger_sync.services.audit import OVERRIDE_CREATED, OVERRIDE_REVOKED
from ledger_sync.services.overrides import (
    STATUS_ACTIVE,
    STATUS_EXPIRED,
    STATUS_REVOKED,
    covers,
)
from ledger_sync.utils.dates import utcnow


def create(overrides, entity_id="sub-1", rules=("duration_limit",), **fields):
    values = {
        "entity_id": entity_id,
        "entity_type": "TIMESHEET",
        "rules": list(rules),
        "justification": "Approved overtime for release week",
        "created_by": "admin@example.com",
    }
    values.update(fields)
    return overrides.create(**values)


def test_covers_requires_every_error():
    assert covers({"a", "b"}, {"a"})
    assert covers({"a", "b"}, {"a", "b"})
    assert not covers({"a"}, {"a", "b"})
    assert not covers({"a"}, set())


def test_full_coverage_waives(overrides):
    create(overrides, rules=["duration_limit", "billing_rate"])
    decision = overrides.check("sub-1", {"duration_limit"})
    assert decision.covered
    assert decision.covered_rules == {"duration_limit"}
    assert decision.missing_rules == set()


def test_partial_coverage_does_not_waive(overrides):
    create(overrides, rules=["duration_limit"])
    decision = overrides.check("sub-1", {"duration_limit", "billing_rate"})
    assert not decision.covered
    assert decision.missing_rules == {"billing_rate"}


def test_rules_union_across_overrides(overrides):
    create(overrides, rules=["duration_limit"])
    create(overrides, rules=["billing_rate"])
    decision = overrides.check("sub-1", {"duration_limit", "billing_rate"})
    assert decision.covered
    assert len(decision.override_ids) == 2


def test_override_scoped_to_entity(overrides):
    create(overrides, entity_id="sub-1")
    assert not overrides.check("sub-2", {"duration_limit"}).covered


def test_override_scoped_to_entity_type(overrides):
    create(overrides, entity_id="shared-id", entity_type="contact")

    assert not overrides.check("shared-id", {"duration_limit"}, "TIMESHEET").covered
    assert overrides.check("shared-id", {"duration_limit"}, "CONTACT").covered
    assert overrides.list_overrides(entity_id="shared-id")[0].entity_type == "CONTACT"


def test_expired_override_is_ignored(overrides):
    create(overrides, expires_at=utcnow() - timedelta(hours=1))
    assert not overrides.check("sub-1", {"duration_limit"}).covered

    assert overrides.expire_stale() == 1
    assert overrides.list_overrides(entity_id="sub-1")[0].status == STATUS_EXPIRED


def test_future_expiry_still_active(overrides):
    create(overrides, expires_at=utcnow() + timedelta(days=1))
    assert overrides.check("sub-1", {"duration_limit"}).covered
    assert overrides.expire_stale() == 0


def test_revoked_override_is_ignored(overrides, audit):
    override = create(overrides)
    revoked = overrides.revoke(override.id, "lead@example.com")

    assert revoked.status == STATUS_REVOKED
    assert revoked.revoked_by == "lead@example.com"
    assert not overrides.check("sub-1", {"duration_limit"}).covered
    assert audit.actions("sub-1") == [OVERRIDE_CREATED, OVERRIDE_REVOKED]


def test_revoke_unknown_override(overrides):
    with pytest.raises(OverrideNotFoundError):
        overrides.revoke("missing", "admin")


@pytest.mark.parametrize(
    "fields",
    [{"rules": []}, {"justification": "   "}],
)
def test_create_rejects_incomplete_overrides(overrides, fields):
    with pytest.raises(ValueError):
        create(overrides, **fields)


def test_list_filters_by_status(overrides):
    create(overrides)
    revoked = create(overrides, entity_id="sub-2")
    overrides.revoke(revoked.id, "admin")

    active = overrides.list_overrides(status=STATUS_ACTIVE)
    assert [o.entity_id for o in active] == ["sub-1"]
    assert active[0].overridden_rules == ["duration_limit"]
