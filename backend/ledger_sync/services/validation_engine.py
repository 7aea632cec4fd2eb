"""Rule-based validation of ledger payloads before they are sent.

Rule ids are stable (``required_<field>``, ``max_length_<field>``,
``format_<field>`` and the named business rules) so validation overrides can
reference them across runs.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import re
from typing import Any

SEVERITY_CRITICAL = "critical"
SEVERITY_HIGH = "high"
SEVERITY_LOW = "low"

KIND_TIME_ENTRY = "time_entry"
KIND_TIMESHEET = "timesheet"
KIND_PROJECT = "project"
KIND_CONTACT = "contact"


@dataclass(frozen=True)
class ValidationIssue:
    id: str
    field: str
    message: str
    severity: str = SEVERITY_HIGH
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "field": self.field, "message": self.message, "severity": self.severity}


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def error_ids(self) -> set[str]:
        return {issue.id for issue in self.errors}

    def messages(self) -> list[str]:
        return [issue.message for issue in self.errors]


BusinessRule = Callable[[dict[str, Any]], "ValidationIssue | None"]


def _duration_limit(data: dict[str, Any]) -> ValidationIssue | None:
    duration = data.get("duration")
    if isinstance(duration, (int, float)) and duration > 1440:
        return ValidationIssue(
            id="duration_limit",
            field="duration",
            message="Time entry duration exceeds 24 hours",
            value=duration,
        )
    return None


def _billing_rate(data: dict[str, Any]) -> ValidationIssue | None:
    if data.get("billable_status") == "billable" and not data.get("unit_amount"):
        return ValidationIssue(
            id="billing_rate",
            field="unit_amount",
            message="Billable entries must have a unit amount",
            severity=SEVERITY_CRITICAL,
        )
    return None


def _negative_budget(data: dict[str, Any]) -> ValidationIssue | None:
    budget = data.get("budget_amount")
    if isinstance(budget, (int, float)) and budget < 0:
        return ValidationIssue(
            id="negative_budget",
            field="budget_amount",
            message="Project budget cannot be negative",
            value=budget,
        )
    return None


def _missing_email(data: dict[str, Any]) -> ValidationIssue | None:
    if not data.get("email_address"):
        return ValidationIssue(
            id="missing_email",
            field="email_address",
            message="Contact has no email address; invoices cannot be emailed",
            severity=SEVERITY_LOW,
        )
    return None


@dataclass(frozen=True)
class SchemaRules:
    required: tuple[str, ...]
    max_lengths: dict[str, int]
    formats: dict[str, re.Pattern]
    business_rules: tuple[BusinessRule, ...] = ()


SCHEMAS: dict[str, SchemaRules] = {
    KIND_TIME_ENTRY: SchemaRules(
        required=("user_id", "duration", "date_utc", "description"),
        max_lengths={"description": 500, "user_id": 100, "project_code": 100, "task_name": 100},
        formats={
            "user_id": re.compile(r"^[a-zA-Z0-9\-@.]+$"),
            "date_utc": re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d{3})?Z$"),
            "duration": re.compile(r"^\d+$"),
        },
        business_rules=(_duration_limit, _billing_rate),
    ),
    KIND_PROJECT: SchemaRules(
        required=("name", "code", "status"),
        max_lengths={"name": 255, "code": 50, "description": 1000},
        formats={
            "code": re.compile(r"^[A-Z0-9\-_]+$"),
            "status": re.compile(r"^(inProgress|completed|quote|invoiced)$"),
        },
        business_rules=(_negative_budget,),
    ),
    KIND_CONTACT: SchemaRules(
        required=("name",),
        max_lengths={"name": 255, "email_address": 255, "phone": 50},
        formats={
            "email_address": re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$"),
            "phone": re.compile(r"^[\d\s\-+()]+$"),
        },
        business_rules=(_missing_email,),
    ),
}


class ValidationEngine:
    def validate(self, entity: dict[str, Any], kind: str) -> ValidationResult:
        """Validate one transformed payload; timesheets validate each entry."""
        if kind == KIND_TIMESHEET:
            return self._validate_timesheet(entity)
        try:
            schema = SCHEMAS[kind]
        except KeyError:
            raise ValueError(f"Unknown entity kind: {kind}") from None

        issues = self._check_schema(entity, schema)
        for rule in schema.business_rules:
            issue = rule(entity)
            if issue is not None:
                issues.append(issue)

        errors = [i for i in issues if i.severity in (SEVERITY_CRITICAL, SEVERITY_HIGH)]
        warnings = [i for i in issues if i.severity not in (SEVERITY_CRITICAL, SEVERITY_HIGH)]
        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)

    def _validate_timesheet(self, entity: dict[str, Any]) -> ValidationResult:
        entries = entity.get("entries") or []
        if not entries:
            issue = ValidationIssue(
                id="required_entries",
                field="entries",
                message="Timesheet has no time entries to sync",
                severity=SEVERITY_CRITICAL,
            )
            return ValidationResult(is_valid=False, errors=[issue])

        errors: dict[str, ValidationIssue] = {}
        warnings: dict[str, ValidationIssue] = {}
        for entry in entries:
            result = self.validate(entry, KIND_TIME_ENTRY)
            for issue in result.errors:
                errors.setdefault(issue.id, issue)
            for issue in result.warnings:
                warnings.setdefault(issue.id, issue)
        return ValidationResult(
            is_valid=not errors,
            errors=list(errors.values()),
            warnings=list(warnings.values()),
        )

    @staticmethod
    def _check_schema(data: dict[str, Any], schema: SchemaRules) -> list[ValidationIssue]:
        issues = []
        for name in schema.required:
            value = data.get(name)
            if value is None or value == "" or value is False:
                issues.append(
                    ValidationIssue(
                        id=f"required_{name}",
                        field=name,
                        message=f"Required field '{name}' is missing",
                        severity=SEVERITY_CRITICAL,
                    )
                )
        for name, limit in schema.max_lengths.items():
            value = data.get(name)
            if isinstance(value, str) and len(value) > limit:
                issues.append(
                    ValidationIssue(
                        id=f"max_length_{name}",
                        field=name,
                        message=f"Field '{name}' exceeds maximum length of {limit}",
                        value=len(value),
                    )
                )
        for name, pattern in schema.formats.items():
            value = data.get(name)
            if value not in (None, "") and not pattern.match(str(value)):
                issues.append(
                    ValidationIssue(
                        id=f"format_{name}",
                        field=name,
                        message=f"Field '{name}' has invalid format",
                        value=value,
                    )
                )
        return issues
