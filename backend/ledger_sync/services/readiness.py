"""Sync readiness scoring for the pre-sync validation report."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

CATEGORIES = ("contacts", "projects", "time_entries")
CATEGORY_BONUS = 5

LEVELS = (
    (90, "excellent"),
    (75, "good"),
    (50, "fair"),
    (25, "poor"),
)


@dataclass
class CategoryReadiness:
    valid: int = 0
    errors: int = 0
    error_details: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ReadinessReport:
    contacts: CategoryReadiness
    projects: CategoryReadiness
    time_entries: CategoryReadiness
    total_valid: int
    total_errors: int
    error_rate: float
    score: int
    level: str
    recommendations: list[str]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def readiness_score(categories: dict[str, CategoryReadiness]) -> int:
    total_valid = sum(c.valid for c in categories.values())
    total_errors = sum(c.errors for c in categories.values())
    if total_valid == 0:
        return 0
    error_rate = total_errors / (total_valid + total_errors)
    base_score = max(0.0, 100 - error_rate * 100)
    # Bonus for having something to sync in each category
    bonus = sum(CATEGORY_BONUS for c in categories.values() if c.valid > 0)
    return min(100, round(base_score + bonus))


def readiness_level(score: int) -> str:
    for threshold, level in LEVELS:
        if score >= threshold:
            return level
    return "not_ready"


def recommendations(categories: dict[str, CategoryReadiness], score: int) -> list[str]:
    notes = []
    if score < 50:
        notes.append("Data quality needs improvement before syncing to the ledger")
    if categories["contacts"].errors:
        notes.append(f"Fix {categories['contacts'].errors} client validation errors")
    if categories["projects"].errors:
        notes.append(f"Fix {categories['projects'].errors} project validation errors")
    if categories["time_entries"].errors:
        notes.append(f"Fix {categories['time_entries'].errors} timesheet validation errors")
    if categories["time_entries"].valid == 0:
        notes.append("No approved timesheets available for sync")
    if categories["contacts"].valid == 0:
        notes.append("No active clients available for sync")
    if categories["projects"].valid == 0:
        notes.append("No active projects available for sync")
    if score >= 75:
        notes.append("Data is ready for synchronization to the ledger")
    return notes


def build_report(categories: dict[str, CategoryReadiness]) -> ReadinessReport:
    missing = set(CATEGORIES) - set(categories)
    if missing:
        raise ValueError(f"Missing readiness categories: {sorted(missing)}")
    total_valid = sum(c.valid for c in categories.values())
    total_errors = sum(c.errors for c in categories.values())
    checked = total_valid + total_errors
    score = readiness_score(categories)
    return ReadinessReport(
        contacts=categories["contacts"],
        projects=categories["projects"],
        time_entries=categories["time_entries"],
        total_valid=total_valid,
        total_errors=total_errors,
        error_rate=round(total_errors / checked * 100, 2) if checked else 0.0,
        score=score,
        level=readiness_level(score),
        recommendations=recommendations(categories, score),
    )
