"""Job record shared by every queue store."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
import time
from typing import Any
import uuid

from ledger_sync.utils.dates import from_timestamp

SUMMARY_MAX_ITEMS = 5
SUMMARY_MAX_CHARS = 120


class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    STALLED = "stalled"


@dataclass
class JobRecord:
    """One unit of enqueued work with its own retry and progress state.

    Timestamps are epoch seconds. ``lock_token`` identifies the attempt
    currently holding the job; transitions reported with any other token are
    ignored by the store.
    """

    queue_name: str
    type: str
    payload: dict[str, Any]
    max_attempts: int
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: JobState = JobState.WAITING
    attempts_made: int = 0
    progress: int = 0
    priority: int = 0
    created_at: float = field(default_factory=time.time)
    available_at: float = 0.0
    processed_at: float | None = None
    finished_at: float | None = None
    heartbeat_at: float | None = None
    stalled_count: int = 0
    lock_token: str | None = None
    failed_reason: str | None = None
    return_value: Any = None

    def __post_init__(self) -> None:
        if not isinstance(self.state, JobState):
            self.state = JobState(self.state)
        if not self.available_at:
            self.available_at = self.created_at

    def is_ready(self, now: float) -> bool:
        return self.state is JobState.WAITING and self.available_at <= now

    def is_delayed(self, now: float) -> bool:
        return self.state is JobState.WAITING and self.available_at > now

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobRecord:
        return cls(**data)

    def to_public(self, now: float | None = None) -> dict[str, Any]:
        """Serializable view for the HTTP layer (ISO timestamps, no lock token)."""
        now = time.time() if now is None else now
        return {
            "id": self.id,
            "queue_name": self.queue_name,
            "type": self.type,
            "state": "delayed" if self.is_delayed(now) else self.state.value,
            "attempts_made": self.attempts_made,
            "max_attempts": self.max_attempts,
            "progress": self.progress,
            "priority": self.priority,
            "payload": self.payload,
            "created_at": from_timestamp(self.created_at),
            "processed_at": from_timestamp(self.processed_at),
            "finished_at": from_timestamp(self.finished_at),
            "failed_reason": self.failed_reason,
            "return_value": self.return_value,
        }

    def summary(self) -> dict[str, Any]:
        """Compact payload description for audit entries."""
        return summarize_payload(self.payload)


def summarize_payload(payload: dict[str, Any]) -> dict[str, Any]:
    summary: dict[str, Any] = {}
    for key, value in payload.items():
        if isinstance(value, (list, tuple)):
            summary[key] = list(value[:SUMMARY_MAX_ITEMS])
            if len(value) > SUMMARY_MAX_ITEMS:
                summary[f"{key}_count"] = len(value)
        elif isinstance(value, str) and len(value) > SUMMARY_MAX_CHARS:
            summary[key] = value[:SUMMARY_MAX_CHARS] + "..."
        elif isinstance(value, dict):
            summary[key] = f"<{len(value)} keys>"
        else:
            summary[key] = value
    return summary
