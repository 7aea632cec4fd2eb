"""Retry, backoff and stall policy evaluated by the worker pool."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class BackoffType(str, Enum):
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_type: BackoffType = BackoffType.EXPONENTIAL
    base_delay: float = 5.0
    stalled_interval: float = 60.0
    max_stalled_count: int = 1

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay cannot be negative")
        if self.stalled_interval <= 0:
            raise ValueError("stalled_interval must be positive")

    def backoff_delay(self, attempts_made: int) -> float:
        """Seconds to wait before the next attempt after ``attempts_made`` failures."""
        if self.backoff_type is BackoffType.FIXED:
            return self.base_delay
        return self.base_delay * (2 ** max(attempts_made - 1, 0))

    def should_retry(self, attempts_made: int, max_attempts: int | None = None) -> bool:
        limit = self.max_attempts if max_attempts is None else max_attempts
        return attempts_made < limit

    def should_requeue_stalled(
        self, stalled_count: int, attempts_made: int, max_attempts: int | None = None
    ) -> bool:
        """Decide for a stall detected with the counts as they were before the stall."""
        return stalled_count < self.max_stalled_count and self.should_retry(
            attempts_made + 1, max_attempts
        )
