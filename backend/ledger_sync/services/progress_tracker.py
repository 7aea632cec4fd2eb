"""Shared helpers for publishing bulk job progress to Redis."""

from __future__ import annotations

import json
from datetime import timedelta
from typing import Any

from redis import Redis
from redis.exceptions import RedisError

PROGRESS_PREFIX = "bulk-jobs:progress:"
PROGRESS_TTL = timedelta(hours=24)


def _key(job_id: str) -> str:
    return f"{PROGRESS_PREFIX}{job_id}"


class ProgressTracker:
    """Live progress snapshots for polling clients; the database stays authoritative."""

    def __init__(self, redis_client: Redis | None) -> None:
        self.redis_client = redis_client

    def publish_progress(
        self,
        job_id: str,
        progress: float,
        message: str | None = None,
        *,
        status: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None:
        """Persist progress snapshots so the UI can poll them."""
        if self.redis_client is None:
            return
        payload = {
            "job_id": job_id,
            "progress": max(0.0, min(progress, 1.0)),
            "message": message,
            "status": status,
            "meta": meta or {},
        }
        try:
            self.redis_client.set(
                _key(job_id),
                json.dumps(payload),
                ex=int(PROGRESS_TTL.total_seconds()),
            )
        except RedisError:
            # Redis availability should not break bulk processing.
            pass

    def fetch_progress(self, job_id: str) -> dict[str, Any]:
        """Return the latest snapshot, or an empty dict when none is available."""
        if self.redis_client is None:
            return {}
        try:
            raw = self.redis_client.get(_key(job_id))
        except RedisError:
            return {}
        if not raw:
            return {}
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return {}
