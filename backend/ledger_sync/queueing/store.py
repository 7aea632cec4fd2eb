"""Backing stores for queue job records.

Every state change goes through one of the atomic operations below. Attempt
transitions (complete, fail, heartbeat, stall) carry the ``lock_token`` handed
out by ``claim`` and are ignored when the token no longer matches, which is how
a late result from a stalled attempt gets discarded.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Callable, Iterable
import copy
import functools
import json
import logging
import threading
from typing import Any

from redis import Redis
from redis.exceptions import RedisError

from ledger_sync.core.errors import QueueBackendError
from ledger_sync.queueing.models import JobRecord, JobState

logger = logging.getLogger(__name__)

STALLED_REASON = "job stalled more than allowable limit"
CLAIM_SCAN_LIMIT = 50

# Pseudo-states accepted by list/clean: "waiting" means ready now, "delayed"
# means waiting with a future available_at.
LISTABLE_STATES = ("waiting", "delayed", "active", "completed", "failed")


class JobStore(ABC):
    """Atomic job-record operations shared by all queues in a process."""

    @abstractmethod
    def add(self, record: JobRecord) -> JobRecord:
        """Store ``record`` unless its id is taken; returns whichever record is stored."""

    @abstractmethod
    def get(self, queue_name: str, job_id: str) -> JobRecord | None: ...

    @abstractmethod
    def claim(self, queue_name: str, lock_token: str, now: float) -> JobRecord | None:
        """Move the best ready waiting job to active, or return None."""

    @abstractmethod
    def heartbeat(
        self,
        queue_name: str,
        job_id: str,
        lock_token: str,
        now: float,
        progress: int | None = None,
    ) -> bool: ...

    @abstractmethod
    def complete(
        self,
        queue_name: str,
        job_id: str,
        lock_token: str,
        now: float,
        return_value: Any = None,
        keep: int | None = None,
    ) -> JobRecord | None: ...

    @abstractmethod
    def fail(
        self,
        queue_name: str,
        job_id: str,
        lock_token: str,
        now: float,
        reason: str,
        retry_at: float | None = None,
        keep: int | None = None,
    ) -> JobRecord | None:
        """Count a failed attempt; reschedule when ``retry_at`` is given."""

    @abstractmethod
    def find_stalled(
        self, queue_name: str, now: float, stalled_interval: float
    ) -> list[JobRecord]: ...

    @abstractmethod
    def mark_stalled(
        self,
        queue_name: str,
        job_id: str,
        lock_token: str,
        now: float,
        requeue: bool,
        keep: int | None = None,
    ) -> JobRecord | None: ...

    @abstractmethod
    def counts(self, queue_name: str, now: float) -> dict[str, int]: ...

    @abstractmethod
    def list_jobs(
        self, queue_name: str, states: Iterable[str], now: float, limit: int = 100
    ) -> list[JobRecord]: ...

    @abstractmethod
    def retry(self, queue_name: str, job_ids: Iterable[str] | None, now: float) -> int:
        """Move failed jobs back to waiting with a fresh attempt budget."""

    @abstractmethod
    def remove(self, queue_name: str, job_ids: Iterable[str]) -> int:
        """Delete jobs that are not currently active."""

    @abstractmethod
    def clean(
        self,
        queue_name: str,
        states: Iterable[str],
        now: float,
        job_types: Iterable[str] | None = None,
    ) -> int: ...

    @abstractmethod
    def set_paused(self, queue_name: str, paused: bool) -> None: ...

    @abstractmethod
    def is_paused(self, queue_name: str) -> bool: ...

    @abstractmethod
    def ping(self) -> None: ...

    @abstractmethod
    def close(self) -> None: ...


def _start_attempt(record: JobRecord, lock_token: str, now: float) -> None:
    record.state = JobState.ACTIVE
    record.lock_token = lock_token
    record.processed_at = now
    record.heartbeat_at = now


def _finish_completed(record: JobRecord, now: float, return_value: Any) -> None:
    record.state = JobState.COMPLETED
    record.lock_token = None
    record.finished_at = now
    record.progress = 100
    record.return_value = return_value


def _finish_failed(
    record: JobRecord, now: float, reason: str, retry_at: float | None
) -> None:
    record.attempts_made += 1
    record.lock_token = None
    record.failed_reason = reason
    if retry_at is None:
        record.state = JobState.FAILED
        record.finished_at = now
    else:
        record.state = JobState.WAITING
        record.available_at = retry_at


def _finish_stalled(record: JobRecord, now: float, requeue: bool) -> None:
    record.attempts_made += 1
    record.stalled_count += 1
    record.lock_token = None
    if requeue:
        record.state = JobState.WAITING
        record.available_at = now
    else:
        record.state = JobState.FAILED
        record.finished_at = now
        record.failed_reason = STALLED_REASON


def _reset_for_retry(record: JobRecord, now: float) -> None:
    record.state = JobState.WAITING
    record.attempts_made = 0
    record.stalled_count = 0
    record.available_at = now
    record.finished_at = None
    record.failed_reason = None
    record.progress = 0


def _matches_state(record: JobRecord, state: str, now: float) -> bool:
    if state == "waiting":
        return record.is_ready(now)
    if state == "delayed":
        return record.is_delayed(now)
    return record.state.value == state


def _holds_lock(record: JobRecord | None, lock_token: str) -> bool:
    return (
        record is not None
        and record.state is JobState.ACTIVE
        and record.lock_token == lock_token
    )


class MemoryJobStore(JobStore):
    """In-process store guarded by a single lock; used by tests and local runs."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._jobs: dict[str, dict[str, JobRecord]] = defaultdict(dict)
        self._paused: set[str] = set()

    def add(self, record: JobRecord) -> JobRecord:
        with self._lock:
            existing = self._jobs[record.queue_name].get(record.id)
            if existing is not None:
                return copy.deepcopy(existing)
            self._jobs[record.queue_name][record.id] = copy.deepcopy(record)
        return record

    def get(self, queue_name: str, job_id: str) -> JobRecord | None:
        with self._lock:
            record = self._jobs[queue_name].get(job_id)
            return copy.deepcopy(record) if record else None

    def claim(self, queue_name: str, lock_token: str, now: float) -> JobRecord | None:
        with self._lock:
            ready = [r for r in self._jobs[queue_name].values() if r.is_ready(now)]
            if not ready:
                return None
            record = min(ready, key=lambda r: (r.priority, r.available_at, r.created_at))
            _start_attempt(record, lock_token, now)
            return copy.deepcopy(record)

    def heartbeat(self, queue_name, job_id, lock_token, now, progress=None) -> bool:
        with self._lock:
            record = self._jobs[queue_name].get(job_id)
            if not _holds_lock(record, lock_token):
                return False
            record.heartbeat_at = now
            if progress is not None:
                record.progress = progress
            return True

    def complete(self, queue_name, job_id, lock_token, now, return_value=None, keep=None):
        with self._lock:
            record = self._jobs[queue_name].get(job_id)
            if not _holds_lock(record, lock_token):
                return None
            _finish_completed(record, now, return_value)
            result = copy.deepcopy(record)
            self._trim(queue_name, JobState.COMPLETED, keep)
            return result

    def fail(
        self, queue_name, job_id, lock_token, now, reason, retry_at=None, keep=None
    ):
        with self._lock:
            record = self._jobs[queue_name].get(job_id)
            if not _holds_lock(record, lock_token):
                return None
            _finish_failed(record, now, reason, retry_at)
            result = copy.deepcopy(record)
            if retry_at is None:
                self._trim(queue_name, JobState.FAILED, keep)
            return result

    def find_stalled(self, queue_name, now, stalled_interval):
        cutoff = now - stalled_interval
        with self._lock:
            return [
                copy.deepcopy(r)
                for r in self._jobs[queue_name].values()
                if r.state is JobState.ACTIVE and (r.heartbeat_at or 0) < cutoff
            ]

    def mark_stalled(self, queue_name, job_id, lock_token, now, requeue, keep=None):
        with self._lock:
            record = self._jobs[queue_name].get(job_id)
            if not _holds_lock(record, lock_token):
                return None
            _finish_stalled(record, now, requeue)
            result = copy.deepcopy(record)
            if not requeue:
                self._trim(queue_name, JobState.FAILED, keep)
            return result

    def counts(self, queue_name, now):
        counts = dict.fromkeys(LISTABLE_STATES, 0)
        with self._lock:
            for record in self._jobs[queue_name].values():
                if record.is_delayed(now):
                    counts["delayed"] += 1
                elif record.state is not JobState.STALLED:
                    counts[record.state.value] += 1
        return counts

    def list_jobs(self, queue_name, states, now, limit=100):
        wanted = list(states)
        with self._lock:
            matches = [
                copy.deepcopy(r)
                for r in self._jobs[queue_name].values()
                if any(_matches_state(r, s, now) for s in wanted)
            ]
        matches.sort(key=lambda r: r.created_at, reverse=True)
        return matches[:limit]

    def retry(self, queue_name, job_ids, now):
        retried = 0
        with self._lock:
            jobs = self._jobs[queue_name]
            ids = list(jobs) if job_ids is None else list(job_ids)
            for job_id in ids:
                record = jobs.get(job_id)
                if record and record.state is JobState.FAILED:
                    _reset_for_retry(record, now)
                    retried += 1
        return retried

    def remove(self, queue_name, job_ids):
        removed = 0
        with self._lock:
            jobs = self._jobs[queue_name]
            for job_id in job_ids:
                record = jobs.get(job_id)
                if record and record.state is not JobState.ACTIVE:
                    del jobs[job_id]
                    removed += 1
        return removed

    def clean(self, queue_name, states, now, job_types=None):
        wanted = list(states)
        types = set(job_types) if job_types else None
        with self._lock:
            jobs = self._jobs[queue_name]
            doomed = [
                job_id
                for job_id, r in jobs.items()
                if r.state is not JobState.ACTIVE
                and any(_matches_state(r, s, now) for s in wanted)
                and (types is None or r.type in types)
            ]
            for job_id in doomed:
                del jobs[job_id]
        return len(doomed)

    def set_paused(self, queue_name, paused):
        with self._lock:
            if paused:
                self._paused.add(queue_name)
            else:
                self._paused.discard(queue_name)

    def is_paused(self, queue_name):
        with self._lock:
            return queue_name in self._paused

    def ping(self) -> None:
        return None

    def close(self) -> None:
        logger.info("Memory job store closed")

    def _trim(self, queue_name: str, state: JobState, keep: int | None) -> None:
        if keep is None:
            return
        jobs = self._jobs[queue_name]
        finished = sorted(
            (r for r in jobs.values() if r.state is state),
            key=lambda r: r.finished_at or 0,
        )
        for record in finished[: max(len(finished) - keep, 0)]:
            del jobs[record.id]


def _translate_redis_errors(method: Callable) -> Callable:
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except RedisError as exc:
            raise QueueBackendError(f"Redis job store error: {exc}") from exc

    return wrapper


class RedisJobStore(JobStore):
    """Redis-backed store; one shared client, WATCH/MULTI for every transition.

    Layout per queue: one JSON string per job, a ``waiting`` sorted set scored
    by ``available_at``, an ``active`` set, and ``completed``/``failed`` sorted
    sets scored by ``finished_at``.
    """

    def __init__(self, client: Redis, prefix: str = "ledger-sync") -> None:
        self._client = client
        self._prefix = prefix

    def _key(self, queue_name: str, suffix: str) -> str:
        return f"{self._prefix}:{queue_name}:{suffix}"

    def _job_key(self, queue_name: str, job_id: str) -> str:
        return self._key(queue_name, f"job:{job_id}")

    @staticmethod
    def _dump(record: JobRecord) -> str:
        return json.dumps(record.to_dict(), default=str)

    @staticmethod
    def _load(raw: str | bytes | None) -> JobRecord | None:
        if not raw:
            return None
        return JobRecord.from_dict(json.loads(raw))

    def _transaction(self, func: Callable, *watch_keys: str) -> Any:
        return self._client.transaction(func, *watch_keys, value_from_callable=True)

    def _state_key(self, queue_name: str, state: JobState) -> str:
        return self._key(queue_name, state.value)

    def _stage(self, pipe, record: JobRecord, previous: JobState | None) -> None:
        """Queue the writes that persist ``record`` and move it between indexes."""
        queue = record.queue_name
        pipe.set(self._job_key(queue, record.id), self._dump(record))
        if previous is not None and previous is not record.state:
            if previous is JobState.ACTIVE:
                pipe.srem(self._state_key(queue, previous), record.id)
            else:
                pipe.zrem(self._state_key(queue, previous), record.id)
        if record.state is JobState.WAITING:
            pipe.zadd(self._state_key(queue, JobState.WAITING), {record.id: record.available_at})
        elif record.state is JobState.ACTIVE:
            pipe.sadd(self._state_key(queue, JobState.ACTIVE), record.id)
        elif record.state in (JobState.COMPLETED, JobState.FAILED):
            pipe.zadd(self._state_key(queue, record.state), {record.id: record.finished_at})

    @_translate_redis_errors
    def add(self, record: JobRecord) -> JobRecord:
        job_key = self._job_key(record.queue_name, record.id)

        def _add(pipe):
            existing = self._load(pipe.get(job_key))
            if existing is not None:
                return existing
            pipe.multi()
            self._stage(pipe, record, None)
            return record

        return self._transaction(_add, job_key)

    @_translate_redis_errors
    def get(self, queue_name, job_id):
        return self._load(self._client.get(self._job_key(queue_name, job_id)))

    @_translate_redis_errors
    def claim(self, queue_name, lock_token, now):
        waiting_key = self._state_key(queue_name, JobState.WAITING)

        def _claim(pipe):
            ids = pipe.zrangebyscore(waiting_key, "-inf", now, start=0, num=CLAIM_SCAN_LIMIT)
            if not ids:
                return None
            raws = pipe.mget([self._job_key(queue_name, job_id) for job_id in ids])
            candidates = [r for r in (self._load(raw) for raw in raws) if r is not None]
            if not candidates:
                pipe.multi()
                pipe.zrem(waiting_key, *ids)
                return None
            record = min(candidates, key=lambda r: (r.priority, r.available_at, r.created_at))
            _start_attempt(record, lock_token, now)
            pipe.multi()
            self._stage(pipe, record, JobState.WAITING)
            return record

        return self._transaction(_claim, waiting_key)

    def _locked_update(
        self, queue_name: str, job_id: str, lock_token: str, mutate: Callable[[JobRecord], None]
    ) -> JobRecord | None:
        job_key = self._job_key(queue_name, job_id)

        def _update(pipe):
            record = self._load(pipe.get(job_key))
            if not _holds_lock(record, lock_token):
                return None
            previous = record.state
            mutate(record)
            pipe.multi()
            self._stage(pipe, record, previous)
            return record

        return self._transaction(_update, job_key)

    @_translate_redis_errors
    def heartbeat(self, queue_name, job_id, lock_token, now, progress=None):
        def _beat(record: JobRecord) -> None:
            record.heartbeat_at = now
            if progress is not None:
                record.progress = progress

        return self._locked_update(queue_name, job_id, lock_token, _beat) is not None

    @_translate_redis_errors
    def complete(self, queue_name, job_id, lock_token, now, return_value=None, keep=None):
        record = self._locked_update(
            queue_name,
            job_id,
            lock_token,
            lambda r: _finish_completed(r, now, return_value),
        )
        if record is not None:
            self._trim(queue_name, JobState.COMPLETED, keep)
        return record

    @_translate_redis_errors
    def fail(self, queue_name, job_id, lock_token, now, reason, retry_at=None, keep=None):
        record = self._locked_update(
            queue_name,
            job_id,
            lock_token,
            lambda r: _finish_failed(r, now, reason, retry_at),
        )
        if record is not None and retry_at is None:
            self._trim(queue_name, JobState.FAILED, keep)
        return record

    @_translate_redis_errors
    def find_stalled(self, queue_name, now, stalled_interval):
        ids = list(self._client.smembers(self._state_key(queue_name, JobState.ACTIVE)))
        if not ids:
            return []
        cutoff = now - stalled_interval
        raws = self._client.mget([self._job_key(queue_name, job_id) for job_id in ids])
        return [
            record
            for record in (self._load(raw) for raw in raws)
            if record is not None
            and record.state is JobState.ACTIVE
            and (record.heartbeat_at or 0) < cutoff
        ]

    @_translate_redis_errors
    def mark_stalled(self, queue_name, job_id, lock_token, now, requeue, keep=None):
        record = self._locked_update(
            queue_name,
            job_id,
            lock_token,
            lambda r: _finish_stalled(r, now, requeue),
        )
        if record is not None and not requeue:
            self._trim(queue_name, JobState.FAILED, keep)
        return record

    @_translate_redis_errors
    def counts(self, queue_name, now):
        waiting_key = self._state_key(queue_name, JobState.WAITING)
        with self._client.pipeline(transaction=False) as pipe:
            pipe.zcount(waiting_key, "-inf", now)
            pipe.zcount(waiting_key, f"({now}", "+inf")
            pipe.scard(self._state_key(queue_name, JobState.ACTIVE))
            pipe.zcard(self._state_key(queue_name, JobState.COMPLETED))
            pipe.zcard(self._state_key(queue_name, JobState.FAILED))
            waiting, delayed, active, completed, failed = pipe.execute()
        return {
            "waiting": waiting,
            "delayed": delayed,
            "active": active,
            "completed": completed,
            "failed": failed,
        }

    def _ids_in_state(self, queue_name: str, state: str, now: float) -> list[str]:
        if state == "waiting":
            return self._client.zrangebyscore(
                self._state_key(queue_name, JobState.WAITING), "-inf", now
            )
        if state == "delayed":
            return self._client.zrangebyscore(
                self._state_key(queue_name, JobState.WAITING), f"({now}", "+inf"
            )
        if state == "active":
            return list(self._client.smembers(self._state_key(queue_name, JobState.ACTIVE)))
        if state in ("completed", "failed"):
            return self._client.zrange(self._state_key(queue_name, JobState(state)), 0, -1)
        raise ValueError(f"Unknown job state filter: {state}")

    @_translate_redis_errors
    def list_jobs(self, queue_name, states, now, limit=100):
        ids: list[str] = []
        for state in states:
            ids.extend(self._ids_in_state(queue_name, state, now))
        if not ids:
            return []
        raws = self._client.mget([self._job_key(queue_name, job_id) for job_id in ids])
        records = [r for r in (self._load(raw) for raw in raws) if r is not None]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[:limit]

    @_translate_redis_errors
    def retry(self, queue_name, job_ids, now):
        if job_ids is None:
            job_ids = self._ids_in_state(queue_name, "failed", now)
        retried = 0
        for job_id in job_ids:
            job_key = self._job_key(queue_name, job_id)

            def _retry(pipe, job_key=job_key):
                record = self._load(pipe.get(job_key))
                if record is None or record.state is not JobState.FAILED:
                    return False
                _reset_for_retry(record, now)
                pipe.multi()
                self._stage(pipe, record, JobState.FAILED)
                return True

            if self._transaction(_retry, job_key):
                retried += 1
        return retried

    def _remove_one(self, queue_name: str, job_id: str, job_types: set[str] | None) -> bool:
        job_key = self._job_key(queue_name, job_id)

        def _remove(pipe):
            record = self._load(pipe.get(job_key))
            if record is None or record.state is JobState.ACTIVE:
                return False
            if job_types is not None and record.type not in job_types:
                return False
            pipe.multi()
            pipe.delete(job_key)
            for state in (JobState.WAITING, JobState.COMPLETED, JobState.FAILED):
                pipe.zrem(self._state_key(queue_name, state), job_id)
            return True

        return bool(self._transaction(_remove, job_key))

    @_translate_redis_errors
    def remove(self, queue_name, job_ids):
        return sum(1 for job_id in job_ids if self._remove_one(queue_name, job_id, None))

    @_translate_redis_errors
    def clean(self, queue_name, states, now, job_types=None):
        types = set(job_types) if job_types else None
        removed = 0
        for state in states:
            if state == "active":
                continue
            for job_id in self._ids_in_state(queue_name, state, now):
                if self._remove_one(queue_name, job_id, types):
                    removed += 1
        return removed

    @_translate_redis_errors
    def set_paused(self, queue_name, paused):
        key = self._key(queue_name, "paused")
        if paused:
            self._client.set(key, "1")
        else:
            self._client.delete(key)

    @_translate_redis_errors
    def is_paused(self, queue_name):
        return bool(self._client.exists(self._key(queue_name, "paused")))

    @_translate_redis_errors
    def ping(self) -> None:
        self._client.ping()

    def close(self) -> None:
        try:
            self._client.close()
        except RedisError as exc:
            logger.warning(f"Error closing Redis job store connection: {exc}")
        else:
            logger.info("Redis job store connection closed")

    def _trim(self, queue_name: str, state: JobState, keep: int | None) -> None:
        if keep is None:
            return
        key = self._state_key(queue_name, state)
        excess = self._client.zcard(key) - keep
        if excess <= 0:
            return
        doomed = self._client.zrange(key, 0, excess - 1)
        with self._client.pipeline(transaction=True) as pipe:
            for job_id in doomed:
                pipe.delete(self._job_key(queue_name, job_id))
            pipe.zrem(key, *doomed)
            pipe.execute()
