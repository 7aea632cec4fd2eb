"""Process runtime: wires settings, database, queue engine and services together."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import logging

from redis import Redis
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from ledger_sync.core.config import Settings, get_settings
from ledger_sync.db.session import build_engine, build_session_factory, create_tables
from ledger_sync.queueing.manager import QueueManager
from ledger_sync.queueing.metrics import MetricsMonitor
from ledger_sync.queueing.queue import QueueConfig, default_queue_configs
from ledger_sync.queueing.registry import ProcessorRegistry
from ledger_sync.queueing.shutdown import ShutdownCoordinator, ShutdownReport
from ledger_sync.queueing.store import JobStore, MemoryJobStore, RedisJobStore
from ledger_sync.services.audit import AuditStore, SqlAuditStore
from ledger_sync.services.bulk_jobs import BulkJobTracker
from ledger_sync.services.error_recovery import ErrorRecoveryService
from ledger_sync.services.ledger_client import LedgerClient
from ledger_sync.services.overrides import OverrideService
from ledger_sync.services.processors import SyncProcessors, register_processors
from ledger_sync.services.progress_tracker import ProgressTracker
from ledger_sync.services.quarantine import QuarantineService
from ledger_sync.services.sync_orchestrator import LedgerGateway, SyncOrchestrator
from ledger_sync.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)


def dispatch_bulk_job_to_celery(job_id: str) -> None:
    """Hand a bulk job to the Celery worker instead of a local thread."""
    from ledger_sync.workers.tasks.bulk_reprocess import bulk_reprocess_task

    bulk_reprocess_task.delay(job_id)


@dataclass
class Runtime:
    settings: Settings
    engine: Engine
    session_factory: sessionmaker[Session]
    store: JobStore
    audit: AuditStore
    registry: ProcessorRegistry
    queues: QueueManager
    ledger: LedgerGateway
    overrides: OverrideService
    quarantine: QuarantineService
    orchestrator: SyncOrchestrator
    recovery: ErrorRecoveryService
    bulk_jobs: BulkJobTracker
    progress: ProgressTracker
    shutdown: ShutdownCoordinator

    def start(self, start_workers: bool | None = None) -> None:
        create_tables(self.engine)
        if start_workers is None:
            start_workers = self.settings.start_workers
        self.queues.start(start_workers=start_workers)

    def stop(self) -> ShutdownReport:
        report = self.shutdown.shutdown()
        close = getattr(self.ledger, "close", None)
        if close is not None:
            close()
        return report


def build_runtime(
    settings: Settings | None = None,
    *,
    engine: Engine | None = None,
    redis_client: Redis | None = None,
    store: JobStore | None = None,
    audit: AuditStore | None = None,
    ledger: LedgerGateway | None = None,
    configs: list[QueueConfig] | None = None,
    bulk_dispatcher: Callable[[str], None] | None = None,
) -> Runtime:
    """Build every long-lived object once; callers inject fakes for tests."""
    settings = settings or get_settings()
    engine = engine or build_engine(settings.database_url)
    session_factory = build_session_factory(engine)
    configs = configs or default_queue_configs()

    if redis_client is None and settings.queue_backend == "redis":
        redis_client = create_redis_client(settings.redis_url, decode_responses=True)
    if store is None:
        if settings.queue_backend == "redis":
            store = RedisJobStore(redis_client, prefix=settings.queue_key_prefix)
        else:
            store = MemoryJobStore()
    logger.info(f"Queue backend: {type(store).__name__}")

    audit = audit or SqlAuditStore(session_factory)
    ledger = ledger or LedgerClient(
        settings.ledger_api_url,
        token=settings.ledger_api_token,
        timeout=settings.ledger_timeout_seconds,
    )

    registry = ProcessorRegistry()
    queues = QueueManager(
        store,
        registry,
        configs,
        audit=audit,
        metrics=MetricsMonitor(settings.metrics_poll_interval),
        idle_poll=settings.worker_idle_poll,
        stall_check_interval=settings.stall_check_interval,
    )
    overrides = OverrideService(session_factory, audit)
    quarantine = QuarantineService(session_factory, audit)
    orchestrator = SyncOrchestrator(
        session_factory,
        queues,
        ledger,
        overrides=overrides,
        quarantine=quarantine,
        audit=audit,
        lookback_days=settings.incremental_lookback_days,
    )
    register_processors(registry, SyncProcessors(orchestrator, session_factory, queues), configs)
    recovery = ErrorRecoveryService(quarantine, orchestrator, queues, audit)

    progress = ProgressTracker(redis_client)
    if bulk_dispatcher is None and settings.bulk_dispatch == "celery":
        bulk_dispatcher = dispatch_bulk_job_to_celery
    bulk_jobs = BulkJobTracker(
        session_factory,
        queues,
        audit,
        progress=progress,
        dispatcher=bulk_dispatcher,
        default_batch_size=settings.bulk_batch_size,
        default_delay=settings.bulk_delay_between_batches,
    )

    return Runtime(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        store=store,
        audit=audit,
        registry=registry,
        queues=queues,
        ledger=ledger,
        overrides=overrides,
        quarantine=quarantine,
        orchestrator=orchestrator,
        recovery=recovery,
        bulk_jobs=bulk_jobs,
        progress=progress,
        shutdown=ShutdownCoordinator(queues, timeout=settings.shutdown_timeout),
    )
