"""Engine and session factory configuration."""

import logging

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from ledger_sync.db.base import Base

logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    """Create an engine tuned for long-running worker processes.

    SQLite (used by tests and local runs) gets a thread-shareable connection;
    everything else gets the pooled, keepalive-enabled configuration.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
        )

    # pool_pre_ping: Test connections before using (handles stale connections)
    # pool_recycle: Recycle connections after 30 minutes (prevents timeout)
    return create_engine(
        database_url,
        echo=False,
        future=True,
        poolclass=QueuePool,
        pool_pre_ping=True,
        pool_recycle=1800,
        pool_size=5,
        max_overflow=10,
        connect_args={
            "connect_timeout": 10,  # 10 second connection timeout
            "keepalives": 1,  # Send keepalive packets
            "keepalives_idle": 30,  # Start keepalives after 30 seconds idle
            "keepalives_interval": 10,  # Send keepalive every 10 seconds
            "keepalives_count": 5,  # Close connection after 5 failed keepalives
        },
    )


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def create_tables(engine: Engine) -> None:
    """Create any missing tables (idempotent)."""
    # Register every model on the metadata before create_all
    import ledger_sync.db.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.debug(f"Ensured tables exist: {sorted(Base.metadata.tables)}")

