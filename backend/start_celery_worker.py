#!/usr/bin/env python3
"""Start the Celery worker that runs bulk reprocessing jobs."""

import sys
import warnings

# Containers run as root; the warning is noise there
warnings.filterwarnings("ignore", category=UserWarning, message=".*superuser privileges.*")
warnings.filterwarnings("ignore", category=RuntimeWarning, message=".*superuser privileges.*")

from ledger_sync.workers.celery_app import celery_app  # noqa: E402

if __name__ == "__main__":
    celery_app.worker_main(
        argv=[
            "worker",
            "--loglevel=info",
            "--queues=bulk",
            "--pool=solo",
            "--without-mingle",
            "--without-gossip",
        ]
        + sys.argv[1:]
    )
