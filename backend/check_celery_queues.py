#!/usr/bin/env python3
"""Diagnostic script: Celery bulk worker status and ledger queue counts."""

import time

from ledger_sync.core.config import get_settings
from ledger_sync.queueing.queue import default_queue_configs
from ledger_sync.queueing.store import RedisJobStore
from ledger_sync.utils.redis_client import create_redis_client
from ledger_sync.workers.celery_app import celery_app

settings = get_settings()

print("=" * 60)
print("Ledger Sync Queue Diagnostic")
print("=" * 60)

print("\n1. Celery Configuration:")
print(f"   Broker URL: {settings.celery_broker_url or settings.redis_url}")
print(f"   Default Queue: {celery_app.conf.task_default_queue}")
print(f"   Task Routes: {celery_app.conf.task_routes}")

print("\n2. Registered Tasks:")
for task_name in sorted(celery_app.tasks.keys()):
    if task_name.startswith("ledger_sync."):
        print(f"   - {task_name}")

print("\n3. Active Celery Workers:")
try:
    active_workers = celery_app.control.inspect().active_queues()
    if active_workers:
        for worker_name, queues in active_workers.items():
            print(f"   Worker: {worker_name}")
            for queue in queues:
                print(f"     - Queue: {queue.get('name', 'unknown')}")
    else:
        print("   No active workers found")
except Exception as e:
    print(f"   Error checking workers: {e}")

print("\n4. Ledger Sync Queues (job store):")
try:
    client = create_redis_client(settings.redis_url, decode_responses=True)
    store = RedisJobStore(client, prefix=settings.queue_key_prefix)
    now = time.time()
    for config in default_queue_configs():
        counts = store.counts(config.name, now)
        paused = " (paused)" if store.is_paused(config.name) else ""
        print(f"   {config.name}{paused}: {counts}")
    store.close()
except Exception as e:
    print(f"   Error reading job store: {e}")

print("\n" + "=" * 60)
print("Diagnostic Complete")
print("=" * 60)
