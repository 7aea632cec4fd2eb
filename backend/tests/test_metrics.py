"""Queue metrics: running mean, error rate and health derivation."""

import pytest

from ledger_sync.core.errors import QueueBackendError
from ledger_sync.queueing.metrics import MetricsMonitor, QueueHealth
from ledger_sync.queueing.queue import NORMAL_QUEUE


def test_running_mean_and_error_rate(manager):
    metrics = manager.metrics
    for duration in (1.0, 2.0, 3.0):
        metrics.record_completed(NORMAL_QUEUE, duration)
    metrics.record_failed(NORMAL_QUEUE)

    snap = metrics.snapshot(NORMAL_QUEUE)
    assert snap.processed == 3
    assert snap.failed == 1
    assert snap.average_processing_time == pytest.approx(2.0)
    assert snap.error_rate == pytest.approx(25.0)


def test_error_rate_zero_without_events():
    metrics = MetricsMonitor()
    assert metrics.snapshot("unknown").error_rate == 0.0


def test_poll_refreshes_counts(manager):
    manager.enqueue_timesheet_sync("sub-1", priority="high")
    manager.enqueue_timesheet_sync("sub-2")

    manager.metrics.poll_once()
    snapshots = manager.get_metrics()

    high = snapshots["ledger-sync-high-priority"]
    normal = snapshots[NORMAL_QUEUE]
    assert high.waiting == 1
    # Normal-priority syncs are delayed a few seconds
    assert normal.delayed == 1
    assert high.health is QueueHealth.HEALTHY


def test_paused_queue_is_degraded_not_unhealthy(manager):
    manager.pause_queue(NORMAL_QUEUE)
    manager.metrics.poll_once()

    assert manager.metrics.snapshot(NORMAL_QUEUE).health is QueueHealth.DEGRADED
    assert manager.metrics.is_healthy()

    manager.resume_queue(NORMAL_QUEUE)
    manager.metrics.poll_once()
    assert manager.metrics.snapshot(NORMAL_QUEUE).health is QueueHealth.HEALTHY


def test_connection_error_unhealthy_until_next_good_poll(manager):
    manager.metrics.report_error(NORMAL_QUEUE, QueueBackendError("connection refused"))

    snap = manager.metrics.snapshot(NORMAL_QUEUE)
    assert snap.health is QueueHealth.UNHEALTHY
    assert snap.last_error == "connection refused"
    assert not manager.metrics.is_healthy()

    manager.metrics.poll_once()
    assert manager.metrics.is_healthy()


def test_snapshot_is_a_copy(manager):
    snap = manager.metrics.snapshot(NORMAL_QUEUE)
    snap.processed = 99
    assert manager.metrics.snapshot(NORMAL_QUEUE).processed == 0
