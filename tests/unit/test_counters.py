"""
Unit tests for pipeline counters and the shared context.
"""

import threading

from txn_pipeline.context import PipelineContext
from txn_pipeline.metrics import CounterSnapshot, PipelineCounters


def test_snapshot_starts_at_zero():
    assert PipelineCounters().snapshot() == CounterSnapshot()


def test_counters_are_isolated_per_instance():
    a, b = PipelineCounters(), PipelineCounters()
    a.processed.inc(3)
    assert a.snapshot().processed == 3
    assert b.snapshot().processed == 0


def test_concurrent_increments_are_not_lost():
    counters = PipelineCounters()

    def bump():
        for _ in range(1000):
            counters.published.inc()
            counters.duplicate.inc()

    threads = [threading.Thread(target=bump) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    s = counters.snapshot()
    assert s.published == 8000
    assert s.duplicate == 8000
    assert (s.failed, s.processed, s.error) == (0, 0, 0)


def test_health_flag_only_goes_down():
    ctx = PipelineContext()
    assert ctx.healthy
    ctx.mark_unhealthy("channel setup failed")
    ctx.mark_unhealthy("again")
    assert not ctx.healthy
