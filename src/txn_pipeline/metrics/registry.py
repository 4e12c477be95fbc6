"""
Pipeline counters backed by prometheus_client.

Each PipelineCounters owns a CollectorRegistry, so two contexts (or two
tests) never share tallies. ``Counter.inc`` is safe to call from any worker
thread without further coordination.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from prometheus_client import CollectorRegistry, Counter


@dataclass(frozen=True)
class CounterSnapshot:
    """Point-in-time read; no cross-counter consistency is implied."""

    published: int = 0
    failed: int = 0
    processed: int = 0
    duplicate: int = 0
    error: int = 0


class PipelineCounters:
    """The five monotonic pipeline counters."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry(auto_describe=True)
        self.published = Counter(
            "producer_messages_published",
            "Messages confirmed (acked) by the broker",
            registry=self.registry,
        )
        self.failed = Counter(
            "producer_messages_failed",
            "Messages nacked or not confirmed within the timeout",
            registry=self.registry,
        )
        self.processed = Counter(
            "consumer_messages_processed",
            "Transactions freshly written to the store",
            registry=self.registry,
        )
        self.duplicate = Counter(
            "consumer_messages_duplicate",
            "Transactions ignored because their id was already stored",
            registry=self.registry,
        )
        self.error = Counter(
            "consumer_messages_error",
            "Malformed records or messages and failed per-record writes",
            registry=self.registry,
        )

    def _read(self, name: str) -> int:
        value = self.registry.get_sample_value(f"{name}_total")
        return int(value or 0)

    def snapshot(self) -> CounterSnapshot:
        return CounterSnapshot(
            published=self._read("producer_messages_published"),
            failed=self._read("producer_messages_failed"),
            processed=self._read("consumer_messages_processed"),
            duplicate=self._read("consumer_messages_duplicate"),
            error=self._read("consumer_messages_error"),
        )
