"""
Process context shared by every worker.

Built once at startup and handed to each pool; holds the counters, the
health flag and (on the consume side) the store handle.
"""

from __future__ import annotations

import threading
from typing import Optional, TYPE_CHECKING

from loguru import logger

from .metrics import CounterSnapshot, PipelineCounters

if TYPE_CHECKING:
    from txn_store import TransactionStore


class PipelineContext:
    def __init__(
        self,
        *,
        store: Optional["TransactionStore"] = None,
        counters: Optional[PipelineCounters] = None,
    ):
        self.store = store
        self.counters = counters or PipelineCounters()
        self._healthy = threading.Event()
        self._healthy.set()

    @property
    def healthy(self) -> bool:
        return self._healthy.is_set()

    def mark_unhealthy(self, reason: str) -> None:
        if self._healthy.is_set():
            logger.error(f"Pipeline marked unhealthy: {reason}")
        self._healthy.clear()

    def snapshot(self) -> CounterSnapshot:
        return self.counters.snapshot()


def log_stats_periodically(
    context: PipelineContext, interval: float, stop: threading.Event
) -> threading.Thread:
    """Start a daemon thread logging counter snapshots until ``stop`` is set."""

    def _loop() -> None:
        while not stop.wait(interval):
            s = context.snapshot()
            logger.info(
                f"Stats: published={s.published} failed={s.failed} "
                f"processed={s.processed} duplicate={s.duplicate} error={s.error}"
            )

    t = threading.Thread(target=_loop, name="stats-logger", daemon=True)
    t.start()
    return t
