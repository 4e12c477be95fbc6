from __future__ import annotations

from dataclasses import dataclass
from time import monotonic
from typing import Callable, List, Optional, Tuple

from txn_store.models import Transaction

from .broker.types import Delivery

Clock = Callable[[], float]


@dataclass(frozen=True)
class BatchConfig:
    """Size/age flush thresholds."""

    max_size: int = 100  # flush once this many deliveries are buffered
    max_age: float = 2.0  # or this many seconds after the first one arrived

    def __post_init__(self):
        if self.max_size <= 0:
            raise ValueError("max_size must be > 0")
        if self.max_age <= 0:
            raise ValueError("max_age must be > 0")


class Batch:
    """
    Buffer of (Transaction, Delivery) pairs owned by a single consume worker.

    The age clock starts at the first append, not at creation, so an idle
    worker never flushes an empty buffer.
    """

    def __init__(self, config: Optional[BatchConfig] = None, *, clock: Clock = monotonic):
        self._cfg = config or BatchConfig()
        self._clock = clock
        self._items: List[Tuple[Transaction, Delivery]] = []
        self._t0: Optional[float] = None

    @property
    def config(self) -> BatchConfig:
        return self._cfg

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def add(self, txn: Transaction, delivery: Delivery) -> None:
        if not self._items:
            self._t0 = self._clock()
        self._items.append((txn, delivery))

    def is_full(self) -> bool:
        return len(self._items) >= self._cfg.max_size

    def is_expired(self) -> bool:
        return self._t0 is not None and self._clock() - self._t0 >= self._cfg.max_age

    def should_flush(self) -> bool:
        return self.is_full() or self.is_expired()

    def remaining(self) -> Optional[float]:
        """Seconds until the age threshold; None while empty."""
        if self._t0 is None:
            return None
        return max(0.0, self._cfg.max_age - (self._clock() - self._t0))

    def drain(self) -> List[Tuple[Transaction, Delivery]]:
        """Return buffered pairs in arrival order and reset the buffer."""
        items = self._items
        self._items = []
        self._t0 = None
        return items
