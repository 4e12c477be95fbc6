"""
Pytest configuration and fixtures for the transaction pipeline.

Broker channels and the store are in-memory fakes implementing the same
protocols as the real adapters, so no RabbitMQ or PostgreSQL is needed.
"""

import queue
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

import pytest

from txn_pipeline.broker.types import Confirmation
from txn_pipeline.context import PipelineContext
from txn_pipeline.errors import StreamClosed
from txn_store.errors import RetryableStoreError
from txn_store.models import Transaction


def _txn(id: str, **overrides) -> Transaction:
    data = dict(
        id=id,
        date=datetime(2024, 5, 17, 12, 30, tzinfo=timezone.utc),
        document="12345678900",
        name="Maria Silva",
        age=34,
        amount=250.75,
        installments=3,
    )
    data.update(overrides)
    return Transaction(**data)


class FakeDelivery:
    def __init__(self, body: bytes, message_id: Optional[str] = None, *, fail_settle: bool = False):
        self.body = body
        self.message_id = message_id
        self.acked = False
        self.requeued: Optional[bool] = None
        self._fail = fail_settle

    def acknowledge(self) -> None:
        if self._fail:
            raise StreamClosed("channel gone")
        self.acked = True

    def requeue_or_drop(self, redeliver: bool) -> None:
        if self._fail:
            raise StreamClosed("channel gone")
        self.requeued = redeliver


class FakePublishChannel:
    """Publish channel answering each publish according to a script.

    Script entries: "ack", "nack", "silent" (never confirmed) or a callable
    ``(channel, seq) -> None`` that puts whatever confirmations it likes.
    Unscripted publishes are acked.
    """

    def __init__(self, script: Optional[List] = None, worker_id: int = 0):
        self.worker_id = worker_id
        self.confirmations: "queue.Queue[Confirmation]" = queue.Queue()
        self.script = list(script or [])
        self.published: List[tuple] = []
        self.closed = False

    def publish(self, body: bytes, *, message_id: str) -> int:
        seq = len(self.published) + 1
        self.published.append((seq, message_id, body))
        action = self.script.pop(0) if self.script else "ack"
        if action == "ack":
            self.confirmations.put(Confirmation(seq, ack=True))
        elif action == "nack":
            self.confirmations.put(Confirmation(seq, ack=False))
        elif callable(action):
            action(self, seq)
        return seq

    def close(self) -> None:
        self.closed = True


class FakeConsumeChannel:
    """Consume channel replaying a script of deliveries.

    ``None`` entries simulate a wait that timed out (and advance ``clock``
    by the requested timeout); once the script is exhausted the stream
    closes.
    """

    def __init__(self, script: List, clock: Optional["FakeClock"] = None, events: Optional[list] = None):
        self.script = list(script)
        self.clock = clock
        self.events = events if events is not None else []
        self.timeouts: List[float] = []
        self.closed = False

    def next_delivery(self, timeout: float):
        self.timeouts.append(timeout)
        if not self.script:
            self.events.append("closed")
            raise StreamClosed("script exhausted")
        item = self.script.pop(0)
        if item is None and self.clock is not None:
            self.clock.advance(timeout)
        return item

    def close(self) -> None:
        self.closed = True


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeStore:
    """Idempotent in-memory store with injectable failures."""

    def __init__(self, *, fail_batch: bool = False, fail_ids: Optional[set] = None, events: Optional[list] = None):
        self.rows: Dict[str, Transaction] = {}
        self.fail_batch = fail_batch
        self.fail_ids = set(fail_ids or ())
        self.batch_calls: List[int] = []
        self.one_calls: List[str] = []
        self.events = events if events is not None else []

    def apply_batch(self, rows) -> int:
        self.batch_calls.append(len(rows))
        self.events.append(f"batch:{len(rows)}")
        if self.fail_batch:
            raise RetryableStoreError("connection reset")
        inserted = 0
        for r in rows:
            if r.id not in self.rows:
                self.rows[r.id] = r
                inserted += 1
        return inserted

    def apply_one(self, row) -> bool:
        self.one_calls.append(row.id)
        if row.id in self.fail_ids:
            raise RetryableStoreError(f"write of {row.id} failed")
        if row.id in self.rows:
            return False
        self.rows[row.id] = row
        return True


def wait_until(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def make_txn():
    return _txn


@pytest.fixture
def context():
    return PipelineContext()


@pytest.fixture
def fake_store():
    return FakeStore


@pytest.fixture
def fake_delivery():
    return FakeDelivery


@pytest.fixture
def fake_publish_channel():
    return FakePublishChannel


@pytest.fixture
def fake_consume_channel():
    return FakeConsumeChannel


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def waiter():
    return wait_until
