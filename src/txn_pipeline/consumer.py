"""
Batch consumer: a worker pool turning deliveries into idempotent store writes.

Per worker the loop waits for whichever comes first, the next delivery or
the age deadline of the current batch, and flushes when the batch is full
or old enough. Applying a batch:

- batch write ok     -> processed += inserted, duplicate += size - inserted,
                        every delivery acknowledged
- batch write fails  -> each record retried alone; ok -> ack, failure ->
                        nack with redelivery and error += 1

Malformed messages are acknowledged and dropped (error += 1). There is no
dead-letter queue, so requeueing them would loop forever; each drop is logged
with the message id so it can be traced afterwards. A record whose single
write keeps failing is redelivered indefinitely for the same reason.
"""

from __future__ import annotations

import threading
from typing import List, Optional, Protocol, Sequence, Tuple

from loguru import logger

from txn_store.errors import StoreError
from txn_store.models import Transaction

from .batch import Batch, BatchConfig, Clock
from .broker.channels import ChannelPool
from .broker.types import ConsumeChannel, Delivery
from .codec import decode
from .context import PipelineContext
from .errors import BrokerError, ChannelSetupError, DeserializeError, StreamClosed

# Upper bound for a single wait while the batch is empty, so stop requests
# are noticed promptly.
IDLE_WAIT = 1.0
# Batches larger than this get an info-level summary line.
SUMMARY_MIN_SIZE = 10


class IdempotentStore(Protocol):
    def apply_batch(self, rows: Sequence[Transaction]) -> int: ...

    def apply_one(self, row: Transaction) -> bool: ...


def _ack(delivery: Delivery, log) -> None:
    try:
        delivery.acknowledge()
    except BrokerError as e:
        # Unacked deliveries come back after reconnect; the store ignores the repeat.
        log.warning(f"Ack failed for message_id={delivery.message_id}: {e}")


def _nack(delivery: Delivery, log) -> None:
    try:
        delivery.requeue_or_drop(True)
    except BrokerError as e:
        log.warning(f"Nack failed for message_id={delivery.message_id}: {e}")


class BatchApplier:
    """Applies one drained batch to the store and settles its deliveries."""

    def __init__(self, store: IdempotentStore, context: PipelineContext, *, worker_id: int = 0):
        self._store = store
        self._ctx = context
        self._log = logger.bind(role="consumer", worker=worker_id)

    def apply(self, items: Sequence[Tuple[Transaction, Delivery]]) -> None:
        if not items:
            return
        counters = self._ctx.counters
        try:
            inserted = self._store.apply_batch([t for t, _ in items])
        except StoreError as e:
            self._log.warning(f"Batch write failed (size={len(items)}): {e}; retrying per record")
            self._apply_each(items)
            return

        duplicates = len(items) - inserted
        counters.processed.inc(inserted)
        counters.duplicate.inc(duplicates)
        for _, d in items:
            _ack(d, self._log)
        if len(items) > SUMMARY_MIN_SIZE:
            self._log.info(
                f"Batch applied (size={len(items)}, inserted={inserted}, duplicates={duplicates})"
            )

    def _apply_each(self, items: Sequence[Tuple[Transaction, Delivery]]) -> None:
        counters = self._ctx.counters
        for txn, d in items:
            try:
                written = self._store.apply_one(txn)
            except StoreError as e:
                self._log.warning(f"Write failed for id={txn.id}: {e}; requeueing")
                _nack(d, self._log)
                counters.error.inc()
                continue
            _ack(d, self._log)
            if written:
                counters.processed.inc()
            else:
                counters.duplicate.inc()


class ConsumeWorker:
    """One consume worker; owns its channel and its batch."""

    def __init__(
        self,
        worker_id: int,
        channels: ChannelPool[ConsumeChannel],
        store: IdempotentStore,
        context: PipelineContext,
        *,
        batch_config: Optional[BatchConfig] = None,
        stop: Optional[threading.Event] = None,
        clock: Optional[Clock] = None,
    ):
        self.worker_id = worker_id
        self._channels = channels
        self._ctx = context
        self._batch_config = batch_config or BatchConfig()
        self._stop = stop or threading.Event()
        self._clock = clock
        self._applier = BatchApplier(store, context, worker_id=worker_id)
        self._log = logger.bind(role="consumer", worker=worker_id)
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self.run, name=f"consume-worker-{self.worker_id}", daemon=True
        )
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run(self) -> None:
        try:
            with self._channels.lease(self.worker_id) as channel:
                self._log.info("Consume worker waiting for messages")
                self.consume(channel)
        except ChannelSetupError as e:
            self._log.error(f"Channel setup failed: {e}")
            self._ctx.mark_unhealthy(f"consume worker {self.worker_id}: {e}")
            return
        self._log.info("Consume worker stopped")

    def consume(self, channel: ConsumeChannel) -> None:
        if self._clock is not None:
            batch = Batch(self._batch_config, clock=self._clock)
        else:
            batch = Batch(self._batch_config)
        try:
            while not self._stop.is_set():
                remaining = batch.remaining()
                timeout = IDLE_WAIT if remaining is None else min(remaining, IDLE_WAIT)
                try:
                    delivery = channel.next_delivery(timeout)
                except StreamClosed as e:
                    self._log.warning(f"Delivery stream closed: {e}")
                    break
                if delivery is not None:
                    self._accept(batch, delivery)
                if batch.should_flush():
                    self._applier.apply(batch.drain())
        finally:
            # Flush on close so buffered deliveries are settled, not silently dropped.
            if batch:
                self._applier.apply(batch.drain())

    def _accept(self, batch: Batch, delivery: Delivery) -> None:
        try:
            txn = decode(delivery.body)
        except DeserializeError as e:
            self._log.warning(
                f"Dropping malformed message message_id={delivery.message_id}: {e}"
            )
            _ack(delivery, self._log)
            self._ctx.counters.error.inc()
            return
        batch.add(txn, delivery)


class BatchConsumer:
    """Pool of consume workers sharing one stop signal.

    Usage:
        consumer = BatchConsumer(PipelineContext(store=store), ChannelPool(factory), workers=5)
        consumer.start()
        ...
        consumer.stop()   # each worker flushes what it holds

    ``store`` defaults to ``context.store``.
    """

    def __init__(
        self,
        context: PipelineContext,
        channels: ChannelPool[ConsumeChannel],
        store: Optional[IdempotentStore] = None,
        *,
        workers: int = 5,
        batch_config: Optional[BatchConfig] = None,
    ):
        if workers <= 0:
            raise ValueError("workers must be > 0")
        store = store if store is not None else context.store
        if store is None:
            raise ValueError("no store given and context.store is not set")
        self._stop = threading.Event()
        self._workers: List[ConsumeWorker] = [
            ConsumeWorker(
                i, channels, store, context, batch_config=batch_config, stop=self._stop
            )
            for i in range(workers)
        ]

    def start(self) -> None:
        for w in self._workers:
            w.start()
        logger.info(f"BatchConsumer started with {len(self._workers)} workers")

    def workers_alive(self) -> int:
        return sum(1 for w in self._workers if w.is_alive())

    def wait(self, timeout: Optional[float] = None) -> None:
        for w in self._workers:
            w.join(timeout)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        self.wait(timeout)
        logger.info("BatchConsumer stopped")

    def __enter__(self) -> "BatchConsumer":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
