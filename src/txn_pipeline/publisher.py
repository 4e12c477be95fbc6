"""
Reliable publisher: a worker pool draining a shared job queue.

Each worker owns one confirm-mode channel. Per job it publishes once and
waits up to ``confirm_timeout`` for the matching broker confirmation:

- ack           -> ``published`` += 1
- nack          -> ``failed`` += 1
- no answer     -> ``failed`` += 1

Nothing is retried here; resubmitting a job is the caller's decision.
A confirmation that shows up after its job timed out carries a sequence
number older than the one being waited on and is discarded by the next wait.
"""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from time import monotonic
from typing import Iterable, List, Optional

from loguru import logger

from txn_store.models import Transaction

from .broker.channels import ChannelPool
from .broker.types import Confirmation, PublishChannel
from .codec import encode
from .context import PipelineContext
from .errors import BrokerError, ChannelSetupError, PublishNack, PublishTimeout

DEFAULT_CONFIRM_TIMEOUT = 5.0

_STOP = object()
_PUT_POLL = 0.5


@dataclass(frozen=True)
class PublishOutcome:
    transaction_id: str
    ok: bool
    error: Optional[Exception] = None


class PublishWorker:
    """One publish worker; owns its channel for its whole life."""

    def __init__(
        self,
        worker_id: int,
        jobs: "queue.Queue",
        channels: ChannelPool[PublishChannel],
        context: PipelineContext,
        *,
        confirm_timeout: float = DEFAULT_CONFIRM_TIMEOUT,
    ):
        self.worker_id = worker_id
        self._jobs = jobs
        self._channels = channels
        self._ctx = context
        self._timeout = confirm_timeout
        self._log = logger.bind(role="publisher", worker=worker_id)
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self.run, name=f"publish-worker-{self.worker_id}", daemon=True
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
                self._log.info("Publish worker started")
                while True:
                    job = self._jobs.get()
                    try:
                        if job is _STOP:
                            break
                        self.publish_one(channel, job)
                    finally:
                        self._jobs.task_done()
        except ChannelSetupError as e:
            self._log.error(f"Channel setup failed: {e}")
            self._ctx.mark_unhealthy(f"publish worker {self.worker_id}: {e}")
            return
        self._log.info("Publish worker stopped")

    def publish_one(self, channel: PublishChannel, txn: Transaction) -> PublishOutcome:
        counters = self._ctx.counters
        try:
            seq = channel.publish(encode(txn), message_id=txn.id)
        except BrokerError as e:
            self._log.warning(f"Publish failed for id={txn.id}: {e}")
            counters.failed.inc()
            return PublishOutcome(txn.id, False, e)

        conf = self._await_confirmation(channel, seq)
        if conf is None:
            self._log.warning(f"Timeout waiting for confirm of id={txn.id} (seq={seq})")
            counters.failed.inc()
            return PublishOutcome(txn.id, False, PublishTimeout(txn.id))
        if not conf.ack:
            self._log.warning(f"Nack received for id={txn.id} (seq={seq})")
            counters.failed.inc()
            return PublishOutcome(txn.id, False, PublishNack(txn.id))
        counters.published.inc()
        return PublishOutcome(txn.id, True)

    def _await_confirmation(self, channel: PublishChannel, seq: int) -> Optional[Confirmation]:
        deadline = monotonic() + self._timeout
        while True:
            remaining = deadline - monotonic()
            if remaining <= 0:
                return None
            try:
                conf = channel.confirmations.get(timeout=remaining)
            except queue.Empty:
                return None
            if conf.covers(seq):
                return conf
            # Older sequence: its job already timed out and was counted.
            self._log.debug(
                f"Discarding late confirmation seq={conf.delivery_tag} ack={conf.ack} "
                f"(waiting for {seq})"
            )


class ReliablePublisher:
    """Pool of publish workers over one bounded job queue.

    Usage:
        with ReliablePublisher(ctx, ChannelPool(factory), workers=4) as pub:
            for txn in transactions:
                pub.submit(txn)
        # close() drains the queue and joins the workers
    """

    def __init__(
        self,
        context: PipelineContext,
        channels: ChannelPool[PublishChannel],
        *,
        workers: int = 4,
        queue_size: int = 500,
        confirm_timeout: float = DEFAULT_CONFIRM_TIMEOUT,
    ):
        if workers <= 0:
            raise ValueError("workers must be > 0")
        self._ctx = context
        self._jobs: "queue.Queue" = queue.Queue(maxsize=queue_size)
        self._workers: List[PublishWorker] = [
            PublishWorker(i, self._jobs, channels, context, confirm_timeout=confirm_timeout)
            for i in range(workers)
        ]
        self._started = False
        self._closed = False

    def start(self) -> None:
        if self._started:
            return
        for w in self._workers:
            w.start()
        self._started = True
        logger.info(f"ReliablePublisher started with {len(self._workers)} workers")

    def submit(self, txn: Transaction) -> None:
        """Enqueue one job; blocks while the job queue is full.

        Once no worker is alive the job is dropped at once and counted as failed.
        """
        if self._closed:
            raise RuntimeError("ReliablePublisher is closed")
        if not self._started:
            self.start()
        while self.workers_alive() > 0:
            try:
                self._jobs.put(txn, timeout=_PUT_POLL)
                return
            except queue.Full:
                continue
        logger.error(f"No live publish worker; dropping id={txn.id}")
        self._ctx.counters.failed.inc()

    def submit_all(self, txns: Iterable[Transaction]) -> int:
        n = 0
        for t in txns:
            self.submit(t)
            n += 1
        return n

    def workers_alive(self) -> int:
        return sum(1 for w in self._workers if w.is_alive())

    def close(self, timeout: Optional[float] = None) -> None:
        """Let workers drain every queued job, then stop them."""
        if self._closed:
            return
        self._closed = True
        if not self._started:
            return
        stops = self.workers_alive()
        while stops > 0:
            try:
                self._jobs.put(_STOP, timeout=_PUT_POLL)
                stops -= 1
            except queue.Full:
                # Nobody left to drain the queue.
                if self.workers_alive() == 0:
                    break
        for w in self._workers:
            w.join(timeout)
        # Workers that died on setup leave their stop markers (and jobs) behind.
        self._discard_leftovers()
        logger.info("ReliablePublisher stopped")

    def _discard_leftovers(self) -> None:
        dropped = 0
        while True:
            try:
                job = self._jobs.get_nowait()
            except queue.Empty:
                break
            self._jobs.task_done()
            if job is not _STOP:
                dropped += 1
                self._ctx.counters.failed.inc()
        if dropped:
            logger.warning(f"{dropped} queued jobs were never published (no live worker)")

    def __enter__(self) -> "ReliablePublisher":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
