"""
Producer and consumer runs: wiring of source, codec, pools and store.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from time import monotonic
from typing import Callable, Iterable, List, Optional

from loguru import logger

from .batch import BatchConfig
from .broker.channels import ChannelPool
from .broker.types import ConsumeChannel, PublishChannel
from .codec import parse
from .consumer import BatchConsumer, IdempotentStore
from .context import PipelineContext
from .errors import ParseError
from .publisher import ReliablePublisher
from .settings import Settings
from .source import find_first_csv, iter_records

PROGRESS_EVERY = 1000


@dataclass(frozen=True)
class ProduceSummary:
    lines: int
    parsed: int
    rejected: int
    published: int
    failed: int
    elapsed: float


def publish_records(
    records: Iterable[List[str]], publisher: ReliablePublisher, context: PipelineContext
) -> tuple[int, int]:
    """Parse and submit every record; returns (lines, rejected)."""
    lines = rejected = 0
    for fields in records:
        lines += 1
        try:
            txn = parse(fields)
        except ParseError as e:
            rejected += 1
            context.counters.error.inc()
            logger.warning(f"Line {lines} rejected: {e}")
            continue
        publisher.submit(txn)
        if lines % PROGRESS_EVERY == 0:
            logger.info(f"Read {lines} lines...")
    return lines, rejected


def run_producer(
    settings: Settings,
    context: PipelineContext,
    channel_factory: Callable[[int], PublishChannel],
    *,
    input_path: Optional[str] = None,
    workers: Optional[int] = None,
) -> ProduceSummary:
    csv_file = find_first_csv(input_path or settings.INPUT_PATH)
    logger.info(f"Processing file: {csv_file}")

    t0 = monotonic()
    before = context.snapshot()
    publisher = ReliablePublisher(
        context,
        ChannelPool(channel_factory, name="publish-channels"),
        workers=workers or settings.PUBLISH_WORKERS,
        queue_size=settings.JOB_QUEUE_SIZE,
        confirm_timeout=settings.CONFIRM_TIMEOUT,
    )
    with publisher:
        lines, rejected = publish_records(
            iter_records(csv_file, delimiter=settings.CSV_DELIMITER), publisher, context
        )
    after = context.snapshot()

    summary = ProduceSummary(
        lines=lines,
        parsed=lines - rejected,
        rejected=rejected,
        published=after.published - before.published,
        failed=after.failed - before.failed,
        elapsed=monotonic() - t0,
    )
    logger.info(
        f"Publishing finished in {summary.elapsed:.2f}s: lines={summary.lines} "
        f"published={summary.published} failed={summary.failed} rejected={summary.rejected}"
    )
    return summary


def run_consumer(
    settings: Settings,
    context: PipelineContext,
    channel_factory: Callable[[int], ConsumeChannel],
    stop: threading.Event,
    *,
    store: Optional[IdempotentStore] = None,
    workers: Optional[int] = None,
    batch_config: Optional[BatchConfig] = None,
) -> None:
    """Run the consumer pool until ``stop`` is set or every worker has exited.

    Writes go to ``store`` when given, otherwise to ``context.store``.
    """
    cfg = batch_config or BatchConfig(max_size=settings.BATCH_SIZE, max_age=settings.FLUSH_INTERVAL)
    consumer = BatchConsumer(
        context,
        ChannelPool(channel_factory, name="consume-channels"),
        store,
        workers=workers or settings.CONSUME_WORKERS,
        batch_config=cfg,
    )
    logger.info(
        f"Starting consumer: workers={workers or settings.CONSUME_WORKERS} "
        f"prefetch={settings.PREFETCH} batch={cfg.max_size} flush={cfg.max_age}s "
        f"queue={settings.QUEUE_NAME}"
    )
    consumer.start()
    try:
        while not stop.wait(0.5):
            if consumer.workers_alive() == 0:
                logger.error("All consume workers have exited")
                break
    finally:
        consumer.stop()
