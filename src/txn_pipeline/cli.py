from __future__ import annotations

import json
import signal
import sys
import threading
from dataclasses import asdict
from typing import Optional

import typer
from loguru import logger

from txn_store import StoreError, TransactionStore

from .batch import BatchConfig
from .broker.rabbitmq import RabbitConfig, consume_channel_factory, publish_channel_factory
from .context import PipelineContext, log_stats_periodically
from .logging_setup import configure_logging
from .runner import run_consumer, run_producer
from .service import create_app, serve_in_background
from .settings import Settings, get_settings

app = typer.Typer(help="Transaction pipeline CLI (CSV -> RabbitMQ -> PostgreSQL)")


def _rabbit_config(settings: Settings, prefetch: Optional[int] = None) -> RabbitConfig:
    return RabbitConfig(
        url=settings.RABBITMQ_URL,
        queue=settings.QUEUE_NAME,
        prefetch=prefetch or settings.PREFETCH,
        connect_attempts=settings.CONNECT_ATTEMPTS,
        connect_backoff=settings.CONNECT_BACKOFF,
    )


@app.callback()
def main() -> None:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)


@app.command()
def produce(
    input_path: Optional[str] = typer.Option(
        None, "--input", help="CSV file or directory (first *.csv is used)"
    ),
    workers: Optional[int] = typer.Option(None, "--workers", min=1),
    keep_serving: bool = typer.Option(
        False, "--keep-serving", help="Keep /healthz and /metrics up after publishing"
    ),
):
    """Publish every record of the input CSV with broker confirmations."""
    settings = get_settings()
    ctx = PipelineContext()
    serve_in_background(create_app(ctx, title="transaction-producer"), settings.PRODUCER_HTTP_PORT)

    try:
        summary = run_producer(
            settings,
            ctx,
            publish_channel_factory(_rabbit_config(settings)),
            input_path=input_path,
            workers=workers,
        )
    except FileNotFoundError as e:
        logger.error(f"Input not found: {e}")
        sys.exit(1)

    typer.echo(json.dumps(asdict(summary), indent=2))
    if not ctx.healthy:
        sys.exit(1)
    if keep_serving:
        logger.info("Publishing done; serving metrics until interrupted")
        threading.Event().wait()


@app.command()
def consume(
    workers: Optional[int] = typer.Option(None, "--workers", min=1),
    prefetch: Optional[int] = typer.Option(None, "--prefetch", min=1),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", min=1),
    flush_interval: Optional[float] = typer.Option(None, "--flush-interval", min=0.01),
):
    """Consume transactions into PostgreSQL until SIGINT/SIGTERM."""
    settings = get_settings()
    try:
        store = TransactionStore(settings.store_config())
        store.ensure_schema()
    except StoreError as e:
        logger.error(f"Failed to prepare store: {e}")
        sys.exit(1)

    ctx = PipelineContext(store=store)
    serve_in_background(create_app(ctx, title="transaction-consumer"), settings.CONSUMER_HTTP_PORT)

    stop = threading.Event()

    def _on_signal(signum, _frame):
        logger.info(f"Received signal {signum}; stopping consumers")
        stop.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)
    log_stats_periodically(ctx, settings.STATS_INTERVAL, stop)

    cfg = BatchConfig(
        max_size=batch_size or settings.BATCH_SIZE,
        max_age=flush_interval or settings.FLUSH_INTERVAL,
    )
    try:
        run_consumer(
            settings,
            ctx,
            consume_channel_factory(_rabbit_config(settings, prefetch)),
            stop,
            workers=workers,
            batch_config=cfg,
        )
    finally:
        store.close()
    s = ctx.snapshot()
    typer.echo(json.dumps(asdict(s), indent=2))
    if not ctx.healthy:
        sys.exit(1)


@app.command("init-db")
def init_db():
    """Create the transactions table if it does not exist."""
    settings = get_settings()
    try:
        with TransactionStore(settings.store_config()) as store:
            store.ensure_schema()
    except StoreError as e:
        logger.error(f"Failed to create table: {e}")
        sys.exit(1)
    logger.success(f"Table '{settings.TABLE_NAME}' is ready")


@app.command()
def ping():
    """Check store connectivity."""
    settings = get_settings()
    try:
        with TransactionStore(settings.store_config()) as store:
            ok = store.health()
    except StoreError as e:
        typer.echo(json.dumps({"ok": False, "error": str(e)}, indent=2))
        sys.exit(1)
    typer.echo(json.dumps({"ok": ok}, indent=2))


if __name__ == "__main__":
    app()
