"""Transaction pipeline (CSV -> RabbitMQ -> PostgreSQL)

Reliable publishing with broker confirmations, batched idempotent
consumption with per-record fallback, and shared pipeline counters.
"""

from .batch import Batch, BatchConfig
from .codec import decode, encode, parse
from .consumer import BatchApplier, BatchConsumer, ConsumeWorker
from .context import PipelineContext
from .errors import (
    BrokerError,
    ChannelSetupError,
    DeserializeError,
    ParseError,
    ParseReason,
    PipelineError,
    PublishNack,
    PublishTimeout,
    StreamClosed,
)
from .publisher import PublishOutcome, PublishWorker, ReliablePublisher

__version__ = "0.1.0"
__all__ = [
    "Batch",
    "BatchConfig",
    "parse",
    "encode",
    "decode",
    "BatchApplier",
    "BatchConsumer",
    "ConsumeWorker",
    "PipelineContext",
    "PublishOutcome",
    "PublishWorker",
    "ReliablePublisher",
    # errors
    "PipelineError",
    "ParseError",
    "ParseReason",
    "DeserializeError",
    "PublishTimeout",
    "PublishNack",
    "BrokerError",
    "ChannelSetupError",
    "StreamClosed",
]
