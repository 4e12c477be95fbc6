"""
Error taxonomy for the transaction pipeline.

None of these is fatal to a worker pool except ``ChannelSetupError``, which
stops the worker that raised it and marks the process unhealthy.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class PipelineError(Exception):
    """Base error for the transaction pipeline."""

    pass


class ParseReason(str, Enum):
    MISSING_FIELD = "missing_field"
    FIELD_CONVERSION = "field_conversion"
    INVALID_DATE = "invalid_date"


class ParseError(PipelineError):
    """Input record rejected as a whole; skipped and counted, never forwarded."""

    def __init__(self, reason: ParseReason, field: Optional[str] = None, detail: str = ""):
        self.reason = reason
        self.field = field
        msg = reason.value if field is None else f"{reason.value}: {field}"
        super().__init__(f"{msg} ({detail})" if detail else msg)


class DeserializeError(PipelineError):
    """Message body could not be decoded into a Transaction."""

    pass


class PublishTimeout(PipelineError):
    """No broker confirmation arrived within the confirm timeout."""

    pass


class PublishNack(PipelineError):
    """Broker rejected a published message."""

    pass


class BrokerError(PipelineError):
    """Broker I/O failure on an already open channel."""

    pass


class ChannelSetupError(BrokerError):
    """Broker channel could not be opened or configured."""

    pass


class StreamClosed(BrokerError):
    """The delivery stream of a consume channel has ended."""

    pass
