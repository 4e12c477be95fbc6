from __future__ import annotations

import queue
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class Confirmation:
    """Broker ack/nack for publish sequence ``delivery_tag``.

    With ``multiple`` set the outcome covers every tag up to and including
    ``delivery_tag`` on the same channel, as an AMQP ``basic.ack`` may. The
    pika blocking adapter settles each publish on its own and never sets it;
    adapters reading raw ``basic.ack`` frames do.
    """

    delivery_tag: int
    ack: bool
    multiple: bool = False

    def covers(self, seq: int) -> bool:
        return self.delivery_tag == seq or (self.multiple and self.delivery_tag >= seq)


@runtime_checkable
class PublishChannel(Protocol):
    """Confirm-mode channel owned by exactly one publish worker.

    ``publish`` returns the publish sequence number (1-based, per channel);
    confirmations for it show up on ``confirmations`` in publish order.
    """

    confirmations: "queue.Queue[Confirmation]"

    def publish(self, body: bytes, *, message_id: str) -> int: ...

    def close(self) -> None: ...


@runtime_checkable
class Delivery(Protocol):
    """Handle to one received message."""

    body: bytes
    message_id: Optional[str]

    def acknowledge(self) -> None: ...

    def requeue_or_drop(self, redeliver: bool) -> None: ...


@runtime_checkable
class ConsumeChannel(Protocol):
    """Manual-ack channel with bounded prefetch, owned by one consume worker."""

    def next_delivery(self, timeout: float) -> Optional[Delivery]:
        """Wait up to ``timeout`` seconds; None when nothing arrived.

        Raises StreamClosed once the broker side has gone away.
        """
        ...

    def close(self) -> None: ...
