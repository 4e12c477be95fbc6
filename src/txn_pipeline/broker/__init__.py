"""Broker seam: channel protocols, exclusive channel leases, RabbitMQ adapters."""

from .types import Confirmation, PublishChannel, ConsumeChannel, Delivery
from .channels import ChannelPool

__all__ = [
    "Confirmation",
    "PublishChannel",
    "ConsumeChannel",
    "Delivery",
    "ChannelPool",
]
