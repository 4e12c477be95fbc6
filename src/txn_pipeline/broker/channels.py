"""
Exclusive per-worker channel leases.

A confirm stream is per channel and ordered, so a channel handed to one
worker is never handed to another until it has been released.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Callable, Dict, Generic, Iterator, TypeVar

from loguru import logger

from ..errors import ChannelSetupError

C = TypeVar("C")

ChannelFactory = Callable[[int], C]


class ChannelPool(Generic[C]):
    """Hands one freshly opened channel to each worker id."""

    def __init__(self, factory: ChannelFactory[C], *, name: str = "channels"):
        self._factory = factory
        self._name = name
        self._leased: Dict[int, C] = {}
        self._lock = threading.Lock()

    @property
    def in_use(self) -> int:
        with self._lock:
            return len(self._leased)

    @contextmanager
    def lease(self, worker_id: int) -> Iterator[C]:
        with self._lock:
            if worker_id in self._leased:
                raise ChannelSetupError(f"{self._name}: worker {worker_id} already holds a channel")
        try:
            channel = self._factory(worker_id)
        except ChannelSetupError:
            raise
        except Exception as e:
            raise ChannelSetupError(f"{self._name}: could not open channel: {e}") from e

        with self._lock:
            self._leased[worker_id] = channel
        logger.debug(f"{self._name}: channel leased to worker {worker_id}")
        try:
            yield channel
        finally:
            with self._lock:
                self._leased.pop(worker_id, None)
            try:
                channel.close()
            except Exception as e:
                logger.debug(f"{self._name}: error closing channel of worker {worker_id}: {e}")
