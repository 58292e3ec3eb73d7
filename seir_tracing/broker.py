"""Output channels between agents, locations and the driver.

A Broker is fire-and-forget: `send` publishes one batch, returns nothing and
exposes no backpressure. Ordering is guaranteed only within a batch.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Generic, List, Sequence, TypeVar

T = TypeVar('T')


class Broker(ABC, Generic[T]):
    """Publishes batches of T to whoever consumes them."""

    @abstractmethod
    def send(self, items: Sequence[T]) -> None:
        """Publish one batch."""


class CollectingBroker(Broker[T]):
    """Accumulates every sent item in memory.

    Safe for concurrent `send` from many agents; batches are appended
    atomically so items of one batch stay contiguous.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: List[T] = []
        self.n_batches = 0

    def send(self, items: Sequence[T]) -> None:
        with self._lock:
            self._items.extend(items)
            self.n_batches += 1

    @property
    def items(self) -> List[T]:
        """Snapshot of everything received so far."""
        with self._lock:
            return list(self._items)

    def drain(self) -> List[T]:
        """Return all collected items and clear the buffer."""
        with self._lock:
            items, self._items = self._items, []
            self.n_batches = 0
        return items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
