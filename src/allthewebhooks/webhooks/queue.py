"""Delivery Queue - bounded per-target FIFO.

Producers (the host's event thread) call ``enqueue`` which never blocks:
when the queue is full the delivery is refused and the caller counts the
drop. The target's worker is the only consumer. It can hand deliveries back
with ``requeue`` for a retry or a rate-limit re-check. Those go to the tail
and are never refused, so the queue holds at most ``capacity + 1`` items
(the one the worker was holding).
"""

from collections import deque
from typing import Callable, Optional
import threading
import time

from .models import QueuedDelivery

DEFAULT_CAPACITY = 1000


class DeliveryQueue:
    """Bounded FIFO with per-item ready times.

    ``get`` returns the oldest delivery whose ``ready_at`` has passed, so a
    retry waiting out its backoff does not hold up fresh deliveries behind
    it.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize queue.

        Args:
            capacity: Maximum number of deliveries accepted from producers.
            clock: Monotonic time source (seconds), matching ``ready_at``.
        """
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._clock = clock
        self._items: deque[QueuedDelivery] = deque()
        self._cond = threading.Condition()
        self._closed = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    @property
    def closed(self) -> bool:
        return self._closed

    def enqueue(self, delivery: QueuedDelivery) -> bool:
        """Add a delivery from a producer.

        Returns:
            False if the queue is full or closed; the delivery is not kept.
        """
        with self._cond:
            if self._closed or len(self._items) >= self.capacity:
                return False
            self._items.append(delivery)
            self._cond.notify()
            return True

    def requeue(self, delivery: QueuedDelivery) -> bool:
        """Return a worker-owned delivery to the tail.

        Returns:
            False only if the queue has been closed.
        """
        with self._cond:
            if self._closed:
                return False
            self._items.append(delivery)
            self._cond.notify()
            return True

    def get(self, timeout: Optional[float] = None) -> Optional[QueuedDelivery]:
        """Take the first ready delivery, waiting up to ``timeout`` seconds.

        Returns:
            The delivery, or None on timeout or once the queue is closed and
            nothing is ready.
        """
        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                now = self._clock()
                next_ready: Optional[float] = None
                for index, delivery in enumerate(self._items):
                    if delivery.ready_at <= now:
                        del self._items[index]
                        return delivery
                    if next_ready is None or delivery.ready_at < next_ready:
                        next_ready = delivery.ready_at

                if self._closed:
                    return None

                wait = None
                if next_ready is not None:
                    wait = next_ready - now
                if deadline is not None:
                    remaining = deadline - now
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def drain(self) -> list[QueuedDelivery]:
        """Remove and return everything still queued."""
        with self._cond:
            items = list(self._items)
            self._items.clear()
            return items

    def close(self) -> None:
        """Refuse further deliveries and wake any waiting consumer."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()

