"""Per-target token bucket.

Owned by the target's single worker thread, so it does no locking.
"""

from typing import Callable
import time


class TokenBucket:
    """Allows ``capacity`` sends per ``interval_seconds``, refilled smoothly.

    Example:
        >>> bucket = TokenBucket(capacity=5, interval_seconds=2.0)
        >>> bucket.try_acquire()
        True
    """

    def __init__(
        self,
        capacity: int,
        interval_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.capacity = capacity
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._tokens = float(capacity)
        self._updated = clock()

    @property
    def refill_rate(self) -> float:
        """Tokens per second."""
        return self.capacity / self.interval_seconds

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._updated
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_rate)
        self._updated = now

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens

    def try_acquire(self) -> bool:
        """Take a token if one is available."""
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    def seconds_until_available(self) -> float:
        """Time until the next token, 0 if one is available now."""
        self._refill()
        if self._tokens >= 1:
            return 0.0
        return (1 - self._tokens) / self.refill_rate

    def reconfigure(self, capacity: int, interval_seconds: float) -> None:
        """Apply new sizing after a reload, keeping the current fill level."""
        self._refill()
        self.capacity = max(1, capacity)
        self.interval_seconds = interval_seconds
        self._tokens = min(self._tokens, float(self.capacity))
