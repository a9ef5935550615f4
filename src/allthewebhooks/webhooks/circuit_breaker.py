"""Circuit Breaker - stop hammering a dead webhook endpoint.

Each target's worker owns one breaker. After ``failure_threshold``
consecutive failures the circuit opens and deliveries are dropped without
an HTTP call. Once ``cooldown_seconds`` have passed the circuit turns
half-open and the next delivery is let through as a probe: success closes
the circuit, failure opens it again with a fresh cool-down.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional
import logging
import time

from .errors import CircuitOpenError

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"        # Normal operation, deliveries pass through
    OPEN = "open"            # Failing, deliveries are dropped
    HALF_OPEN = "half_open"  # Probing whether the endpoint recovered


@dataclass
class CircuitStats:
    """Statistics for a circuit breaker."""

    consecutive_failures: int = 0
    half_open_successes: int = 0
    total_calls: int = 0
    total_failures: int = 0
    total_blocked: int = 0
    last_failure_time: Optional[datetime] = None
    last_success_time: Optional[datetime] = None
    state_changed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def record_success(self) -> None:
        """Record a successful call."""
        self.total_calls += 1
        self.consecutive_failures = 0
        self.last_success_time = datetime.now(timezone.utc)

    def record_failure(self) -> None:
        """Record a failed call."""
        self.total_calls += 1
        self.total_failures += 1
        self.consecutive_failures += 1
        self.last_failure_time = datetime.now(timezone.utc)

    def record_blocked(self) -> None:
        """Record a blocked call (circuit open)."""
        self.total_blocked += 1

    @property
    def failure_rate(self) -> float:
        """Failure rate as percentage."""
        if self.total_calls == 0:
            return 0.0
        return (self.total_failures / self.total_calls) * 100


@dataclass
class CircuitBreakerConfig:
    """Configuration for a circuit breaker."""

    failure_threshold: int = 5     # Consecutive failures before opening
    cooldown_seconds: float = 30.0  # Time open before a half-open probe
    success_threshold: int = 1     # Half-open successes before closing


@dataclass(frozen=True)
class CircuitSnapshot:
    """Read-only view of a breaker for health listings."""

    name: str
    state: CircuitState
    consecutive_failures: int
    opened_at: Optional[datetime]
    retry_at: Optional[datetime]
    total_calls: int
    total_failures: int
    total_blocked: int
    failure_rate: float

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "state": self.state.value,
            "consecutive_failures": self.consecutive_failures,
            "opened_at": self.opened_at.isoformat() if self.opened_at else None,
            "retry_at": self.retry_at.isoformat() if self.retry_at else None,
            "total_calls": self.total_calls,
            "total_failures": self.total_failures,
            "total_blocked": self.total_blocked,
            "failure_rate": self.failure_rate,
        }


class CircuitBreaker:
    """Closed / open / half-open state machine for one target.

    Not thread-safe: only the owning worker calls the mutating methods.
    ``snapshot()`` may be read from other threads.

    Example:
        >>> breaker = CircuitBreaker("discord")
        >>> breaker.allow_request()
        True
        >>> breaker.record_failure()
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize circuit breaker.

        Args:
            name: Identifier for this circuit (the target id).
            config: Configuration options.
            clock: Monotonic time source in seconds.
        """
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.state = CircuitState.CLOSED
        self.stats = CircuitStats()
        self.opened_at: Optional[float] = None
        self._clock = clock

    @property
    def is_closed(self) -> bool:
        """Check if circuit is closed (normal operation)."""
        return self.state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        """Check if circuit is open (blocking deliveries)."""
        return self.state == CircuitState.OPEN

    @property
    def is_half_open(self) -> bool:
        """Check if circuit is half-open (testing recovery)."""
        return self.state == CircuitState.HALF_OPEN

    @property
    def current_state(self) -> CircuitState:
        """State as of now; an open circuit past its cool-down reads half-open."""
        if self.state == CircuitState.OPEN and self.seconds_until_probe() <= 0:
            return CircuitState.HALF_OPEN
        return self.state

    def seconds_until_probe(self) -> float:
        """Remaining cool-down, 0 unless the circuit is open."""
        if self.state != CircuitState.OPEN or self.opened_at is None:
            return 0.0
        elapsed = self._clock() - self.opened_at
        return max(0.0, self.config.cooldown_seconds - elapsed)

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self.state
        self.state = new_state
        self.stats.state_changed_at = datetime.now(timezone.utc)
        self.stats.half_open_successes = 0

        if new_state == CircuitState.OPEN:
            self.opened_at = self._clock()
        elif new_state == CircuitState.CLOSED:
            self.opened_at = None
            self.stats.consecutive_failures = 0

        level = logging.WARNING if new_state == CircuitState.OPEN else logging.INFO
        logger.log(level, f"Circuit '{self.name}': {old_state.value} -> {new_state.value}")

    def refresh(self) -> CircuitState:
        """Move an open circuit whose cool-down has elapsed to half-open.

        Called by the owning worker while idle so the probe is armed even
        when no delivery arrives.
        """
        if self.state == CircuitState.OPEN and self.seconds_until_probe() <= 0:
            self._transition_to(CircuitState.HALF_OPEN)
        return self.state

    def allow_request(self) -> bool:
        """Admission check before a delivery attempt.

        Returns:
            bool: True if the delivery may proceed.

        Raises:
            CircuitOpenError: If the circuit is open and cooling down.
        """
        if self.refresh() == CircuitState.OPEN:
            remaining = self.seconds_until_probe()
            self.stats.record_blocked()
            retry_at = datetime.now(timezone.utc) + timedelta(seconds=remaining)
            raise CircuitOpenError(self.name, retry_at)

        return True

    def record_success(self) -> None:
        """Record a successful delivery."""
        self.stats.record_success()

        if self.state == CircuitState.HALF_OPEN:
            self.stats.half_open_successes += 1
            if self.stats.half_open_successes >= self.config.success_threshold:
                self._transition_to(CircuitState.CLOSED)

    def record_failure(self, error: Optional[Exception] = None) -> None:
        """Record a failed delivery.

        Args:
            error: Optional exception that caused the failure.
        """
        self.stats.record_failure()

        if self.state == CircuitState.HALF_OPEN:
            # Any failure while probing reopens and restarts the cool-down
            self._transition_to(CircuitState.OPEN)
        elif self.state == CircuitState.CLOSED:
            if self.stats.consecutive_failures >= self.config.failure_threshold:
                self._transition_to(CircuitState.OPEN)

    def reconfigure(self, config: CircuitBreakerConfig) -> None:
        """Apply new thresholds after a reload without resetting state."""
        self.config = config

    def reset(self) -> None:
        """Manually reset the circuit to closed state."""
        self._transition_to(CircuitState.CLOSED)

    def snapshot(self) -> CircuitSnapshot:
        """Read-only view for health listings."""
        now_wall = datetime.now(timezone.utc)
        state = self.current_state
        opened_at = None
        retry_at = None
        if self.opened_at is not None:
            opened_at = now_wall - timedelta(seconds=self._clock() - self.opened_at)
            if state == CircuitState.OPEN:
                retry_at = now_wall + timedelta(seconds=self.seconds_until_probe())

        return CircuitSnapshot(
            name=self.name,
            state=state,
            consecutive_failures=self.stats.consecutive_failures,
            opened_at=opened_at,
            retry_at=retry_at,
            total_calls=self.stats.total_calls,
            total_failures=self.stats.total_failures,
            total_blocked=self.stats.total_blocked,
            failure_rate=self.stats.failure_rate,
        )
