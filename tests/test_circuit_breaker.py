"""Tests for the circuit breaker module."""

import pytest

from allthewebhooks.webhooks.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from allthewebhooks.webhooks.errors import CircuitOpenError

from conftest import FakeClock


class TestCircuitBreaker:
    """Tests for CircuitBreaker."""

    def test_initial_state(self):
        """Test initial state is closed."""
        breaker = CircuitBreaker("test")

        assert breaker.is_closed
        assert not breaker.is_open
        assert breaker.state == CircuitState.CLOSED

    def test_allow_request_when_closed(self):
        """Test requests allowed when closed."""
        breaker = CircuitBreaker("test")

        assert breaker.allow_request() is True

    def test_opens_after_threshold_failures(self):
        """Test circuit opens after failure threshold."""
        config = CircuitBreakerConfig(failure_threshold=3)
        breaker = CircuitBreaker("test", config)

        breaker.record_failure()
        breaker.record_failure()
        assert breaker.is_closed

        breaker.record_failure()
        assert breaker.is_open
        assert breaker.state == CircuitState.OPEN

    def test_success_resets_consecutive_failures(self):
        """Test that only consecutive failures count."""
        config = CircuitBreakerConfig(failure_threshold=3)
        breaker = CircuitBreaker("test", config)

        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        breaker.record_failure()

        assert breaker.is_closed

    def test_blocks_requests_when_open(self):
        """Test requests blocked when circuit is open."""
        config = CircuitBreakerConfig(failure_threshold=1, cooldown_seconds=60)
        breaker = CircuitBreaker("test", config, clock=FakeClock())

        breaker.record_failure()  # Opens the circuit

        with pytest.raises(CircuitOpenError) as exc_info:
            breaker.allow_request()

        assert exc_info.value.name == "test"
        assert breaker.stats.total_blocked == 1

    def test_threshold_three_full_cycle(self):
        """Test CLOSED -> OPEN -> HALF_OPEN -> CLOSED with a fake clock."""
        clock = FakeClock()
        config = CircuitBreakerConfig(failure_threshold=3, cooldown_seconds=30)
        breaker = CircuitBreaker("test", config, clock=clock)

        for _ in range(3):
            breaker.allow_request()
            breaker.record_failure()
        assert breaker.is_open

        clock.advance(29.9)
        with pytest.raises(CircuitOpenError):
            breaker.allow_request()
        assert breaker.seconds_until_probe() == pytest.approx(0.1)

        clock.advance(0.2)
        assert breaker.allow_request() is True
        assert breaker.is_half_open

        breaker.record_success()
        assert breaker.is_closed
        assert breaker.stats.consecutive_failures == 0

    def test_closes_after_success_threshold_in_half_open(self):
        """Test circuit closes after successes in half-open."""
        config = CircuitBreakerConfig(
            failure_threshold=1,
            success_threshold=2,
            cooldown_seconds=0,
        )
        breaker = CircuitBreaker("test", config)

        # Open the circuit
        breaker.record_failure()

        # Transition to half-open
        breaker.allow_request()
        assert breaker.is_half_open

        breaker.record_success()
        assert breaker.is_half_open
        breaker.record_success()

        assert breaker.is_closed

    def test_reopens_on_failure_in_half_open(self):
        """Test a failed probe reopens and restarts the cool-down."""
        clock = FakeClock()
        config = CircuitBreakerConfig(failure_threshold=1, cooldown_seconds=10)
        breaker = CircuitBreaker("test", config, clock=clock)

        breaker.record_failure()  # Open
        clock.advance(10)
        breaker.allow_request()   # Half-open
        breaker.record_failure()  # Should reopen

        assert breaker.is_open
        assert breaker.seconds_until_probe() == pytest.approx(10)

    def test_manual_reset(self):
        """Test manual reset to closed."""
        config = CircuitBreakerConfig(failure_threshold=1)
        breaker = CircuitBreaker("test", config)

        breaker.record_failure()  # Open
        assert breaker.is_open

        breaker.reset()
        assert breaker.is_closed

    def test_reconfigure_keeps_state(self):
        """Test new thresholds apply without resetting the circuit."""
        breaker = CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=1))
        breaker.record_failure()

        breaker.reconfigure(CircuitBreakerConfig(failure_threshold=10))

        assert breaker.is_open
        assert breaker.config.failure_threshold == 10

    def test_snapshot(self):
        """Test the read-only view for health listings."""
        clock = FakeClock()
        breaker = CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=1), clock=clock)
        breaker.record_failure()

        snapshot = breaker.snapshot()
        data = snapshot.to_dict()

        assert snapshot.state == CircuitState.OPEN
        assert data["state"] == "open"
        assert data["opened_at"] is not None
        assert data["retry_at"] is not None
        assert data["total_failures"] == 1
        assert data["failure_rate"] == 100.0

    def test_snapshot_reports_half_open_after_cooldown(self):
        """Test an idle open circuit is listed as half-open once the cool-down passes."""
        clock = FakeClock()
        config = CircuitBreakerConfig(failure_threshold=1, cooldown_seconds=10)
        breaker = CircuitBreaker("test", config, clock=clock)
        breaker.record_failure()

        clock.advance(3600)

        snapshot = breaker.snapshot()
        assert snapshot.state == CircuitState.HALF_OPEN
        assert snapshot.retry_at is None
        assert breaker.current_state == CircuitState.HALF_OPEN
        # Nothing has run the probe yet
        assert breaker.state == CircuitState.OPEN

    def test_refresh_arms_probe(self):
        """Test refresh moves an open circuit to half-open only after the cool-down."""
        clock = FakeClock()
        config = CircuitBreakerConfig(failure_threshold=1, cooldown_seconds=10)
        breaker = CircuitBreaker("test", config, clock=clock)
        breaker.record_failure()

        clock.advance(5)
        assert breaker.refresh() == CircuitState.OPEN

        clock.advance(5)
        assert breaker.refresh() == CircuitState.HALF_OPEN
        assert breaker.is_half_open
        assert breaker.allow_request() is True
