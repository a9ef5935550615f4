"""Tests for the bounded delivery queue and the token bucket."""

import threading
from dataclasses import replace

import pytest

from allthewebhooks.webhooks.models import QueuedDelivery
from allthewebhooks.webhooks.queue import DeliveryQueue
from allthewebhooks.webhooks.rate_limiter import TokenBucket

from conftest import FakeClock, make_event, make_target


def delivery(text="hi", **overrides):
    item = QueuedDelivery(
        event=make_event(player="Alice", text=text),
        target=make_target(),
        body=text.encode(),
    )
    return replace(item, **overrides) if overrides else item


# ============================================================================
# Queued Delivery Tests
# ============================================================================

class TestQueuedDelivery:
    """Tests for queued delivery invariants."""

    def test_attempt_bounds(self):
        """Test attempt must stay within 1..max_attempts."""
        with pytest.raises(ValueError):
            delivery(attempt=0)
        with pytest.raises(ValueError):
            delivery(attempt=6)

    def test_target_must_accept_kind(self):
        """Test an event kind the target does not subscribe to is rejected."""
        with pytest.raises(ValueError):
            QueuedDelivery(
                event=make_event("player.join"),
                target=make_target(),
                body=b"",
            )

    def test_delivery_id(self):
        """Test the id combines event and target."""
        item = delivery()

        assert item.delivery_id.endswith(":t1")


# ============================================================================
# Queue Tests
# ============================================================================

class TestDeliveryQueue:
    """Tests for DeliveryQueue."""

    def test_fifo_order(self):
        """Test deliveries come out in insertion order."""
        queue = DeliveryQueue(capacity=3)
        items = [delivery(str(i)) for i in range(3)]
        for item in items:
            assert queue.enqueue(item)

        assert [queue.get(timeout=0) for _ in range(3)] == items

    def test_capacity_one_back_to_back(self):
        """Test that a second enqueue into a full queue is refused."""
        queue = DeliveryQueue(capacity=1)

        assert queue.enqueue(delivery("first")) is True
        assert queue.enqueue(delivery("second")) is False
        assert len(queue) == 1

    def test_requeue_ignores_bound(self):
        """Test that a worker can always hand a delivery back."""
        queue = DeliveryQueue(capacity=1)
        queue.enqueue(delivery("first"))

        assert queue.requeue(delivery("retry")) is True
        assert len(queue) == 2

    def test_get_skips_items_not_ready(self):
        """Test that a backing-off retry does not block fresh deliveries."""
        clock = FakeClock()
        queue = DeliveryQueue(capacity=5, clock=clock)
        waiting = delivery("retry", ready_at=clock() + 10)
        fresh = delivery("fresh")
        queue.requeue(waiting)
        queue.enqueue(fresh)

        assert queue.get(timeout=0) is fresh
        assert queue.get(timeout=0) is None

        clock.advance(10)
        assert queue.get(timeout=0) is waiting

    def test_get_times_out_when_empty(self):
        """Test that get returns None after the timeout."""
        assert DeliveryQueue().get(timeout=0.01) is None

    def test_get_wakes_on_enqueue(self):
        """Test a blocked consumer sees a new delivery."""
        queue = DeliveryQueue()
        received = []
        consumer = threading.Thread(target=lambda: received.append(queue.get(timeout=5)))
        consumer.start()

        item = delivery()
        queue.enqueue(item)
        consumer.join(5)

        assert received == [item]

    def test_close_refuses_and_drains(self):
        """Test closing and draining the queue."""
        queue = DeliveryQueue()
        queue.enqueue(delivery("a"))
        queue.close()

        assert queue.closed
        assert queue.enqueue(delivery("b")) is False
        assert queue.requeue(delivery("c")) is False
        assert len(queue.drain()) == 1
        assert queue.get(timeout=0) is None

    def test_invalid_capacity(self):
        """Test capacity must be positive."""
        with pytest.raises(ValueError):
            DeliveryQueue(capacity=0)


# ============================================================================
# Token Bucket Tests
# ============================================================================

class TestTokenBucket:
    """Tests for TokenBucket."""

    def test_burst_then_refused(self):
        """Test that the bucket allows its capacity then refuses."""
        clock = FakeClock()
        bucket = TokenBucket(capacity=5, interval_seconds=2.0, clock=clock)

        assert all(bucket.try_acquire() for _ in range(5))
        assert bucket.try_acquire() is False

    def test_refill_over_time(self):
        """Test tokens come back at capacity per interval."""
        clock = FakeClock()
        bucket = TokenBucket(capacity=5, interval_seconds=2.0, clock=clock)
        for _ in range(5):
            bucket.try_acquire()

        assert bucket.seconds_until_available() == pytest.approx(0.4)

        clock.advance(0.5)
        assert bucket.try_acquire() is True
        assert bucket.try_acquire() is False

    def test_never_exceeds_capacity(self):
        """Test that idle time does not bank extra tokens."""
        clock = FakeClock()
        bucket = TokenBucket(capacity=2, interval_seconds=1.0, clock=clock)

        clock.advance(100)

        assert bucket.available == 2

    def test_reconfigure_keeps_fill_level(self):
        """Test resizing after a reload."""
        clock = FakeClock()
        bucket = TokenBucket(capacity=5, interval_seconds=1.0, clock=clock)
        bucket.try_acquire()

        bucket.reconfigure(capacity=2, interval_seconds=1.0)

        assert bucket.available == 2
