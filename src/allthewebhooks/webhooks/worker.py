"""Delivery Worker - one thread per webhook target.

The worker is the only consumer of its target's queue and the only owner
of the target's circuit breaker and token bucket. For each delivery it:

1. asks the circuit breaker for admission (open circuit: drop),
2. takes a rate-limit token (none: re-check later, then drop),
3. POSTs the body,
4. on failure schedules a retry with exponential backoff until
   ``max_attempts`` is reached.

Every step ends in a counter increment; nothing is raised to the producer.
"""

from collections import deque
from dataclasses import replace
from typing import Callable, Deque, Optional, Tuple
import logging
import random
import threading
import time

import httpx

from ..core.stats import StatsTracker
from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from .errors import CircuitOpenError, DeliveryFailure
from .models import DeliveryOutcome, DeliveryResult, QueuedDelivery, WebhookTarget
from .queue import DEFAULT_CAPACITY, DeliveryQueue
from .rate_limiter import TokenBucket
from .security import DEFAULT_USER_AGENT, build_headers

logger = logging.getLogger(__name__)

# How often an idle worker wakes to check for shutdown
POLL_INTERVAL_SECONDS = 0.1
# Response bodies kept in error messages
MAX_ERROR_BODY = 200


class DeliveryWorker(threading.Thread):
    """Consumes one target's queue and performs the HTTP deliveries.

    Example:
        worker = DeliveryWorker(target, stats)
        worker.start()
        worker.queue.enqueue(QueuedDelivery(event, target, body))
        ...
        worker.stop(grace_seconds=5)
    """

    def __init__(
        self,
        target: WebhookTarget,
        stats: StatsTracker,
        capacity: int = DEFAULT_CAPACITY,
        circuit_config: Optional[CircuitBreakerConfig] = None,
        http_timeout_seconds: float = 5.0,
        rate_limit_recheck_ms: int = 250,
        rate_limit_max_rechecks: int = 5,
        transport: Optional[httpx.BaseTransport] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
        history: Optional[Deque[DeliveryResult]] = None,
    ):
        """Initialize worker.

        Args:
            target: The destination this worker serves.
            stats: Shared counters.
            capacity: Queue bound.
            circuit_config: Circuit breaker thresholds.
            http_timeout_seconds: Default per-request timeout.
            rate_limit_recheck_ms: Delay before re-checking a rate-limited delivery.
            rate_limit_max_rechecks: Re-checks before a delivery is dropped.
            transport: Optional httpx transport (tests use ``httpx.MockTransport``).
            user_agent: User-Agent header value.
            clock: Monotonic time source shared by queue, breaker and bucket.
            rng: Random source for retry jitter.
            history: Shared bounded deque receiving final delivery results.
        """
        super().__init__(name=f"webhook-worker-{target.id}", daemon=True)
        self._target = target
        self.stats = stats
        self.http_timeout_seconds = http_timeout_seconds
        self.rate_limit_recheck_ms = rate_limit_recheck_ms
        self.rate_limit_max_rechecks = rate_limit_max_rechecks
        self.user_agent = user_agent
        self._clock = clock
        self._rng = rng or random.Random()
        self.history: Deque[DeliveryResult] = history if history is not None else deque(maxlen=100)

        self.queue = DeliveryQueue(capacity, clock=clock)
        self.circuit = CircuitBreaker(target.id, circuit_config, clock=clock)
        self.bucket = TokenBucket(
            target.rate_limit.max_per_interval,
            target.rate_limit.interval_ms / 1000,
            clock=clock,
        )
        self._client = httpx.Client(transport=transport, timeout=http_timeout_seconds)

        self._abort = threading.Event()
        self._in_flight: Optional[QueuedDelivery] = None
        # Deliveries accepted by submit() that have not reached a final outcome
        self._outstanding = 0
        self._idle = threading.Condition()
        # Latest reloaded (target, circuit config, timeout) awaiting the worker thread
        self._pending_update: Optional[Tuple] = None
        self._update_lock = threading.Lock()

    @property
    def target(self) -> WebhookTarget:
        return self._target

    @property
    def in_flight(self) -> Optional[QueuedDelivery]:
        """Delivery currently being processed, if any."""
        return self._in_flight

    @property
    def pending(self) -> int:
        """Deliveries accepted but not yet finished."""
        with self._idle:
            return self._outstanding

    def submit(self, delivery: QueuedDelivery) -> bool:
        """Enqueue a fresh delivery without blocking.

        Returns:
            False if the queue is full or closed.
        """
        with self._idle:
            if not self.queue.enqueue(delivery):
                return False
            self._outstanding += 1
            return True

    def update_target(
        self,
        target: WebhookTarget,
        circuit_config: Optional[CircuitBreakerConfig] = None,
        http_timeout_seconds: Optional[float] = None,
    ) -> None:
        """Hand a reloaded target definition to the worker thread.

        The change is applied by ``run`` between deliveries, so breaker and
        bucket are only ever touched by this worker. Queued deliveries keep
        the target they were built with; circuit and bucket state carry over.
        """
        with self._update_lock:
            self._pending_update = (target, circuit_config, http_timeout_seconds)
        if not self.is_alive():
            self.apply_pending_update()

    def apply_pending_update(self) -> bool:
        """Apply the latest ``update_target`` call, if any."""
        with self._update_lock:
            pending, self._pending_update = self._pending_update, None
        if pending is None:
            return False

        target, circuit_config, http_timeout_seconds = pending
        self._target = target
        if circuit_config is not None:
            self.circuit.reconfigure(circuit_config)
        if http_timeout_seconds is not None:
            self.http_timeout_seconds = http_timeout_seconds
        self.bucket.reconfigure(
            target.rate_limit.max_per_interval,
            target.rate_limit.interval_ms / 1000,
        )
        logger.debug(f"Worker for {target.id} picked up reloaded configuration")
        return True

    def run(self) -> None:
        logger.debug(f"Worker for {self._target.id} started")
        while not self._abort.is_set():
            self.apply_pending_update()
            delivery = self.queue.get(timeout=POLL_INTERVAL_SECONDS)
            if delivery is None:
                if self.queue.closed:
                    break
                # Arm the half-open probe even when no delivery arrives
                self.circuit.refresh()
                continue
            if self._abort.is_set():
                # Shutdown grace ran out; give it back to be counted as abandoned
                self._abandon(delivery)
                break

            self._in_flight = delivery
            try:
                self.process(delivery)
            except Exception:
                logger.exception(f"Unexpected error delivering to {delivery.target.id}")
                self._abandon(delivery, reason="internal error")
            finally:
                self._in_flight = None
        logger.debug(f"Worker for {self._target.id} stopped")

    def process(self, delivery: QueuedDelivery) -> DeliveryOutcome:
        """Run one delivery through admission, rate limit, HTTP and retry."""
        target_id = delivery.target.id

        try:
            self.circuit.allow_request()
        except CircuitOpenError as e:
            self.stats.increment(target_id, "dropped_circuit_open", error=str(e))
            logger.warning(f"Dropping {delivery.event.kind} for {target_id}: {e}")
            return self._finish(delivery, DeliveryOutcome.CIRCUIT_OPEN, error_message=str(e))

        if not self.bucket.try_acquire():
            return self._rate_limited(delivery)

        try:
            status_code = self.send(delivery)
        except DeliveryFailure as e:
            return self._failed(delivery, e)

        self.circuit.record_success()
        self.stats.increment(target_id, "delivered", kind=delivery.event.kind)
        logger.info(
            f"Webhook delivered: {delivery.event.kind} -> {target_id} "
            f"(attempt {delivery.attempt}, HTTP {status_code})"
        )
        return self._finish(delivery, DeliveryOutcome.DELIVERED, status_code=status_code)

    def send(self, delivery: QueuedDelivery) -> int:
        """POST the body once.

        Returns:
            The 2xx status code.

        Raises:
            DeliveryFailure: On a transport error or a non-2xx status.
        """
        target = delivery.target
        timeout = target.timeout_seconds or self.http_timeout_seconds
        try:
            response = self._client.post(
                str(target.url),
                content=delivery.body,
                headers=build_headers(target, delivery.body, self.user_agent),
                timeout=timeout,
            )
        except httpx.HTTPError as e:
            raise DeliveryFailure(target.id, f"{type(e).__name__}: {e}") from e

        if not 200 <= response.status_code < 300:
            raise DeliveryFailure(
                target.id,
                f"HTTP {response.status_code}: {response.text[:MAX_ERROR_BODY]}",
                status_code=response.status_code,
            )
        return response.status_code

    def send_once(self, delivery: QueuedDelivery) -> DeliveryResult:
        """Single attempt outside the queue, circuit and rate limit.

        Used by the admin test endpoint; does not touch any counters.
        """
        try:
            status_code = self.send(delivery)
        except DeliveryFailure as e:
            return DeliveryResult.for_delivery(
                delivery, DeliveryOutcome.RETRY_EXHAUSTED, e.status_code, str(e)
            )
        return DeliveryResult.for_delivery(delivery, DeliveryOutcome.DELIVERED, status_code)

    def _rate_limited(self, delivery: QueuedDelivery) -> DeliveryOutcome:
        target_id = delivery.target.id
        if delivery.rechecks >= self.rate_limit_max_rechecks:
            self.stats.increment(target_id, "dropped_rate_limited", error="rate limited")
            logger.warning(
                f"Dropping {delivery.event.kind} for {target_id}: rate limit "
                f"still exceeded after {delivery.rechecks} re-checks"
            )
            return self._finish(delivery, DeliveryOutcome.RATE_LIMITED, error_message="rate limited")

        wait = max(self.rate_limit_recheck_ms / 1000, self.bucket.seconds_until_available())
        deferred = replace(delivery, rechecks=delivery.rechecks + 1, ready_at=self._clock() + wait)
        if not self.queue.requeue(deferred):
            self._abandon(deferred)
            return DeliveryOutcome.ABANDONED
        return DeliveryOutcome.RATE_LIMIT_DEFERRED

    def _failed(self, delivery: QueuedDelivery, error: DeliveryFailure) -> DeliveryOutcome:
        target_id = delivery.target.id
        policy = delivery.target.retry_policy

        self.circuit.record_failure(error)
        self.stats.increment(target_id, "failed_attempts", error=str(error))

        if delivery.attempt >= policy.max_attempts:
            self.stats.increment(target_id, "dropped_retry_exhausted")
            logger.error(
                f"Webhook delivery failed after {delivery.attempt} attempt(s) "
                f"for {target_id} ({delivery.event.kind}): {error}"
            )
            return self._finish(
                delivery,
                DeliveryOutcome.RETRY_EXHAUSTED,
                status_code=error.status_code,
                error_message=str(error),
            )

        delay_ms = policy.delay_ms(delivery.attempt, self._rng)
        retry = replace(
            delivery,
            attempt=delivery.attempt + 1,
            ready_at=self._clock() + delay_ms / 1000,
            rechecks=0,
            delays_ms=delivery.delays_ms + (delay_ms,),
        )
        if not self.queue.requeue(retry):
            self._abandon(retry)
            return DeliveryOutcome.ABANDONED

        self.stats.increment(target_id, "retries")
        logger.warning(
            f"Webhook delivery failed for {target_id}, retrying in {delay_ms:.0f}ms "
            f"(attempt {delivery.attempt}/{policy.max_attempts}): {error}"
        )
        return DeliveryOutcome.RETRY_SCHEDULED

    def _abandon(self, delivery: QueuedDelivery, reason: str = "shutdown") -> None:
        self.stats.increment(delivery.target.id, "abandoned", error=reason)
        self._finish(delivery, DeliveryOutcome.ABANDONED, error_message=reason)

    def _finish(
        self,
        delivery: QueuedDelivery,
        outcome: DeliveryOutcome,
        status_code: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> DeliveryOutcome:
        self.history.append(
            DeliveryResult.for_delivery(delivery, outcome, status_code, error_message)
        )
        with self._idle:
            self._outstanding = max(0, self._outstanding - 1)
            self._idle.notify_all()
        return outcome

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every submitted delivery reached a final outcome."""
        with self._idle:
            return self._idle.wait_for(lambda: self._outstanding == 0, timeout)

    def stop(self, grace_seconds: float = 5.0) -> int:
        """Stop accepting work, finish what is ready within the grace period.

        Deliveries still queued afterwards (including retries waiting on
        their backoff) are discarded and counted as abandoned.

        Returns:
            Number of deliveries abandoned.
        """
        self.queue.close()
        if self.is_alive():
            self.join(grace_seconds)
        self._abort.set()

        leftovers = self.queue.drain()
        for delivery in leftovers:
            self._abandon(delivery)
        if leftovers:
            logger.warning(f"Abandoned {len(leftovers)} queued delivery(ies) for {self._target.id}")

        if not self.is_alive():
            self._client.close()
        return len(leftovers)
