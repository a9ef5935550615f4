"""Webhooks module for outbound webhook delivery.

Provides the dispatch pipeline pieces:
- Handler registry mapping event kinds to targets
- Payload builder with template transforms and redaction
- Bounded per-target delivery queues
- Circuit breaker and token bucket per target

``WebhookService`` (in ``.dispatcher``) wires them together.
"""

from .errors import (
    BuildError,
    CircuitOpenError,
    ConfigError,
    DeliveryFailure,
    WebhookError,
)
from .models import (
    DeliveryOutcome,
    DeliveryResult,
    PayloadFormat,
    QueuedDelivery,
    RateLimit,
    RetryPolicy,
    WebhookTarget,
)
from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from .payload import PayloadBuilder
from .queue import DeliveryQueue
from .registry import HandlerRegistry

__all__ = [
    "BuildError",
    "CircuitOpenError",
    "ConfigError",
    "DeliveryFailure",
    "WebhookError",
    "DeliveryOutcome",
    "DeliveryResult",
    "PayloadFormat",
    "QueuedDelivery",
    "RateLimit",
    "RetryPolicy",
    "WebhookTarget",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "PayloadBuilder",
    "DeliveryQueue",
    "HandlerRegistry",
]
