"""AllTheWebhooks - forwards in-game server events to HTTP webhooks.

Host events are normalized, routed to configured targets, rendered through
each target's template and delivered by per-target worker threads with
retry, rate limiting and a circuit breaker.
"""

__version__ = "0.1.0"

from .events import DispatchEvent, EventNormalizer, create_default_normalizer
from .webhooks.dispatcher import WebhookService, get_service, set_service

__all__ = [
    "__version__",
    "DispatchEvent",
    "EventNormalizer",
    "create_default_normalizer",
    "WebhookService",
    "get_service",
    "set_service",
]
