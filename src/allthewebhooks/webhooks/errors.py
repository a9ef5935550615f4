"""Webhook pipeline error types.

Only ``ConfigError`` and ``BuildError`` ever leave the package, and only
from configuration loading and validation. The rest are raised and caught
inside the delivery worker to classify an outcome.
"""

from datetime import datetime
from typing import Optional


class WebhookError(Exception):
    """Base class for pipeline errors."""


class ConfigError(WebhookError):
    """Configuration document is invalid."""

    def __init__(self, message: str, issues: Optional[list[str]] = None):
        self.issues = issues or []
        super().__init__(message)


class BuildError(WebhookError):
    """A payload template is malformed."""

    def __init__(self, template: str, reason: str, position: Optional[int] = None):
        self.template = template
        self.reason = reason
        self.position = position
        where = f" at position {position}" if position is not None else ""
        super().__init__(f"Malformed template{where}: {reason}")


class DeliveryFailure(WebhookError):
    """A single HTTP attempt did not succeed (transport error or non-2xx)."""

    def __init__(
        self,
        target_id: str,
        message: str,
        status_code: Optional[int] = None,
    ):
        self.target_id = target_id
        self.status_code = status_code
        super().__init__(message)


class CircuitOpenError(WebhookError):
    """Raised when the target's circuit is open and blocking deliveries."""

    def __init__(self, name: str, until: datetime):
        self.name = name
        self.until = until
        super().__init__(f"Circuit '{name}' is open until {until.isoformat()}")
