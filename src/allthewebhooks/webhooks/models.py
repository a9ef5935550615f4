"""Webhook data models.

Defines the target configuration shared read-only by every thread, the
queued delivery record, and the outcome records used by stats and the
admin API.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple
import random

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..events.models import DispatchEvent
from .errors import BuildError
from .matching import matches
from .rules import validate_conditions
from .templates import compile_template


class PayloadFormat(str, Enum):
    """How a rendered template becomes the request body."""

    # Template is the body; values are JSON-string-escaped
    JSON = "json"
    # Template is the body; values inserted as-is
    TEXT = "text"
    # Rendered text becomes {"content": ..., "username": ...}
    DISCORD = "discord"


DEFAULT_CONTENT_TYPES = {
    PayloadFormat.JSON: "application/json",
    PayloadFormat.TEXT: "text/plain; charset=utf-8",
    PayloadFormat.DISCORD: "application/json",
}


class RateLimit(BaseModel):
    """Token bucket sizing: ``max_per_interval`` sends per ``interval_ms``."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True, extra="forbid")

    max_per_interval: int = Field(5, ge=1)
    interval_ms: int = Field(2000, ge=1)


class RetryPolicy(BaseModel):
    """Exponential backoff with a cap and bounded jitter.

    ``jitter_ratio`` must stay below 1 so that, with delays doubling,
    successive delays never decrease.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True, extra="forbid")

    max_attempts: int = Field(5, ge=1)
    base_delay_ms: int = Field(500, ge=0)
    max_delay_ms: int = Field(30_000, ge=0)
    jitter_ratio: float = Field(0.1, ge=0.0, lt=1.0)

    @model_validator(mode="after")
    def _check_cap(self) -> "RetryPolicy":
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        return self

    def backoff_ms(self, attempt: int) -> int:
        """Delay before retrying after ``attempt`` failed, without jitter."""
        exponent = max(attempt - 1, 0)
        # Avoid huge integers for large attempt counts
        if exponent >= 63:
            return self.max_delay_ms
        return min(self.base_delay_ms * (2 ** exponent), self.max_delay_ms)

    def delay_ms(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Backoff plus jitter, clamped to ``max_delay_ms``."""
        backoff = self.backoff_ms(attempt)
        if self.jitter_ratio <= 0 or backoff <= 0:
            return float(backoff)
        jitter = (rng or random).uniform(0, self.jitter_ratio * backoff)
        return float(min(backoff + jitter, self.max_delay_ms))


class WorldOverride(BaseModel):
    """Per-world adjustments to a target, keyed by ``world.name``."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True, extra="forbid")

    enabled: bool = True
    template: Optional[str] = None

    @field_validator("template")
    @classmethod
    def _check_template(cls, template: Optional[str]) -> Optional[str]:
        if template is not None:
            try:
                compile_template(template)
            except BuildError as e:
                raise ValueError(str(e)) from e
        return template


class WebhookTarget(BaseModel):
    """A configured destination webhook and its delivery policy.

    Immutable: reload replaces whole objects, so worker threads can hold a
    reference without locking.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True, extra="forbid")

    id: str = Field(..., min_length=1, description="Unique target identifier")
    url: HttpUrl = Field(..., description="Endpoint URL to receive webhooks")
    event_kinds: FrozenSet[str] = Field(
        default_factory=frozenset,
        description="Event kinds or dotted wildcard patterns (player.*)",
    )
    template: str = Field("{event.name}", description="Payload template")
    format: PayloadFormat = PayloadFormat.JSON
    content_type: Optional[str] = None
    username: Optional[str] = Field(None, description="Display name for discord format")
    enabled: bool = True
    rate_limit: RateLimit = Field(default_factory=RateLimit)
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    conditions: Dict[str, Any] = Field(default_factory=dict)
    headers: Dict[str, str] = Field(default_factory=dict)
    secret: Optional[str] = Field(None, description="Shared secret for HMAC signature")
    timeout_seconds: Optional[float] = Field(None, gt=0)
    worlds: Dict[str, WorldOverride] = Field(
        default_factory=dict,
        description="Overrides for events that happen in a named world",
    )

    @field_validator("event_kinds")
    @classmethod
    def _check_kinds(cls, kinds: FrozenSet[str]) -> FrozenSet[str]:
        cleaned = frozenset(k.strip() for k in kinds)
        if any(not k for k in cleaned):
            raise ValueError("event kinds must not be empty strings")
        return cleaned

    @field_validator("template")
    @classmethod
    def _check_template(cls, template: str) -> str:
        # Malformed templates surface here, at config-load time
        try:
            compile_template(template)
        except BuildError as e:
            raise ValueError(str(e)) from e
        return template

    @field_validator("conditions")
    @classmethod
    def _check_conditions(cls, conditions: Dict[str, Any]) -> Dict[str, Any]:
        validate_conditions(conditions)
        return conditions

    @property
    def effective_content_type(self) -> str:
        return self.content_type or DEFAULT_CONTENT_TYPES[self.format]

    def accepts(self, kind: str) -> bool:
        """True if this target subscribes to ``kind``."""
        if kind in self.event_kinds:
            return True
        return any(matches(configured, kind) for configured in self.event_kinds)

    def for_world(self, world: Optional[str]) -> Optional["WebhookTarget"]:
        """The target as it applies to events in ``world``.

        Returns:
            None if the world is disabled for this target, otherwise the
            target itself or a copy carrying the world's template.
        """
        override = self.worlds.get(world) if world is not None else None
        if override is None:
            return self
        if not override.enabled:
            return None
        if override.template is not None:
            return self.model_copy(update={"template": override.template})
        return self


class DeliveryOutcome(str, Enum):
    """Terminal or intermediate result of handling one queued delivery."""

    DELIVERED = "delivered"
    RETRY_SCHEDULED = "retry_scheduled"
    RETRY_EXHAUSTED = "retry_exhausted"
    CIRCUIT_OPEN = "circuit_open"
    RATE_LIMIT_DEFERRED = "rate_limit_deferred"
    RATE_LIMITED = "rate_limited"
    QUEUE_FULL = "queue_full"
    ABANDONED = "abandoned"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class QueuedDelivery:
    """One event's payload bound for one target.

    Owned by one queue slot until a worker takes it; retries and rate-limit
    re-checks hand back a ``dataclasses.replace`` copy.
    """

    event: DispatchEvent
    target: WebhookTarget
    body: bytes
    attempt: int = 1
    enqueued_at: datetime = field(default_factory=_utcnow)
    # time.monotonic() value before which the worker must not execute it
    ready_at: float = 0.0
    rechecks: int = 0
    delays_ms: Tuple[float, ...] = ()

    def __post_init__(self):
        if self.attempt < 1:
            raise ValueError("attempt must be >= 1")
        if self.attempt > self.target.retry_policy.max_attempts:
            raise ValueError(
                f"attempt {self.attempt} exceeds max_attempts "
                f"{self.target.retry_policy.max_attempts} for {self.target.id}"
            )
        if not self.target.accepts(self.event.kind):
            raise ValueError(
                f"target {self.target.id} does not subscribe to {self.event.kind}"
            )

    @property
    def delivery_id(self) -> str:
        return f"{self.event.source_event_id}:{self.target.id}"


class DeliveryResult(BaseModel):
    """Record of how a delivery ended (or the latest step it reached)."""

    target_id: str
    event_id: str
    kind: str
    outcome: DeliveryOutcome
    attempts: int = 0
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    delays_ms: List[float] = Field(default_factory=list)
    completed_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def for_delivery(
        cls,
        delivery: QueuedDelivery,
        outcome: DeliveryOutcome,
        status_code: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> "DeliveryResult":
        return cls(
            target_id=delivery.target.id,
            event_id=delivery.event.source_event_id,
            kind=delivery.event.kind,
            outcome=outcome,
            attempts=delivery.attempt,
            status_code=status_code,
            error_message=error_message,
            delays_ms=list(delivery.delays_ms),
        )
