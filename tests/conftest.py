"""Shared fixtures for the webhook pipeline tests."""

import hashlib
import hmac
import threading
from types import SimpleNamespace
from typing import Iterable, List, Optional

import httpx
import pytest

from allthewebhooks.events import DispatchEvent, EventNormalizer
from allthewebhooks.webhooks.dispatcher import set_service
from allthewebhooks.webhooks.models import WebhookTarget


class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingTransport(httpx.MockTransport):
    """Mock transport answering with a scripted list of status codes.

    The last status repeats once the script runs out.
    """

    def __init__(self, statuses: Iterable[int] = (200,), gate: Optional[threading.Event] = None):
        self.statuses: List[int] = list(statuses)
        self.requests: List[httpx.Request] = []
        self.entered = threading.Event()
        self.gate = gate
        self._lock = threading.Lock()
        super().__init__(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
            status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(5)
        return httpx.Response(status, text="ok" if status < 300 else "nope")

    @property
    def bodies(self) -> List[bytes]:
        return [r.content for r in self.requests]


def signature_matches(headers, body: bytes, secret: str) -> bool:
    """Check signature headers the way a receiving endpoint would."""
    message = headers["X-Webhook-Timestamp"].encode() + b"." + body
    expected = hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()
    return hmac.compare_digest(headers["X-Webhook-Signature"], expected)


class PlayerChatEvent:
    """Stand-in for the host's chat event class."""

    def __init__(self, player: str, message: str, event_id: Optional[str] = None):
        self.player = SimpleNamespace(name=player)
        self.message = message
        if event_id is not None:
            self.event_id = event_id


def make_target(target_id: str = "t1", **overrides) -> WebhookTarget:
    """Build a target with test-friendly defaults (fast retries, no jitter)."""
    values = {
        "id": target_id,
        "url": f"https://hooks.example.com/{target_id}",
        "event_kinds": {"chat.message"},
        "template": "{player}: {text}",
        "retry_policy": {
            "max_attempts": 5,
            "base_delay_ms": 1,
            "max_delay_ms": 4,
            "jitter_ratio": 0,
        },
        "rate_limit": {"max_per_interval": 100, "interval_ms": 1000},
    }
    values.update(overrides)
    return WebhookTarget(**values)


def make_event(kind: str = "chat.message", **attributes) -> DispatchEvent:
    return DispatchEvent(kind=kind, attributes=attributes)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def chat_normalizer() -> EventNormalizer:
    """Normalizer knowing only ``PlayerChatEvent`` -> ``chat.message``."""
    normalizer = EventNormalizer()
    normalizer.register(
        "PlayerChatEvent",
        "chat.message",
        {"player": "player.name", "text": "message"},
    )
    return normalizer


@pytest.fixture(autouse=True)
def reset_global_service():
    """Keep the module-level service from leaking between tests."""
    yield
    set_service(None)
