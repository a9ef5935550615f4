"""Normalized event record handed from the host side to the pipeline."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping
import uuid


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DispatchEvent:
    """An in-game event in uniform form.
    
    Immutable: ``attributes`` is wrapped in a read-only mapping so the same
    event can be shared by every target's worker thread. Attributes the host
    event did not provide are present with a ``None`` value.
    """
    
    kind: str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=_utcnow)
    source_event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    
    def __post_init__(self):
        if not self.kind:
            raise ValueError("DispatchEvent.kind must not be empty")
        if not isinstance(self.attributes, MappingProxyType):
            object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))
    
    def get(self, key: str, default: Any = None) -> Any:
        """Get an attribute value."""
        return self.attributes.get(key, default)
    
    def to_dict(self) -> dict:
        """Convert to dictionary for logging and admin output."""
        return {
            "kind": self.kind,
            "attributes": dict(self.attributes),
            "occurred_at": self.occurred_at.isoformat(),
            "source_event_id": self.source_event_id,
        }
