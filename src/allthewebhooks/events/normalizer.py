"""Event Normalizer - host event objects to ``DispatchEvent``.

Host events are matched against an explicit registration table keyed by
class name. Each entry names the event kind and how to pull every attribute
out of the host object. Nothing here raises into the host: unknown event
types normalize to ``None`` and attributes that cannot be read are kept as
``None`` entries.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Optional, Union
import logging
import uuid

from .models import DispatchEvent

logger = logging.getLogger(__name__)

Accessor = Union[str, Callable[[Any], Any]]

_MISSING = object()


def resolve_path(obj: Any, path: str) -> Any:
    """Follow a dotted path through attributes and mapping keys.

    Args:
        obj: Root object (usually the host event).
        path: Dotted path such as ``"player.world.name"``.

    Returns:
        The value found, or None if any step is missing.
    """
    current = obj
    for part in path.split("."):
        if current is None:
            return None
        if isinstance(current, Mapping):
            current = current.get(part, _MISSING)
        else:
            current = getattr(current, part, _MISSING)
        if current is _MISSING:
            return None
    return current


@dataclass(frozen=True)
class EventDefinition:
    """Registration entry: which host type produces which kind."""

    host_type: str
    kind: str
    fields: Mapping[str, Accessor] = field(default_factory=dict)
    description: str = ""
    category: str = ""
    # Returns False for host events of this type that should not be forwarded
    applies: Optional[Callable[[Any], bool]] = None

    @property
    def attribute_names(self) -> list[str]:
        """Attribute keys every event of this kind carries."""
        return ["event.name", *self.fields.keys()]


class EventNormalizer:
    """Converts host event objects into ``DispatchEvent`` records.

    Example:
        normalizer = EventNormalizer()
        normalizer.register(
            "PlayerChatEvent",
            "chat.message",
            {"player": "player.name", "text": "message"},
        )
        event = normalizer.normalize(host_event)  # None if unregistered
    """

    def __init__(self, definitions: Optional[Iterable[EventDefinition]] = None):
        """Initialize with an optional registration table.

        Args:
            definitions: Entries to register, in order.
        """
        self._by_type: dict[str, EventDefinition] = {}
        for definition in definitions or ():
            self.add(definition)

    def add(self, definition: EventDefinition) -> EventDefinition:
        """Register a prepared definition, replacing any for the same type."""
        # Copy-on-write so normalize() never sees a half-updated table
        table = dict(self._by_type)
        table[definition.host_type] = definition
        self._by_type = table
        return definition

    def register(
        self,
        host_type: Union[str, type],
        kind: str,
        fields: Optional[Mapping[str, Accessor]] = None,
        description: str = "",
        category: str = "",
        applies: Optional[Callable[[Any], bool]] = None,
    ) -> EventDefinition:
        """Register a host event type.

        Args:
            host_type: Class or class name of the host event.
            kind: Event kind the type normalizes to.
            fields: Attribute name -> dotted path or callable.
            description: Human-readable description (admin listing).
            category: Grouping such as ``"player"`` or ``"world"``.
            applies: Optional predicate filtering events of this type.

        Returns:
            The stored definition.
        """
        type_name = host_type if isinstance(host_type, str) else host_type.__name__
        return self.add(EventDefinition(
            host_type=type_name,
            kind=kind,
            fields=dict(fields or {}),
            description=description,
            category=category or kind.split(".", 1)[0],
            applies=applies,
        ))

    def unregister(self, host_type: Union[str, type]) -> bool:
        """Remove a registration. Returns True if one existed."""
        type_name = host_type if isinstance(host_type, str) else host_type.__name__
        if type_name not in self._by_type:
            return False
        table = dict(self._by_type)
        del table[type_name]
        self._by_type = table
        return True

    def definition_for(self, host_event: Any) -> Optional[EventDefinition]:
        """Find the definition for a host event, walking its class hierarchy."""
        table = self._by_type
        for cls in type(host_event).__mro__:
            definition = table.get(cls.__name__)
            if definition is not None:
                return definition
        return None

    def definition_for_kind(self, kind: str) -> Optional[EventDefinition]:
        """Find the definition that produces ``kind``."""
        for definition in self._by_type.values():
            if definition.kind == kind:
                return definition
        return None

    def definitions(self) -> list[EventDefinition]:
        """All registered definitions, in registration order."""
        return list(self._by_type.values())

    def kinds(self) -> list[str]:
        """All event kinds this normalizer can produce."""
        seen: dict[str, None] = {}
        for definition in self._by_type.values():
            seen.setdefault(definition.kind, None)
        return list(seen)

    def normalize(self, host_event: Any) -> Optional[DispatchEvent]:
        """Convert a host event.

        Args:
            host_event: Any object emitted by the host's event bus.

        Returns:
            The normalized event, or None when the type is not registered
            or its ``applies`` predicate rejects it.
        """
        if host_event is None:
            return None
        if isinstance(host_event, DispatchEvent):
            return host_event

        definition = self.definition_for(host_event)
        if definition is None:
            return None

        if definition.applies is not None:
            try:
                if not definition.applies(host_event):
                    return None
            except Exception as e:
                logger.debug(f"Skipping {definition.host_type}: applies() failed: {e}")
                return None

        attributes: dict[str, Any] = {"event.name": definition.kind}
        for name, accessor in definition.fields.items():
            attributes[name] = self._extract(host_event, name, accessor)

        return DispatchEvent(
            kind=definition.kind,
            attributes=attributes,
            occurred_at=self._occurred_at(host_event),
            source_event_id=self._source_id(host_event),
        )

    @staticmethod
    def _extract(host_event: Any, name: str, accessor: Accessor) -> Any:
        try:
            if callable(accessor):
                return accessor(host_event)
            return resolve_path(host_event, accessor)
        except Exception as e:
            # Partially populated host objects are expected
            logger.debug(f"Attribute {name} unavailable: {type(e).__name__}: {e}")
            return None

    @staticmethod
    def _occurred_at(host_event: Any) -> datetime:
        try:
            value = resolve_path(host_event, "timestamp")
        except Exception:
            value = None
        if isinstance(value, datetime):
            return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc)

    @staticmethod
    def _source_id(host_event: Any) -> str:
        for attr in ("event_id", "id"):
            try:
                value = resolve_path(host_event, attr)
            except Exception:
                continue
            if value is not None and not callable(value):
                return str(value)
        return str(uuid.uuid4())
