"""Host event normalization.

Turns host event objects into ``DispatchEvent`` records through an explicit
registration table.
"""

from .models import DispatchEvent
from .normalizer import EventDefinition, EventNormalizer, resolve_path
from .catalog import DEFAULT_EVENT_TABLE, create_default_normalizer

__all__ = [
    "DispatchEvent",
    "EventDefinition",
    "EventNormalizer",
    "resolve_path",
    "DEFAULT_EVENT_TABLE",
    "create_default_normalizer",
]
