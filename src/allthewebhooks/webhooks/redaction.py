"""Attribute redaction for rendered payloads."""

from typing import Iterable, Optional

from .matching import matches


class RedactionPolicy:
    """Hides attributes whose names match configured dotted patterns.

    ``player.uuid`` hides exactly that attribute (and anything below it);
    ``*.uuid`` hides every two-level ``uuid`` attribute.
    """

    def __init__(self, enabled: bool = True, patterns: Optional[Iterable[str]] = None):
        self.enabled = enabled
        self.patterns = tuple(p for p in (patterns or ()) if p)

    def is_redacted(self, field: str) -> bool:
        if not self.enabled or not field:
            return False
        return any(matches(pattern, field) for pattern in self.patterns)

    def __bool__(self) -> bool:
        return self.enabled and bool(self.patterns)
