"""Dotted event-kind patterns.

A configured kind matches an event kind segment by segment, ``*`` matching
any single segment. A pattern shorter than the kind matches as a prefix, so
``player`` and ``player.*`` both cover ``player.break.block``.
"""

from typing import NamedTuple, Optional


class MatchScore(NamedTuple):
    """How closely a pattern matched: deeper, then more literal, wins."""

    depth: int
    specificity: int

    def is_better_than(self, other: Optional["MatchScore"]) -> bool:
        if other is None:
            return True
        return (self.depth, self.specificity) > (other.depth, other.specificity)


NO_MATCH = MatchScore(-1, -1)


def is_pattern(configured: str) -> bool:
    """True if ``configured`` contains a wildcard segment."""
    return "*" in configured.split(".")


def matches(configured: str, kind: str) -> bool:
    """Check whether a configured kind or pattern covers an event kind."""
    if not configured or not kind:
        return False
    configured_parts = configured.split(".")
    kind_parts = kind.split(".")
    if len(configured_parts) > len(kind_parts):
        return False
    for expected, actual in zip(configured_parts, kind_parts):
        if expected != "*" and expected != actual:
            return False
    return True


def score(configured: str, kind: str) -> MatchScore:
    """Score a match, ``NO_MATCH`` if the pattern does not apply."""
    if not matches(configured, kind):
        return NO_MATCH
    parts = configured.split(".")
    return MatchScore(len(parts), sum(1 for p in parts if p != "*"))


def best_match(configured: list[str], kind: str) -> Optional[str]:
    """Return the most specific configured entry covering ``kind``."""
    best: Optional[str] = None
    best_score: Optional[MatchScore] = None
    for entry in configured:
        entry_score = score(entry, kind)
        if entry_score == NO_MATCH:
            continue
        if entry_score.is_better_than(best_score):
            best, best_score = entry, entry_score
    return best
