"""Delivery statistics.

Counters the observability and admin surfaces read. Every drop or failure
in the pipeline ends up here as an increment instead of an exception.
"""

from dataclasses import dataclass, fields
from datetime import datetime
from typing import Optional
import threading


@dataclass
class TargetStats:
    """Counters for a single webhook target."""

    target_id: str
    delivered: int = 0
    dropped_queue_full: int = 0
    dropped_rate_limited: int = 0
    dropped_retry_exhausted: int = 0
    dropped_circuit_open: int = 0
    failed_attempts: int = 0
    retries: int = 0
    abandoned: int = 0
    build_errors: int = 0
    filtered: int = 0
    last_delivered_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def dropped(self) -> int:
        """Total deliveries that never reached the endpoint."""
        return (
            self.dropped_queue_full
            + self.dropped_rate_limited
            + self.dropped_retry_exhausted
            + self.dropped_circuit_open
            + self.abandoned
            + self.build_errors
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            data[f.name] = value
        data["dropped"] = self.dropped
        return data


COUNTERS = tuple(
    f.name for f in fields(TargetStats)
    if f.type in (int, "int")
)


class StatsTracker:
    """Thread-safe per-target and per-kind counters.

    Example:
        >>> stats = StatsTracker()
        >>> stats.increment("discord", "delivered", kind="player.join")
        >>> stats.get("discord").delivered
        1
    """

    def __init__(self):
        """Initialize empty counters."""
        self._targets: dict[str, TargetStats] = {}
        self._sent_per_kind: dict[str, int] = {}
        self._unrouted = 0
        self._lock = threading.Lock()

    def _entry(self, target_id: str) -> TargetStats:
        entry = self._targets.get(target_id)
        if entry is None:
            entry = TargetStats(target_id=target_id)
            self._targets[target_id] = entry
        return entry

    def increment(
        self,
        target_id: str,
        counter: str,
        amount: int = 1,
        kind: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Increment a named counter for a target.

        Args:
            target_id: The target the outcome belongs to.
            counter: One of the ``TargetStats`` integer fields.
            amount: How much to add.
            kind: Event kind, tracked per kind for delivered events.
            error: Error description stored as ``last_error``.

        Raises:
            ValueError: If the counter name is unknown.
        """
        if counter not in COUNTERS:
            raise ValueError(f"Unknown counter: {counter}")

        with self._lock:
            entry = self._entry(target_id)
            setattr(entry, counter, getattr(entry, counter) + amount)

            if counter == "delivered":
                entry.last_delivered_at = datetime.now()
                if kind:
                    self._sent_per_kind[kind] = self._sent_per_kind.get(kind, 0) + amount
            elif counter == "failed_attempts":
                entry.last_failure_at = datetime.now()

            if error:
                entry.last_error = error

    def record_unrouted(self) -> None:
        """Count an event that normalized but had no target."""
        with self._lock:
            self._unrouted += 1

    def get(self, target_id: str) -> TargetStats:
        """Get a copy of the counters for a target (zeroed if unknown)."""
        with self._lock:
            entry = self._targets.get(target_id)
            if entry is None:
                return TargetStats(target_id=target_id)
            return TargetStats(**{f.name: getattr(entry, f.name) for f in fields(entry)})

    def get_summary(self) -> dict:
        """Get totals plus per-target and per-kind breakdowns."""
        with self._lock:
            targets = {name: entry.to_dict() for name, entry in self._targets.items()}
            sent_per_kind = dict(self._sent_per_kind)
            unrouted = self._unrouted

        totals = {
            counter: sum(t[counter] for t in targets.values())
            for counter in COUNTERS
        }
        totals["dropped"] = sum(t["dropped"] for t in targets.values())
        totals["unrouted"] = unrouted

        return {
            "totals": totals,
            "targets": targets,
            "sent_per_kind": sent_per_kind,
        }

    def forget(self, target_id: str) -> None:
        """Drop counters for a target removed by reload."""
        with self._lock:
            self._targets.pop(target_id, None)

    def reset(self) -> None:
        """Reset all counters."""
        with self._lock:
            self._targets.clear()
            self._sent_per_kind.clear()
            self._unrouted = 0
