"""Handler Registry - event kind to webhook targets.

The registry holds one immutable ``RegistrySnapshot``. Lookups read the
current snapshot reference; reload builds a complete new snapshot first and
then replaces the reference in a single assignment, so a lookup running on
the host's event thread sees either the old mapping or the new one, never
a mix.
"""

from typing import Iterable, List, Optional, Tuple
import itertools
import logging
import threading

from .matching import is_pattern
from .models import WebhookTarget

logger = logging.getLogger(__name__)

# Bound on memoized lookups for kinds only reachable through wildcards
MAX_MEMOIZED_KINDS = 1024

_versions = itertools.count(1)


class RegistrySnapshot:
    """Immutable mapping from event kind to ordered targets."""

    def __init__(
        self,
        targets: Iterable[WebhookTarget] = (),
        known_kinds: Iterable[str] = (),
    ):
        """Build the kind index.

        Args:
            targets: Targets in configuration order.
            known_kinds: Kinds the normalizer can emit; wildcard patterns are
                expanded against these up front.

        Raises:
            ValueError: If two targets share an id.
        """
        self.version = next(_versions)
        self._targets: Tuple[WebhookTarget, ...] = tuple(targets)

        self._by_id: dict[str, WebhookTarget] = {}
        for target in self._targets:
            if target.id in self._by_id:
                raise ValueError(f"Duplicate webhook target id: {target.id}")
            self._by_id[target.id] = target

        self._enabled = tuple(t for t in self._targets if t.enabled)
        kinds = dict.fromkeys(known_kinds)
        for target in self._enabled:
            for kind in target.event_kinds:
                if not is_pattern(kind):
                    kinds.setdefault(kind, None)

        self._index: dict[str, Tuple[WebhookTarget, ...]] = {
            kind: tuple(t for t in self._enabled if t.accepts(kind))
            for kind in kinds
        }
        self._static_size = len(self._index)

    def lookup(self, kind: str) -> Tuple[WebhookTarget, ...]:
        """Targets subscribed to ``kind``, in configuration order."""
        hit = self._index.get(kind)
        if hit is not None:
            return hit
        if not self._enabled:
            return ()

        # Configured kinds also match as prefixes, so unseen kinds need a scan
        matched = tuple(t for t in self._enabled if t.accepts(kind))
        if len(self._index) - self._static_size < MAX_MEMOIZED_KINDS:
            # Single dict assignment; readers see the key fully set or absent
            self._index[kind] = matched
        return matched

    def get(self, target_id: str) -> Optional[WebhookTarget]:
        return self._by_id.get(target_id)

    @property
    def targets(self) -> Tuple[WebhookTarget, ...]:
        """All targets, enabled or not, in configuration order."""
        return self._targets

    @property
    def enabled_targets(self) -> Tuple[WebhookTarget, ...]:
        return self._enabled

    def kinds(self) -> List[str]:
        """Kinds with at least one subscribed target."""
        return [kind for kind, targets in self._index.items() if targets]

    def __len__(self) -> int:
        return len(self._targets)


class HandlerRegistry:
    """Holds the current snapshot and swaps it atomically on reload.

    Example:
        registry = HandlerRegistry([target_a, target_b], known_kinds=["player.join"])
        registry.lookup("player.join")   # (target_a,) if only a subscribes
        registry.swap([target_b])        # later lookups see the new set
    """

    def __init__(
        self,
        targets: Iterable[WebhookTarget] = (),
        known_kinds: Iterable[str] = (),
    ):
        """Initialize registry.

        Args:
            targets: Initial targets in configuration order.
            known_kinds: Kinds the normalizer can emit.
        """
        self._known_kinds = tuple(known_kinds)
        self._snapshot = RegistrySnapshot(targets, self._known_kinds)
        # Serializes writers only; lookups never take it
        self._write_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings, known_kinds: Iterable[str] = ()) -> "HandlerRegistry":
        """Build from a ``DispatchSettings`` document."""
        return cls(settings.build_targets(), known_kinds)

    @property
    def snapshot(self) -> RegistrySnapshot:
        return self._snapshot

    def lookup(self, kind: str) -> Tuple[WebhookTarget, ...]:
        """Targets for ``kind`` in configuration order (possibly empty)."""
        return self._snapshot.lookup(kind)

    def get(self, target_id: str) -> Optional[WebhookTarget]:
        """Get a target by id from the current snapshot."""
        return self._snapshot.get(target_id)

    def targets(self) -> Tuple[WebhookTarget, ...]:
        """All configured targets."""
        return self._snapshot.targets

    def kinds(self) -> List[str]:
        """Kinds currently routed to at least one target."""
        return self._snapshot.kinds()

    def swap(
        self,
        targets: Iterable[WebhookTarget],
        known_kinds: Optional[Iterable[str]] = None,
    ) -> RegistrySnapshot:
        """Replace the whole mapping.

        The new snapshot is fully built before it becomes visible. If
        building fails the current snapshot stays in place.

        Returns:
            The previous snapshot.
        """
        with self._write_lock:
            if known_kinds is not None:
                self._known_kinds = tuple(known_kinds)
            new_snapshot = RegistrySnapshot(targets, self._known_kinds)
            previous = self._snapshot
            self._snapshot = new_snapshot

        logger.info(
            f"Webhook registry v{new_snapshot.version}: {len(new_snapshot)} target(s), "
            f"{len(new_snapshot.enabled_targets)} enabled"
        )
        return previous
