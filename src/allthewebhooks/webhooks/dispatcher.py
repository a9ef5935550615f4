"""Outbound webhook dispatcher.

``WebhookService`` wires the pipeline together: host events are normalized,
routed through the registry, filtered by target conditions, rendered by the
payload builder and pushed onto each target's queue. Everything up to the
queue push runs on the caller's thread and never blocks or raises; the HTTP
work happens on the per-target ``DeliveryWorker`` threads.
"""

from collections import deque
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional
import logging
import random
import threading
import time

import httpx

from ..core.settings import DispatchSettings, SettingsManager
from ..core.stats import StatsTracker
from ..core.warning_tracker import WarningTracker
from ..events import DispatchEvent, EventNormalizer, create_default_normalizer
from .errors import BuildError
from .matching import best_match, is_pattern
from .models import DeliveryResult, QueuedDelivery, WebhookTarget
from .payload import PayloadBuilder
from .redaction import RedactionPolicy
from .registry import HandlerRegistry
from .rules import evaluate
from .security import DEFAULT_USER_AGENT
from .worker import DeliveryWorker

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 200


class WebhookService:
    """Dispatches host events to configured webhook targets.

    Features:
    - Explicit event registration table (normalizer)
    - Atomic registry swap on reload
    - Per-target bounded queue, worker thread, rate limit and circuit breaker
    - Retry with capped exponential backoff and jitter
    - Counters for every drop and failure

    Example:
        service = WebhookService(settings)
        service.start()
        service.handle_host_event(chat_event)   # returns immediately
        ...
        service.stop()
    """

    def __init__(
        self,
        settings: Optional[DispatchSettings] = None,
        normalizer: Optional[EventNormalizer] = None,
        transport: Optional[httpx.BaseTransport] = None,
        settings_manager: Optional[SettingsManager] = None,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
        history_size: int = DEFAULT_HISTORY_SIZE,
    ):
        """Initialize service.

        Args:
            settings: Configuration document; defaults to no targets.
            normalizer: Event registration table; defaults to the built-in one.
            transport: Optional httpx transport shared by all workers.
            settings_manager: Source used by ``reload()`` without arguments.
            clock: Monotonic time source for queues, breakers and buckets.
            rng: Random source for retry jitter.
            history_size: Number of recent delivery results kept.
        """
        self.settings = settings or DispatchSettings()
        self.normalizer = normalizer or create_default_normalizer()
        self.settings_manager = settings_manager
        self.stats = StatsTracker()
        self.warnings = WarningTracker(logger)
        self.registry = HandlerRegistry.from_settings(self.settings, self.normalizer.kinds())
        self.builder = self._create_builder(self.settings)

        self._transport = transport
        self._clock = clock
        self._rng = rng
        self._history: Deque[DeliveryResult] = deque(maxlen=history_size)
        self._workers: Dict[str, DeliveryWorker] = {}
        self._lifecycle_lock = threading.Lock()
        self._running = False

    @classmethod
    def from_config(cls, path=None, **kwargs) -> "WebhookService":
        """Create a service from a JSON config file.

        Raises:
            ConfigError: If the file is invalid.
        """
        manager = SettingsManager(path)
        return cls(manager.load(), settings_manager=manager, **kwargs)

    def _create_builder(self, settings: DispatchSettings) -> PayloadBuilder:
        redaction = RedactionPolicy(settings.redaction.enabled, settings.redaction.fields)
        return PayloadBuilder(
            redaction=redaction,
            warnings=self.warnings,
            warn_on_missing=settings.validate_placeholders,
        )

    def _create_worker(self, target: WebhookTarget) -> DeliveryWorker:
        settings = self.settings
        return DeliveryWorker(
            target,
            self.stats,
            capacity=settings.queue_capacity,
            circuit_config=settings.circuit_config(),
            http_timeout_seconds=settings.http_timeout_seconds,
            rate_limit_recheck_ms=settings.rate_limit_recheck_ms,
            rate_limit_max_rechecks=settings.rate_limit_max_rechecks,
            transport=self._transport,
            user_agent=settings.user_agent or DEFAULT_USER_AGENT,
            clock=self._clock,
            rng=self._rng,
            history=self._history,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start one worker per enabled target."""
        with self._lifecycle_lock:
            if self._running:
                return
            for target in self.registry.snapshot.enabled_targets:
                worker = self._create_worker(target)
                worker.start()
                self._workers[target.id] = worker
            self._running = True

        logger.info(f"Webhook service started with {len(self._workers)} worker(s)")

    def stop(self, grace_seconds: Optional[float] = None) -> int:
        """Stop all workers.

        In-flight deliveries get until the grace period ends; anything still
        queued is counted as abandoned.

        Returns:
            Number of deliveries abandoned.
        """
        if grace_seconds is None:
            grace_seconds = self.settings.shutdown_grace_seconds

        with self._lifecycle_lock:
            if not self._running:
                return 0
            self._running = False
            workers = list(self._workers.values())
            self._workers.clear()

        for worker in workers:
            worker.queue.close()

        # The grace period is shared, not per worker
        deadline = time.monotonic() + grace_seconds
        abandoned = 0
        for worker in workers:
            abandoned += worker.stop(max(0.0, deadline - time.monotonic()))

        logger.info(f"Webhook service stopped ({abandoned} delivery(ies) abandoned)")
        return abandoned

    def __enter__(self) -> "WebhookService":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every worker has finished its submitted deliveries."""
        deadline = None if timeout is None else time.monotonic() + timeout
        for worker in list(self._workers.values()):
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if not worker.wait_idle(remaining):
                return False
        return True

    # ------------------------------------------------------------------
    # Event path
    # ------------------------------------------------------------------

    def handle_host_event(self, host_event: Any) -> int:
        """Entry point for the host's event bus.

        Never raises and never blocks on the network.

        Returns:
            Number of deliveries accepted onto target queues.
        """
        try:
            event = self.normalizer.normalize(host_event)
            if event is None:
                return 0
            return self.dispatch(event)
        except Exception:
            logger.exception(f"Failed to dispatch host event {type(host_event).__name__}")
            return 0

    def dispatch(self, event: DispatchEvent) -> int:
        """Route an already normalized event to its targets.

        Returns:
            Number of deliveries accepted onto target queues.
        """
        targets = self.registry.lookup(event.kind)
        if not targets:
            self.stats.record_unrouted()
            logger.debug(f"No webhooks registered for event: {event.kind}")
            return 0

        accepted = 0
        for target in targets:
            if self._route(event, target) is True:
                accepted += 1
        return accepted

    def _route(
        self,
        event: DispatchEvent,
        target: WebhookTarget,
        dry_run: bool = False,
        report: Optional[Dict[str, Any]] = None,
    ) -> Optional[bool]:
        """Filter, render and enqueue for one target.

        Returns:
            True if enqueued, False if dropped, None if filtered or dry run.
        """
        if report is None:
            report = {}

        world = event.attributes.get("world.name")
        applied = target.for_world(None if world is None else str(world))
        if applied is None:
            report["world_disabled"] = True
            if not dry_run:
                self.stats.increment(target.id, "filtered")
            logger.debug(f"Event {event.kind} in world {world} disabled for {target.id}")
            return None
        target = applied

        if target.conditions and not evaluate(target.conditions, event.attributes):
            report["conditions"] = False
            if not dry_run:
                self.stats.increment(target.id, "filtered")
            logger.debug(f"Event {event.kind} filtered by conditions of {target.id}")
            return None
        report["conditions"] = True

        try:
            body = self.builder.build(event, target)
        except BuildError as e:
            report["error"] = str(e)
            if not dry_run:
                self.stats.increment(target.id, "build_errors", error=str(e))
            logger.error(f"Cannot build payload for {target.id} ({event.kind}): {e}")
            return False
        report["body"] = body.decode("utf-8", errors="replace")
        report["content_type"] = target.effective_content_type

        if dry_run:
            return None

        worker = self._workers.get(target.id)
        if worker is None:
            self.warnings.warn_once(
                f"no-worker:{target.id}",
                f"Webhook service is not running; dropping deliveries for {target.id}",
            )
            self.stats.increment(target.id, "abandoned", error="service not running")
            report["enqueued"] = False
            return False

        delivery = QueuedDelivery(event=event, target=target, body=body)
        if not worker.submit(delivery):
            self.stats.increment(target.id, "dropped_queue_full", error="queue full")
            logger.warning(f"Queue full for {target.id}; dropping {event.kind}")
            report["enqueued"] = False
            return False

        report["enqueued"] = True
        return True

    def fire(
        self,
        kind: str,
        attributes: Optional[Mapping[str, Any]] = None,
        dry_run: bool = False,
    ) -> Dict[str, Any]:
        """Dispatch a synthetic event and report each routing step.

        Args:
            kind: Event kind to fire.
            attributes: Event attributes (``event.name`` is added).
            dry_run: Render payloads without enqueuing or counting anything.

        Returns:
            Report with the event and, per matched target, the subscription that
            matched, the condition result, rendered body and whether it was enqueued.
        """
        values = dict(attributes or {})
        values.setdefault("event.name", kind)
        event = DispatchEvent(kind=kind, attributes=values)

        targets = self.registry.lookup(kind)
        report: Dict[str, Any] = {
            "event": event.to_dict(),
            "dry_run": dry_run,
            "registered": self.normalizer.definition_for_kind(kind) is not None,
            "targets": [],
            "accepted": 0,
        }
        if not targets and not dry_run:
            self.stats.record_unrouted()

        for target in targets:
            step: Dict[str, Any] = {
                "id": target.id,
                "matched": best_match(sorted(target.event_kinds), kind),
            }
            if self._route(event, target, dry_run=dry_run, report=step) is True:
                report["accepted"] += 1
            report["targets"].append(step)
        return report

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def reload(self, settings: Optional[DispatchSettings] = None) -> Dict[str, Any]:
        """Replace the whole configuration.

        The registry is swapped atomically. Workers of removed or disabled
        targets are stopped, new targets get a worker and kept targets pick
        up their new definition without losing circuit or queue state.

        Raises:
            ConfigError: If loading through the settings manager fails; the
                current configuration stays active.
        """
        if settings is None:
            if self.settings_manager is None:
                raise ValueError("No settings given and no settings manager configured")
            settings = self.settings_manager.reload()

        self.registry.swap(settings.build_targets())
        self.settings = settings
        self.builder = self._create_builder(settings)
        self.warnings.reset()

        added: List[str] = []
        removed: List[str] = []
        updated: List[str] = []
        retired: List[DeliveryWorker] = []

        with self._lifecycle_lock:
            if self._running:
                enabled = {t.id: t for t in self.registry.snapshot.enabled_targets}
                for target_id in list(self._workers):
                    if target_id not in enabled:
                        retired.append(self._workers.pop(target_id))
                        removed.append(target_id)

                for target_id, target in enabled.items():
                    worker = self._workers.get(target_id)
                    if worker is None:
                        worker = self._create_worker(target)
                        worker.start()
                        self._workers[target_id] = worker
                        added.append(target_id)
                    else:
                        worker.update_target(
                            target,
                            settings.circuit_config(),
                            settings.http_timeout_seconds,
                        )
                        worker.queue.capacity = settings.queue_capacity
                        updated.append(target_id)

        for worker in retired:
            worker.stop(settings.shutdown_grace_seconds)
        for target_id in removed:
            if self.registry.get(target_id) is None:
                self.stats.forget(target_id)

        logger.info(
            f"Webhook configuration reloaded: {len(added)} added, "
            f"{len(removed)} removed, {len(updated)} updated"
        )
        return {
            "targets": len(self.registry.targets()),
            "added": added,
            "removed": removed,
            "updated": updated,
        }

    def health(self) -> List[Dict[str, Any]]:
        """Circuit state and queue depth per configured target."""
        listing = []
        for target in self.registry.targets():
            worker = self._workers.get(target.id)
            entry: Dict[str, Any] = {
                "id": target.id,
                "enabled": target.enabled,
                "running": worker is not None and worker.is_alive(),
                "event_kinds": sorted(target.event_kinds),
                "queue_depth": len(worker.queue) if worker else 0,
                "in_flight": worker is not None and worker.in_flight is not None,
                "circuit": worker.circuit.snapshot().to_dict() if worker else None,
            }
            listing.append(entry)
        return listing

    def get_stats(self) -> Dict[str, Any]:
        """Counter summary plus current circuit states."""
        summary = self.stats.get_summary()
        summary["circuits"] = {
            target_id: worker.circuit.current_state.value
            for target_id, worker in list(self._workers.items())
        }
        return summary

    def event_kinds(self) -> List[Dict[str, Any]]:
        """Registered event kinds with their routed targets."""
        listing = []
        for definition in self.normalizer.definitions():
            listing.append({
                "kind": definition.kind,
                "host_type": definition.host_type,
                "category": definition.category,
                "description": definition.description,
                "attributes": definition.attribute_names,
                "targets": [t.id for t in self.registry.lookup(definition.kind)],
            })
        return listing

    def test_target(self, target_id: str, kind: Optional[str] = None) -> DeliveryResult:
        """Send one synchronous test delivery, bypassing queue and circuit.

        Args:
            target_id: Target to test.
            kind: Event kind to render; defaults to the target's first
                concrete subscribed kind.

        Raises:
            KeyError: If the target does not exist.
            ValueError: If no suitable event kind can be chosen.
            BuildError: If the template cannot be rendered.
        """
        target = self.registry.get(target_id)
        if target is None:
            raise KeyError(target_id)

        if kind is None:
            kind = self._sample_kind(target)
        if not target.accepts(kind):
            raise ValueError(f"Target {target_id} does not subscribe to {kind}")

        definition = self.normalizer.definition_for_kind(kind)
        names = definition.attribute_names if definition else []
        attributes = {name: f"test-{name}" for name in names}
        attributes["event.name"] = kind
        event = DispatchEvent(kind=kind, attributes=attributes, source_event_id=f"test-{target_id}")

        delivery = QueuedDelivery(event=event, target=target, body=self.builder.build(event, target))
        worker = self._workers.get(target_id)
        if worker is not None:
            result = worker.send_once(delivery)
        else:
            worker = self._create_worker(target)
            try:
                result = worker.send_once(delivery)
            finally:
                worker.stop(0)

        logger.info(f"Test delivery to {target_id}: {result.outcome.value}")
        return result

    def _sample_kind(self, target: WebhookTarget) -> str:
        concrete = sorted(k for k in target.event_kinds if not is_pattern(k))
        if concrete:
            return concrete[0]
        for known in self.normalizer.kinds():
            if target.accepts(known):
                return known
        raise ValueError(f"Target {target.id} has no event kind to test with")

    def get_recent_deliveries(self, limit: int = 100) -> List[DeliveryResult]:
        """Get recent delivery results, newest first."""
        if limit <= 0:
            return []
        recent = list(self._history)[-limit:]
        recent.reverse()
        return recent


# Global service instance
_service: Optional[WebhookService] = None


def get_service() -> WebhookService:
    """Get the global webhook service instance."""
    global _service
    if _service is None:
        _service = WebhookService()
    return _service


def set_service(service: Optional[WebhookService]) -> None:
    """Install (or clear) the global service used by the admin API."""
    global _service
    _service = service
