"""Payload Builder.

Renders a ``DispatchEvent`` through a target's template into the HTTP
request body. The output depends only on the event attributes, the target
and the redaction policy, so identical inputs give byte-identical bodies.
"""

from typing import Optional
import json

from ..core.warning_tracker import WarningTracker
from ..events.models import DispatchEvent
from .models import PayloadFormat, WebhookTarget
from .redaction import RedactionPolicy
from .templates import compile_template


def json_escape(value: str) -> str:
    """Escape text for insertion inside a JSON string literal."""
    return json.dumps(value, ensure_ascii=False)[1:-1]


class PayloadBuilder:
    """Builds request bodies for webhook targets.

    Example:
        builder = PayloadBuilder()
        body = builder.build(event, target)  # bytes
    """

    def __init__(
        self,
        redaction: Optional[RedactionPolicy] = None,
        warnings: Optional[WarningTracker] = None,
        warn_on_missing: bool = True,
    ):
        """Initialize builder.

        Args:
            redaction: Attribute names to render as ``[REDACTED]``.
            warnings: Tracker used to report unresolved placeholders once.
            warn_on_missing: Whether unresolved placeholders are reported.
        """
        self.redaction = redaction or RedactionPolicy(enabled=False)
        self.warnings = warnings
        self.warn_on_missing = warn_on_missing

    def render(self, event: DispatchEvent, target: WebhookTarget) -> str:
        """Render the template to text (before body formatting).

        Raises:
            BuildError: If the target's template is malformed.
        """
        compiled = compile_template(target.template)
        escape = json_escape if target.format == PayloadFormat.JSON else None

        on_missing = None
        if self.warnings is not None and self.warn_on_missing:
            def on_missing(key: str) -> None:
                self.warnings.warn_once(
                    f"missing-placeholder:{target.id}:{key}",
                    f"Missing placeholder value for {{{key}}} (target {target.id}, "
                    f"event {event.kind}); rendering as empty",
                )

        return compiled.render(
            event.attributes,
            escape=escape,
            is_redacted=self.redaction.is_redacted if self.redaction else None,
            on_missing=on_missing,
        )

    def build(self, event: DispatchEvent, target: WebhookTarget) -> bytes:
        """Build the request body for ``event`` bound to ``target``.

        Args:
            event: The normalized event.
            target: The destination whose template and format apply.

        Returns:
            UTF-8 encoded body.

        Raises:
            BuildError: If the target's template is malformed.
        """
        text = self.render(event, target)

        if target.format == PayloadFormat.DISCORD:
            payload = {"content": text}
            if target.username:
                payload["username"] = target.username
            text = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))

        return text.encode("utf-8")
