"""Payload template compiler.

Templates are plain text with placeholders::

    "{player.name} joined {world.name|default:the server}"

A placeholder is ``{`` + attribute name + optional ``|transform`` chain
+ ``}``. Names start with a letter or underscore, so a ``{`` followed by
anything else (``{"content": ...``) is literal text and JSON templates need
no escaping. Inside a transform chain ``\\|`` and ``\\:`` are literal.

Templates are compiled once and cached; a malformed template raises
``BuildError`` at compile time, which happens when a target is configured.
"""

from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Any, Callable, Mapping, Optional, Union
import logging
import re

from .errors import BuildError

logger = logging.getLogger(__name__)

NAME_PATTERN = re.compile(r"[A-Za-z_][\w.\-]*")

REDACTED = "[REDACTED]"


# ============================================================================
# Transforms
# ============================================================================

def _truncate(value: str, args: list[str]) -> str:
    if not args:
        return value
    try:
        limit = int(args[0])
    except ValueError:
        return value
    if limit < 0:
        return value
    return value[:limit]


def _replace(value: str, args: list[str]) -> str:
    if len(args) < 2:
        return value
    return value.replace(args[0], args[1])


def _map(value: str, args: list[str]) -> str:
    if len(args) % 2 != 0:
        return value
    for key, mapped in zip(args[::2], args[1::2]):
        if value == key:
            return mapped
    return value


def _last_path_segment(value: str, args: list[str]) -> str:
    return value.rsplit("/", 1)[-1] if value else value


def _first_path_segment(value: str, args: list[str]) -> str:
    return value.split("/", 1)[0] if value else value


TRANSFORMS: dict[str, Callable[[str, list[str]], str]] = {
    "trim": lambda v, a: v.strip(),
    "lower": lambda v, a: v.lower(),
    "upper": lambda v, a: v.upper(),
    "default": lambda v, a: a[0] if not v and a else v,
    "truncate": _truncate,
    "replace": _replace,
    "map": _map,
    "last-path-segment": _last_path_segment,
    "first-path-segment": _first_path_segment,
}


# ============================================================================
# Compiled form
# ============================================================================

@dataclass(frozen=True)
class Transform:
    """One step of a placeholder's transform chain."""

    name: str
    args: tuple[str, ...] = ()
    pattern: Optional[re.Pattern] = None

    def apply(self, value: str) -> str:
        if self.name == "regex":
            return self.pattern.sub(self.args[1], value)
        return TRANSFORMS[self.name](value, list(self.args))


@dataclass(frozen=True)
class Placeholder:
    """A ``{name|transforms}`` slot."""

    key: str
    transforms: tuple[Transform, ...] = ()


Segment = Union[str, Placeholder]


def stringify(value: Any) -> str:
    """Render an attribute value as template text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


@dataclass(frozen=True)
class CompiledTemplate:
    """A parsed template, safe to share between threads."""

    source: str
    segments: tuple[Segment, ...]

    @property
    def placeholders(self) -> list[str]:
        """Attribute names referenced by the template, in order."""
        return [s.key for s in self.segments if isinstance(s, Placeholder)]

    def render(
        self,
        attributes: Mapping[str, Any],
        escape: Optional[Callable[[str], str]] = None,
        is_redacted: Optional[Callable[[str], bool]] = None,
        on_missing: Optional[Callable[[str], None]] = None,
    ) -> str:
        """Render against event attributes.

        Args:
            attributes: Event attributes; absent or None values render as "".
            escape: Applied to every substituted value (e.g. JSON escaping).
            is_redacted: Returns True for attribute names to hide.
            on_missing: Called with the name of each unresolved placeholder.

        Returns:
            The rendered text.
        """
        parts: list[str] = []
        for segment in self.segments:
            if isinstance(segment, str):
                parts.append(segment)
                continue

            if is_redacted is not None and is_redacted(segment.key):
                value = REDACTED
            else:
                raw = attributes.get(segment.key)
                if raw is None and on_missing is not None:
                    on_missing(segment.key)
                value = _apply_transforms(stringify(raw), segment)

            parts.append(escape(value) if escape else value)
        return "".join(parts)


def _apply_transforms(value: str, placeholder: Placeholder) -> str:
    for transform in placeholder.transforms:
        try:
            value = transform.apply(value)
        except Exception as e:
            # Fall back to the value as it was before this step
            logger.debug(
                f"Transform {transform.name} failed for {{{placeholder.key}}}: {e}"
            )
    return value


# ============================================================================
# Parsing
# ============================================================================

def _split_unescaped(text: str, separator: str) -> list[str]:
    """Split on ``separator`` not preceded by a backslash (escapes kept)."""
    result = []
    start = 0
    i = 0
    while i < len(text):
        if text[i] == "\\" and i + 1 < len(text):
            i += 2
            continue
        if text[i] == separator:
            result.append(text[start:i])
            start = i + 1
        i += 1
    result.append(text[start:])
    return result


def _unescape(text: str) -> str:
    return text.replace("\\|", "|").replace("\\:", ":")


def _parse_transform(template: str, step: str, position: int) -> Optional[Transform]:
    step = step.strip()
    if not step:
        return None

    pieces = _split_unescaped(step, ":")
    name = _unescape(pieces[0]).strip()
    args = tuple(_unescape(piece) for piece in pieces[1:])

    if name == "regex":
        if len(args) < 2:
            raise BuildError(template, "regex transform needs a pattern and a replacement", position)
        try:
            pattern = re.compile(args[0])
        except re.error as e:
            raise BuildError(template, f"invalid regex '{args[0]}': {e}", position) from e
        return Transform(name=name, args=args, pattern=pattern)

    if name not in TRANSFORMS:
        raise BuildError(template, f"unknown transform '{name}'", position)
    return Transform(name=name, args=args)


def _parse_placeholder(template: str, body: str, position: int) -> Placeholder:
    chain = _split_unescaped(body, "|")
    key = chain[0].strip()
    if not NAME_PATTERN.fullmatch(key):
        raise BuildError(template, f"invalid placeholder name '{key}'", position)

    transforms = []
    for step in chain[1:]:
        transform = _parse_transform(template, step, position)
        if transform is not None:
            transforms.append(transform)
    return Placeholder(key=key, transforms=tuple(transforms))


def _find_close(template: str, start: int) -> int:
    i = start
    while i < len(template):
        char = template[i]
        if char == "\\" and i + 1 < len(template):
            i += 2
            continue
        if char == "}":
            return i
        if char == "{":
            return -1
        i += 1
    return -1


@lru_cache(maxsize=512)
def compile_template(template: str) -> CompiledTemplate:
    """Parse a template into literal and placeholder segments.

    Raises:
        BuildError: If a placeholder is unclosed, badly named or uses an
            unknown or invalid transform.
    """
    if template is None:
        raise BuildError("", "template is missing")

    segments: list[Segment] = []
    literal: list[str] = []
    i = 0
    while i < len(template):
        char = template[i]
        opens_placeholder = (
            char == "{"
            and i + 1 < len(template)
            and (template[i + 1].isalpha() or template[i + 1] == "_")
        )
        if not opens_placeholder:
            literal.append(char)
            i += 1
            continue

        close = _find_close(template, i + 1)
        if close < 0:
            raise BuildError(template, "unclosed placeholder", i)

        if literal:
            segments.append("".join(literal))
            literal = []
        segments.append(_parse_placeholder(template, template[i + 1:close], i))
        i = close + 1

    if literal:
        segments.append("".join(literal))
    return CompiledTemplate(source=template, segments=tuple(segments))
