"""Settings Management Module.

Handles loading and validating the dispatch configuration document.
The document is JSON::

    {
      "queue_capacity": 1000,
      "defaults": {"retry_policy": {"max_attempts": 3}},
      "targets": {
        "discord": {
          "url": "https://discord.com/api/webhooks/...",
          "event_kinds": ["player.join", "player.chat"],
          "format": "discord",
          "template": "{player.name}: {chat.message|default:joined}"
        }
      }
    }

Keys may be snake_case or camelCase (``eventKinds``, ``rateLimit``...).
Reload is a full-document replace.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel, to_snake

from ..webhooks.circuit_breaker import CircuitBreakerConfig
from ..webhooks.errors import ConfigError
from ..webhooks.matching import matches
from ..webhooks.models import WebhookTarget
from ..webhooks.queue import DEFAULT_CAPACITY

logger = logging.getLogger(__name__)

# Constants
CONFIG_ENV_VAR = "ALLTHEWEBHOOKS_CONFIG"
DEFAULT_CONFIG_FILE = Path("config/webhooks.json")

_NESTED_SECTIONS = ("rate_limit", "retry_policy", "headers")
# Sections whose own keys are field names, not user data
_MODEL_SECTIONS = ("rate_limit", "retry_policy")


def _field_keys(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Rewrite a target mapping to snake_case field names.

    Merging is done on field names so ``retryPolicy`` in ``defaults`` and
    ``retry_policy`` in a target refer to the same section.
    """
    normalized: Dict[str, Any] = {}
    for key, value in raw.items():
        name = to_snake(key) if isinstance(key, str) else key
        if name in _MODEL_SECTIONS and isinstance(value, dict):
            value = {to_snake(k) if isinstance(k, str) else k: v for k, v in value.items()}
        normalized[name] = value
    return normalized


class _SettingsModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class CircuitSettings(_SettingsModel):
    """Circuit breaker thresholds applied to every target."""

    failure_threshold: int = Field(5, ge=1)
    cooldown_seconds: float = Field(30.0, ge=0)
    success_threshold: int = Field(1, ge=1)

    def to_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.failure_threshold,
            cooldown_seconds=self.cooldown_seconds,
            success_threshold=self.success_threshold,
        )


class RedactionSettings(_SettingsModel):
    """Attribute names rendered as [REDACTED]."""

    enabled: bool = True
    fields: List[str] = Field(default_factory=list)


class DispatchSettings(_SettingsModel):
    """The whole configuration document."""

    targets: Dict[str, WebhookTarget] = Field(default_factory=dict)
    defaults: Dict[str, Any] = Field(default_factory=dict)
    queue_capacity: int = Field(DEFAULT_CAPACITY, ge=1)
    http_timeout_seconds: float = Field(5.0, gt=0)
    circuit: CircuitSettings = Field(default_factory=CircuitSettings)
    rate_limit_recheck_ms: int = Field(250, ge=0)
    rate_limit_max_rechecks: int = Field(5, ge=0)
    shutdown_grace_seconds: float = Field(5.0, ge=0)
    redaction: RedactionSettings = Field(default_factory=RedactionSettings)
    validate_placeholders: bool = True
    user_agent: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _apply_defaults(cls, data: Any) -> Any:
        """Give each target its id and merge ``defaults`` underneath it."""
        if not isinstance(data, dict):
            return data
        targets = data.get("targets")
        if not isinstance(targets, dict):
            return data

        defaults = data.get("defaults") or {}
        if isinstance(defaults, dict):
            defaults = _field_keys(defaults)
        merged: Dict[str, Any] = {}
        for target_id, raw in targets.items():
            if not isinstance(raw, dict) or not isinstance(defaults, dict):
                merged[target_id] = raw
                continue
            raw = _field_keys(raw)
            if "id" in raw and raw["id"] != target_id:
                raise ValueError(f"Target '{target_id}' declares a different id '{raw['id']}'")

            entry = dict(defaults)
            for key, value in raw.items():
                if key in _NESTED_SECTIONS and isinstance(value, dict) and isinstance(entry.get(key), dict):
                    entry[key] = {**entry[key], **value}
                else:
                    entry[key] = value
            entry["id"] = target_id
            merged[target_id] = entry

        return {**data, "targets": merged}

    @field_validator("defaults")
    @classmethod
    def _check_defaults(cls, defaults: Dict[str, Any]) -> Dict[str, Any]:
        if "id" in defaults or "url" in defaults:
            raise ValueError("defaults may not set id or url")
        return defaults

    def build_targets(self) -> List[WebhookTarget]:
        """Targets in document order."""
        return list(self.targets.values())

    def circuit_config(self) -> CircuitBreakerConfig:
        return self.circuit.to_config()


def format_validation_error(error: ValidationError) -> List[str]:
    """Flatten a pydantic error into ``location: message`` lines."""
    issues = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail.get("loc", ()))
        issues.append(f"{location or 'document'}: {detail.get('msg')}")
    return issues


def parse_settings(data: Union[Dict[str, Any], str, bytes]) -> DispatchSettings:
    """Validate a configuration document.

    Args:
        data: Parsed mapping or raw JSON text.

    Raises:
        ConfigError: If the JSON or any field is invalid.
    """
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON: {e}", [f"document: {e}"]) from e

    try:
        return DispatchSettings.model_validate(data)
    except ValidationError as e:
        issues = format_validation_error(e)
        raise ConfigError(f"Invalid configuration ({len(issues)} issue(s))", issues) from e


def collect_warnings(settings: DispatchSettings, known_kinds: Iterable[str] = ()) -> List[str]:
    """Non-fatal configuration problems worth showing an administrator."""
    known = list(known_kinds)
    warnings = []
    for target in settings.build_targets():
        if not target.enabled:
            warnings.append(f"targets.{target.id}: disabled")
            continue
        if not target.event_kinds:
            warnings.append(f"targets.{target.id}: subscribes to no event kinds")
            continue
        if known:
            for kind in sorted(target.event_kinds):
                if not any(matches(kind, k) for k in known):
                    warnings.append(
                        f"targets.{target.id}: event kind '{kind}' matches no registered event"
                    )
    return warnings


def settings_path_from_env(default: Path = DEFAULT_CONFIG_FILE) -> Path:
    """Resolve the config path, reading ``.env`` first."""
    load_dotenv()
    return Path(os.getenv(CONFIG_ENV_VAR, str(default)))


class SettingsManager:
    """Manages loading, reloading and saving of the configuration file."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else settings_path_from_env()
        self._settings: Optional[DispatchSettings] = None

    def load(self) -> DispatchSettings:
        """Load the file, or defaults with no targets if it does not exist.

        Raises:
            ConfigError: If the file cannot be read or is invalid.
        """
        if not self.path.exists():
            logger.warning(f"Config file {self.path} not found; no webhook targets configured")
            self._settings = DispatchSettings()
            return self._settings

        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read {self.path}: {e}", [str(e)]) from e

        self._settings = parse_settings(text)
        logger.info(f"Loaded {len(self._settings.targets)} webhook target(s) from {self.path}")
        return self._settings

    def reload(self) -> DispatchSettings:
        """Re-read the file; on error the previous settings stay current."""
        previous = self._settings
        try:
            return self.load()
        except ConfigError:
            self._settings = previous
            raise

    def get(self) -> DispatchSettings:
        """Get current settings, loading on first use."""
        if self._settings is None:
            return self.load()
        return self._settings

    def save(self, new_settings: Optional[DispatchSettings] = None) -> None:
        """Save settings to file."""
        if new_settings is not None:
            self._settings = new_settings
        if self._settings is None:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            self._settings.model_dump_json(indent=4, exclude={"defaults"}),
            encoding="utf-8",
        )
