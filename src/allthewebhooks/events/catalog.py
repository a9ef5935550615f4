"""Default registration table of host events.

Host event attribute names follow the server bridge's snake_case objects
(``event.player.name``, ``event.block.location``...). Add entries with
``EventNormalizer.register`` to forward other event types.
"""

from typing import Any

from .normalizer import EventDefinition, EventNormalizer, resolve_path


def format_location(location: Any) -> str:
    """Format a block location as ``x,y,z`` (empty if unavailable)."""
    if location is None:
        return ""
    coords = []
    for axis in ("x", "y", "z"):
        value = resolve_path(location, axis)
        if value is None:
            return ""
        coords.append(str(int(value)))
    return ",".join(coords)


def _name_of(path: str):
    """Accessor returning ``.name`` of an enum-like value, or the value itself."""
    def accessor(host_event: Any) -> Any:
        value = resolve_path(host_event, path)
        return getattr(value, "name", value)
    return accessor


def _location_of(path: str):
    def accessor(host_event: Any) -> str:
        return format_location(resolve_path(host_event, path))
    return accessor


def _is_player(path: str):
    def predicate(host_event: Any) -> bool:
        entity = resolve_path(host_event, path)
        return entity is not None and type(entity).__name__ == "Player"
    return predicate


PLAYER_FIELDS = {
    "player.name": "player.name",
    "player.uuid": "player.uuid",
    "world.name": "player.world.name",
}


DEFAULT_EVENT_TABLE: tuple[EventDefinition, ...] = (
    EventDefinition(
        host_type="PlayerJoinEvent",
        kind="player.join",
        fields=dict(PLAYER_FIELDS),
        description="Fired when a player joins the server.",
        category="player",
    ),
    EventDefinition(
        host_type="PlayerQuitEvent",
        kind="player.quit",
        fields=dict(PLAYER_FIELDS),
        description="Fired when a player leaves the server.",
        category="player",
    ),
    EventDefinition(
        host_type="AsyncPlayerChatEvent",
        kind="player.chat",
        fields={**PLAYER_FIELDS, "chat.message": "message"},
        description="Fired when a player sends a chat message.",
        category="player",
    ),
    EventDefinition(
        host_type="PlayerCommandPreprocessEvent",
        kind="player.command",
        fields={**PLAYER_FIELDS, "command.raw": "message"},
        description="Fired when a player runs a command.",
        category="player",
    ),
    EventDefinition(
        host_type="PlayerDeathEvent",
        kind="player.death",
        fields={
            "player.name": "entity.name",
            "player.uuid": "entity.uuid",
            "world.name": "entity.world.name",
            "death.message": "death_message",
        },
        description="Fired when a player dies.",
        category="player",
    ),
    EventDefinition(
        host_type="BlockBreakEvent",
        kind="player.break.block",
        fields={
            **PLAYER_FIELDS,
            "player.gamemode": _name_of("player.game_mode"),
            "block.type": _name_of("block.type"),
            "block.location": _location_of("block.location"),
        },
        description="Fired when a player breaks a block.",
        category="player",
    ),
    EventDefinition(
        host_type="BlockPlaceEvent",
        kind="player.place.block",
        fields={
            **PLAYER_FIELDS,
            "player.gamemode": _name_of("player.game_mode"),
            "block.type": _name_of("block_placed.type"),
            "block.location": _location_of("block_placed.location"),
        },
        description="Fired when a player places a block.",
        category="player",
    ),
    EventDefinition(
        host_type="EntityDamageEvent",
        kind="entity.damage.player",
        fields={
            "player.name": "entity.name",
            "player.uuid": "entity.uuid",
            "world.name": "entity.world.name",
            "damage.amount": "final_damage",
            "damage.cause": _name_of("cause"),
        },
        description="Fired when a player is damaged.",
        category="entity",
        applies=_is_player("entity"),
    ),
    EventDefinition(
        host_type="InventoryOpenEvent",
        kind="inventory.open",
        fields={
            **PLAYER_FIELDS,
            "inventory.type": _name_of("inventory.type"),
        },
        description="Fired when a player opens an inventory.",
        category="inventory",
        applies=_is_player("player"),
    ),
    EventDefinition(
        host_type="TimeSkipEvent",
        kind="world.time.change",
        fields={
            "world.name": "world.name",
            "world.time": "world.time",
            "world.skip.reason": _name_of("skip_reason"),
        },
        description="Fired when the world time changes via a time skip.",
        category="world",
    ),
)


def create_default_normalizer() -> EventNormalizer:
    """Build a normalizer preloaded with ``DEFAULT_EVENT_TABLE``."""
    return EventNormalizer(DEFAULT_EVENT_TABLE)
