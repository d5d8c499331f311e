"""Guild configuration Pydantic schemas.

A ``GuildConfiguration`` is the single per-guild settings record shared by
the document store and the local snapshot. Python code uses the snake_case
attribute names; the snapshot file uses the camelCase aliases.

Mutations address fields through dotted paths with ``$set``/``$unset``
semantics, e.g. ``command_permissions.clean`` or ``logging.events.message-delete``.
"""

import copy
from typing import Any, Iterable, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

CURRENT_SCHEMA_VERSION = 2

LOG_EVENT_KEYS: tuple[str, ...] = (
    "message-create",
    "message-delete",
    "message-update",
    "invite-create",
    "invite-delete",
)

DEFAULT_WELCOME_MESSAGE = "Welcome to the server!"


class InvalidFieldError(ValueError):
    """Raised when a field path does not name a writable configuration field."""

    def __init__(self, path: str, reason: str = "unknown field"):
        self.path = path
        super().__init__(f"Invalid field path '{path}': {reason}")


def _unique(values: Iterable[str]) -> list[str]:
    """Deduplicate while keeping first-seen order."""
    seen: dict[str, None] = {}
    for value in values:
        seen.setdefault(str(value), None)
    return list(seen)


class _Document(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class LoggingSettings(_Document):
    """Event logging configuration."""

    channel_id: Optional[str] = None
    events: dict[str, bool] = Field(
        default_factory=lambda: {key: True for key in LOG_EVENT_KEYS}
    )

    @field_validator("events", mode="before")
    @classmethod
    def _fill_events(cls, value: Any) -> Any:
        if value is None:
            value = {}
        if not isinstance(value, Mapping):
            return value
        return {key: value.get(key, True) for key in LOG_EVENT_KEYS}

    def is_enabled(self, event_key: str) -> bool:
        return self.events.get(event_key, False)


class WelcomeSettings(_Document):
    """Welcome message configuration."""

    enabled: bool = False
    channel_id: Optional[str] = None
    message_template: str = Field(default=DEFAULT_WELCOME_MESSAGE, max_length=2000)

    def render(self, user_mention: str, username: str, guild_name: str) -> str:
        """Fill the ``{user}``, ``{username}`` and ``{guild}`` placeholders."""
        return (
            self.message_template.replace("{user}", user_mention)
            .replace("{username}", username)
            .replace("{guild}", guild_name)
        )


class GuildConfiguration(_Document):
    """Persistent per-guild configuration values."""

    guild_id: str = Field(..., min_length=1, description="Discord guild ID")
    schema_version: int = CURRENT_SCHEMA_VERSION
    command_permissions: dict[str, list[str]] = Field(default_factory=dict)
    disabled_commands: list[str] = Field(default_factory=list)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    welcome: WelcomeSettings = Field(default_factory=WelcomeSettings)

    @field_validator("guild_id", mode="before")
    @classmethod
    def _stringify_guild_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @field_validator("command_permissions")
    @classmethod
    def _dedupe_roles(cls, value: dict[str, list[str]]) -> dict[str, list[str]]:
        return {command: _unique(role_ids) for command, role_ids in value.items()}

    @field_validator("disabled_commands")
    @classmethod
    def _dedupe_commands(cls, value: list[str]) -> list[str]:
        return _unique(value)

    def to_document(self) -> dict[str, Any]:
        """Serialize to the camelCase wire format used by the snapshot."""
        return self.model_dump(by_alias=True, mode="json")

    def with_fields(
        self,
        set_fields: Mapping[str, Any],
        unset_fields: Iterable[str] = (),
    ) -> "GuildConfiguration":
        """Return a copy with the given field paths set/unset, re-validated."""
        data = self.model_dump()
        apply_fields(data, set_fields, unset_fields)
        data["guild_id"] = self.guild_id
        data["schema_version"] = CURRENT_SCHEMA_VERSION
        return GuildConfiguration.model_validate(data)


# -------------------------------------------------------------------------
# Field paths
# -------------------------------------------------------------------------

# top-level field -> (sub-fields, or None if the next segment is a free key)
_WRITABLE_FIELDS: dict[str, Optional[dict[str, Optional[dict]]]] = {
    "command_permissions": None,
    "disabled_commands": {},
    "logging": {"channel_id": {}, "events": None},
    "welcome": {"enabled": {}, "channel_id": {}, "message_template": {}},
}


def split_path(path: str) -> list[str]:
    """Validate a dotted field path and return its segments."""
    segments = path.split(".") if path else []
    if not segments or segments[0] not in _WRITABLE_FIELDS:
        raise InvalidFieldError(path)

    node: Optional[dict] = {segments[0]: _WRITABLE_FIELDS[segments[0]]}
    for depth, segment in enumerate(segments):
        if not segment:
            raise InvalidFieldError(path, "empty segment")
        if node is None:
            # free-form key (command name / event key): must be the leaf
            if depth != len(segments) - 1:
                raise InvalidFieldError(path, "too deep")
            if segments[depth - 1] == "events" and segment not in LOG_EVENT_KEYS:
                raise InvalidFieldError(path, f"unknown log event '{segment}'")
            return segments
        if segment not in node:
            raise InvalidFieldError(path)
        node = node[segment]
    return segments


def apply_fields(
    data: dict[str, Any],
    set_fields: Mapping[str, Any],
    unset_fields: Iterable[str] = (),
) -> dict[str, Any]:
    """Apply ``$set``/``$unset`` style field paths to a snake_case dict in place."""
    for path, value in set_fields.items():
        *parents, leaf = split_path(path)
        target = data
        for segment in parents:
            target = target.setdefault(segment, {})
        target[leaf] = copy.deepcopy(value)

    for path in unset_fields:
        *parents, leaf = split_path(path)
        target = data
        for segment in parents:
            target = target.get(segment)
            if not isinstance(target, dict):
                break
        else:
            target.pop(leaf, None)
    return data


def top_level_fields(paths: Iterable[str]) -> set[str]:
    """Names of the top-level fields touched by a set of paths."""
    return {split_path(path)[0] for path in paths}
