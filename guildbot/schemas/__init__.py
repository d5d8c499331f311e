"""Pydantic Schemas Package."""

from .guild_configuration import (
    CURRENT_SCHEMA_VERSION,
    LOG_EVENT_KEYS,
    GuildConfiguration,
    InvalidFieldError,
    LoggingSettings,
    WelcomeSettings,
    apply_fields,
    split_path,
)

__all__ = [
    "CURRENT_SCHEMA_VERSION",
    "LOG_EVENT_KEYS",
    "GuildConfiguration",
    "InvalidFieldError",
    "LoggingSettings",
    "WelcomeSettings",
    "apply_fields",
    "split_path",
]
