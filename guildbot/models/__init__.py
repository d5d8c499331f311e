"""Database Models Package."""

from .base import Base
from .guild_settings import CommandPermission, GuildSettingsDocument

__all__ = ["Base", "CommandPermission", "GuildSettingsDocument"]
