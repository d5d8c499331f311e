"""Guild settings document tables."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from guildbot.models.base import Base, JSONDocument
from guildbot.schemas.guild_configuration import (
    CURRENT_SCHEMA_VERSION,
    DEFAULT_WELCOME_MESSAGE,
    LOG_EVENT_KEYS,
)


class GuildSettingsDocument(Base):
    """One settings document per guild."""

    __tablename__ = "guild_settings"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # Discord guild ID (as string to handle large numbers)
    guild_id: Mapped[str] = mapped_column(String(20), unique=True, index=True)
    schema_version: Mapped[int] = mapped_column(Integer, default=CURRENT_SCHEMA_VERSION)

    disabled_commands: Mapped[list] = mapped_column(JSONDocument, default=list)

    # Logging
    log_channel_id: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    log_events: Mapped[dict] = mapped_column(
        JSONDocument, default=lambda: {key: True for key in LOG_EVENT_KEYS}
    )

    # Welcome
    welcome_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    welcome_channel_id: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    welcome_message: Mapped[str] = mapped_column(
        String(2000), default=DEFAULT_WELCOME_MESSAGE
    )

    # Obsolete top-level keys left behind by older writers, awaiting migration
    legacy_fields: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONDocument, nullable=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<GuildSettingsDocument(guild_id='{self.guild_id}', v{self.schema_version})>"


class CommandPermission(Base):
    """Role allow-list for one command in one guild."""

    __tablename__ = "command_permissions"
    __table_args__ = (
        UniqueConstraint("guild_id", "command_name", name="uq_command_permissions_guild_cmd"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    guild_id: Mapped[str] = mapped_column(String(20), index=True)
    command_name: Mapped[str] = mapped_column(String(50))
    role_ids: Mapped[list] = mapped_column(JSONDocument, default=list)

    def __repr__(self) -> str:
        return f"<CommandPermission(guild={self.guild_id}, cmd='{self.command_name}')>"
