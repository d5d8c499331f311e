"""Bot Configuration using pydantic-settings."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BotSettings(BaseSettings):
    """Bot configuration settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Discord Configuration
    discord_token: str = Field(default="", description="Discord bot token")

    # Document store. Leaving the URL unset runs the bot in snapshot-only mode.
    database_url: Optional[str] = Field(
        default=None,
        description="Document store connection URL, e.g. postgresql+asyncpg://...",
    )
    database_name: Optional[str] = Field(
        default=None, description="Database name, overrides the one in the URL"
    )
    db_connect_timeout: float = Field(
        default=5.0, gt=0, description="Seconds to wait for the store on connect"
    )
    db_pool_size: int = Field(default=10, ge=1, description="Connection pool size")
    reconnect_interval: float = Field(
        default=60.0, gt=0, description="Seconds between reconnect attempts"
    )

    # Local snapshot
    snapshot_path: str = Field(
        default="data/guildSettings.json",
        description="Path of the local guild settings snapshot",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or text")
    log_file: Optional[str] = Field(default=None, description="Log file path")

    # Feature Flags
    debug: bool = Field(default=False, description="Debug mode")

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return not self.debug

    @property
    def document_store_enabled(self) -> bool:
        """Whether a document store has been configured at all."""
        return bool(self.database_url)


@lru_cache()
def get_settings() -> BotSettings:
    """Get cached settings instance."""
    return BotSettings()


settings = get_settings()
