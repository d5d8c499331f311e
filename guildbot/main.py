"""Discord Bot Main Entry Point."""

import asyncio
import signal
import sys
from typing import Optional

import discord
from discord.ext import commands, tasks

from guildbot.config import settings
from guildbot.registry import CommandRegistry
from guildbot.services.connection import ConnectionState
from guildbot.services.database import DocumentStore, DocumentStoreError
from guildbot.services.dispatch import HANDLER_FAILED_MESSAGE, DispatchGate
from guildbot.services.logger import get_logger, setup_logging
from guildbot.services.migrations import SchemaMigrator
from guildbot.services.repository import SettingsRepository
from guildbot.services.snapshot import SnapshotStore, SnapshotStoreError
from guildbot.tree import GatedCommandTree

# Setup logging
setup_logging()
logger = get_logger(__name__)

COGS = ("admin", "events")


class GuildBot(commands.Bot):
    """Discord bot with per-guild settings and a gated command tree."""

    def __init__(self) -> None:
        """Initialize the bot with intents and configuration."""
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        intents.guilds = True
        intents.invites = True

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            tree_cls=GatedCommandTree,
        )

        self.connection_state = ConnectionState()
        self.registry = CommandRegistry()
        self.snapshot: Optional[SnapshotStore] = None
        self.documents: Optional[DocumentStore] = None
        self.repository: Optional[SettingsRepository] = None
        self.gate: Optional[DispatchGate] = None

    async def setup_hook(self) -> None:
        """Initialize services and load cogs before connecting to Discord."""
        logger.info("Setting up bot services...")

        self.snapshot = SnapshotStore(settings.snapshot_path)
        try:
            await self.snapshot.ensure_exists()
        except SnapshotStoreError as e:
            logger.error(f"Snapshot file is not writable: {e}")

        self.documents = await self._connect_document_store()

        await SchemaMigrator(self.snapshot, self.documents).run()

        self.repository = SettingsRepository(self.snapshot, self.documents)
        self.gate = DispatchGate(self.repository)

        await self._load_cogs()
        self.registry.sync_from_tree(self.tree)
        self.tree.on_error = self.on_app_command_error

        if self.documents is not None:
            self.reconnect_document_store.change_interval(seconds=settings.reconnect_interval)
            self.reconnect_document_store.start()

        logger.info("Bot setup complete", commands=len(self.registry.names()))

    async def _connect_document_store(self) -> Optional[DocumentStore]:
        """Returns None when the bot has to run in snapshot-only mode."""
        if not settings.document_store_enabled:
            logger.warning("No document store configured, running in snapshot-only mode")
            return None

        documents = DocumentStore(
            settings.database_url,
            state=self.connection_state,
            database_name=settings.database_name,
            connect_timeout=settings.db_connect_timeout,
            pool_size=settings.db_pool_size,
        )
        try:
            if not await documents.connect():
                logger.warning("Document store unreachable, serving settings from snapshot")
        except DocumentStoreError as e:
            logger.error(f"Document store disabled: {e}")
            return None
        return documents

    async def _load_cogs(self) -> None:
        for cog_name in COGS:
            try:
                await self.load_extension(f"guildbot.cogs.{cog_name}")
                logger.info(f"Loaded cog: {cog_name}")
            except commands.ExtensionError as e:
                logger.error(f"Failed to load cog {cog_name}: {e}")

    # -------------------------------------------------------------------------
    # Background Tasks
    # -------------------------------------------------------------------------

    @tasks.loop(seconds=60)
    async def reconnect_document_store(self) -> None:
        """Retry the document store while it is down, then replay queued writes."""
        if self.documents is None or self.repository is None:
            return

        if not self.documents.is_available():
            try:
                connected = await self.documents.connect()
            except DocumentStoreError as e:
                logger.error(f"Document store reconnect failed: {e}")
                return
            if not connected:
                return
            logger.info("Document store reconnected")

        if self.repository.has_unsynced():
            await self.repository.sync_pending()

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    async def on_ready(self) -> None:
        """Called when the bot is ready."""
        logger.info(f"Bot is ready! Logged in as {self.user} (ID: {self.user.id})")
        logger.info(f"Connected to {len(self.guilds)} guilds")

        # Sync slash commands
        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_guild_join(self, guild: discord.Guild) -> None:
        """Create default settings for a newly joined guild."""
        logger.info(f"Joined guild: {guild.name} (ID: {guild.id})")
        if self.repository:
            await self.repository.get(guild.id)

    async def on_app_command_error(
        self, interaction: discord.Interaction, error: discord.app_commands.AppCommandError
    ) -> None:
        """Global error handler for slash commands."""
        if isinstance(error, discord.app_commands.CheckFailure):
            # the gate already told the user why
            if not interaction.response.is_done():
                await interaction.response.send_message(
                    "You don't have permission to use this command.",
                    ephemeral=True,
                )
            return

        logger.error(
            f"Slash command error: {error}",
            guild_id=interaction.guild_id,
            exc_info=error,
        )
        if interaction.response.is_done():
            await interaction.followup.send(HANDLER_FAILED_MESSAGE, ephemeral=True)
        else:
            await interaction.response.send_message(HANDLER_FAILED_MESSAGE, ephemeral=True)

    async def close(self) -> None:
        """Clean up resources before shutdown."""
        logger.info("Shutting down bot...")

        if self.reconnect_document_store.is_running():
            self.reconnect_document_store.cancel()

        if self.repository:
            await self.repository.flush()

        if self.documents:
            await self.documents.disconnect()

        await super().close()
        logger.info("Bot shutdown complete")


# Global bot instance
bot = GuildBot()


def handle_shutdown(signum: int, frame) -> None:
    """Handle shutdown signals gracefully."""
    logger.info(f"Received signal {signum}, initiating shutdown...")
    asyncio.create_task(bot.close())


def main() -> None:
    """Main entry point for the bot."""
    if not settings.discord_token:
        logger.critical("DISCORD_TOKEN is not set. Please check your configuration.")
        sys.exit(1)

    # Register signal handlers for graceful shutdown
    if sys.platform != "win32":
        signal.signal(signal.SIGTERM, handle_shutdown)
        signal.signal(signal.SIGINT, handle_shutdown)

    try:
        logger.info("Starting Discord bot...")
        bot.run(settings.discord_token, log_handler=None)
    except discord.LoginFailure:
        logger.critical("Invalid Discord token. Please check your configuration.")
        sys.exit(1)
    except Exception as e:
        logger.critical(f"Failed to start bot: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
