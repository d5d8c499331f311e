"""Admin Cog for per-guild command, logging and welcome configuration."""

from typing import Callable, Optional

import discord
from discord import app_commands
from discord.ext import commands

from guildbot.registry import CommandRegistry
from guildbot.schemas.guild_configuration import LOG_EVENT_KEYS, GuildConfiguration
from guildbot.services.logger import get_logger
from guildbot.services.permissions import DEFAULT_RESTRICTED_COMMANDS
from guildbot.services.repository import SettingsRepository

logger = get_logger(__name__)

LOG_EVENT_LABELS: dict[str, str] = {
    "message-create": "Message Create",
    "message-delete": "Message Delete",
    "message-update": "Message Update",
    "invite-create": "Invite Create",
    "invite-delete": "Invite Delete",
}

PLACEHOLDER_HELP = "Use {user}, {username}, {guild} for dynamic values."

ERROR_MESSAGE = "An error occurred while updating the settings."


def role_mention(guild: Optional[discord.Guild]) -> Callable[[str], str]:
    """Render role ids, flagging roles the guild no longer has."""

    def render(role_id: str) -> str:
        if guild is not None and guild.get_role(int(role_id)) is None:
            return f"Unknown Role ({role_id})"
        return f"<@&{role_id}>"

    return render


def describe_permissions(
    config: GuildConfiguration,
    mention: Callable[[str], str] = lambda role_id: f"<@&{role_id}>",
    default_restricted: frozenset[str] = DEFAULT_RESTRICTED_COMMANDS,
) -> list[tuple[str, str]]:
    """Field name/value pairs for the permission listing.

    Covers every command with roles configured, every disabled command and
    every default-restricted command. Disabled commands come first, then
    everything by name.
    """
    names = set(config.command_permissions) | set(config.disabled_commands) | set(default_restricted)
    disabled = set(config.disabled_commands)

    fields = []
    for name in sorted(names, key=lambda n: (n not in disabled, n)):
        title = f"/{name} (disabled)" if name in disabled else f"/{name}"
        role_ids = config.command_permissions.get(name)
        if role_ids is None and name in default_restricted:
            value = "Server owner only (default restriction)"
        elif not role_ids:
            value = "Everyone can use this command"
        else:
            value = "Restricted to: " + ", ".join(mention(role_id) for role_id in role_ids)
        fields.append((title, value))
    return fields


def describe_log_events(config: GuildConfiguration, keys: Optional[list[str]] = None) -> str:
    lines = []
    for key in keys or LOG_EVENT_KEYS:
        mark = "on" if config.logging.is_enabled(key) else "off"
        lines.append(f"[{mark}] {LOG_EVENT_LABELS[key]} `{key}`")
    return "\n".join(lines)


def _channel(channel_id: Optional[str]) -> str:
    return f"<#{channel_id}>" if channel_id else "Not set"


class Admin(commands.Cog):
    """Per-guild configuration commands."""

    def __init__(self, bot: commands.Bot):
        """Initialize the Admin cog."""
        self.bot = bot

    @property
    def repository(self) -> SettingsRepository:
        return self.bot.repository

    @property
    def registry(self) -> CommandRegistry:
        return self.bot.registry

    async def _reply(self, interaction: discord.Interaction, content: Optional[str] = None, **kwargs) -> None:
        if interaction.response.is_done():
            await interaction.followup.send(content, ephemeral=True, **kwargs)
        else:
            await interaction.response.send_message(content, ephemeral=True, **kwargs)

    # -------------------------------------------------------------------------
    # Slash Command Groups
    # -------------------------------------------------------------------------

    togglecommand = app_commands.Group(
        name="togglecommand",
        description="Enable or disable commands for this server",
        default_permissions=discord.Permissions(manage_guild=True),
        guild_only=True,
    )

    permission = app_commands.Group(
        name="permission",
        description="Manage command role permissions for this server",
        default_permissions=discord.Permissions(manage_guild=True),
        guild_only=True,
    )

    log = app_commands.Group(
        name="log",
        description="Configure logging destinations and events",
        default_permissions=discord.Permissions(manage_guild=True),
        guild_only=True,
    )

    welcome = app_commands.Group(
        name="welcome",
        description="Configure welcome messages",
        default_permissions=discord.Permissions(manage_guild=True),
        guild_only=True,
    )

    # -------------------------------------------------------------------------
    # Toggle Commands
    # -------------------------------------------------------------------------

    def _check_toggleable(self, command: str) -> Optional[str]:
        if not self.registry.exists(command):
            return f"Command `/{command}` does not exist."
        if self.registry.is_protected(command):
            return f"Command `/{command}` cannot be disabled as it is a protected admin command."
        return None

    @togglecommand.command(name="enable", description="Enable a command for this server")
    @app_commands.describe(command="Command to enable")
    async def toggle_enable(self, interaction: discord.Interaction, command: str) -> None:
        """Enable a previously disabled command."""
        problem = self._check_toggleable(command)
        if problem:
            await self._reply(interaction, problem)
            return

        changed = await self.repository.enable_command(interaction.guild_id, command)
        logger.info(
            "Command enabled for guild",
            guild_id=interaction.guild_id,
            command=command,
            changed=changed,
            user_id=interaction.user.id,
        )
        await self._reply(interaction, f"Command `/{command}` has been **enabled** for this server.")

    @togglecommand.command(name="disable", description="Disable a command for this server")
    @app_commands.describe(command="Command to disable")
    async def toggle_disable(self, interaction: discord.Interaction, command: str) -> None:
        """Disable a command for everyone but the server owner."""
        problem = self._check_toggleable(command)
        if problem:
            await self._reply(interaction, problem)
            return

        changed = await self.repository.disable_command(interaction.guild_id, command)
        logger.info(
            "Command disabled for guild",
            guild_id=interaction.guild_id,
            command=command,
            changed=changed,
            user_id=interaction.user.id,
        )
        await self._reply(
            interaction,
            f"Command `/{command}` has been **disabled** for this server.\n"
            "The server owner can still use it.",
        )

    @togglecommand.command(name="status", description="Check the status of a command")
    @app_commands.describe(command="Command to check")
    async def toggle_status(self, interaction: discord.Interaction, command: str) -> None:
        if not self.registry.exists(command):
            await self._reply(interaction, f"Command `/{command}` does not exist.")
            return

        config = await self.repository.get(interaction.guild_id)
        status = "Disabled" if command in config.disabled_commands else "Enabled"
        role_ids = config.command_permissions.get(command)
        if role_ids:
            mention = role_mention(interaction.guild)
            restriction = ", ".join(mention(role_id) for role_id in role_ids)
        elif role_ids is None and command in DEFAULT_RESTRICTED_COMMANDS:
            restriction = "Server owner only (default restriction)"
        else:
            restriction = "Everyone can use this command"

        await self._reply(
            interaction,
            f"**Command:** `/{command}`\n**Status:** {status}\n\n**Role Restrictions:** {restriction}",
        )

    @toggle_enable.autocomplete("command")
    @toggle_disable.autocomplete("command")
    async def toggleable_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> list[app_commands.Choice[str]]:
        return [
            app_commands.Choice(name=name, value=name)
            for name in self.registry.matching(current, include_protected=False)
        ]

    # -------------------------------------------------------------------------
    # Permission Commands
    # -------------------------------------------------------------------------

    @permission.command(name="add", description="Allow a role to use a specific command")
    @app_commands.describe(command="Command to restrict", role="Role that should have access")
    async def permission_add(
        self, interaction: discord.Interaction, command: str, role: discord.Role
    ) -> None:
        """Add a role to a command's allow list."""
        if not self.registry.exists(command):
            await self._reply(interaction, f"Command `/{command}` does not exist.")
            return

        await self.repository.add_command_role(interaction.guild_id, command, role.id)
        await self._reply(interaction, f"Role {role.mention} can now use the `/{command}` command.")

    @permission.command(name="remove", description="Remove a role from a specific command")
    @app_commands.describe(command="Command to update", role="Role to remove")
    async def permission_remove(
        self, interaction: discord.Interaction, command: str, role: discord.Role
    ) -> None:
        """Remove a role; with no roles left the command falls back to its default."""
        remaining = await self.repository.remove_command_role(interaction.guild_id, command, role.id)
        if remaining is None and command in DEFAULT_RESTRICTED_COMMANDS:
            suffix = " It is now restricted to the server owner."
        elif remaining is None:
            suffix = " Everyone can now use it."
        else:
            suffix = ""
        await self._reply(
            interaction,
            f"Role {role.mention} has been removed from the `/{command}` command.{suffix}",
        )

    @permission.command(name="list", description="List command permissions for this server")
    async def permission_list(self, interaction: discord.Interaction) -> None:
        config = await self.repository.get(interaction.guild_id)
        embed = discord.Embed(
            title="Command Permissions & Status",
            description="Role restrictions and enable/disable status for commands in this server",
            color=discord.Color.blurple(),
        )
        for name, value in describe_permissions(config, role_mention(interaction.guild)):
            embed.add_field(name=name, value=value, inline=False)
        embed.set_footer(text=f"Requested by {interaction.user}")

        await self._reply(interaction, embed=embed)
        logger.info(
            "Command permissions listed",
            guild_id=interaction.guild_id,
            permission_count=len(config.command_permissions),
        )

    @permission.command(name="reset", description="Reset all command role permissions")
    async def permission_reset(self, interaction: discord.Interaction) -> None:
        await self.repository.reset_permissions(interaction.guild_id)
        await self._reply(
            interaction,
            "All command permissions have been reset. "
            "Default-restricted commands are owner-only again.",
        )

    @permission_add.autocomplete("command")
    @permission_remove.autocomplete("command")
    async def command_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> list[app_commands.Choice[str]]:
        return [
            app_commands.Choice(name=name, value=name)
            for name in self.registry.matching(current)
            if name != "permission"
        ]

    # -------------------------------------------------------------------------
    # Log Commands
    # -------------------------------------------------------------------------

    @log.command(name="channel", description="Set the channel used for logging")
    @app_commands.describe(channel="Text channel to send logs to")
    async def log_channel(
        self, interaction: discord.Interaction, channel: discord.TextChannel
    ) -> None:
        await self.repository.set_log_channel(interaction.guild_id, channel.id)
        logger.info("Log channel set", guild_id=interaction.guild_id, channel_id=channel.id)
        await self._reply(interaction, f"Log channel set to {channel.mention}.")

    @log.command(name="event", description="Enable or disable logging for an event")
    @app_commands.describe(event="Event to configure", enabled="Whether to log it")
    @app_commands.choices(
        event=[app_commands.Choice(name=label, value=key) for key, label in LOG_EVENT_LABELS.items()]
    )
    async def log_event(
        self,
        interaction: discord.Interaction,
        event: app_commands.Choice[str],
        enabled: bool,
    ) -> None:
        await self.repository.set_log_event(interaction.guild_id, event.value, enabled)
        config = await self.repository.get(interaction.guild_id)
        await self._reply(
            interaction,
            f"{event.name} logging {'enabled' if enabled else 'disabled'}.\n"
            + describe_log_events(config, [event.value]),
        )

    @log.command(name="status", description="Show the log channel and event settings")
    async def log_status(self, interaction: discord.Interaction) -> None:
        config = await self.repository.get(interaction.guild_id)
        await self._reply(
            interaction,
            f"**Log channel:** {_channel(config.logging.channel_id)}\n"
            + describe_log_events(config),
        )

    # -------------------------------------------------------------------------
    # Welcome Commands
    # -------------------------------------------------------------------------

    @welcome.command(name="toggle", description="Enable or disable welcome messages")
    @app_commands.describe(enabled="Enable welcome messages")
    async def welcome_toggle(self, interaction: discord.Interaction, enabled: bool) -> None:
        await self.repository.set_welcome_enabled(interaction.guild_id, enabled)
        config = await self.repository.get(interaction.guild_id)
        lines = [f"Welcome messages {'enabled' if enabled else 'disabled'}."]
        if enabled and not config.welcome.channel_id:
            lines.append("No welcome channel set. Configure one with `/welcome channel`.")
        await self._reply(interaction, "\n".join(lines))

    @welcome.command(name="channel", description="Set the welcome channel")
    @app_commands.describe(channel="Channel to send welcome messages")
    async def welcome_channel(
        self, interaction: discord.Interaction, channel: discord.TextChannel
    ) -> None:
        await self.repository.set_welcome_channel(interaction.guild_id, channel.id)
        await self._reply(interaction, f"Welcome channel set to {channel.mention}.")

    @welcome.command(name="message", description="Set the welcome message")
    @app_commands.describe(content=PLACEHOLDER_HELP)
    async def welcome_message(
        self,
        interaction: discord.Interaction,
        content: app_commands.Range[str, 1, 2000],
    ) -> None:
        trimmed = content.strip()
        if not trimmed:
            await self._reply(interaction, "Welcome message cannot be empty.")
            return

        await self.repository.set_welcome_message(interaction.guild_id, trimmed)
        config = await self.repository.get(interaction.guild_id)
        preview = config.welcome.render(
            interaction.user.mention, interaction.user.name, interaction.guild.name
        )
        await self._reply(
            interaction,
            f"Welcome message updated.\n\n**Preview:**\n{preview}\n\n{PLACEHOLDER_HELP}",
        )

    @welcome.command(name="status", description="Show welcome configuration")
    async def welcome_status(self, interaction: discord.Interaction) -> None:
        config = await self.repository.get(interaction.guild_id)
        embed = discord.Embed(title="Welcome Configuration", color=discord.Color.green())
        embed.add_field(name="Status", value="Enabled" if config.welcome.enabled else "Disabled")
        embed.add_field(name="Channel", value=_channel(config.welcome.channel_id))
        embed.add_field(name="Message", value=config.welcome.message_template[:900], inline=False)
        await self._reply(interaction, embed=embed)


async def setup(bot: commands.Bot) -> None:
    """Setup function for loading the cog."""
    await bot.add_cog(Admin(bot))
