"""Events Cog: welcome messages and guild event logging."""

from typing import Optional

import discord
from discord.ext import commands

from guildbot.schemas.guild_configuration import GuildConfiguration
from guildbot.services.logger import get_logger
from guildbot.services.snapshot import SnapshotStoreError

logger = get_logger(__name__)


def _truncate(text: Optional[str], limit: int = 1024) -> str:
    if not text:
        return "*empty*"
    return text if len(text) <= limit else f"{text[: limit - 3]}..."


class Events(commands.Cog):
    """Listeners that act on per-guild logging and welcome settings."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot

    async def _config(self, guild: Optional[discord.Guild]) -> Optional[GuildConfiguration]:
        if guild is None:
            return None
        try:
            return await self.bot.repository.get(guild.id)
        except SnapshotStoreError as e:
            logger.warning("Guild settings unavailable, event skipped", guild_id=guild.id, error=str(e))
            return None

    def _text_channel(self, guild: discord.Guild, channel_id: Optional[str]):
        if not channel_id:
            return None
        channel = guild.get_channel(int(channel_id))
        if channel is None or not isinstance(channel, discord.abc.Messageable):
            logger.warning("Configured channel not found", guild_id=guild.id, channel_id=channel_id)
            return None
        return channel

    async def send_log(self, guild: Optional[discord.Guild], event_key: str, embed: discord.Embed) -> bool:
        """Post ``embed`` to the guild's log channel if ``event_key`` is enabled."""
        config = await self._config(guild)
        if config is None or not config.logging.is_enabled(event_key):
            return False

        channel = self._text_channel(guild, config.logging.channel_id)
        if channel is None:
            return False

        try:
            await channel.send(embed=embed)
        except discord.HTTPException as e:
            logger.warning(
                "Failed to send log message",
                guild_id=guild.id,
                event=event_key,
                error=str(e),
            )
            return False
        return True

    # -------------------------------------------------------------------------
    # Welcome
    # -------------------------------------------------------------------------

    @commands.Cog.listener()
    async def on_member_join(self, member: discord.Member) -> None:
        config = await self._config(member.guild)
        if config is None or not config.welcome.enabled:
            return

        channel = self._text_channel(member.guild, config.welcome.channel_id)
        if channel is None:
            return

        content = config.welcome.render(member.mention, member.name, member.guild.name)
        try:
            await channel.send(content)
            logger.info("Welcome message sent", guild_id=member.guild.id, user_id=member.id)
        except discord.HTTPException as e:
            logger.warning("Failed to send welcome message", guild_id=member.guild.id, error=str(e))

    # -------------------------------------------------------------------------
    # Message Events
    # -------------------------------------------------------------------------

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or message.guild is None:
            return
        embed = discord.Embed(
            title="Message Created",
            description=_truncate(message.content),
            color=discord.Color.green(),
            timestamp=message.created_at,
        )
        embed.add_field(name="Author", value=message.author.mention)
        embed.add_field(name="Channel", value=message.channel.mention)
        await self.send_log(message.guild, "message-create", embed)

    @commands.Cog.listener()
    async def on_message_delete(self, message: discord.Message) -> None:
        if message.author.bot or message.guild is None:
            return
        embed = discord.Embed(
            title="Message Deleted",
            description=_truncate(message.content),
            color=discord.Color.red(),
        )
        embed.add_field(name="Author", value=message.author.mention)
        embed.add_field(name="Channel", value=message.channel.mention)
        await self.send_log(message.guild, "message-delete", embed)

    @commands.Cog.listener()
    async def on_message_edit(self, before: discord.Message, after: discord.Message) -> None:
        if after.author.bot or after.guild is None or before.content == after.content:
            return
        embed = discord.Embed(title="Message Edited", color=discord.Color.orange())
        embed.add_field(name="Before", value=_truncate(before.content), inline=False)
        embed.add_field(name="After", value=_truncate(after.content), inline=False)
        embed.add_field(name="Author", value=after.author.mention)
        embed.add_field(name="Channel", value=after.channel.mention)
        await self.send_log(after.guild, "message-update", embed)

    # -------------------------------------------------------------------------
    # Invite Events
    # -------------------------------------------------------------------------

    @commands.Cog.listener()
    async def on_invite_create(self, invite: discord.Invite) -> None:
        embed = discord.Embed(
            title="Invite Created",
            description=f"`{invite.code}`",
            color=discord.Color.blurple(),
        )
        if invite.inviter:
            embed.add_field(name="Created by", value=invite.inviter.mention)
        if invite.max_uses:
            embed.add_field(name="Max uses", value=str(invite.max_uses))
        await self.send_log(invite.guild, "invite-create", embed)

    @commands.Cog.listener()
    async def on_invite_delete(self, invite: discord.Invite) -> None:
        embed = discord.Embed(
            title="Invite Deleted",
            description=f"`{invite.code}`",
            color=discord.Color.dark_grey(),
        )
        await self.send_log(invite.guild, "invite-delete", embed)


async def setup(bot: commands.Bot) -> None:
    """Setup function for loading the cog."""
    await bot.add_cog(Events(bot))
