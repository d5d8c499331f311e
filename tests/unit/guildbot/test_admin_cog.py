"""Tests for the Admin cog."""

from unittest.mock import MagicMock

import discord
import pytest
from discord import app_commands

from guildbot.cogs.admin import Admin, describe_log_events, describe_permissions, role_mention
from guildbot.registry import CommandRegistry
from guildbot.schemas.guild_configuration import GuildConfiguration


@pytest.fixture
def bot(offline_repository):
    bot = MagicMock()
    bot.repository = offline_repository
    bot.registry = CommandRegistry(["roll", "clean", "kick", "avatar", "togglecommand", "permission"])
    return bot


@pytest.fixture
def cog(bot) -> Admin:
    return Admin(bot)


def make_role(role_id: int) -> MagicMock:
    role = MagicMock()
    role.id = role_id
    role.mention = f"<@&{role_id}>"
    return role


def sent_text(interaction) -> str:
    return interaction.response.send_message.call_args.args[0]


class TestDescribePermissions:
    """Tests for the permission listing helper."""

    def test_disabled_first_then_by_name(self):
        config = GuildConfiguration(
            guild_id="1",
            command_permissions={"clean": ["5"], "avatar": []},
            disabled_commands=["roll"],
        )

        fields = describe_permissions(config)

        assert [name for name, _ in fields] == [
            "/roll (disabled)",
            "/avatar",
            "/clean",
            "/kick",
            "/setnick",
        ]
        values = dict(fields)
        assert values["/avatar"] == "Everyone can use this command"
        assert values["/clean"] == "Restricted to: <@&5>"
        assert values["/kick"] == "Server owner only (default restriction)"
        assert values["/roll (disabled)"] == "Everyone can use this command"

    def test_defaults_only(self):
        fields = describe_permissions(GuildConfiguration(guild_id="1"))
        assert [name for name, _ in fields] == ["/clean", "/kick", "/setnick"]

    def test_unknown_roles_flagged(self):
        guild = MagicMock()
        guild.get_role.side_effect = lambda role_id: None if role_id == 404 else MagicMock()
        mention = role_mention(guild)

        assert mention("404") == "Unknown Role (404)"
        assert mention("5") == "<@&5>"

    def test_describe_log_events(self):
        config = GuildConfiguration(guild_id="1").with_fields({"logging.events.invite-create": False})
        text = describe_log_events(config)
        assert "[off] Invite Create `invite-create`" in text
        assert "[on] Message Create `message-create`" in text
        assert describe_log_events(config, ["message-delete"]) == "[on] Message Delete `message-delete`"


class TestToggleCommand:
    """Tests for /togglecommand."""

    async def test_disable_and_enable(self, cog, interaction, offline_repository):
        await cog.toggle_disable.callback(cog, interaction, "roll")
        assert await offline_repository.is_command_disabled(interaction.guild_id, "roll")
        assert "disabled" in sent_text(interaction)

        await cog.toggle_enable.callback(cog, interaction, "roll")
        assert not await offline_repository.is_command_disabled(interaction.guild_id, "roll")
        assert "enabled" in sent_text(interaction)

    async def test_protected_command_refused(self, cog, interaction, offline_repository):
        await cog.toggle_disable.callback(cog, interaction, "togglecommand")

        assert "protected" in sent_text(interaction)
        assert not await offline_repository.is_command_disabled(interaction.guild_id, "togglecommand")

    async def test_unknown_command_refused(self, cog, interaction, offline_repository):
        await cog.toggle_disable.callback(cog, interaction, "nope")

        assert "does not exist" in sent_text(interaction)
        assert (await offline_repository.get(interaction.guild_id)).disabled_commands == []

    async def test_status(self, cog, interaction, offline_repository):
        interaction.guild = None
        await offline_repository.disable_command(interaction.guild_id, "roll")

        await cog.toggle_status.callback(cog, interaction, "roll")
        text = sent_text(interaction)
        assert "Disabled" in text
        assert "Everyone can use this command" in text

        await cog.toggle_status.callback(cog, interaction, "kick")
        assert "owner only" in sent_text(interaction)

    async def test_autocomplete_hides_protected(self, cog, interaction):
        choices = await cog.toggleable_autocomplete(interaction, "")
        assert [choice.value for choice in choices] == ["avatar", "clean", "kick", "roll"]

    async def test_replies_are_ephemeral(self, cog, interaction):
        await cog.toggle_enable.callback(cog, interaction, "roll")
        assert interaction.response.send_message.call_args.kwargs["ephemeral"] is True


class TestPermissionCommand:
    """Tests for /permission."""

    async def test_add_and_remove(self, cog, interaction, offline_repository):
        role = make_role(5)

        await cog.permission_add.callback(cog, interaction, "clean", role)
        config = await offline_repository.get(interaction.guild_id)
        assert config.command_permissions == {"clean": ["5"]}
        assert "<@&5>" in sent_text(interaction)

        await cog.permission_remove.callback(cog, interaction, "clean", role)
        config = await offline_repository.get(interaction.guild_id)
        assert "clean" not in config.command_permissions
        assert "server owner" in sent_text(interaction)

    async def test_remove_last_role_from_open_command(self, cog, interaction):
        role = make_role(5)
        await cog.permission_add.callback(cog, interaction, "roll", role)
        await cog.permission_remove.callback(cog, interaction, "roll", role)
        assert "Everyone can now use it" in sent_text(interaction)

    async def test_add_unknown_command(self, cog, interaction, offline_repository):
        await cog.permission_add.callback(cog, interaction, "nope", make_role(5))
        assert "does not exist" in sent_text(interaction)
        assert (await offline_repository.get(interaction.guild_id)).command_permissions == {}

    async def test_list_sends_embed(self, cog, interaction, offline_repository):
        interaction.guild = None
        await offline_repository.add_command_role(interaction.guild_id, "clean", "5")

        await cog.permission_list.callback(cog, interaction)

        embed = interaction.response.send_message.call_args.kwargs["embed"]
        assert isinstance(embed, discord.Embed)
        assert [field.name for field in embed.fields] == ["/clean", "/kick", "/setnick"]

    async def test_reset(self, cog, interaction, offline_repository):
        await offline_repository.add_command_role(interaction.guild_id, "clean", "5")
        await cog.permission_reset.callback(cog, interaction)
        assert (await offline_repository.get(interaction.guild_id)).command_permissions == {}

    async def test_autocomplete_excludes_permission(self, cog, interaction):
        choices = await cog.command_autocomplete(interaction, "")
        assert "permission" not in [choice.value for choice in choices]
        assert "togglecommand" in [choice.value for choice in choices]


class TestLogCommand:
    """Tests for /log."""

    async def test_channel(self, cog, interaction, offline_repository):
        channel = MagicMock()
        channel.id = 555
        channel.mention = "<#555>"

        await cog.log_channel.callback(cog, interaction, channel)

        assert (await offline_repository.get(interaction.guild_id)).logging.channel_id == "555"
        assert "<#555>" in sent_text(interaction)

    async def test_event(self, cog, interaction, offline_repository):
        event = app_commands.Choice(name="Message Delete", value="message-delete")

        await cog.log_event.callback(cog, interaction, event, False)

        config = await offline_repository.get(interaction.guild_id)
        assert config.logging.is_enabled("message-delete") is False
        assert "Message Delete logging disabled." in sent_text(interaction)

    async def test_status(self, cog, interaction):
        await cog.log_status.callback(cog, interaction)
        text = sent_text(interaction)
        assert "Not set" in text
        assert "message-create" in text


class TestWelcomeCommand:
    """Tests for /welcome."""

    async def test_toggle_warns_without_channel(self, cog, interaction, offline_repository):
        await cog.welcome_toggle.callback(cog, interaction, True)

        assert (await offline_repository.get(interaction.guild_id)).welcome.enabled is True
        assert "No welcome channel set" in sent_text(interaction)

    async def test_message_preview(self, cog, interaction, offline_repository):
        await cog.welcome_message.callback(cog, interaction, "  {user} joined {guild}  ")

        config = await offline_repository.get(interaction.guild_id)
        assert config.welcome.message_template == "{user} joined {guild}"
        assert "<@42> joined Test Guild" in sent_text(interaction)

    async def test_blank_message_refused(self, cog, interaction, offline_repository):
        await cog.welcome_message.callback(cog, interaction, "   ")

        assert "cannot be empty" in sent_text(interaction)
        assert (await offline_repository.get(interaction.guild_id)).welcome.message_template == (
            "Welcome to the server!"
        )

    async def test_channel(self, cog, interaction, offline_repository):
        channel = MagicMock()
        channel.id = 777
        channel.mention = "<#777>"

        await cog.welcome_channel.callback(cog, interaction, channel)

        assert (await offline_repository.get(interaction.guild_id)).welcome.channel_id == "777"
