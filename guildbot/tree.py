"""Application command tree that routes every guild command through the gate."""

from typing import Optional

import discord
from discord import app_commands

from guildbot.services.dispatch import CHECK_FAILED_MESSAGE, DispatchGate, Invocation
from guildbot.services.logger import get_logger

logger = get_logger(__name__)


def top_level_name(command) -> Optional[str]:
    """Name of the top-level command, e.g. ``permission`` for ``/permission add``."""
    if command is None:
        return None
    root = getattr(command, "root_parent", None)
    return (root or command).name


def invocation_from_interaction(interaction: discord.Interaction) -> Optional[Invocation]:
    """Build the gate input; None for interactions outside a guild."""
    name = top_level_name(interaction.command)
    if interaction.guild_id is None or name is None:
        return None

    user = interaction.user
    role_ids = frozenset(str(role.id) for role in getattr(user, "roles", ()))
    guild = interaction.guild
    is_owner = guild is not None and guild.owner_id == user.id
    return Invocation(
        guild_id=str(interaction.guild_id),
        command_name=name,
        member_id=str(user.id),
        role_ids=role_ids,
        is_owner=is_owner,
    )


async def _send_denial(interaction: discord.Interaction, message: str) -> None:
    if interaction.response.is_done():
        await interaction.followup.send(message, ephemeral=True)
    else:
        await interaction.response.send_message(message, ephemeral=True)


class GatedCommandTree(app_commands.CommandTree):
    """Command tree whose global check is the dispatch gate."""

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        # option suggestions are not invocations and cannot take a message reply
        if interaction.type is discord.InteractionType.autocomplete:
            return True

        invocation = invocation_from_interaction(interaction)
        if invocation is None:
            return True

        gate: Optional[DispatchGate] = getattr(self.client, "gate", None)
        if gate is None:
            logger.warning("Command received before the dispatch gate is ready", command=invocation.command_name)
            await _send_denial(interaction, CHECK_FAILED_MESSAGE)
            return False

        outcome = await gate.check(invocation)
        if not outcome.allowed:
            await _send_denial(interaction, outcome.message or CHECK_FAILED_MESSAGE)
            return False
        return True
