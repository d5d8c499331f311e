"""Dispatch gate: every guild-scoped command passes through here first."""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from guildbot.services.logger import get_logger, log_context
from guildbot.services.permissions import MemberIdentity, PermissionResolver
from guildbot.services.repository import SettingsRepository

logger = get_logger(__name__)

CHECK_FAILED_MESSAGE = "Couldn't verify your permissions right now. Please try again."
HANDLER_FAILED_MESSAGE = "An unexpected error occurred. Please try again later."


@dataclass(frozen=True)
class Invocation:
    """One command invocation as delivered by the interaction transport."""

    guild_id: str
    command_name: str
    member_id: str
    role_ids: frozenset[str] = field(default_factory=frozenset)
    is_owner: bool = False

    @property
    def member(self) -> MemberIdentity:
        return MemberIdentity(self.member_id, self.role_ids, self.is_owner)


@dataclass(frozen=True)
class GateOutcome:
    allowed: bool
    reason: str
    message: Optional[str] = None
    failed: bool = False
    result: Any = None


class DispatchGate:
    """Loads the guild's settings and applies the permission resolver."""

    def __init__(self, repository: SettingsRepository, resolver: Optional[PermissionResolver] = None):
        self.repository = repository
        self.resolver = resolver or PermissionResolver()

    async def check(self, invocation: Invocation) -> GateOutcome:
        """Decide whether the invocation may run. Errors deny."""
        try:
            with log_context(guild_id=invocation.guild_id, command=invocation.command_name):
                config = await self.repository.get(invocation.guild_id)
            decision = self.resolver.evaluate(config, invocation.command_name, invocation.member)
        except Exception as e:
            logger.error(
                "Permission check failed",
                guild_id=invocation.guild_id,
                command=invocation.command_name,
                member_id=invocation.member_id,
                error=str(e),
                exc_info=True,
            )
            return GateOutcome(False, "error", CHECK_FAILED_MESSAGE, failed=True)

        if not decision.allowed:
            logger.info(
                "Command denied",
                guild_id=invocation.guild_id,
                command=invocation.command_name,
                member_id=invocation.member_id,
                reason=decision.reason.value,
            )
        return GateOutcome(decision.allowed, decision.reason.value, decision.message)

    async def dispatch(
        self, invocation: Invocation, handler: Callable[[], Awaitable[Any]]
    ) -> GateOutcome:
        """Run ``handler`` only if the invocation is allowed."""
        outcome = await self.check(invocation)
        if not outcome.allowed:
            return outcome

        try:
            result = await handler()
        except Exception as e:
            logger.error(
                "Command handler failed",
                guild_id=invocation.guild_id,
                command=invocation.command_name,
                error=str(e),
                exc_info=True,
            )
            return GateOutcome(True, outcome.reason, HANDLER_FAILED_MESSAGE, failed=True)
        return GateOutcome(True, outcome.reason, result=result)
