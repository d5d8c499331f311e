"""Command permission resolution.

Pure decision logic: no I/O, no mutation. Callers load the guild's
configuration and describe the invoking member; the resolver returns a
decision and the reason it was reached.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from guildbot.schemas.guild_configuration import GuildConfiguration

# owner-only unless the guild configures roles for them
DEFAULT_RESTRICTED_COMMANDS: frozenset[str] = frozenset({"kick", "clean", "setnick"})


class Reason(str, Enum):
    """Which precedence rule produced a decision."""

    ALLOW_OWNER = "owner"
    DENY_DEFAULT_RESTRICTED = "default-restricted"
    DENY_DISABLED = "disabled"
    ALLOW_UNRESTRICTED = "unrestricted"
    ALLOW_OPEN = "open"
    ALLOW_ROLE = "role"
    DENY_MISSING_ROLE = "missing-role"


DENIAL_MESSAGES: dict[Reason, str] = {
    Reason.DENY_DEFAULT_RESTRICTED: "Only the server owner can use this command.",
    Reason.DENY_DISABLED: "This command is disabled in this server.",
    Reason.DENY_MISSING_ROLE: "You don't have a role that is allowed to use this command.",
}


@dataclass(frozen=True)
class MemberIdentity:
    """The invoking member as the resolver sees it."""

    member_id: str
    role_ids: frozenset[str] = field(default_factory=frozenset)
    is_owner: bool = False

    @classmethod
    def build(
        cls, member_id: str | int, role_ids: Iterable[str | int] = (), is_owner: bool = False
    ) -> "MemberIdentity":
        return cls(str(member_id), frozenset(str(r) for r in role_ids), is_owner)


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    reason: Reason

    @property
    def message(self) -> Optional[str]:
        """User-facing rejection text, None for an allow."""
        return DENIAL_MESSAGES.get(self.reason)


class PermissionResolver:
    """Evaluates whether a member may run a command in a guild."""

    def __init__(self, default_restricted: Iterable[str] = DEFAULT_RESTRICTED_COMMANDS):
        self.default_restricted = frozenset(default_restricted)

    def is_default_restricted(self, command: str) -> bool:
        return command in self.default_restricted

    def evaluate(
        self, config: GuildConfiguration, command: str, member: MemberIdentity
    ) -> PermissionDecision:
        """First matching rule wins:

        1. the guild owner is always allowed
        2. no role list and default-restricted: denied
        3. disabled: denied
        4. no role list: allowed
        5. empty role list: allowed
        6. allowed iff the member holds one of the listed role ids

        Roles are compared by id, so a deleted role simply never matches.
        """
        if member.is_owner:
            return PermissionDecision(True, Reason.ALLOW_OWNER)

        role_ids = config.command_permissions.get(command)
        if role_ids is None and command in self.default_restricted:
            return PermissionDecision(False, Reason.DENY_DEFAULT_RESTRICTED)
        if command in config.disabled_commands:
            return PermissionDecision(False, Reason.DENY_DISABLED)
        if role_ids is None:
            return PermissionDecision(True, Reason.ALLOW_UNRESTRICTED)
        if not role_ids:
            return PermissionDecision(True, Reason.ALLOW_OPEN)
        if member.role_ids.intersection(role_ids):
            return PermissionDecision(True, Reason.ALLOW_ROLE)
        return PermissionDecision(False, Reason.DENY_MISSING_ROLE)
