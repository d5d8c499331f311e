"""Registry of the bot's top-level command names."""

from typing import Iterable

from discord import app_commands

# administration commands that must stay usable so they can undo a lockout
PROTECTED_COMMANDS: frozenset[str] = frozenset({"togglecommand", "permission", "log", "welcome"})


class CommandRegistry:
    """Knows which commands exist and which of them are protected."""

    def __init__(self, names: Iterable[str] = (), protected: Iterable[str] = PROTECTED_COMMANDS):
        self._names: set[str] = set(names)
        self.protected = frozenset(protected)

    def register(self, name: str) -> None:
        self._names.add(name)

    def sync_from_tree(self, tree: app_commands.CommandTree) -> None:
        """Replace the known names with the tree's top-level commands."""
        self._names = {command.name for command in tree.get_commands()}

    def exists(self, name: str) -> bool:
        return name in self._names

    def is_protected(self, name: str) -> bool:
        return name in self.protected

    def names(self, include_protected: bool = True) -> list[str]:
        return sorted(
            name for name in self._names if include_protected or name not in self.protected
        )

    def matching(self, prefix: str, include_protected: bool = True, limit: int = 25) -> list[str]:
        """Names containing ``prefix``, for autocomplete."""
        prefix = prefix.lower()
        return [name for name in self.names(include_protected) if prefix in name.lower()][:limit]
