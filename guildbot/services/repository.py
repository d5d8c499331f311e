"""Settings repository: the single read/write façade for guild settings.

Reads come from the document store while it is available and from the
snapshot otherwise. Every write is mirrored into the snapshot before the call
returns; the document store write runs as a background task whose failure is
logged and queued for replay, never raised to the caller.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from guildbot.schemas.guild_configuration import GuildConfiguration, split_path
from guildbot.services.database import DocumentStore, DocumentStoreError
from guildbot.services.logger import get_logger
from guildbot.services.snapshot import SnapshotStore

logger = get_logger(__name__)


@dataclass
class _PendingWrite:
    set_fields: dict[str, Any]
    unset_fields: list[str] = field(default_factory=list)


class SettingsRepository:
    """Guild settings access with document store primary and snapshot mirror."""

    def __init__(self, snapshot: SnapshotStore, documents: Optional[DocumentStore] = None):
        self.snapshot = snapshot
        self.documents = documents
        # last in-flight document write per guild; each one awaits its predecessor
        self._in_flight: dict[str, asyncio.Task[bool]] = {}
        # writes the document store has not acknowledged yet, in order
        self._unsynced: dict[str, list[_PendingWrite]] = {}

    @property
    def document_store_available(self) -> bool:
        return self.documents is not None and self.documents.is_available()

    def has_unsynced(self, guild_id: Optional[str] = None) -> bool:
        if guild_id is None:
            return any(self._unsynced.values())
        return bool(self._unsynced.get(guild_id))

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get(self, guild_id: str | int) -> GuildConfiguration:
        """Return the guild's settings, creating defaults on first access."""
        guild_id = str(guild_id)
        if self.document_store_available:
            try:
                if await self._catch_up(guild_id):
                    return await self._get_from_documents(guild_id)
            except DocumentStoreError as e:
                logger.warning(
                    "Document store read failed, serving from snapshot",
                    guild_id=guild_id,
                    error=str(e),
                )
        return await self.snapshot.get_or_create(guild_id)

    async def _get_from_documents(self, guild_id: str) -> GuildConfiguration:
        config = await self.documents.find_by_guild_id(guild_id)
        if config is not None:
            return config

        config = await self.documents.upsert(guild_id, {})
        logger.info("Created default guild settings", guild_id=guild_id, backend="document")
        if not await self.snapshot.contains(guild_id):
            await self.snapshot.put(config)
        return config

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def update(
        self, guild_id: str | int, path: str, value: Any
    ) -> Optional[asyncio.Task[bool]]:
        """Set one field, e.g. ``update(g, "command_permissions.clean", ["123"])``.

        Returns:
            The document store write task, or None when the store is
            unavailable and the write was queued.
        """
        return await self._write(str(guild_id), {path: value}, [])

    async def unset(self, guild_id: str | int, path: str) -> Optional[asyncio.Task[bool]]:
        """Remove one field, e.g. a command's role list."""
        return await self._write(str(guild_id), {}, [path])

    async def _write(
        self,
        guild_id: str,
        set_fields: Mapping[str, Any],
        unset_fields: Iterable[str],
    ) -> Optional[asyncio.Task[bool]]:
        pending = _PendingWrite(dict(set_fields), list(unset_fields))
        for path in [*pending.set_fields, *pending.unset_fields]:
            split_path(path)

        # a failed mirror raises before anything reaches the document store
        await self.snapshot.apply(guild_id, pending.set_fields, pending.unset_fields)

        task: Optional[asyncio.Task[bool]] = None
        if self.document_store_available:
            previous = self._in_flight.get(guild_id)
            task = asyncio.create_task(self._write_document(guild_id, pending, previous))
            self._in_flight[guild_id] = task
            task.add_done_callback(lambda t, g=guild_id: self._forget(g, t))
        else:
            self._unsynced.setdefault(guild_id, []).append(pending)
            logger.warning(
                "Document store unavailable, change kept in snapshot",
                guild_id=guild_id,
                fields=[*pending.set_fields, *pending.unset_fields],
            )
        return task

    def _forget(self, guild_id: str, task: asyncio.Task) -> None:
        if self._in_flight.get(guild_id) is task:
            del self._in_flight[guild_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Settings write task crashed",
                guild_id=guild_id,
                error=repr(task.exception()),
            )

    async def _write_document(
        self,
        guild_id: str,
        pending: _PendingWrite,
        previous: Optional[asyncio.Task[bool]],
    ) -> bool:
        if previous is not None:
            await asyncio.wait({previous})

        # earlier writes for this guild are still queued: keep the order
        if self._unsynced.get(guild_id):
            self._unsynced[guild_id].append(pending)
            return False

        try:
            await self.documents.upsert(guild_id, pending.set_fields, pending.unset_fields)
            return True
        except DocumentStoreError as e:
            self._unsynced.setdefault(guild_id, []).append(pending)
            logger.warning(
                "Document store write failed, change kept in snapshot",
                guild_id=guild_id,
                error=str(e),
            )
            return False

    async def _catch_up(self, guild_id: str) -> bool:
        """Wait for in-flight writes and replay queued ones for a guild.

        Returns True when the document store holds every write made so far.
        """
        task = self._in_flight.get(guild_id)
        if task is not None:
            await asyncio.wait({task})

        queue = self._unsynced.get(guild_id)
        while queue:
            pending = queue[0]
            try:
                await self.documents.upsert(guild_id, pending.set_fields, pending.unset_fields)
            except DocumentStoreError as e:
                logger.warning(
                    "Replaying queued settings write failed",
                    guild_id=guild_id,
                    queued=len(queue),
                    error=str(e),
                )
                return False
            queue.pop(0)

        self._unsynced.pop(guild_id, None)
        return True

    async def flush(self) -> None:
        """Wait for every in-flight document store write."""
        tasks = list(self._in_flight.values())
        if tasks:
            await asyncio.wait(tasks)

    async def sync_pending(self) -> int:
        """Replay queued writes for every guild. Returns guilds fully synced."""
        if not self.document_store_available:
            return 0
        synced = 0
        for guild_id in list(self._unsynced):
            if await self._catch_up(guild_id):
                synced += 1
        if synced:
            logger.info("Replayed queued settings writes", guilds=synced)
        return synced

    # -------------------------------------------------------------------------
    # Command permissions
    # -------------------------------------------------------------------------

    async def add_command_role(self, guild_id: str | int, command: str, role_id: str | int) -> list[str]:
        config = await self.get(guild_id)
        role_ids = list(config.command_permissions.get(command, []))
        if str(role_id) not in role_ids:
            role_ids.append(str(role_id))
            await self.update(guild_id, f"command_permissions.{command}", role_ids)
            logger.info("Command role permission added", guild_id=str(guild_id), command=command, role_id=str(role_id))
        return role_ids

    async def remove_command_role(
        self, guild_id: str | int, command: str, role_id: str | int
    ) -> Optional[list[str]]:
        """Remove a role; removing the last one restores the default policy.

        Returns the remaining roles, or None when the command has no explicit
        configuration left.
        """
        config = await self.get(guild_id)
        role_ids = config.command_permissions.get(command)
        if role_ids is None or str(role_id) not in role_ids:
            return role_ids

        remaining = [r for r in role_ids if r != str(role_id)]
        if remaining:
            await self.update(guild_id, f"command_permissions.{command}", remaining)
        else:
            await self.unset(guild_id, f"command_permissions.{command}")
        logger.info("Command role permission removed", guild_id=str(guild_id), command=command, role_id=str(role_id))
        return remaining or None

    async def reset_permissions(self, guild_id: str | int) -> None:
        await self.update(guild_id, "command_permissions", {})
        logger.info("Guild permissions reset", guild_id=str(guild_id))

    # -------------------------------------------------------------------------
    # Disabled commands
    # -------------------------------------------------------------------------

    async def is_command_disabled(self, guild_id: str | int, command: str) -> bool:
        return command in (await self.get(guild_id)).disabled_commands

    async def disable_command(self, guild_id: str | int, command: str) -> bool:
        """Returns False if the command was already disabled."""
        config = await self.get(guild_id)
        if command in config.disabled_commands:
            return False
        await self.update(guild_id, "disabled_commands", [*config.disabled_commands, command])
        return True

    async def enable_command(self, guild_id: str | int, command: str) -> bool:
        """Returns False if the command was not disabled."""
        config = await self.get(guild_id)
        if command not in config.disabled_commands:
            return False
        await self.update(
            guild_id,
            "disabled_commands",
            [name for name in config.disabled_commands if name != command],
        )
        return True

    # -------------------------------------------------------------------------
    # Logging / welcome
    # -------------------------------------------------------------------------

    async def set_log_channel(self, guild_id: str | int, channel_id: Optional[str | int]) -> None:
        await self.update(guild_id, "logging.channel_id", str(channel_id) if channel_id else None)

    async def set_log_event(self, guild_id: str | int, event_key: str, enabled: bool) -> None:
        await self.update(guild_id, f"logging.events.{event_key}", enabled)

    async def set_welcome_enabled(self, guild_id: str | int, enabled: bool) -> None:
        await self.update(guild_id, "welcome.enabled", enabled)

    async def set_welcome_channel(self, guild_id: str | int, channel_id: Optional[str | int]) -> None:
        await self.update(guild_id, "welcome.channel_id", str(channel_id) if channel_id else None)

    async def set_welcome_message(self, guild_id: str | int, template: str) -> None:
        await self.update(guild_id, "welcome.message_template", template)
