"""Local file snapshot of every guild's settings.

The snapshot is the store of last resort: it must always be readable, so a
missing or corrupt file reads as an empty mapping instead of raising. Writes
go to a temporary file in the same directory and are swapped in with
``os.replace``, so readers never observe a partial file.

A single record that cannot be validated is quarantined: it is kept in the
file untouched, never replaced by defaults, and reads for that guild raise
``SnapshotRecordError`` so permission checks fail closed.
"""

import asyncio
import contextlib
import json
import os
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional

import aiofiles
from pydantic import ValidationError

from guildbot.schemas.guild_configuration import GuildConfiguration
from guildbot.services.logger import get_logger
from guildbot.services.migrations import migrate_document, needs_migration

logger = get_logger(__name__)


class SnapshotStoreError(Exception):
    """Raised when the snapshot file cannot be written or a record cannot be served."""


class SnapshotRecordError(SnapshotStoreError):
    """Raised when a guild's stored record is invalid and has been quarantined."""


class SnapshotStore:
    """JSON file holding ``{guild_id: GuildConfiguration}`` for all guilds."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        # serializes load-mutate-save cycles within the process
        self._lock = asyncio.Lock()
        # raw records from the last load that failed validation
        self._quarantined: dict[str, Any] = {}

    @property
    def quarantined(self) -> frozenset[str]:
        """Guild ids whose records failed validation on the last load."""
        return frozenset(self._quarantined)

    # -------------------------------------------------------------------------
    # File helpers
    # -------------------------------------------------------------------------

    def exists(self) -> bool:
        return self.path.is_file()

    async def ensure_exists(self) -> None:
        """Create the snapshot location seeded with an empty mapping."""
        if not self.path.exists():
            await self._write_file({})
            logger.info("Created snapshot file", path=str(self.path))

    async def _read_file(self) -> dict[str, Any]:
        if not self.path.exists():
            try:
                await self.ensure_exists()
            except SnapshotStoreError:
                # already logged; reads stay empty until a write succeeds
                pass
            return {}
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as fh:
                data = json.loads(await fh.read())
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.error("Error loading guild settings snapshot", path=str(self.path), error=str(e))
            return {}

        if not isinstance(data, dict):
            logger.error(
                "Guild settings snapshot is not a mapping",
                path=str(self.path),
                found=type(data).__name__,
            )
            return {}
        return data

    async def _write_file(self, data: Mapping[str, Any]) -> None:
        tmp_path = self.path.with_name(f".{self.path.name}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as fh:
                await fh.write(json.dumps(data, indent=2, sort_keys=True))
            os.replace(tmp_path, self.path)
        except OSError as e:
            with contextlib.suppress(OSError):
                tmp_path.unlink(missing_ok=True)
            logger.error("Error saving guild settings snapshot", path=str(self.path), error=str(e))
            raise SnapshotStoreError(f"Could not write snapshot {self.path}: {e}") from e

    # -------------------------------------------------------------------------
    # Raw access (migrations)
    # -------------------------------------------------------------------------

    async def read_raw(self) -> dict[str, Any]:
        """Read the file as stored, without migrating or validating."""
        async with self._lock:
            return await self._read_file()

    async def write_raw(self, data: Mapping[str, Any]) -> None:
        async with self._lock:
            await self._write_file(data)

    async def backup(self, suffix: str = ".backup") -> Optional[Path]:
        """Move the snapshot aside so it is no longer read as a live source."""
        async with self._lock:
            if not self.path.exists():
                return None
            target = self.path.with_name(self.path.name + suffix)
            os.replace(self.path, target)
            return target

    # -------------------------------------------------------------------------
    # Typed access
    # -------------------------------------------------------------------------

    def _decode(self, raw: dict[str, Any]) -> tuple[dict[str, GuildConfiguration], dict[str, Any], bool]:
        """Validate raw records, migrating obsolete shapes on the way.

        Returns:
            Valid configurations, quarantined raw records, and whether any
            record was migrated.
        """
        configs: dict[str, GuildConfiguration] = {}
        quarantined: dict[str, Any] = {}
        migrated = False
        for key, record in raw.items():
            guild_id = str(key)
            if not isinstance(record, dict):
                logger.error("Quarantined malformed snapshot record", guild_id=guild_id)
                quarantined[guild_id] = record
                continue
            try:
                document = dict(record)
                if needs_migration(document):
                    document = migrate_document(document)
                    migrated = True
                document.setdefault("guildId", guild_id)
                configs[guild_id] = GuildConfiguration.model_validate(document)
            except (ValidationError, TypeError, ValueError, AttributeError) as e:
                logger.error(
                    "Quarantined invalid snapshot record",
                    guild_id=guild_id,
                    error=str(e),
                )
                quarantined[guild_id] = record
        return configs, quarantined, migrated

    def _encode(self, configs: Mapping[str, GuildConfiguration]) -> dict[str, Any]:
        data = {
            guild_id: record
            for guild_id, record in self._quarantined.items()
            if guild_id not in configs
        }
        data.update({guild_id: config.to_document() for guild_id, config in configs.items()})
        return data

    def _ensure_servable(self, guild_id: str) -> None:
        if guild_id in self._quarantined:
            raise SnapshotRecordError(f"Stored settings for guild {guild_id} are invalid")

    async def _load_unlocked(self) -> dict[str, GuildConfiguration]:
        raw = await self._read_file()
        configs, self._quarantined, migrated = self._decode(raw)
        if migrated:
            logger.info("Migrated legacy records in snapshot", path=str(self.path))
            try:
                await self._write_file(self._encode(configs))
            except SnapshotStoreError:
                # served migrated in memory; the next successful write persists it
                pass
        return configs

    async def load(self) -> dict[str, GuildConfiguration]:
        """Return every valid guild configuration; never raises on a bad file.

        Quarantined records are left out and listed in ``quarantined``.
        """
        async with self._lock:
            return await self._load_unlocked()

    async def save(self, configs: Mapping[str, GuildConfiguration]) -> None:
        """Write ``configs``; quarantined records not in ``configs`` are kept as stored."""
        async with self._lock:
            await self._write_file(self._encode(configs))
        logger.debug("Guild settings snapshot saved", guilds=len(configs))

    async def contains(self, guild_id: str) -> bool:
        """Whether the file holds any record for the guild, valid or not."""
        async with self._lock:
            configs = await self._load_unlocked()
            return guild_id in configs or guild_id in self._quarantined

    async def get(self, guild_id: str) -> Optional[GuildConfiguration]:
        """Raises SnapshotRecordError when the guild's record is quarantined."""
        async with self._lock:
            configs = await self._load_unlocked()
            self._ensure_servable(guild_id)
            return configs.get(guild_id)

    async def get_or_create(self, guild_id: str) -> GuildConfiguration:
        """Return the guild's record, creating and persisting defaults if absent."""
        return await self.mutate(guild_id, lambda config: config)

    async def mutate(
        self,
        guild_id: str,
        change: Callable[[GuildConfiguration], GuildConfiguration],
    ) -> GuildConfiguration:
        """Load, apply ``change`` and save as one serialized step.

        Raises:
            SnapshotRecordError: the guild's record is quarantined.
            SnapshotStoreError: the file could not be written.
        """
        async with self._lock:
            configs = await self._load_unlocked()
            self._ensure_servable(guild_id)
            current = configs.get(guild_id)
            created = current is None
            if created:
                current = GuildConfiguration(guild_id=guild_id)

            updated = change(current)
            if created or updated != current:
                configs[guild_id] = updated
                await self._write_file(self._encode(configs))
                if created and updated is current:
                    logger.info("Created default guild settings", guild_id=guild_id, backend="snapshot")
            return updated

    async def apply(
        self,
        guild_id: str,
        set_fields: Mapping[str, Any],
        unset_fields: Iterable[str] = (),
    ) -> GuildConfiguration:
        """Field-level ``$set``/``$unset`` on one guild's record."""
        return await self.mutate(
            guild_id, lambda config: config.with_fields(set_fields, unset_fields)
        )

    async def put(self, config: GuildConfiguration) -> None:
        """Store a whole record, replacing any previous one for that guild.

        A quarantined record is released: the new record supersedes it.
        """
        async with self._lock:
            configs = await self._load_unlocked()
            if config.guild_id in self._quarantined:
                del self._quarantined[config.guild_id]
                logger.warning("Replaced quarantined snapshot record", guild_id=config.guild_id)
            configs[config.guild_id] = config
            await self._write_file(self._encode(configs))
