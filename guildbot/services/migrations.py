"""Schema migrations for persisted guild settings.

Two passes bring stored records into the current shape:

* field-shape: rewrites records that still use the flat logging/welcome
  keys (``logChannel``, ``logMessageCreate``, ``welcomeChannel`` ...) or the
  intermediate ``logs`` object into the nested ``logging``/``welcome`` shape
  and stamps the current ``schemaVersion``.
* backfill: copies the snapshot into an empty document store and moves the
  original snapshot file aside.

Both passes are idempotent. A failing record is logged and counted; it never
aborts the sweep.
"""

import copy
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from pydantic import ValidationError

from guildbot.schemas.guild_configuration import (
    CURRENT_SCHEMA_VERSION,
    LOG_EVENT_KEYS,
    GuildConfiguration,
)
from guildbot.services.logger import get_logger

if TYPE_CHECKING:
    from guildbot.services.database import DocumentStore
    from guildbot.services.snapshot import SnapshotStore

logger = get_logger(__name__)

# flat legacy key -> log event key
FLAT_LOG_EVENT_KEYS: dict[str, str] = {
    "logMessageCreate": "message-create",
    "logMessageDelete": "message-delete",
    "logMessageUpdate": "message-update",
    "logInviteCreate": "invite-create",
    "logInviteDelete": "invite-delete",
}

# key inside the intermediate ``logs`` object -> log event key
NESTED_LOG_EVENT_KEYS: dict[str, str] = {
    "messageCreate": "message-create",
    "messageDelete": "message-delete",
    "messageUpdate": "message-update",
    "inviteCreate": "invite-create",
    "inviteDelete": "invite-delete",
}

FLAT_WELCOME_KEYS: dict[str, str] = {
    "welcomeEnabled": "enabled",
    "welcomeChannel": "channelId",
    "welcomeMessage": "messageTemplate",
}

LEGACY_KEYS: frozenset[str] = frozenset(
    {"logChannel", "logs", *FLAT_LOG_EVENT_KEYS, *FLAT_WELCOME_KEYS}
)


def needs_migration(document: dict[str, Any]) -> bool:
    """Whether a raw (camelCase) record is in an obsolete shape."""
    version = document.get("schemaVersion", 1)
    # null, string or boolean markers are rewritten like a missing one
    if isinstance(version, bool) or not isinstance(version, int):
        return True
    if version < CURRENT_SCHEMA_VERSION:
        return True
    if LEGACY_KEYS.intersection(document):
        return True
    welcome = document.get("welcome")
    return isinstance(welcome, dict) and "message" in welcome


def migrate_document(document: dict[str, Any]) -> dict[str, Any]:
    """Return the record rewritten into the current nested shape.

    Legacy values override whatever the nested shape already holds: the
    legacy writer is the one that touched the record last. Applying this to
    an already-current record returns an equal record.
    """
    migrated = copy.deepcopy(document)

    logging_section = migrated.get("logging")
    if not isinstance(logging_section, dict):
        logging_section = {}
    events = logging_section.get("events")
    events = dict(events) if isinstance(events, dict) else {}

    logs = migrated.pop("logs", None)
    if isinstance(logs, dict):
        if "channelId" in logs:
            logging_section["channelId"] = logs["channelId"]
        for old_key, event_key in NESTED_LOG_EVENT_KEYS.items():
            if isinstance(logs.get(old_key), bool):
                events[event_key] = logs[old_key]

    if "logChannel" in migrated:
        logging_section["channelId"] = migrated.pop("logChannel")
    for old_key, event_key in FLAT_LOG_EVENT_KEYS.items():
        value = migrated.pop(old_key, None)
        if isinstance(value, bool):
            events[event_key] = value

    for key in LOG_EVENT_KEYS:
        events.setdefault(key, True)
    logging_section.setdefault("channelId", None)
    logging_section["events"] = events
    migrated["logging"] = logging_section

    welcome = migrated.get("welcome")
    welcome = dict(welcome) if isinstance(welcome, dict) else {}
    if "message" in welcome:
        welcome["messageTemplate"] = welcome.pop("message")
    for old_key, new_key in FLAT_WELCOME_KEYS.items():
        if old_key in migrated:
            welcome[new_key] = migrated.pop(old_key)
    if welcome:
        migrated["welcome"] = welcome

    if not isinstance(migrated.get("commandPermissions"), dict):
        migrated["commandPermissions"] = {}
    if not isinstance(migrated.get("disabledCommands"), list):
        migrated["disabledCommands"] = []

    migrated["schemaVersion"] = CURRENT_SCHEMA_VERSION
    return migrated


@dataclass
class MigrationReport:
    """Outcome of one migration pass."""

    name: str
    total: int = 0
    migrated: int = 0
    errors: int = 0
    skipped: bool = False
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.errors == 0

    def log(self) -> None:
        if self.skipped:
            logger.info(f"Migration '{self.name}' skipped", reason=self.detail)
            return
        log = logger.info if self.ok else logger.warning
        log(
            f"Migration '{self.name}' completed",
            total=self.total,
            migrated=self.migrated,
            errors=self.errors,
        )


class SchemaMigrator:
    """Runs the startup migration passes against both backends."""

    BACKUP_SUFFIX = ".backup"

    def __init__(
        self,
        snapshot: "SnapshotStore",
        documents: Optional["DocumentStore"] = None,
    ):
        self.snapshot = snapshot
        self.documents = documents

    async def run(self) -> list[MigrationReport]:
        """Run every pass once. Never raises for per-record failures."""
        reports = [await self.migrate_snapshot()]
        reports.append(await self.backfill_documents())
        reports.append(await self.migrate_documents())
        for report in reports:
            report.log()
        return reports

    async def migrate_snapshot(self) -> MigrationReport:
        """Field-shape pass over the snapshot file."""
        report = MigrationReport(name="snapshot-field-shape")
        raw = await self.snapshot.read_raw()
        changed = False

        for guild_id, document in raw.items():
            if not isinstance(document, dict):
                continue
            try:
                if not needs_migration(document):
                    continue
                migrated = migrate_document(document)
                migrated.setdefault("guildId", guild_id)
                GuildConfiguration.model_validate(migrated)
            except (ValidationError, TypeError, ValueError, AttributeError) as e:
                report.total += 1
                report.errors += 1
                logger.error(
                    "Failed to migrate snapshot record", guild_id=guild_id, error=str(e)
                )
                continue
            report.total += 1
            raw[guild_id] = migrated
            report.migrated += 1
            changed = True

        if changed:
            await self.snapshot.write_raw(raw)
        return report

    async def backfill_documents(self) -> MigrationReport:
        """Copy the snapshot into the document store when the store is empty."""
        report = MigrationReport(name="snapshot-backfill")
        if self.documents is None or not self.documents.is_available():
            report.skipped, report.detail = True, "document store unavailable"
            return report
        if not self.snapshot.exists():
            report.skipped, report.detail = True, "no snapshot file"
            return report

        try:
            count = await self.documents.count()
        except Exception as e:
            report.skipped, report.detail = True, f"count failed: {e}"
            return report
        if count > 0:
            report.skipped, report.detail = True, "document store already populated"
            return report

        configs = await self.snapshot.load()
        quarantined = self.snapshot.quarantined
        if not configs and not quarantined:
            report.skipped, report.detail = True, "snapshot is empty"
            return report

        # invalid records stay in the snapshot, which is then not moved aside
        for guild_id in sorted(quarantined):
            report.total += 1
            report.errors += 1
            logger.error("Skipped invalid snapshot record in backfill", guild_id=guild_id)

        for guild_id, config in configs.items():
            report.total += 1
            try:
                await self.documents.replace(config)
                report.migrated += 1
                logger.debug("Backfilled guild settings", guild_id=guild_id)
            except Exception as e:
                report.errors += 1
                logger.error(
                    "Failed to backfill guild settings", guild_id=guild_id, error=str(e)
                )

        if report.ok:
            backup = await self.snapshot.backup(self.BACKUP_SUFFIX)
            # the mirror keeps serving fallback reads in the current shape
            await self.snapshot.save(configs)
            logger.info("Snapshot file backed up after backfill", backup=str(backup))
        return report

    async def migrate_documents(self) -> MigrationReport:
        """Field-shape sweep over the document store."""
        report = MigrationReport(name="document-field-shape")
        if self.documents is None or not self.documents.is_available():
            report.skipped, report.detail = True, "document store unavailable"
            return report

        try:
            documents = await self.documents.legacy_documents()
        except Exception as e:
            report.skipped, report.detail = True, f"query failed: {e}"
            return report

        for document in documents:
            report.total += 1
            guild_id = document.get("guildId")
            try:
                config = GuildConfiguration.model_validate(migrate_document(document))
                await self.documents.replace(config)
                report.migrated += 1
                logger.debug("Migrated guild settings document", guild_id=guild_id)
            except Exception as e:
                report.errors += 1
                logger.error(
                    "Failed to migrate guild settings document",
                    guild_id=guild_id,
                    error=str(e),
                )
        return report
