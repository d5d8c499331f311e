"""Document store client for guild settings.

Each guild's settings live in one ``guild_settings`` row plus one
``command_permissions`` row per configured command. Writes are field-level
merges, so administrative commands touching different fields of the same
guild never clobber each other.
"""

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, Mapping, Optional, Sequence

from sqlalchemy import event, func, or_, select, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import (
    ArgumentError,
    DBAPIError,
    IntegrityError,
    NoSuchModuleError,
    SQLAlchemyError,
)
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from guildbot.models.base import Base
from guildbot.models.guild_settings import CommandPermission, GuildSettingsDocument
from guildbot.schemas.guild_configuration import (
    CURRENT_SCHEMA_VERSION,
    GuildConfiguration,
    split_path,
    top_level_fields,
)
from guildbot.services.connection import ConnectionState
from guildbot.services.logger import get_logger
from guildbot.services.migrations import migrate_document, needs_migration

logger = get_logger(__name__)

# driver errors that no amount of retrying will fix
_FATAL_DRIVER_ERRORS = frozenset(
    {"InvalidPasswordError", "InvalidAuthorizationSpecificationError", "InvalidCatalogNameError"}
)


class DocumentStoreError(Exception):
    """Raised when a document store operation fails."""


class DocumentStoreUnavailable(DocumentStoreError):
    """Raised when the document store is not connected."""


def _is_fatal(error: BaseException) -> bool:
    if isinstance(error, (ArgumentError, NoSuchModuleError, ImportError)):
        return True
    if isinstance(error, DBAPIError) and error.orig is not None:
        return type(error.orig).__name__ in _FATAL_DRIVER_ERRORS
    return False


class DocumentStore:
    """Async document store for guild settings."""

    def __init__(
        self,
        database_url: str,
        *,
        state: Optional[ConnectionState] = None,
        database_name: Optional[str] = None,
        connect_timeout: float = 5.0,
        pool_size: int = 10,
    ):
        """Initialize the document store client.

        Args:
            database_url: SQLAlchemy async connection URL
            state: Connection state to publish lifecycle transitions on
            database_name: Overrides the database named in the URL
            connect_timeout: Seconds a connection attempt may take
            pool_size: Maximum pooled connections
        """
        self.database_url = database_url
        self.database_name = database_name
        self.connect_timeout = connect_timeout
        self.pool_size = pool_size
        self.state = state or ConnectionState()
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    def _create_engine(self) -> AsyncEngine:
        url = make_url(self.database_url)
        if self.database_name:
            url = url.set(database=self.database_name)

        options: dict[str, Any] = {"echo": False, "pool_pre_ping": True}
        if url.get_backend_name() != "sqlite":
            options.update(
                pool_size=self.pool_size,
                max_overflow=0,
                pool_timeout=self.connect_timeout,
            )
        engine = create_async_engine(url, **options)
        self._register_lifecycle_hooks(engine)
        return engine

    def _register_lifecycle_hooks(self, engine: AsyncEngine) -> None:
        state = self.state

        @event.listens_for(engine.sync_engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            state.mark_connected()

        @event.listens_for(engine.sync_engine, "handle_error")
        def _on_error(context):
            if context.is_disconnect:
                state.mark_error(context.original_exception)

    async def _initialize(self) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            await conn.run_sync(Base.metadata.create_all)

    async def connect(self) -> bool:
        """Make one connection attempt.

        Returns:
            True when connected, False when the store is unreachable or the
            attempt timed out.

        Raises:
            DocumentStoreError: on configuration errors (bad URL, missing
                driver, rejected credentials).
        """
        try:
            if self._engine is None:
                self._engine = self._create_engine()
                self._session_factory = async_sessionmaker(
                    self._engine,
                    class_=AsyncSession,
                    expire_on_commit=False,
                    autoflush=False,
                )
            await asyncio.wait_for(self._initialize(), timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            self.state.mark_error(f"connection attempt timed out after {self.connect_timeout}s")
            return False
        except Exception as e:
            self.state.mark_error(e)
            if _is_fatal(e):
                logger.error(f"Failed to connect to document store: {e}")
                raise DocumentStoreError(f"Invalid document store configuration: {e}") from e
            if not isinstance(e, (SQLAlchemyError, OSError)):
                raise
            return False

        self.state.mark_connected()
        logger.info("Document store connection established")
        return True

    async def disconnect(self) -> None:
        """Close the connection pool."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Document store connection closed")
        self.state.mark_disconnected()

    def is_available(self) -> bool:
        return self.state.available

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Transactional session; driver errors surface as DocumentStoreError."""
        if self._session_factory is None or not self.state.available:
            raise DocumentStoreUnavailable("Document store not connected. Call connect() first.")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except (SQLAlchemyError, OSError) as e:
                with contextlib.suppress(SQLAlchemyError, OSError):
                    await session.rollback()
                raise DocumentStoreError(str(e)) from e

    # -------------------------------------------------------------------------
    # Row <-> document mapping
    # -------------------------------------------------------------------------

    @staticmethod
    async def _load_row(
        session: AsyncSession, guild_id: str, *, lock: bool = False
    ) -> tuple[Optional[GuildSettingsDocument], list[CommandPermission]]:
        stmt = select(GuildSettingsDocument).where(GuildSettingsDocument.guild_id == guild_id)
        if lock:
            stmt = stmt.with_for_update()
        row = (await session.execute(stmt)).scalar_one_or_none()
        permissions = (
            await session.execute(
                select(CommandPermission).where(CommandPermission.guild_id == guild_id)
            )
        ).scalars().all()
        return row, list(permissions)

    @staticmethod
    def _to_document(
        row: GuildSettingsDocument, permissions: Iterable[CommandPermission]
    ) -> dict[str, Any]:
        """Raw camelCase document, legacy keys included."""
        document: dict[str, Any] = dict(row.legacy_fields or {})
        document.update(
            {
                "guildId": row.guild_id,
                "schemaVersion": row.schema_version,
                "commandPermissions": {p.command_name: list(p.role_ids or []) for p in permissions},
                "disabledCommands": list(row.disabled_commands or []),
                "logging": {
                    "channelId": row.log_channel_id,
                    "events": dict(row.log_events or {}),
                },
                "welcome": {
                    "enabled": row.welcome_enabled,
                    "channelId": row.welcome_channel_id,
                    "messageTemplate": row.welcome_message,
                },
            }
        )
        return document

    @classmethod
    def _to_config(
        cls, row: GuildSettingsDocument, permissions: Iterable[CommandPermission]
    ) -> GuildConfiguration:
        document = cls._to_document(row, permissions)
        if needs_migration(document):
            # pre-sweep reads see the migrated shape; the sweep persists it
            document = migrate_document(document)
        return GuildConfiguration.model_validate(document)

    @staticmethod
    def _write_sections(
        row: GuildSettingsDocument, config: GuildConfiguration, sections: set[str]
    ) -> None:
        if "disabled_commands" in sections:
            row.disabled_commands = list(config.disabled_commands)
        if "logging" in sections:
            row.log_channel_id = config.logging.channel_id
            row.log_events = dict(config.logging.events)
        if "welcome" in sections:
            row.welcome_enabled = config.welcome.enabled
            row.welcome_channel_id = config.welcome.channel_id
            row.welcome_message = config.welcome.message_template

    @staticmethod
    async def _write_permissions(
        session: AsyncSession,
        config: GuildConfiguration,
        existing: Sequence[CommandPermission],
        commands: Iterable[str],
    ) -> None:
        by_name = {p.command_name: p for p in existing}
        for command in commands:
            role_ids = config.command_permissions.get(command)
            row = by_name.get(command)
            if role_ids is None:
                if row is not None:
                    await session.delete(row)
            elif row is not None:
                row.role_ids = list(role_ids)
            else:
                session.add(
                    CommandPermission(
                        guild_id=config.guild_id,
                        command_name=command,
                        role_ids=list(role_ids),
                    )
                )

    async def _write_all(
        self,
        session: AsyncSession,
        row: GuildSettingsDocument,
        config: GuildConfiguration,
        existing: Sequence[CommandPermission],
    ) -> None:
        row.schema_version = CURRENT_SCHEMA_VERSION
        row.legacy_fields = None
        self._write_sections(row, config, {"disabled_commands", "logging", "welcome"})
        commands = {p.command_name for p in existing} | set(config.command_permissions)
        await self._write_permissions(session, config, existing, commands)

    # -------------------------------------------------------------------------
    # Guild settings operations
    # -------------------------------------------------------------------------

    async def find_by_guild_id(self, guild_id: str) -> Optional[GuildConfiguration]:
        """Return the guild's settings, or None when no document exists."""
        async with self.session() as session:
            row, permissions = await self._load_row(session, guild_id)
            if row is None:
                return None
            return self._to_config(row, permissions)

    async def upsert(
        self,
        guild_id: str,
        set_fields: Mapping[str, Any],
        unset_fields: Iterable[str] = (),
    ) -> GuildConfiguration:
        """Merge field paths into the guild's document, creating it if absent.

        Only the touched fields are written. A document still in a legacy
        shape is rewritten whole so the legacy keys cannot shadow the update.
        """
        set_fields = dict(set_fields)
        unset_fields = list(unset_fields)
        paths = [*set_fields, *unset_fields]
        sections = top_level_fields(paths)

        commands: set[str] = set()
        replace_permissions = False
        for path in paths:
            segments = split_path(path)
            if segments[0] != "command_permissions":
                continue
            if len(segments) == 1:
                replace_permissions = True
            else:
                commands.add(segments[1])

        for attempt in (1, 2):
            try:
                async with self.session() as session:
                    row, existing = await self._load_row(session, guild_id, lock=True)
                    if row is None:
                        current = GuildConfiguration(guild_id=guild_id)
                        row = GuildSettingsDocument(guild_id=guild_id)
                        session.add(row)
                        full_rewrite = True
                    else:
                        full_rewrite = needs_migration(self._to_document(row, existing))
                        current = self._to_config(row, existing)

                    updated = current.with_fields(set_fields, unset_fields)
                    if full_rewrite:
                        await self._write_all(session, row, updated, existing)
                    else:
                        self._write_sections(row, updated, sections)
                        if replace_permissions:
                            commands |= {p.command_name for p in existing}
                            commands |= set(updated.command_permissions)
                        await self._write_permissions(session, updated, existing, commands)
                return updated
            except DocumentStoreError as e:
                # lost a create race with another writer: retry as an update
                if attempt == 1 and isinstance(e.__cause__, IntegrityError):
                    continue
                raise
        raise DocumentStoreError(f"Upsert for guild {guild_id} did not complete")

    async def replace(self, config: GuildConfiguration) -> None:
        """Write every field of ``config`` in the current shape."""
        async with self.session() as session:
            row, existing = await self._load_row(session, config.guild_id, lock=True)
            if row is None:
                row = GuildSettingsDocument(guild_id=config.guild_id)
                session.add(row)
            await self._write_all(session, row, config, existing)

    async def count(self) -> int:
        """Number of guild documents."""
        async with self.session() as session:
            result = await session.execute(
                select(func.count()).select_from(GuildSettingsDocument)
            )
            return int(result.scalar_one())

    async def legacy_documents(self) -> list[dict[str, Any]]:
        """Raw documents still in an obsolete shape."""
        async with self.session() as session:
            rows = (
                await session.execute(
                    select(GuildSettingsDocument).where(
                        or_(
                            GuildSettingsDocument.schema_version < CURRENT_SCHEMA_VERSION,
                            GuildSettingsDocument.legacy_fields.is_not(None),
                        )
                    )
                )
            ).scalars().all()
            if not rows:
                return []

            guild_ids = [row.guild_id for row in rows]
            permissions = (
                await session.execute(
                    select(CommandPermission).where(CommandPermission.guild_id.in_(guild_ids))
                )
            ).scalars().all()

        by_guild: dict[str, list[CommandPermission]] = {}
        for permission in permissions:
            by_guild.setdefault(permission.guild_id, []).append(permission)

        documents = [self._to_document(row, by_guild.get(row.guild_id, [])) for row in rows]
        return [document for document in documents if needs_migration(document)]
