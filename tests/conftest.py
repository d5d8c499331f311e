"""Test configuration and shared fixtures."""

import json
from pathlib import Path
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from guildbot.services.connection import ConnectionState
from guildbot.services.database import DocumentStore
from guildbot.services.repository import SettingsRepository
from guildbot.services.snapshot import SnapshotStore


@pytest.fixture
def snapshot_path(tmp_path) -> Path:
    return tmp_path / "data" / "guildSettings.json"


@pytest.fixture
def snapshot(snapshot_path) -> SnapshotStore:
    return SnapshotStore(snapshot_path)


@pytest.fixture
def connection_state() -> ConnectionState:
    return ConnectionState()


@pytest.fixture
def database_url(tmp_path) -> str:
    # file-backed so every pooled connection sees the same database
    return f"sqlite+aiosqlite:///{tmp_path / 'guildbot.db'}"


@pytest_asyncio.fixture
async def documents(database_url, connection_state) -> AsyncGenerator[DocumentStore, None]:
    """A connected document store on a fresh SQLite database."""
    store = DocumentStore(database_url, state=connection_state)
    assert await store.connect()
    yield store
    await store.disconnect()


@pytest_asyncio.fixture
async def repository(snapshot, documents) -> AsyncGenerator[SettingsRepository, None]:
    repo = SettingsRepository(snapshot, documents)
    yield repo
    await repo.flush()


@pytest.fixture
def offline_repository(snapshot) -> SettingsRepository:
    """Repository running in snapshot-only mode."""
    return SettingsRepository(snapshot, None)


@pytest.fixture
def interaction() -> MagicMock:
    """A guild slash command interaction with mocked responses."""
    mock = MagicMock()
    mock.guild_id = 111
    mock.guild.id = 111
    mock.guild.name = "Test Guild"
    mock.guild.owner_id = 999
    mock.user.id = 42
    mock.user.name = "tester"
    mock.user.mention = "<@42>"
    mock.user.roles = []
    mock.response.is_done = MagicMock(return_value=False)
    mock.response.send_message = AsyncMock()
    mock.followup.send = AsyncMock()
    return mock


@pytest.fixture
def write_snapshot(snapshot_path):
    """Write a raw snapshot file, bypassing the store."""

    def write(data) -> None:
        snapshot_path.parent.mkdir(parents=True, exist_ok=True)
        snapshot_path.write_text(json.dumps(data), encoding="utf-8")

    return write


@pytest.fixture
def read_snapshot(snapshot_path):
    return lambda: json.loads(snapshot_path.read_text(encoding="utf-8"))
