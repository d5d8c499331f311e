"""Tests for the snapshot store."""

import asyncio

import pytest

from guildbot.schemas.guild_configuration import CURRENT_SCHEMA_VERSION, GuildConfiguration
from guildbot.services.snapshot import SnapshotRecordError, SnapshotStore, SnapshotStoreError


class TestSnapshotLoading:
    """Tests for reading the snapshot file."""

    async def test_missing_file_reads_empty_and_is_created(self, snapshot, snapshot_path):
        assert await snapshot.load() == {}
        assert snapshot_path.exists()
        assert snapshot.exists()

    async def test_corrupt_file_reads_empty(self, snapshot, snapshot_path):
        snapshot_path.parent.mkdir(parents=True)
        snapshot_path.write_text("{not json", encoding="utf-8")
        assert await snapshot.load() == {}

    async def test_non_mapping_reads_empty(self, snapshot, write_snapshot):
        write_snapshot([1, 2, 3])
        assert await snapshot.load() == {}

    async def test_corrupt_file_repaired_by_next_write(self, snapshot, snapshot_path, read_snapshot):
        snapshot_path.parent.mkdir(parents=True)
        snapshot_path.write_text("garbage", encoding="utf-8")

        await snapshot.apply("1", {"disabled_commands": ["roll"]})

        assert read_snapshot()["1"]["disabledCommands"] == ["roll"]

    async def test_invalid_records_skipped(self, snapshot, write_snapshot):
        write_snapshot(
            {
                "1": {"guildId": "1", "schemaVersion": 2, "disabledCommands": ["roll"]},
                "2": {"guildId": "2", "schemaVersion": 2, "disabledCommands": 5},
                "3": "not a record",
            }
        )
        configs = await snapshot.load()
        assert list(configs) == ["1"]
        assert configs["1"].disabled_commands == ["roll"]
        assert snapshot.quarantined == {"2", "3"}

    async def test_legacy_record_migrated_on_load(self, snapshot, write_snapshot, read_snapshot):
        write_snapshot({"5": {"guildId": "5", "logChannel": "123", "logMessageDelete": False}})

        config = await snapshot.get("5")

        assert config.logging.channel_id == "123"
        assert config.logging.is_enabled("message-delete") is False
        stored = read_snapshot()["5"]
        assert "logChannel" not in stored
        assert stored["schemaVersion"] == CURRENT_SCHEMA_VERSION
        assert stored["logging"]["channelId"] == "123"

    async def test_record_without_guild_id_uses_key(self, snapshot, write_snapshot):
        write_snapshot({"9": {"schemaVersion": 2}})
        assert (await snapshot.get("9")).guild_id == "9"


class TestSnapshotWrites:
    """Tests for mutating the snapshot file."""

    async def test_get_or_create_persists_defaults(self, snapshot, read_snapshot):
        config = await snapshot.get_or_create("1")
        assert config == GuildConfiguration(guild_id="1")
        assert read_snapshot()["1"]["guildId"] == "1"

    async def test_get_or_create_returns_existing(self, snapshot):
        await snapshot.apply("1", {"disabled_commands": ["roll"]})
        assert (await snapshot.get_or_create("1")).disabled_commands == ["roll"]

    async def test_apply_sets_and_unsets(self, snapshot):
        await snapshot.apply("1", {"command_permissions.clean": ["1"], "command_permissions.kick": ["2"]})
        config = await snapshot.apply("1", {}, ["command_permissions.clean"])
        assert config.command_permissions == {"kick": ["2"]}
        assert (await snapshot.get("1")).command_permissions == {"kick": ["2"]}

    async def test_put_replaces_record(self, snapshot):
        await snapshot.apply("1", {"disabled_commands": ["roll"]})
        await snapshot.put(GuildConfiguration(guild_id="1"))
        assert (await snapshot.get("1")).disabled_commands == []

    async def test_concurrent_applies_do_not_lose_updates(self, snapshot):
        await asyncio.gather(
            *(snapshot.apply("1", {f"command_permissions.cmd{i}": [str(i)]}) for i in range(20))
        )
        config = await snapshot.get("1")
        assert len(config.command_permissions) == 20

    async def test_write_leaves_no_temp_files(self, snapshot, snapshot_path):
        await snapshot.apply("1", {"welcome.enabled": True})
        await snapshot.apply("2", {"welcome.enabled": True})
        assert [p.name for p in snapshot_path.parent.iterdir()] == [snapshot_path.name]

    async def test_save_failure_raises(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("", encoding="utf-8")
        store = SnapshotStore(blocker / "guildSettings.json")

        with pytest.raises(SnapshotStoreError):
            await store.save({"1": GuildConfiguration(guild_id="1")})

    async def test_unwritable_location_still_loads(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("", encoding="utf-8")
        store = SnapshotStore(blocker / "guildSettings.json")
        assert await store.load() == {}


class TestSnapshotBackup:
    """Tests for moving the snapshot aside."""

    async def test_backup_renames_file(self, snapshot, snapshot_path):
        await snapshot.apply("1", {"welcome.enabled": True})

        target = await snapshot.backup(".backup")

        assert target == snapshot_path.with_name("guildSettings.json.backup")
        assert target.exists()
        assert not snapshot_path.exists()

    async def test_backup_without_file(self, snapshot):
        assert await snapshot.backup() is None

    async def test_raw_round_trip(self, snapshot):
        await snapshot.write_raw({"1": {"legacy": True}})
        assert await snapshot.read_raw() == {"1": {"legacy": True}}


INVALID_RECORD = {
    "schemaVersion": 2,
    "disabledCommands": ["roll"],
    "commandPermissions": {"ban": ["R1", None]},
}


class TestQuarantine:
    """Invalid records are kept as stored and never served."""

    async def test_reads_of_invalid_record_raise(self, snapshot, write_snapshot, read_snapshot):
        write_snapshot({"G2": INVALID_RECORD})

        with pytest.raises(SnapshotRecordError):
            await snapshot.get("G2")
        with pytest.raises(SnapshotRecordError):
            await snapshot.get_or_create("G2")
        with pytest.raises(SnapshotRecordError):
            await snapshot.apply("G2", {"welcome.enabled": True})

        assert read_snapshot() == {"G2": INVALID_RECORD}

    async def test_other_guild_writes_keep_invalid_record(self, snapshot, write_snapshot, read_snapshot):
        write_snapshot({"G2": INVALID_RECORD, "G3": "not a record"})

        await snapshot.apply("G1", {"disabled_commands": ["avatar"]})
        await snapshot.save(await snapshot.load())

        stored = read_snapshot()
        assert stored["G2"] == INVALID_RECORD
        assert stored["G3"] == "not a record"
        assert stored["G1"]["disabledCommands"] == ["avatar"]

    async def test_migrated_neighbours_keep_invalid_record(self, snapshot, write_snapshot, read_snapshot):
        write_snapshot({"G2": INVALID_RECORD, "G4": {"logChannel": "1"}})

        assert (await snapshot.get("G4")).logging.channel_id == "1"

        assert read_snapshot()["G2"] == INVALID_RECORD

    async def test_put_replaces_invalid_record(self, snapshot, write_snapshot):
        write_snapshot({"G2": INVALID_RECORD})

        await snapshot.put(GuildConfiguration(guild_id="G2"))

        assert await snapshot.get("G2") == GuildConfiguration(guild_id="G2")
        assert snapshot.quarantined == frozenset()

    async def test_contains_counts_invalid_record(self, snapshot, write_snapshot):
        write_snapshot({"G2": INVALID_RECORD})
        assert await snapshot.contains("G2")
        assert not await snapshot.contains("G5")

    @pytest.mark.parametrize("version", [None, "2", True])
    async def test_malformed_version_loads_as_legacy(self, snapshot, write_snapshot, read_snapshot, version):
        write_snapshot(
            {
                "G1": {"schemaVersion": version, "disabledCommands": ["roll"]},
                "G2": {"schemaVersion": 2, "disabledCommands": ["kick"]},
            }
        )

        configs = await snapshot.load()

        assert configs["G1"].disabled_commands == ["roll"]
        assert configs["G2"].disabled_commands == ["kick"]
        assert read_snapshot()["G1"]["schemaVersion"] == CURRENT_SCHEMA_VERSION
