"""Tests for remote backups."""

from datetime import datetime, timedelta, timezone

import pytest

from brewsync.storage import MemoryKeyValueStore, MemoryObjectStore
from brewsync.sync.backup import (
    BACKUP_HASHES_KEY,
    BackupManager,
    parse_backup_key,
)


@pytest.fixture
def store():
    store = MemoryObjectStore()
    store.objects["notes.json"] = '{"text": "hello"}'
    return store


@pytest.fixture
def manager(store):
    return BackupManager(store, MemoryKeyValueStore(), max_backups=3)


def test_backup_key_format(manager):
    now = datetime(2025, 12, 27, 14, 45, 51, 947000, tzinfo=timezone.utc)
    assert (
        manager.generate_backup_key("notes", now)
        == "backups/backup-2025-12-27T14-45-51-947Z-notes.json"
    )


def test_parse_backup_key():
    file_key, millis = parse_backup_key(
        "backups/backup-2025-12-27T14-45-51-947Z-brew-guide-data.json"
    )
    expected = datetime(2025, 12, 27, 14, 45, 51, 947000, tzinfo=timezone.utc)

    assert file_key == "brew-guide-data"
    assert millis == int(expected.timestamp() * 1000)


def test_parse_rejects_other_keys():
    assert parse_backup_key("notes.json") is None
    assert parse_backup_key("backups/readme.txt") is None


class TestCreateAndList:
    """Creating and listing backups."""

    @pytest.mark.asyncio
    async def test_create_backup_copies_object(self, manager, store):
        backup_key = await manager.create_backup("notes.json", "notes")

        assert backup_key.startswith("backups/backup-")
        assert store.objects[backup_key] == store.objects["notes.json"]

    @pytest.mark.asyncio
    async def test_create_backup_of_missing_object_fails(self, manager):
        assert await manager.create_backup("missing.json", "missing") is None

    @pytest.mark.asyncio
    async def test_list_is_oldest_first_and_filterable(self, manager, store):
        start = datetime(2025, 1, 1, tzinfo=timezone.utc)
        for i, file_key in enumerate(["notes", "beans", "notes"]):
            key = manager.generate_backup_key(file_key, start + timedelta(minutes=i))
            store.objects[key] = "{}"
        store.objects["backups/unrelated.txt"] = "x"

        everything = await manager.list_backups()
        notes = await manager.list_backups("notes")

        assert [b.file_key for b in everything] == ["notes", "beans", "notes"]
        assert len(notes) == 2
        assert notes[0].timestamp < notes[1].timestamp
        assert notes[0].size == 2


class TestBackupAfterUpload:
    """Backup on upload with content deduplication."""

    @pytest.mark.asyncio
    async def test_first_upload_is_backed_up(self, manager):
        assert await manager.backup_after_upload("notes.json", "notes", "h1")

        assert len(await manager.list_backups("notes")) == 1
        assert "h1" in manager.kv.get(BACKUP_HASHES_KEY)

    @pytest.mark.asyncio
    async def test_unchanged_content_is_skipped(self, manager):
        await manager.backup_after_upload("notes.json", "notes", "h1")
        assert await manager.backup_after_upload("notes.json", "notes", "h1")

        assert len(await manager.list_backups("notes")) == 1

    @pytest.mark.asyncio
    async def test_failed_copy_is_reported(self, manager, store):
        store.objects.clear()
        assert not await manager.backup_after_upload("notes.json", "notes", "h1")
        assert manager.kv.get(BACKUP_HASHES_KEY) is None


class TestCleanup:
    @pytest.mark.asyncio
    async def test_keeps_newest_backups(self, manager, store):
        start = datetime(2025, 1, 1, tzinfo=timezone.utc)
        keys = [
            manager.generate_backup_key("notes", start + timedelta(hours=i))
            for i in range(5)
        ]
        for key in keys:
            store.objects[key] = "{}"

        deleted = await manager.cleanup_old_backups("notes")

        assert deleted == 2
        remaining = [b.key for b in await manager.list_backups("notes")]
        assert remaining == keys[2:]


class TestRestore:
    @pytest.mark.asyncio
    async def test_restore_returns_content(self, manager):
        backup_key = await manager.create_backup("notes.json", "notes")
        assert await manager.restore_backup(backup_key) == '{"text": "hello"}'

    @pytest.mark.asyncio
    async def test_restore_missing_is_none(self, manager):
        assert await manager.restore_backup("backups/nope.json") is None
