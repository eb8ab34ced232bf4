"""Tests for metadata persistence."""

import json

import pytest

from brewsync.exceptions import MetadataWriteError, StorageError
from brewsync.storage import MemoryKeyValueStore, MemoryObjectStore
from brewsync.sync.metadata import (
    METADATA_KEY,
    METADATA_REMOTE_KEY,
    MetadataStore,
    delete_file_from_metadata,
    diff_metadata,
    update_file_in_metadata,
)
from brewsync.sync.models import FileMetadata, SyncMetadataV2


def entry(key, hash="h"):
    return FileMetadata(key=key, size=1, mtime_cli=1, hash=hash)


@pytest.fixture
def store():
    return MetadataStore(MemoryKeyValueStore(), MemoryObjectStore(), "device-a")


class TestLocalMetadata:
    """The base snapshot kept in the key-value store."""

    @pytest.mark.asyncio
    async def test_missing_is_none(self, store):
        assert await store.get_local_metadata() is None

    @pytest.mark.asyncio
    async def test_save_and_load(self, store):
        snapshot = store.create_metadata({"a": entry("a")})
        await store.save_local_metadata(snapshot)

        loaded = await store.get_local_metadata()
        assert loaded == snapshot
        assert json.loads(store.kv.get(METADATA_KEY))["version"] == "2.0.0"

    @pytest.mark.asyncio
    async def test_corrupt_json_is_none(self, store):
        store.kv.set(METADATA_KEY, "{not json")
        assert await store.get_local_metadata() is None

    @pytest.mark.asyncio
    async def test_legacy_snapshot_is_migrated(self, store):
        store.kv.set(
            METADATA_KEY,
            json.dumps(
                {
                    "version": "1.0.0",
                    "lastSyncTime": 42,
                    "deviceId": "old",
                    "files": ["notes.json"],
                    "dataHash": "abc",
                }
            ),
        )
        loaded = await store.get_local_metadata()

        assert isinstance(loaded, SyncMetadataV2)
        assert loaded.files["notes"].hash == "abc"

    @pytest.mark.asyncio
    async def test_storage_error_is_none(self, store):
        class BrokenStore(MemoryKeyValueStore):
            def get(self, key):
                raise StorageError("disk gone")

        store.kv = BrokenStore()
        assert await store.get_local_metadata() is None


class TestRemoteMetadata:
    """The snapshot stored next to the data."""

    @pytest.mark.asyncio
    async def test_missing_is_none(self, store):
        assert await store.get_remote_metadata() is None

    @pytest.mark.asyncio
    async def test_save_and_load(self, store):
        snapshot = store.create_metadata({"a": entry("a")})
        snapshot.deleted_files = ["b"]
        await store.save_remote_metadata(snapshot)

        assert METADATA_REMOTE_KEY in store.object_store.objects
        assert await store.get_remote_metadata() == snapshot

    @pytest.mark.asyncio
    async def test_corrupt_is_none(self, store):
        store.object_store.objects[METADATA_REMOTE_KEY] = '["not", "an", "object"]'
        assert await store.get_remote_metadata() is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"files": {"beans": "oops"}},
            {"deletedFiles": "beans"},
            {"deletedFiles": [1, 2]},
        ],
    )
    async def test_malformed_entries_are_none(self, store, overrides):
        document = {"version": "2.0.0", "lastSyncTime": 1, "deviceId": "x"}
        document.update({"files": {}, **overrides})
        store.object_store.objects[METADATA_REMOTE_KEY] = json.dumps(document)
        store.kv.set(METADATA_KEY, json.dumps(document))

        assert await store.get_remote_metadata() is None
        assert await store.get_local_metadata() is None

    @pytest.mark.asyncio
    async def test_legacy_file_list_skips_non_strings(self, store):
        store.object_store.objects[METADATA_REMOTE_KEY] = json.dumps(
            {"lastSyncTime": 5, "files": ["a.json", 7], "dataHash": "h"}
        )

        snapshot = await store.get_remote_metadata()

        assert list(snapshot.files) == ["a"]

    @pytest.mark.asyncio
    async def test_failed_upload_raises(self, store):
        store.object_store.fail_keys.add(METADATA_REMOTE_KEY)
        with pytest.raises(MetadataWriteError):
            await store.save_remote_metadata(store.create_metadata())

    @pytest.mark.asyncio
    async def test_raising_upload_is_wrapped(self, store):
        class ExplodingStore(MemoryObjectStore):
            async def upload_file(self, key, content):
                raise ConnectionError("network down")

        store.object_store = ExplodingStore()
        with pytest.raises(MetadataWriteError, match="network down"):
            await store.save_remote_metadata(store.create_metadata())


def test_create_metadata_stamps_device(store):
    snapshot = store.create_metadata()
    assert snapshot.device_id == "device-a"
    assert snapshot.files == {}
    assert snapshot.deleted_files == []
    assert snapshot.last_sync_time > 0


class TestSnapshotHelpers:
    """Pure helpers that return modified copies."""

    def test_update_adds_entry_without_mutating(self):
        original = SyncMetadataV2(last_sync_time=1, device_id="d")
        updated = update_file_in_metadata(original, entry("a"))

        assert "a" in updated.files
        assert original.files == {}
        assert updated.last_sync_time >= 1

    def test_delete_removes_and_tombstones_once(self):
        original = SyncMetadataV2(
            last_sync_time=1, device_id="d", files={"a": entry("a")}
        )
        once = delete_file_from_metadata(original, "a")
        twice = delete_file_from_metadata(once, "a")

        assert "a" not in twice.files
        assert twice.deleted_files == ["a"]
        assert "a" in original.files

    def test_diff(self):
        local = SyncMetadataV2(
            last_sync_time=1,
            device_id="d",
            files={"a": entry("a"), "b": entry("b"), "c": entry("c")},
        )
        remote = SyncMetadataV2(
            last_sync_time=1,
            device_id="d",
            files={"b": entry("b"), "c": entry("c", hash="other"), "d": entry("d")},
        )
        diff = diff_metadata(local, remote)

        assert diff.only_in_local == ["a"]
        assert diff.only_in_remote == ["d"]
        assert diff.in_both == ["b", "c"]
        assert diff.different == ["c"]
