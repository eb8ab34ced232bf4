"""Tests for the object stores and key-value stores."""

import json

import pytest

from brewsync.storage import (
    JsonFileKeyValueStore,
    MemoryKeyValueStore,
    MemoryObjectStore,
    S3ObjectStore,
)

TEST_BUCKET = "test-sync-bucket"


class TestJsonFileKeyValueStore:
    """Tests for the durable key-value store."""

    def test_set_get_remove(self, tmp_path):
        store = JsonFileKeyValueStore(tmp_path / "store.json")
        store.set("a", "1")
        store.set("b", "2")

        assert store.get("a") == "1"
        assert store.keys() == ["a", "b"]

        store.remove("a")
        store.remove("missing")
        assert store.get("a") is None
        assert store.keys() == ["b"]

    def test_values_survive_reopen(self, tmp_path):
        path = tmp_path / "nested" / "store.json"
        JsonFileKeyValueStore(path).set("device-id", "device-1")

        assert JsonFileKeyValueStore(path).get("device-id") == "device-1"
        assert json.loads(path.read_text()) == {"device-id": "device-1"}

    def test_no_temp_files_left_behind(self, tmp_path):
        store = JsonFileKeyValueStore(tmp_path / "store.json")
        store.set("a", "1")
        assert [p.name for p in tmp_path.iterdir()] == ["store.json"]

    def test_corrupt_file_reads_as_empty(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("{broken")
        store = JsonFileKeyValueStore(path)

        assert store.get("a") is None
        store.set("a", "1")
        assert store.get("a") == "1"


def test_memory_key_value_store_initial_data():
    store = MemoryKeyValueStore({"b": "2", "a": "1"})
    assert store.keys() == ["a", "b"]
    store.remove("a")
    assert store.get("a") is None


class TestMemoryObjectStore:
    """Tests for the in-process object store."""

    @pytest.mark.asyncio
    async def test_round_trip_and_listing(self):
        store = MemoryObjectStore()
        assert await store.upload_file("a.json", "{}")
        assert await store.upload_file("backups/b.json", b'{"x": 1}')

        assert await store.download_file("backups/b.json") == '{"x": 1}'
        listed = await store.list_objects("backups/")
        assert [e.key for e in listed] == ["backups/b.json"]
        assert listed[0].size == 8

    @pytest.mark.asyncio
    async def test_fail_keys(self):
        store = MemoryObjectStore()
        store.fail_keys.add("a.json")

        assert not await store.upload_file("a.json", "{}")
        assert await store.download_file("a.json") is None
        assert not await store.delete_file("a.json")

    @pytest.mark.asyncio
    async def test_copy(self):
        store = MemoryObjectStore()
        await store.upload_file("a.json", "{}")

        assert await store.copy_file("a.json", "b.json")
        assert not await store.copy_file("missing.json", "c.json")
        assert store.objects["b.json"] == "{}"


class TestS3ObjectStore:
    """Tests for the S3 store against moto."""

    @pytest.mark.asyncio
    async def test_connection(self, mock_s3, s3_settings):
        store = S3ObjectStore(s3_settings)
        assert await store.test_connection()

    @pytest.mark.asyncio
    async def test_connection_to_missing_bucket_fails(self, mock_s3, s3_settings):
        s3_settings.s3_bucket = "no-such-bucket"
        store = S3ObjectStore(s3_settings)
        assert not await store.test_connection()

    @pytest.mark.asyncio
    async def test_upload_uses_prefix(self, mock_s3, s3_settings):
        store = S3ObjectStore(s3_settings)
        assert await store.upload_file("notes.json", '{"a": 1}')

        obj = mock_s3.get_object(Bucket=TEST_BUCKET, Key="sync-test/notes.json")
        assert obj["Body"].read() == b'{"a": 1}'
        assert obj["ContentType"] == "application/json"

    @pytest.mark.asyncio
    async def test_download(self, mock_s3, s3_settings):
        store = S3ObjectStore(s3_settings)
        await store.upload_file("notes.json", '{"a": 1}')

        assert await store.download_file("notes.json") == '{"a": 1}'
        assert await store.download_file("missing.json") is None

    @pytest.mark.asyncio
    async def test_delete(self, mock_s3, s3_settings):
        store = S3ObjectStore(s3_settings)
        await store.upload_file("notes.json", "{}")

        assert await store.delete_file("notes.json")
        assert await store.download_file("notes.json") is None

    @pytest.mark.asyncio
    async def test_list_strips_prefix(self, mock_s3, s3_settings):
        store = S3ObjectStore(s3_settings)
        await store.upload_file("a.json", "{}")
        await store.upload_file("backups/backup-x.json", "{}")
        mock_s3.put_object(Bucket=TEST_BUCKET, Key="elsewhere/c.json", Body=b"{}")

        everything = await store.list_objects()
        backups = await store.list_objects("backups/")

        assert sorted(e.key for e in everything) == ["a.json", "backups/backup-x.json"]
        assert [e.key for e in backups] == ["backups/backup-x.json"]
        assert backups[0].size == 2

    @pytest.mark.asyncio
    async def test_list_respects_max_keys(self, mock_s3, s3_settings):
        store = S3ObjectStore(s3_settings)
        for i in range(3):
            await store.upload_file(f"f{i}.json", "{}")

        assert len(await store.list_objects(max_keys=2)) == 2

    @pytest.mark.asyncio
    async def test_copy(self, mock_s3, s3_settings):
        store = S3ObjectStore(s3_settings)
        await store.upload_file("notes.json", '{"a": 1}')

        assert await store.copy_file("notes.json", "backups/notes-copy.json")
        assert await store.download_file("backups/notes-copy.json") == '{"a": 1}'
        assert not await store.copy_file("missing.json", "backups/x.json")
