"""Persistence of sync metadata snapshots.

Two durable snapshots exist: the local one, kept in the key-value store and
used as the three-way merge base, and the remote one, kept next to the data
in the object store.
"""

import json
import logging
from dataclasses import dataclass, field, replace

from brewsync.exceptions import MetadataWriteError, StorageError
from brewsync.storage.base import KeyValueStore, ObjectStore

from .hashing import are_files_equal
from .models import (
    FileMetadata,
    SyncMetadataV1,
    SyncMetadataV2,
    now_ms,
    parse_sync_metadata,
    to_v2,
)

logger = logging.getLogger(__name__)

METADATA_KEY = "s3-sync-metadata"
METADATA_REMOTE_KEY = "sync-metadata.json"


@dataclass
class MetadataDiff:
    """Key-level comparison of two snapshots."""

    only_in_local: list[str] = field(default_factory=list)
    only_in_remote: list[str] = field(default_factory=list)
    in_both: list[str] = field(default_factory=list)
    different: list[str] = field(default_factory=list)


def _decode(raw: str, source: str) -> SyncMetadataV2 | None:
    """Parse and migrate a serialized snapshot, or return None if unusable."""
    try:
        metadata = parse_sync_metadata(json.loads(raw))
        if isinstance(metadata, SyncMetadataV1):
            logger.info(f"Migrating legacy {source} metadata to v2")
        return to_v2(metadata)
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        logger.warning(f"Ignoring unreadable {source} metadata: {e}")
        return None


class MetadataStore:
    """Read and write the local and remote metadata snapshots."""

    def __init__(self, kv: KeyValueStore, object_store: ObjectStore, device_id: str):
        self.kv = kv
        self.object_store = object_store
        self.device_id = device_id

    async def get_local_metadata(self) -> SyncMetadataV2 | None:
        """Return the local snapshot, or None if missing or corrupt."""
        try:
            raw = self.kv.get(METADATA_KEY)
        except StorageError as e:
            logger.error(f"Failed to read local metadata: {e}")
            return None

        if not raw:
            return None
        return _decode(raw, "local")

    async def get_remote_metadata(self) -> SyncMetadataV2 | None:
        """Return the remote snapshot, or None if missing, corrupt or unreachable."""
        try:
            raw = await self.object_store.download_file(METADATA_REMOTE_KEY)
        except Exception as e:
            logger.warning(f"Failed to fetch remote metadata: {e}")
            return None

        if not raw:
            return None

        metadata = _decode(raw, "remote")
        if metadata is not None:
            logger.debug(
                f"Remote metadata from {metadata.device_id}: "
                f"{len(metadata.files)} files"
            )
        return metadata

    async def save_local_metadata(self, metadata: SyncMetadataV2) -> None:
        """Overwrite the local snapshot."""
        self.kv.set(METADATA_KEY, json.dumps(metadata.to_dict()))

    async def save_remote_metadata(self, metadata: SyncMetadataV2) -> None:
        """Upload the remote snapshot.

        Raises:
            MetadataWriteError: If the object store reports failure
        """
        content = json.dumps(metadata.to_dict(), indent=2)
        try:
            uploaded = await self.object_store.upload_file(METADATA_REMOTE_KEY, content)
        except Exception as e:
            raise MetadataWriteError(f"Failed to upload remote metadata: {e}") from e

        if not uploaded:
            raise MetadataWriteError("Failed to upload remote metadata")

    def create_metadata(
        self, files: dict[str, FileMetadata] | None = None
    ) -> SyncMetadataV2:
        """Create a fresh snapshot stamped with now and this device."""
        return SyncMetadataV2(
            last_sync_time=now_ms(),
            device_id=self.device_id,
            files=dict(files or {}),
            deleted_files=[],
        )


def update_file_in_metadata(
    metadata: SyncMetadataV2, file_metadata: FileMetadata
) -> SyncMetadataV2:
    """Return a copy of the snapshot with one file entry added or replaced."""
    files = dict(metadata.files)
    files[file_metadata.key] = file_metadata
    return replace(metadata, last_sync_time=now_ms(), files=files)


def delete_file_from_metadata(metadata: SyncMetadataV2, key: str) -> SyncMetadataV2:
    """Return a copy of the snapshot with a file removed and tombstoned."""
    files = dict(metadata.files)
    files.pop(key, None)
    deleted_files = list(metadata.deleted_files)
    if key not in deleted_files:
        deleted_files.append(key)
    return replace(
        metadata, last_sync_time=now_ms(), files=files, deleted_files=deleted_files
    )


def diff_metadata(local: SyncMetadataV2, remote: SyncMetadataV2) -> MetadataDiff:
    """Compare the file sets of two snapshots."""
    diff = MetadataDiff()

    for key in sorted(local.files):
        if key not in remote.files:
            diff.only_in_local.append(key)
            continue
        diff.in_both.append(key)
        if not are_files_equal(local.files[key], remote.files[key]):
            diff.different.append(key)

    diff.only_in_remote = sorted(k for k in remote.files if k not in local.files)
    return diff
