"""Data model for file-level sync.

Wire names follow the JSON documents stored in the remote object store and in
the local key-value store (camelCase), while the Python attributes use
snake_case. Every type round-trips through ``to_dict``/``from_dict``.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

METADATA_VERSION = "2.0.0"
LEGACY_METADATA_VERSION = "1.0.0"


def now_ms() -> int:
    """Current time as integer epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class FileMetadata:
    """Tracked state of one logical file."""

    key: str
    """Unique, non-empty identifier of the logical file"""

    size: int
    """Byte length of the serialized payload"""

    mtime_cli: int
    """Client-observed modification time (epoch millis)"""

    hash: str
    """Content fingerprint, empty string when unknown"""

    synced_at: int | None = None
    """Epoch millis of the last sync that touched this file"""

    deleted: bool | None = None
    """Tombstone flag"""

    def __post_init__(self):
        if not self.key:
            raise ValueError("FileMetadata key cannot be empty")

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire representation."""
        data: dict[str, Any] = {
            "key": self.key,
            "size": self.size,
            "mtimeCli": self.mtime_cli,
            "hash": self.hash,
        }
        if self.synced_at is not None:
            data["syncedAt"] = self.synced_at
        if self.deleted is not None:
            data["deleted"] = self.deleted
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], key: str | None = None) -> "FileMetadata":
        """Create FileMetadata from its wire representation.

        Args:
            data: Wire dictionary
            key: Fallback key when the dictionary does not carry one
        """
        return cls(
            key=data.get("key") or key or "",
            size=int(data.get("size", 0)),
            mtime_cli=int(data.get("mtimeCli", 0)),
            hash=data.get("hash") or "",
            synced_at=data.get("syncedAt"),
            deleted=data.get("deleted"),
        )


@dataclass
class SyncMetadataV2:
    """Current metadata snapshot format (file-level tracking)."""

    last_sync_time: int
    device_id: str
    files: dict[str, FileMetadata] = field(default_factory=dict)
    deleted_files: list[str] = field(default_factory=list)
    version: str = METADATA_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "lastSyncTime": self.last_sync_time,
            "deviceId": self.device_id,
            "files": {key: meta.to_dict() for key, meta in self.files.items()},
            "deletedFiles": list(self.deleted_files),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncMetadataV2":
        raw_files = data.get("files") or {}
        if not isinstance(raw_files, dict):
            raise ValueError("v2 metadata 'files' must be an object")

        files = {}
        for key, entry in raw_files.items():
            if not isinstance(entry, dict):
                raise ValueError(f"v2 metadata entry for {key!r} must be an object")
            files[key] = FileMetadata.from_dict(entry, key=key)

        deleted_files = data.get("deletedFiles") or []
        if not isinstance(deleted_files, list) or not all(
            isinstance(key, str) for key in deleted_files
        ):
            raise ValueError("v2 metadata 'deletedFiles' must be a list of keys")

        return cls(
            last_sync_time=int(data["lastSyncTime"]),
            device_id=data.get("deviceId", ""),
            files=files,
            deleted_files=list(deleted_files),
            version=data.get("version", METADATA_VERSION),
        )


@dataclass
class SyncMetadataV1:
    """Legacy single-hash metadata format."""

    last_sync_time: int
    device_id: str
    files: list[str] | None = None
    data_hash: str | None = None
    version: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncMetadataV1":
        files = data.get("files")
        if isinstance(files, list):
            files = [name for name in files if isinstance(name, str)]
        else:
            files = None
        return cls(
            last_sync_time=int(data["lastSyncTime"]),
            device_id=data.get("deviceId", ""),
            files=files,
            data_hash=data.get("dataHash"),
            version=data.get("version"),
        )


SyncMetadata = SyncMetadataV1 | SyncMetadataV2


def is_v1_metadata(data: dict[str, Any]) -> bool:
    """Check whether a raw metadata document uses the legacy format."""
    version = data.get("version")
    return (
        not version
        or version == LEGACY_METADATA_VERSION
        or isinstance(data.get("dataHash"), str)
    )


def parse_sync_metadata(data: Any) -> SyncMetadata:
    """Parse a raw metadata document into its tagged variant.

    Raises:
        ValueError: If the document is not a metadata object
        KeyError: If required fields are missing
    """
    if not isinstance(data, dict):
        raise ValueError(f"Metadata must be an object, got {type(data).__name__}")

    if is_v1_metadata(data):
        return SyncMetadataV1.from_dict(data)
    return SyncMetadataV2.from_dict(data)


def migrate_v1_to_v2(v1: SyncMetadataV1) -> SyncMetadataV2:
    """Upgrade legacy metadata to the file-level format.

    Legacy file names become keys with any trailing ``.json`` removed. V1 never
    recorded sizes, so every entry gets ``size=0`` and the snapshot-wide hash.
    """
    files: dict[str, FileMetadata] = {}

    for file_name in v1.files or []:
        key = file_name[:-5] if file_name.lower().endswith(".json") else file_name
        if not key:
            continue
        files[key] = FileMetadata(
            key=key,
            size=0,
            mtime_cli=v1.last_sync_time,
            hash=v1.data_hash or "",
            synced_at=v1.last_sync_time,
        )

    return SyncMetadataV2(
        last_sync_time=v1.last_sync_time,
        device_id=v1.device_id,
        files=files,
        deleted_files=[],
    )


def to_v2(metadata: SyncMetadata) -> SyncMetadataV2:
    """Return metadata in v2 form, migrating if needed."""
    if isinstance(metadata, SyncMetadataV1):
        return migrate_v1_to_v2(metadata)
    return metadata


class SyncDirection(str, Enum):
    """Direction of a file transfer."""

    UPLOAD = "upload"
    DOWNLOAD = "download"


class ConflictStrategy(str, Enum):
    """How the planner resolves files changed on both sides."""

    KEEP_NEWER = "newer"
    """Keep the version with the newer mtimeCli (tie-break on size)"""

    KEEP_LARGER = "larger"
    """Keep the larger version (tie-break on mtimeCli)"""

    KEEP_LOCAL = "local"
    """Always upload the local version"""

    KEEP_REMOTE = "remote"
    """Always download the remote version"""

    KEEP_BOTH = "both"
    """Upload local, download remote under a renamed key"""

    MANUAL = "manual"
    """Leave conflicts for the caller to resolve"""


class FileChangeType(str, Enum):
    """Classification of a key in the three-way comparison."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    CONFLICT = "conflict"
    UNCHANGED = "unchanged"


@dataclass
class FileChange:
    """Result of comparing one key across local, remote and base."""

    key: str
    type: FileChangeType
    direction: SyncDirection | None = None
    local: FileMetadata | None = None
    remote: FileMetadata | None = None
    base: FileMetadata | None = None


@dataclass
class PlannedConflict:
    """A conflicting file left for the caller to resolve."""

    key: str
    local: FileMetadata | None
    remote: FileMetadata | None
    base: FileMetadata | None = None
    suggested_direction: SyncDirection | None = None
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "local": self.local.to_dict() if self.local else None,
            "remote": self.remote.to_dict() if self.remote else None,
            "base": self.base.to_dict() if self.base else None,
            "suggestedDirection": (
                self.suggested_direction.value if self.suggested_direction else None
            ),
            "reason": self.reason,
        }


@dataclass
class SyncPlan:
    """Plan for sync operations."""

    upload: list[FileMetadata] = field(default_factory=list)
    download: list[FileMetadata] = field(default_factory=list)
    delete_local: list[FileMetadata] = field(default_factory=list)
    delete_remote: list[FileMetadata] = field(default_factory=list)
    conflicts: list[PlannedConflict] = field(default_factory=list)
    unchanged: list[FileMetadata] = field(default_factory=list)
    renames: dict[str, str] = field(default_factory=dict)
    """Download target key -> remote source key, for kept-both conflicts"""

    @property
    def total_operations(self) -> int:
        """Get total number of file operations in plan."""
        return (
            len(self.upload)
            + len(self.download)
            + len(self.delete_local)
            + len(self.delete_remote)
        )

    @property
    def has_conflicts(self) -> bool:
        """Check if plan has any conflicts."""
        return len(self.conflicts) > 0

    @property
    def is_empty(self) -> bool:
        """True when nothing needs to be transferred, deleted or resolved."""
        return self.total_operations == 0 and not self.has_conflicts

    def to_dict(self) -> dict[str, Any]:
        return {
            "upload": [f.to_dict() for f in self.upload],
            "download": [f.to_dict() for f in self.download],
            "deleteLocal": [f.to_dict() for f in self.delete_local],
            "deleteRemote": [f.to_dict() for f in self.delete_remote],
            "conflicts": [c.to_dict() for c in self.conflicts],
            "unchanged": [f.to_dict() for f in self.unchanged],
            "renames": dict(self.renames),
        }


@dataclass
class PlanValidation:
    """Outcome of checking a plan against the safety thresholds."""

    safe: bool
    warnings: list[str] = field(default_factory=list)


class SyncPhase(str, Enum):
    """Phase reported through the progress callback."""

    PREPARING = "preparing"
    UPLOADING = "uploading"
    DOWNLOADING = "downloading"
    DELETING = "deleting"
    FINALIZING = "finalizing"


class SyncState(str, Enum):
    """Orchestrator state machine."""

    IDLE = "idle"
    PREPARING = "preparing"
    UPLOADING = "uploading"
    DOWNLOADING = "downloading"
    DELETING = "deleting"
    FINALIZING = "finalizing"
    ERROR = "error"


@dataclass
class SyncProgress:
    """Progress information passed to the caller-supplied callback."""

    phase: SyncPhase
    completed: int
    total: int
    percentage: int
    message: str
    current_file: str | None = None


ProgressCallback = Callable[[SyncProgress], None]


@dataclass
class SyncOptions:
    """Options for a single sync attempt."""

    direction: SyncDirection | None = None
    """Force a full push or pull, bypassing the planner"""

    conflict_strategy: ConflictStrategy = ConflictStrategy.MANUAL
    dry_run: bool = False
    max_delete_percent: float = 0.3
    max_delete_count: int = 100
    max_concurrency: int = 1
    """Upper bound on parallel uploads/downloads; deletes always run one by one"""

    on_progress: Optional[ProgressCallback] = None


@dataclass
class SyncResult:
    """Result of a sync attempt."""

    success: bool
    message: str
    uploaded_files: int = 0
    downloaded_files: int = 0
    deleted_files: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    conflict: bool = False
    plan: SyncPlan | None = None
    remote_metadata: SyncMetadataV2 | None = None
    duration: float = 0.0


@dataclass
class SyncStatus:
    """Current sync status for the status command."""

    in_progress: bool
    last_sync_time: datetime | None = None
    last_result: SyncResult | None = None
    needs_sync: bool = False
