"""File-level synchronization with an S3-compatible object store.

This module provides:
- Content hashing that ignores volatile export fields
- SyncMetadata snapshots (v2, with transparent v1 migration)
- SyncPlanner: three-way merge of local, remote and base snapshots
- SyncOrchestrator: executes plans and persists the post-sync state
- RetryPolicy: bounded retry for object-store calls
"""

from brewsync.sync.backup import BackupManager, BackupRecord
from brewsync.sync.hashing import are_files_equal, calculate_hash, content_hash
from brewsync.sync.metadata import (
    METADATA_KEY,
    METADATA_REMOTE_KEY,
    MetadataStore,
)
from brewsync.sync.models import (
    ConflictStrategy,
    FileMetadata,
    SyncDirection,
    SyncMetadataV1,
    SyncMetadataV2,
    SyncOptions,
    SyncPhase,
    SyncPlan,
    SyncProgress,
    SyncResult,
    SyncState,
    SyncStatus,
    migrate_v1_to_v2,
    parse_sync_metadata,
)
from brewsync.sync.orchestrator import SyncOrchestrator
from brewsync.sync.planner import SyncPlanner
from brewsync.sync.retry import RetryPolicy

__all__ = [
    # Hashing
    "calculate_hash",
    "content_hash",
    "are_files_equal",
    # Models
    "FileMetadata",
    "SyncMetadataV1",
    "SyncMetadataV2",
    "parse_sync_metadata",
    "migrate_v1_to_v2",
    "ConflictStrategy",
    "SyncDirection",
    "SyncOptions",
    "SyncPhase",
    "SyncPlan",
    "SyncProgress",
    "SyncResult",
    "SyncState",
    "SyncStatus",
    # Metadata
    "MetadataStore",
    "METADATA_KEY",
    "METADATA_REMOTE_KEY",
    # Planning and execution
    "SyncPlanner",
    "SyncOrchestrator",
    "RetryPolicy",
    # Backups
    "BackupManager",
    "BackupRecord",
]
