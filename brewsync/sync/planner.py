"""Three-way sync planner.

Compares the current local files against the remote snapshot and the base
snapshot (local state after the last successful sync) and classifies every
key as an upload, download, delete, conflict or no-op.
"""

import logging
from datetime import datetime, timezone

from .hashing import are_files_equal
from .models import (
    ConflictStrategy,
    FileChange,
    FileChangeType,
    FileMetadata,
    PlannedConflict,
    PlanValidation,
    SyncDirection,
    SyncMetadataV2,
    SyncPlan,
)

logger = logging.getLogger(__name__)


class SyncPlanner:
    """Compute sync plans from local, remote and base metadata.

    Args:
        strict_first_sync: When True, a key present locally and remotely with
            no base and differing content is always a conflict. When False
            (default), same-size copies are treated as the same data and the
            newer one wins.
    """

    def __init__(self, strict_first_sync: bool = False):
        self.strict_first_sync = strict_first_sync

    def calculate_sync_plan(
        self,
        local_files: dict[str, FileMetadata],
        remote: SyncMetadataV2 | None,
        base: SyncMetadataV2 | None,
        strategy: ConflictStrategy = ConflictStrategy.MANUAL,
    ) -> SyncPlan:
        """Calculate the sync plan.

        Args:
            local_files: Freshly computed local file metadata
            remote: Remote snapshot, None if the remote has never been synced
            base: Base snapshot, None if this device has never synced
            strategy: How to resolve conflicts

        Returns:
            SyncPlan with every key classified
        """
        plan = SyncPlan()

        if remote is None:
            plan.upload = [local_files[key] for key in sorted(local_files)]
            logger.debug(f"No remote metadata, uploading {len(plan.upload)} files")
            return plan

        base_files = base.files if base is not None else {}
        tombstones = set(remote.deleted_files) - set(remote.files)
        all_keys = set(local_files) | set(remote.files) | set(base_files)

        for key in sorted(all_keys):
            change = self.analyze_file_change(
                key,
                local_files.get(key),
                remote.files.get(key),
                base_files.get(key),
            )
            if (
                base is None
                and key in tombstones
                and change.type == FileChangeType.ADDED
                and change.direction == SyncDirection.UPLOAD
                and change.local.mtime_cli <= remote.last_sync_time
            ):
                change = FileChange(
                    key=key, type=FileChangeType.DELETED, local=change.local
                )
                logger.debug(f"{key}: removed remotely, tombstone predates local copy")

            self._apply_change(change, plan, strategy)

        return plan

    def analyze_file_change(
        self,
        key: str,
        local: FileMetadata | None,
        remote: FileMetadata | None,
        base: FileMetadata | None,
    ) -> FileChange:
        """Classify one key by three-way comparison."""
        change = FileChange(
            key=key,
            type=FileChangeType.UNCHANGED,
            local=local,
            remote=remote,
            base=base,
        )

        if local and remote and not base:
            if are_files_equal(local, remote):
                change.type = FileChangeType.UNCHANGED
            elif local.size == remote.size and not self.strict_first_sync:
                # Same size, different hash: most likely the same data
                # exported by a different version, keep the newer copy.
                change.type = FileChangeType.MODIFIED
                if remote.mtime_cli >= local.mtime_cli:
                    change.direction = SyncDirection.DOWNLOAD
                else:
                    change.direction = SyncDirection.UPLOAD
            else:
                change.type = FileChangeType.CONFLICT
                change.direction = SyncDirection.DOWNLOAD

        elif local and not remote and not base:
            change.type = FileChangeType.ADDED
            change.direction = SyncDirection.UPLOAD

        elif remote and not local and not base:
            change.type = FileChangeType.ADDED
            change.direction = SyncDirection.DOWNLOAD

        elif local and not remote and base:
            if are_files_equal(local, base):
                change.type = FileChangeType.DELETED
            else:
                change.type = FileChangeType.CONFLICT

        elif remote and not local and base:
            if are_files_equal(remote, base):
                change.type = FileChangeType.DELETED
            else:
                change.type = FileChangeType.CONFLICT

        elif local and remote and base:
            local_changed = not are_files_equal(local, base)
            remote_changed = not are_files_equal(remote, base)

            if local_changed and not remote_changed:
                change.type = FileChangeType.MODIFIED
                change.direction = SyncDirection.UPLOAD
            elif remote_changed and not local_changed:
                change.type = FileChangeType.MODIFIED
                change.direction = SyncDirection.DOWNLOAD
            elif local_changed and not are_files_equal(local, remote):
                change.type = FileChangeType.CONFLICT

        elif base:
            # Removed on both sides
            change.type = FileChangeType.DELETED

        return change

    def _apply_change(
        self, change: FileChange, plan: SyncPlan, strategy: ConflictStrategy
    ) -> None:
        local, remote = change.local, change.remote

        if change.type == FileChangeType.UNCHANGED:
            if local:
                plan.unchanged.append(local)

        elif change.type in (FileChangeType.ADDED, FileChangeType.MODIFIED):
            if change.direction == SyncDirection.UPLOAD and local:
                plan.upload.append(local)
            elif change.direction == SyncDirection.DOWNLOAD and remote:
                plan.download.append(remote)

        elif change.type == FileChangeType.DELETED:
            if remote and not local:
                plan.delete_remote.append(remote)
            elif local and not remote:
                plan.delete_local.append(local)

        elif change.type == FileChangeType.CONFLICT:
            self._resolve_conflict(change, plan, strategy)

    def _resolve_conflict(
        self, change: FileChange, plan: SyncPlan, strategy: ConflictStrategy
    ) -> None:
        local, remote, base = change.local, change.remote, change.base

        if not local or not remote:
            side = "remote" if local else "local"
            plan.conflicts.append(
                PlannedConflict(
                    key=change.key,
                    local=local,
                    remote=remote,
                    base=base,
                    reason=f"Deleted on {side} side but modified on the other",
                )
            )
            return

        if strategy == ConflictStrategy.MANUAL:
            plan.conflicts.append(
                PlannedConflict(
                    key=change.key,
                    local=local,
                    remote=remote,
                    base=base,
                    suggested_direction=(
                        SyncDirection.DOWNLOAD if base is None else None
                    ),
                    reason=(
                        "Different content on both sides with no common base"
                        if base is None
                        else "Modified on both sides"
                    ),
                )
            )

        elif strategy == ConflictStrategy.KEEP_NEWER:
            if local.mtime_cli != remote.mtime_cli:
                upload = local.mtime_cli > remote.mtime_cli
            else:
                upload = local.size > remote.size
            self._keep(plan, local, remote, upload)

        elif strategy == ConflictStrategy.KEEP_LARGER:
            if local.size != remote.size:
                upload = local.size > remote.size
            else:
                upload = local.mtime_cli > remote.mtime_cli
            self._keep(plan, local, remote, upload)

        elif strategy == ConflictStrategy.KEEP_LOCAL:
            plan.upload.append(local)

        elif strategy == ConflictStrategy.KEEP_REMOTE:
            plan.download.append(remote)

        elif strategy == ConflictStrategy.KEEP_BOTH:
            plan.upload.append(local)
            renamed_key = self.generate_conflict_name(remote.key)
            renamed = FileMetadata(
                key=renamed_key,
                size=remote.size,
                mtime_cli=remote.mtime_cli,
                hash=remote.hash,
                synced_at=remote.synced_at,
            )
            plan.download.append(renamed)
            plan.renames[renamed_key] = remote.key

    @staticmethod
    def _keep(
        plan: SyncPlan, local: FileMetadata, remote: FileMetadata, upload: bool
    ) -> None:
        if upload:
            plan.upload.append(local)
        else:
            plan.download.append(remote)

    @staticmethod
    def generate_conflict_name(key: str, now: datetime | None = None) -> str:
        """Name for the remote copy of a kept-both conflict.

        ``notes`` becomes ``notes-conflict-2025-01-31T09-30-00``; a dotted key
        keeps its extension last.
        """
        now = now or datetime.now(timezone.utc)
        timestamp = now.strftime("%Y-%m-%dT%H-%M-%S")

        name, dot, ext = key.rpartition(".")
        if dot and name:
            return f"{name}-conflict-{timestamp}.{ext}"
        return f"{key}-conflict-{timestamp}"

    def validate_plan(
        self,
        plan: SyncPlan,
        max_delete_percent: float = 0.3,
        max_delete_count: int = 100,
    ) -> PlanValidation:
        """Check a plan against the mass-deletion guard rails.

        Warnings are informational; the caller decides whether to proceed.
        """
        warnings: list[str] = []

        total_files = (
            len(plan.upload)
            + len(plan.download)
            + len(plan.unchanged)
            + len(plan.conflicts)
        )
        delete_count = len(plan.delete_local) + len(plan.delete_remote)

        if total_files > 0:
            delete_ratio = delete_count / total_files
        else:
            # nothing survives the plan
            delete_ratio = 1.0 if delete_count else 0.0

        if delete_ratio > max_delete_percent:
            warnings.append(
                f"Plan deletes {delete_count} files ({delete_ratio * 100:.1f}%), "
                f"above the {max_delete_percent * 100:.0f}% safety threshold"
            )

        if delete_count > max_delete_count:
            warnings.append(
                f"Plan deletes {delete_count} files, above the safety limit "
                f"of {max_delete_count}"
            )

        if plan.conflicts:
            warnings.append(
                f"{len(plan.conflicts)} conflicting files need manual resolution"
            )

        return PlanValidation(safe=not warnings, warnings=warnings)

    def generate_plan_summary(self, plan: SyncPlan) -> str:
        """One-line human summary of a plan."""
        parts = []

        if plan.upload:
            parts.append(f"upload {len(plan.upload)}")
        if plan.download:
            parts.append(f"download {len(plan.download)}")
        if plan.delete_local:
            parts.append(f"delete {len(plan.delete_local)} locally")
        if plan.delete_remote:
            parts.append(f"delete {len(plan.delete_remote)} remotely")
        if plan.conflicts:
            parts.append(f"{len(plan.conflicts)} conflicts")
        if plan.unchanged:
            parts.append(f"{len(plan.unchanged)} unchanged")

        return ", ".join(parts) if parts else "Nothing to sync"
