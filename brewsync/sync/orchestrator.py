"""Sync orchestrator.

Runs one sync attempt at a time: gathers local file metadata, fetches the
remote and base snapshots, plans, executes the plan against the object store
and persists the post-sync snapshot.
"""

import asyncio
import json
import logging
import platform
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from brewsync.data import DataProvider
from brewsync.device import get_or_create_device_id
from brewsync.exceptions import BrewSyncError, RetryExhaustedError
from brewsync.storage.base import KeyValueStore, ObjectStore

from .backup import BackupManager, BackupRecord, parse_backup_key
from .hashing import files_metadata_from_data, serialize_payload
from .metadata import MetadataStore
from .models import (
    ConflictStrategy,
    FileMetadata,
    SyncDirection,
    SyncMetadataV2,
    SyncOptions,
    SyncPhase,
    SyncPlan,
    SyncProgress,
    SyncResult,
    SyncState,
    SyncStatus,
    now_ms,
)
from .planner import SyncPlanner
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

DEVICE_INFO_KEY = "device-info.json"


def object_key(key: str) -> str:
    """Remote object name for a logical file key."""
    return f"{key}.json"


class _Progress:
    """Counts completed operations and forwards them to the caller."""

    def __init__(self, options: SyncOptions, total: int):
        self.callback = options.on_progress
        self.total = total
        self.completed = 0

    def report(self, phase: SyncPhase, message: str, current_file: str | None = None):
        if self.callback is None:
            return
        percentage = int(self.completed * 100 / self.total) if self.total else 0
        progress = SyncProgress(
            phase=phase,
            completed=self.completed,
            total=self.total,
            percentage=percentage,
            message=message,
            current_file=current_file,
        )
        try:
            self.callback(progress)
        except Exception as e:
            logger.warning(f"Progress callback raised: {e}")

    def advance(self, phase: SyncPhase, message: str, current_file: str):
        self.completed += 1
        self.report(phase, message, current_file)


class SyncOrchestrator:
    """Coordinates sync attempts for one device.

    Each instance owns its state. A sync requested while another one is
    running on the same instance fails immediately instead of queueing.
    """

    def __init__(
        self,
        object_store: ObjectStore,
        kv: KeyValueStore,
        data_provider: DataProvider,
        retry_policy: RetryPolicy | None = None,
        planner: SyncPlanner | None = None,
    ):
        self.object_store = object_store
        self.kv = kv
        self.data_provider = data_provider
        self.retry_policy = retry_policy or RetryPolicy()
        self.planner = planner or SyncPlanner()

        self.state = SyncState.IDLE
        self.state_history: list[SyncState] = [SyncState.IDLE]
        self.device_id: str | None = None
        self.metadata: MetadataStore | None = None
        self.backups: BackupManager | None = None
        self.last_result: SyncResult | None = None

    # ── State ──────────────────────────────────────────────────────────

    def _set_state(self, state: SyncState) -> None:
        if state != self.state:
            logger.debug(f"Sync state {self.state.value} -> {state.value}")
            self.state = state
            self.state_history.append(state)

    def is_sync_in_progress(self) -> bool:
        return self.state not in (SyncState.IDLE, SyncState.ERROR)

    @property
    def initialized(self) -> bool:
        return self.metadata is not None

    async def initialize(self, skip_connection_test: bool = False) -> bool:
        """Resolve the device id and check the object store.

        Args:
            skip_connection_test: Do not contact the object store

        Returns:
            True if the orchestrator is ready to sync
        """
        try:
            self.device_id = get_or_create_device_id(self.kv)
        except BrewSyncError as e:
            logger.error(f"Failed to resolve device id: {e}")
            return False

        if not skip_connection_test:
            try:
                connected = await self.object_store.test_connection()
            except Exception as e:
                logger.error(f"Connection test raised: {e}")
                connected = False
            if not connected:
                logger.error("Cannot connect to the object store")
                self.metadata = None
                return False

        self.metadata = MetadataStore(self.kv, self.object_store, self.device_id)
        self.backups = BackupManager(self.object_store, self.kv)
        logger.info(f"Sync initialized for device {self.device_id}")
        return True

    # ── Sync ───────────────────────────────────────────────────────────

    async def sync(self, options: SyncOptions | None = None) -> SyncResult:
        """Run one sync attempt.

        Never raises: failures are reported through the returned SyncResult.
        """
        options = options or SyncOptions()

        if self.is_sync_in_progress():
            return SyncResult(
                success=False,
                message="Sync already in progress",
                errors=["Sync already in progress, try again later"],
            )

        if not self.initialized:
            return SyncResult(
                success=False,
                message="Sync not initialized",
                errors=["Call initialize() before syncing"],
            )

        self._set_state(SyncState.PREPARING)
        start_time = time.monotonic()

        try:
            result = await self._run(options)
        except Exception as e:
            logger.exception(f"Sync failed: {e}")
            self._set_state(SyncState.ERROR)
            result = SyncResult(
                success=False, message="Sync failed", errors=[f"Sync failed: {e}"]
            )
        finally:
            self._set_state(SyncState.IDLE)

        result.duration = time.monotonic() - start_time
        self.last_result = result
        logger.info(f"Sync finished in {result.duration:.2f}s: {result.message}")
        return result

    async def _run(self, options: SyncOptions) -> SyncResult:
        _Progress(options, 0).report(SyncPhase.PREPARING, "Collecting local files")

        local_files, payloads = self._compute_local_files()
        remote = await self.metadata.get_remote_metadata()
        base = await self.metadata.get_local_metadata()

        if options.direction == SyncDirection.UPLOAD:
            return await self._force_upload(
                local_files, payloads, remote, base, options
            )
        if options.direction == SyncDirection.DOWNLOAD:
            return await self._force_download(remote, base, options)

        plan = self.planner.calculate_sync_plan(
            local_files, remote, base, options.conflict_strategy
        )
        validation = self.planner.validate_plan(
            plan, options.max_delete_percent, options.max_delete_count
        )
        for warning in validation.warnings:
            logger.warning(warning)

        summary = self.planner.generate_plan_summary(plan)
        logger.info(f"Sync plan: {summary}")

        if plan.is_empty:
            await self._persist_metadata(remote, set())
            return SyncResult(
                success=True,
                message="Already up to date",
                plan=plan,
                remote_metadata=remote,
            )

        if plan.has_conflicts and options.conflict_strategy == ConflictStrategy.MANUAL:
            return SyncResult(
                success=False,
                message=f"{len(plan.conflicts)} conflicts need resolution",
                warnings=validation.warnings,
                conflict=True,
                plan=plan,
                remote_metadata=remote,
            )

        if options.dry_run:
            return SyncResult(
                success=True,
                message=f"Dry run: {summary}",
                warnings=validation.warnings,
                plan=plan,
                remote_metadata=remote,
            )

        result = SyncResult(
            success=False,
            message="",
            warnings=validation.warnings,
            plan=plan,
            remote_metadata=remote,
        )
        failed = await self._execute_plan(plan, payloads, result, options)

        # unresolved conflicts keep their previous entries, like failures
        unresolved = {c.key for c in plan.conflicts}
        for conflict in plan.conflicts:
            result.warnings.append(f"Conflict left unresolved: {conflict.key}")

        deleted_keys = {f.key for f in plan.delete_local + plan.delete_remote}
        await self._persist_metadata(
            remote, deleted_keys - failed, base, failed | unresolved
        )

        result.success = not result.errors and not unresolved
        result.conflict = bool(unresolved)
        result.message = self._describe(result, len(unresolved))
        return result

    def _compute_local_files(self) -> tuple[dict[str, FileMetadata], dict[str, Any]]:
        payloads = self.data_provider.export_files()
        files = files_metadata_from_data(payloads, self.data_provider.modified_times())
        logger.debug(f"Computed metadata for {len(files)} local files")
        return files, payloads

    async def _store_call(
        self, operation: Callable[[], Awaitable[Any]], description: str
    ) -> Any:
        return await self.retry_policy.run(operation, description)

    # ── Plan execution ─────────────────────────────────────────────────

    async def _execute_plan(
        self,
        plan: SyncPlan,
        payloads: dict[str, Any],
        result: SyncResult,
        options: SyncOptions,
    ) -> set[str]:
        """Run every planned operation.

        Returns:
            Keys whose operation failed or was skipped
        """
        progress = _Progress(options, plan.total_operations)
        preserved = await self._preserve_renamed(plan, result)
        skipped = {
            source
            for renamed, source in plan.renames.items()
            if renamed not in preserved
        }
        uploads = [f for f in plan.upload if f.key not in skipped]
        downloads = [
            f
            for f in plan.download
            if f.key not in plan.renames or f.key in preserved
        ]

        async def upload(meta: FileMetadata) -> None:
            await self._upload(meta.key, payloads[meta.key])
            result.uploaded_files += 1

        async def download(meta: FileMetadata) -> None:
            if meta.key in preserved:
                self.data_provider.import_file(
                    meta.key, preserved[meta.key], meta.mtime_cli
                )
                # the snapshot lists the renamed copy, so it must exist remotely
                await self._upload(meta.key, preserved[meta.key])
            else:
                await self._download(meta.key, meta.key, meta.mtime_cli)
            result.downloaded_files += 1

        async def delete_remote(meta: FileMetadata) -> None:
            await self._store_call(
                lambda: self.object_store.delete_file(object_key(meta.key)),
                f"Delete remote {meta.key}",
            )
            result.deleted_files += 1

        async def delete_local(meta: FileMetadata) -> None:
            self.data_provider.remove_file(meta.key)
            result.deleted_files += 1

        concurrency = max(options.max_concurrency, 1)
        batches = [
            (SyncState.UPLOADING, SyncPhase.UPLOADING, "upload", uploads, upload),
            (
                SyncState.DOWNLOADING,
                SyncPhase.DOWNLOADING,
                "download",
                downloads,
                download,
            ),
            (
                SyncState.DELETING,
                SyncPhase.DELETING,
                "delete remote",
                plan.delete_remote,
                delete_remote,
            ),
            (
                SyncState.DELETING,
                SyncPhase.DELETING,
                "delete local",
                plan.delete_local,
                delete_local,
            ),
        ]

        failed = set(skipped)
        for state, phase, label, files, operation in batches:
            if not files:
                continue
            self._set_state(state)
            # deletes stay sequential
            limit = concurrency if state != SyncState.DELETING else 1
            failed |= await self._run_batch(
                files, operation, label, phase, progress, result, limit
            )

        self._set_state(SyncState.FINALIZING)
        progress.report(SyncPhase.FINALIZING, "Saving sync metadata")
        return failed

    async def _preserve_renamed(
        self, plan: SyncPlan, result: SyncResult
    ) -> dict[str, str]:
        """Read the remote side of kept-both conflicts before uploads replace it.

        Returns:
            Renamed key -> remote content for every copy that could be read
        """
        preserved: dict[str, str] = {}
        for renamed, source in sorted(plan.renames.items()):
            try:
                preserved[renamed] = await self._store_call(
                    lambda source=source: self.object_store.download_file(
                        object_key(source)
                    ),
                    f"Download {source}",
                )
            except RetryExhaustedError as e:
                logger.error(f"Cannot keep remote copy of {source}: {e}")
                result.errors.append(
                    f"Failed to download {source}: {e}; upload skipped"
                )
        return preserved

    async def _run_batch(
        self,
        files: list[FileMetadata],
        operation: Callable[[FileMetadata], Awaitable[None]],
        label: str,
        phase: SyncPhase,
        progress: _Progress,
        result: SyncResult,
        concurrency: int = 1,
    ) -> set[str]:
        """Apply one operation to every file, collecting per-file errors.

        Returns:
            Keys whose operation failed
        """
        failed: set[str] = set()

        async def run_one(meta: FileMetadata) -> None:
            try:
                await operation(meta)
                logger.debug(f"{label} {meta.key}: ok")
            except (RetryExhaustedError, BrewSyncError, ValueError, KeyError) as e:
                logger.error(f"Failed to {label} {meta.key}: {e}")
                result.errors.append(f"Failed to {label} {meta.key}: {e}")
                failed.add(meta.key)
            progress.advance(phase, f"{label} {meta.key}", meta.key)

        if concurrency <= 1:
            for meta in files:
                await run_one(meta)
            return failed

        semaphore = asyncio.Semaphore(concurrency)

        async def bounded(meta: FileMetadata) -> None:
            async with semaphore:
                await run_one(meta)

        await asyncio.gather(*(bounded(meta) for meta in files))
        return failed

    async def _upload(self, key: str, payload: Any) -> None:
        content = serialize_payload(payload)
        await self._store_call(
            lambda: self.object_store.upload_file(object_key(key), content),
            f"Upload {key}",
        )

    async def _download(self, key: str, source: str, mtime: int | None) -> None:
        content = await self._store_call(
            lambda: self.object_store.download_file(object_key(source)),
            f"Download {source}",
        )
        self.data_provider.import_file(key, content, mtime)

    # ── Forced directions ──────────────────────────────────────────────

    async def _force_upload(
        self,
        local_files: dict[str, FileMetadata],
        payloads: dict[str, Any],
        remote: SyncMetadataV2 | None,
        base: SyncMetadataV2 | None,
        options: SyncOptions,
    ) -> SyncResult:
        logger.info(f"Forced upload of {len(local_files)} files")
        result = SyncResult(success=False, message="", remote_metadata=remote)

        if not local_files:
            result.message = "Nothing to upload"
            result.errors.append("No local data to upload")
            return result

        plan = SyncPlan(upload=[local_files[key] for key in sorted(local_files)])
        result.plan = plan
        if options.dry_run:
            result.success = True
            result.message = f"Dry run: upload {len(plan.upload)}"
            return result

        progress = _Progress(options, len(plan.upload))

        async def upload(meta: FileMetadata) -> None:
            await self._upload(meta.key, payloads[meta.key])
            result.uploaded_files += 1
            if not await self.backups.backup_after_upload(
                object_key(meta.key), meta.key, meta.hash
            ):
                result.warnings.append(f"Backup of {meta.key} failed")

        self._set_state(SyncState.UPLOADING)
        failed = await self._run_batch(
            plan.upload,
            upload,
            "upload",
            SyncPhase.UPLOADING,
            progress,
            result,
            max(options.max_concurrency, 1),
        )

        self._set_state(SyncState.FINALIZING)
        progress.report(SyncPhase.FINALIZING, "Saving sync metadata")
        await self._upload_device_info(result)
        await self._persist_metadata(remote, set(), base, failed)

        result.success = not result.errors
        result.message = self._describe(result)
        return result

    async def _force_download(
        self,
        remote: SyncMetadataV2 | None,
        base: SyncMetadataV2 | None,
        options: SyncOptions,
    ) -> SyncResult:
        result = SyncResult(success=False, message="", remote_metadata=remote)

        if remote is None or not remote.files:
            result.message = "No remote data to download"
            result.errors.append("Remote store has no synced files")
            return result

        logger.info(f"Forced download of {len(remote.files)} files")
        plan = SyncPlan(download=[remote.files[key] for key in sorted(remote.files)])
        result.plan = plan
        if options.dry_run:
            result.success = True
            result.message = f"Dry run: download {len(plan.download)}"
            return result

        progress = _Progress(options, len(plan.download))

        async def download(meta: FileMetadata) -> None:
            await self._download(meta.key, meta.key, meta.mtime_cli)
            result.downloaded_files += 1

        self._set_state(SyncState.DOWNLOADING)
        failed = await self._run_batch(
            plan.download,
            download,
            "download",
            SyncPhase.DOWNLOADING,
            progress,
            result,
            max(options.max_concurrency, 1),
        )

        self._set_state(SyncState.FINALIZING)
        progress.report(SyncPhase.FINALIZING, "Saving sync metadata")
        await self._persist_metadata(remote, set(), base, failed)

        result.success = not result.errors
        result.message = self._describe(result)
        return result

    async def _upload_device_info(self, result: SyncResult) -> None:
        now = datetime.now(timezone.utc)
        info = {
            "deviceId": self.device_id,
            "lastSync": now_ms(),
            "platform": platform.platform(),
            "timestamp": now.isoformat(),
        }
        try:
            await self._store_call(
                lambda: self.object_store.upload_file(
                    DEVICE_INFO_KEY, json.dumps(info, indent=2)
                ),
                "Upload device info",
            )
        except RetryExhaustedError as e:
            logger.warning(f"Could not upload device info: {e}")
            result.warnings.append("Device info was not uploaded")

    # ── Metadata ───────────────────────────────────────────────────────

    async def _persist_metadata(
        self,
        remote: SyncMetadataV2 | None,
        deleted_keys: set[str],
        base: SyncMetadataV2 | None = None,
        failed: set[str] | None = None,
    ) -> SyncMetadataV2:
        """Recompute local files and store them as the new remote and base.

        Keys deleted by this sync join the remote tombstone list; tombstones
        of keys that exist again are dropped. Keys whose operation failed keep
        their previous entry in each snapshot, so the next sync plans them
        again.

        Raises:
            MetadataWriteError: If the remote snapshot cannot be uploaded
        """
        files, _ = self._compute_local_files()
        remote_files = dict(files)
        base_files = dict(files)

        for key in failed or ():
            for target, previous in ((remote_files, remote), (base_files, base)):
                target.pop(key, None)
                if previous is not None and key in previous.files:
                    target[key] = previous.files[key]

        tombstones = set(remote.deleted_files) if remote else set()
        tombstones |= deleted_keys
        tombstones -= set(remote_files)

        snapshot = self.metadata.create_metadata(remote_files)
        snapshot.deleted_files = sorted(tombstones)
        base_snapshot = replace(
            snapshot, files=base_files, deleted_files=list(snapshot.deleted_files)
        )

        # remote before base
        await self.metadata.save_remote_metadata(snapshot)
        await self.metadata.save_local_metadata(base_snapshot)
        logger.debug(f"Persisted metadata with {len(remote_files)} files")
        return snapshot

    @staticmethod
    def _describe(result: SyncResult, unresolved: int = 0) -> str:
        parts = []
        if result.uploaded_files:
            parts.append(f"uploaded {result.uploaded_files}")
        if result.downloaded_files:
            parts.append(f"downloaded {result.downloaded_files}")
        if result.deleted_files:
            parts.append(f"deleted {result.deleted_files}")
        if result.errors:
            message = "Sync finished with errors"
        elif unresolved:
            message = "Sync finished with conflicts"
        else:
            message = "Sync complete"
        if parts:
            message += f": {', '.join(parts)}"
        if result.errors:
            message += f" ({len(result.errors)} failed)"
        if unresolved:
            message += f" ({unresolved} unresolved)"
        return message

    # ── Status ─────────────────────────────────────────────────────────

    async def get_last_sync_time(self) -> datetime | None:
        if not self.initialized:
            return None
        metadata = await self.metadata.get_local_metadata()
        if metadata is None or not metadata.last_sync_time:
            return None
        return datetime.fromtimestamp(metadata.last_sync_time / 1000, tz=timezone.utc)

    async def get_status(self) -> SyncStatus:
        """Report whether a sync is running and whether one is needed."""
        status = SyncStatus(
            in_progress=self.is_sync_in_progress(),
            last_sync_time=await self.get_last_sync_time(),
            last_result=self.last_result,
        )
        if not self.initialized or status.in_progress:
            return status

        local_files, _ = self._compute_local_files()
        remote = await self.metadata.get_remote_metadata()
        base = await self.metadata.get_local_metadata()
        plan = self.planner.calculate_sync_plan(local_files, remote, base)
        status.needs_sync = not plan.is_empty or remote is None
        return status

    # ── Backups ────────────────────────────────────────────────────────

    async def list_backups(self, file_key: str | None = None) -> list[BackupRecord]:
        if not self.initialized:
            return []
        return await self.backups.list_backups(file_key)

    async def restore_backup(self, backup_key: str) -> bool:
        """Replace a local file with the content of a remote backup.

        Returns:
            True if the file was restored
        """
        if not self.initialized:
            logger.error("Cannot restore backup: sync not initialized")
            return False

        parsed = parse_backup_key(backup_key)
        if parsed is None:
            logger.error(f"Not a backup key: {backup_key}")
            return False
        file_key, _ = parsed

        content = await self.backups.restore_backup(backup_key)
        if content is None:
            return False

        try:
            self.data_provider.import_file(file_key, content)
        except (ValueError, BrewSyncError) as e:
            logger.error(f"Failed to restore {backup_key}: {e}")
            return False

        logger.info(f"Restored {file_key} from {backup_key}")
        return True
