"""Remote backups of uploaded files.

Backups are made by server-side copy right after a forced upload, so they
cost no client bandwidth. Only the newest few backups per file are kept.
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone

from brewsync.storage.base import KeyValueStore, ObjectStore

logger = logging.getLogger(__name__)

BACKUP_DIR = "backups"
MAX_BACKUPS = 5
BACKUP_HASHES_KEY = "s3-sync-backups"

_BACKUP_KEY_RE = re.compile(
    r"backup-(\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{3}Z)-(.+)\.json$"
)


@dataclass
class BackupRecord:
    """A backup object found in the store."""

    key: str
    file_key: str
    timestamp: int
    size: int = 0


def _format_timestamp(moment: datetime) -> str:
    # 2025-12-27T14-45-51-947Z
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H-%M-%S-") + f"{moment.microsecond // 1000:03d}Z"


def parse_backup_key(key: str) -> tuple[str, int] | None:
    """Extract (file key, epoch millis) from a backup object key."""
    match = _BACKUP_KEY_RE.search(key)
    if not match:
        return None

    stamp, file_key = match.groups()
    moment = datetime.strptime(stamp[:-5], "%Y-%m-%dT%H-%M-%S").replace(
        tzinfo=timezone.utc
    )
    millis = int(stamp[-4:-1])
    return file_key, int(moment.timestamp() * 1000) + millis


class BackupManager:
    """Create, list, prune and restore remote backups."""

    def __init__(
        self,
        object_store: ObjectStore,
        kv: KeyValueStore,
        max_backups: int = MAX_BACKUPS,
    ):
        self.object_store = object_store
        self.kv = kv
        self.max_backups = max_backups

    def generate_backup_key(self, file_key: str, now: datetime | None = None) -> str:
        now = now or datetime.now(timezone.utc)
        return f"{BACKUP_DIR}/backup-{_format_timestamp(now)}-{file_key}.json"

    def _last_hashes(self) -> dict[str, str]:
        raw = self.kv.get(BACKUP_HASHES_KEY)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring corrupt backup hash record")
            return {}
        return data if isinstance(data, dict) else {}

    def _remember_hash(self, file_key: str, content_hash: str) -> None:
        hashes = self._last_hashes()
        hashes[file_key] = content_hash
        self.kv.set(BACKUP_HASHES_KEY, json.dumps(hashes))

    async def create_backup(self, source_key: str, file_key: str) -> str | None:
        """Copy an uploaded object into the backup area.

        Args:
            source_key: Object key of the uploaded file
            file_key: Logical file key

        Returns:
            The backup object key, or None if the copy failed
        """
        backup_key = self.generate_backup_key(file_key)
        if not await self.object_store.copy_file(source_key, backup_key):
            logger.error(f"Backup copy failed for {file_key}")
            return None

        logger.info(f"Created backup {backup_key}")
        return backup_key

    async def backup_after_upload(
        self, source_key: str, file_key: str, content_hash: str
    ) -> bool:
        """Back up a freshly uploaded file unless its content is unchanged.

        Returns:
            True if a backup exists for the current content
        """
        if self._last_hashes().get(file_key) == content_hash:
            logger.debug(f"Content of {file_key} unchanged, skipping backup")
            return True

        if await self.create_backup(source_key, file_key) is None:
            return False

        self._remember_hash(file_key, content_hash)
        await self.cleanup_old_backups(file_key)
        return True

    async def list_backups(self, file_key: str | None = None) -> list[BackupRecord]:
        """List backups, oldest first, optionally for one file only."""
        entries = await self.object_store.list_objects(f"{BACKUP_DIR}/")

        backups = []
        for entry in entries:
            parsed = parse_backup_key(entry.key)
            if parsed is None:
                continue
            parsed_file_key, timestamp = parsed
            if file_key is not None and parsed_file_key != file_key:
                continue
            backups.append(
                BackupRecord(
                    key=entry.key,
                    file_key=parsed_file_key,
                    timestamp=timestamp,
                    size=entry.size,
                )
            )

        backups.sort(key=lambda b: (b.timestamp, b.key))
        return backups

    async def cleanup_old_backups(self, file_key: str) -> int:
        """Delete all but the newest backups of a file.

        Returns:
            Number of backups deleted
        """
        backups = await self.list_backups(file_key)
        excess = backups[: max(len(backups) - self.max_backups, 0)]

        deleted = 0
        for backup in excess:
            if await self.object_store.delete_file(backup.key):
                deleted += 1
                logger.info(f"Deleted old backup {backup.key}")
            else:
                logger.error(f"Failed to delete old backup {backup.key}")
        return deleted

    async def restore_backup(self, backup_key: str) -> str | None:
        """Download the content of a backup, or None if it does not exist."""
        content = await self.object_store.download_file(backup_key)
        if content is None:
            logger.error(f"Backup not found: {backup_key}")
        return content
