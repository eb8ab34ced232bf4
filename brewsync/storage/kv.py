"""
Local key-value store implementations.

``JsonFileKeyValueStore`` keeps every value in a single JSON document on
disk, written atomically (temp file + rename) under an exclusive lock.
"""

import fcntl
import json
import logging
import os
import tempfile
from pathlib import Path

from brewsync.exceptions import StorageError

from .base import KeyValueStore

logger = logging.getLogger(__name__)


class MemoryKeyValueStore(KeyValueStore):
    """In-process key-value store, used for tests and previews."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class JsonFileKeyValueStore(KeyValueStore):
    """
    Durable key-value store backed by one JSON file.

    Args:
        path: Location of the JSON document. Defaults to ~/.brewsync/store.json
    """

    def __init__(self, path: str | Path | None = None):
        if path is None:
            path = Path.home() / ".brewsync" / "store.json"

        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                try:
                    data = json.load(f)
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except json.JSONDecodeError as e:
            logger.warning(f"Key-value store at {self.path} is corrupt: {e}")
            return {}
        except OSError as e:
            raise StorageError(f"Failed to read {self.path}: {e}")

        if not isinstance(data, dict):
            logger.warning(f"Key-value store at {self.path} is not an object")
            return {}
        return data

    def _save(self, data: dict[str, str]) -> None:
        try:
            fd, temp_path = tempfile.mkstemp(
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                text=True,
            )

            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                    try:
                        json.dump(data, f, indent=2, ensure_ascii=False)
                        f.flush()
                        os.fsync(f.fileno())
                    finally:
                        fcntl.flock(f.fileno(), fcntl.LOCK_UN)

                os.replace(temp_path, self.path)
            except Exception:
                if os.path.exists(temp_path):
                    os.unlink(temp_path)
                raise

        except OSError as e:
            raise StorageError(f"Failed to write {self.path}: {e}")

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)
        logger.debug(f"Stored {key} ({len(value)} chars)")

    def remove(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)
            logger.debug(f"Removed {key}")

    def keys(self) -> list[str]:
        return sorted(self._load())
