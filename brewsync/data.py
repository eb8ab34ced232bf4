"""Application data access for the sync engine.

The engine never looks inside the data. It asks a DataProvider for every
logical file as one JSON document and hands downloaded documents back.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any

from brewsync.storage.base import KeyValueStore

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
MTIME_PREFIX = "data-mtime:"


class DataProvider(ABC):
    """Export and import of application data, one document per file key."""

    @abstractmethod
    def export_files(self) -> dict[str, Any]:
        """Return every logical file as key -> payload (JSON string or object)."""

    def modified_times(self) -> dict[str, int]:
        """Known modification times in epoch millis, by key."""
        return {}

    @abstractmethod
    def import_file(self, key: str, content: str, mtime: int | None = None) -> None:
        """Replace one logical file with downloaded content.

        Raises:
            ValueError: If the content is not a valid document
        """

    @abstractmethod
    def remove_file(self, key: str) -> None:
        """Delete one logical file. Removing an absent file is a no-op."""


class KeyValueDataProvider(DataProvider):
    """Stores each logical file as a JSON string in a key-value store.

    Files live under ``data:<key>`` and their modification times under
    ``data-mtime:<key>``.
    """

    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    def set_file(self, key: str, payload: Any, mtime: int | None = None) -> None:
        """Write a file as the application would."""
        if not key:
            raise ValueError("File key cannot be empty")
        content = payload if isinstance(payload, str) else json.dumps(payload)
        self.kv.set(f"{DATA_PREFIX}{key}", content)
        if mtime is None:
            mtime = int(time.time() * 1000)
        self.kv.set(f"{MTIME_PREFIX}{key}", str(mtime))

    def get_file(self, key: str) -> str | None:
        return self.kv.get(f"{DATA_PREFIX}{key}")

    def export_files(self) -> dict[str, Any]:
        files = {}
        for name in self.kv.keys():
            if name.startswith(DATA_PREFIX):
                content = self.kv.get(name)
                if content is not None:
                    files[name[len(DATA_PREFIX) :]] = content
        return files

    def modified_times(self) -> dict[str, int]:
        mtimes = {}
        for name in self.kv.keys():
            if not name.startswith(MTIME_PREFIX):
                continue
            value = self.kv.get(name)
            try:
                mtimes[name[len(MTIME_PREFIX) :]] = int(value)
            except (TypeError, ValueError):
                logger.warning(f"Ignoring invalid modification time for {name}")
        return mtimes

    def import_file(self, key: str, content: str, mtime: int | None = None) -> None:
        json.loads(content)
        self.set_file(key, content, mtime)
        logger.debug(f"Imported {key} ({len(content)} chars)")

    def remove_file(self, key: str) -> None:
        self.kv.remove(f"{DATA_PREFIX}{key}")
        self.kv.remove(f"{MTIME_PREFIX}{key}")
        logger.debug(f"Removed {key}")
