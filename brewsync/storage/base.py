"""
Storage contracts used by the sync engine.

The sync engine talks to two external collaborators: a remote object store
(S3 or compatible) holding one JSON object per logical file, and a local
string key-value store holding the application data and sync bookkeeping.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime


@dataclass
class FileEntry:
    """One object returned by an object-store listing."""

    key: str
    size: int
    last_modified: datetime | None
    etag: str = ""


class ObjectStore(ABC):
    """
    Abstract remote blob store.

    Implementations report failures through return values rather than
    exceptions: ``upload_file``/``delete_file``/``copy_file`` return False and
    ``download_file`` returns None.
    """

    @abstractmethod
    async def test_connection(self) -> bool:
        """
        Check that the store is reachable.

        Returns:
            True if the store answered
        """

    @abstractmethod
    async def upload_file(self, key: str, content: str | bytes) -> bool:
        """
        Upload an object.

        Args:
            key: Object key relative to the store prefix
            content: Object content

        Returns:
            True if the upload succeeded
        """

    @abstractmethod
    async def download_file(self, key: str) -> str | None:
        """
        Download an object as text.

        Args:
            key: Object key relative to the store prefix

        Returns:
            Object content, or None if missing or on failure
        """

    @abstractmethod
    async def delete_file(self, key: str) -> bool:
        """
        Delete an object.

        Args:
            key: Object key relative to the store prefix

        Returns:
            True if the delete succeeded
        """

    @abstractmethod
    async def list_objects(
        self, prefix: str = "", max_keys: int = 1000
    ) -> list[FileEntry]:
        """
        List objects under a prefix.

        Args:
            prefix: Key prefix relative to the store prefix
            max_keys: Maximum number of entries to return

        Returns:
            FileEntry list with keys relative to the store prefix
        """

    @abstractmethod
    async def copy_file(self, source: str, destination: str) -> bool:
        """
        Copy an object inside the store without downloading it.

        Returns:
            True if the copy succeeded
        """


class KeyValueStore(ABC):
    """
    Abstract local string key-value store.
    """

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored value, or None if the key is absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a value, overwriting any previous one."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Remove a key. Removing an absent key is a no-op."""

    @abstractmethod
    def keys(self) -> list[str]:
        """Return all stored keys, sorted."""
