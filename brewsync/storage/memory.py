"""In-process object store."""

import hashlib
from datetime import datetime, timezone

from .base import FileEntry, ObjectStore


class MemoryObjectStore(ObjectStore):
    """Object store kept in a dictionary.

    Used by the test suite and for offline previews. ``fail_keys`` makes
    individual keys fail on upload, download and delete, and ``reachable``
    controls ``test_connection``.
    """

    def __init__(self):
        self.objects: dict[str, str] = {}
        self.modified: dict[str, datetime] = {}
        self.fail_keys: set[str] = set()
        self.reachable = True

    async def test_connection(self) -> bool:
        return self.reachable

    async def upload_file(self, key: str, content: str | bytes) -> bool:
        if key in self.fail_keys:
            return False
        if isinstance(content, bytes):
            content = content.decode("utf-8")
        self.objects[key] = content
        self.modified[key] = datetime.now(timezone.utc)
        return True

    async def download_file(self, key: str) -> str | None:
        if key in self.fail_keys:
            return None
        return self.objects.get(key)

    async def delete_file(self, key: str) -> bool:
        if key in self.fail_keys:
            return False
        self.objects.pop(key, None)
        self.modified.pop(key, None)
        return True

    async def list_objects(
        self, prefix: str = "", max_keys: int = 1000
    ) -> list[FileEntry]:
        keys = sorted(k for k in self.objects if k.startswith(prefix))
        return [
            FileEntry(
                key=key,
                size=len(self.objects[key].encode("utf-8")),
                last_modified=self.modified.get(key),
                etag=hashlib.md5(self.objects[key].encode("utf-8")).hexdigest(),
            )
            for key in keys[:max_keys]
        ]

    async def copy_file(self, source: str, destination: str) -> bool:
        if source not in self.objects or destination in self.fail_keys:
            return False
        self.objects[destination] = self.objects[source]
        self.modified[destination] = datetime.now(timezone.utc)
        return True
