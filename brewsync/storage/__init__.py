"""Storage backends for brewsync.

- ObjectStore: remote blob store contract (S3ObjectStore, MemoryObjectStore)
- KeyValueStore: local string store contract (JsonFileKeyValueStore,
  MemoryKeyValueStore)
"""

from brewsync.storage.base import FileEntry, KeyValueStore, ObjectStore
from brewsync.storage.kv import JsonFileKeyValueStore, MemoryKeyValueStore
from brewsync.storage.memory import MemoryObjectStore
from brewsync.storage.s3 import S3ObjectStore

__all__ = [
    "FileEntry",
    "ObjectStore",
    "KeyValueStore",
    "S3ObjectStore",
    "MemoryObjectStore",
    "JsonFileKeyValueStore",
    "MemoryKeyValueStore",
]
