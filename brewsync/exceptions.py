"""
Exceptions for brewsync.
"""


class BrewSyncError(Exception):
    """Base exception for sync operations."""


class StorageError(BrewSyncError):
    """Raised when an object store or key-value store operation fails."""


class MetadataWriteError(StorageError):
    """Raised when sync metadata cannot be persisted to the remote store."""


class RetryExhaustedError(BrewSyncError):
    """Raised when an operation keeps failing after all retry attempts."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts
