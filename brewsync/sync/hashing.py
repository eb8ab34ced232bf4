"""Content hashing for change detection.

Exported payloads embed volatile fields (export timestamps and the like) that
change on every export even when no user data changed. Those fields are
stripped and object keys are sorted before hashing so that the fingerprint
only moves when real content does.
"""

import hashlib
import json
import logging
from typing import Any

from .models import FileMetadata, now_ms

logger = logging.getLogger(__name__)

EXCLUDED_FIELDS = frozenset(
    {
        "exportDate",
        "timestamp",
        "lastModified",
        "syncedAt",
        "lastSyncTime",
        "updatedAt",
        "createdAt",
    }
)


def _is_excluded(key: str) -> bool:
    return key in EXCLUDED_FIELDS or key.startswith("_")


def _sort_key(key: str) -> tuple[str, str]:
    # case-insensitive order, original spelling breaks ties
    return key.casefold(), key


def normalize_for_hash(data: Any) -> Any:
    """Normalize data so logically identical payloads hash identically.

    Mappings lose volatile keys and have their remaining keys sorted
    case-insensitively. Lists keep their order since it is meaningful.
    Everything else passes through unchanged.

    Args:
        data: Decoded JSON-like payload

    Returns:
        Normalized copy of the payload
    """
    if isinstance(data, dict):
        kept = [k for k in data if not _is_excluded(str(k))]
        return {
            key: normalize_for_hash(data[key])
            for key in sorted(kept, key=lambda k: _sort_key(str(k)))
        }

    if isinstance(data, (list, tuple)):
        return [normalize_for_hash(item) for item in data]

    return data


def canonical_json(data: Any) -> str:
    """Serialize already-normalized data to a canonical string."""
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


def calculate_hash(data: str | bytes) -> str:
    """Calculate the SHA-256 hex digest of a string or bytes."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def content_hash(payload: Any) -> str:
    """Fingerprint a payload, ignoring volatile fields and key order."""
    return calculate_hash(canonical_json(normalize_for_hash(payload)))


def serialize_payload(payload: Any) -> str:
    """Serialize a payload the way it is stored (not normalized)."""
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, ensure_ascii=False)


def payload_size(payload: Any) -> int:
    """Byte length of the serialized, un-normalized payload."""
    return len(serialize_payload(payload).encode("utf-8"))


def _hashable_part(payload: Any) -> Any:
    """Select the part of a payload that carries user data.

    A full export document (``{"exportDate": ..., "data": {...}}``) is hashed
    on its ``data`` member only.
    """
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError:
            return payload

    if isinstance(payload, dict) and "data" in payload and "exportDate" in payload:
        return payload["data"]
    return payload


def create_file_metadata(
    key: str, payload: Any, mtime_cli: int | None = None
) -> FileMetadata:
    """Create metadata for one logical file.

    Args:
        key: Logical file key
        payload: Decoded payload or its serialized string
        mtime_cli: Modification time in epoch millis (defaults to now)

    Returns:
        FileMetadata with normalized content hash and raw size
    """
    now = now_ms()
    return FileMetadata(
        key=key,
        size=payload_size(payload),
        mtime_cli=now if mtime_cli is None else mtime_cli,
        hash=content_hash(_hashable_part(payload)),
        synced_at=now,
    )


def files_metadata_from_data(
    data_map: dict[str, Any], mtimes: dict[str, int] | None = None
) -> dict[str, FileMetadata]:
    """Build the local file metadata map from exported data.

    Args:
        data_map: Mapping of logical file key to payload
        mtimes: Known modification times in epoch millis, by key

    Returns:
        Dictionary mapping keys to FileMetadata. Keys that fail to hash are
        skipped.
    """
    files: dict[str, FileMetadata] = {}
    mtimes = mtimes or {}

    for key, payload in data_map.items():
        try:
            files[key] = create_file_metadata(key, payload, mtimes.get(key))
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to create metadata for {key}: {e}")

    return files


def are_files_equal(first: FileMetadata, second: FileMetadata) -> bool:
    """Check whether two metadata entries describe the same content.

    Hashes win when both are known; otherwise size and mtimeCli must match.
    """
    if first.hash and second.hash:
        return first.hash == second.hash
    return first.size == second.size and first.mtime_cli == second.mtime_cli
