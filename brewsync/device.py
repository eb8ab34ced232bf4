"""Device identity."""

import hashlib
import logging
import platform
import secrets
import uuid

from brewsync.storage.base import KeyValueStore

logger = logging.getLogger(__name__)

DEVICE_ID_KEY = "device-id"


def generate_device_id() -> str:
    """Derive a device id from host characteristics.

    Falls back to a random id when the host cannot be fingerprinted.
    """
    try:
        features = [
            platform.node(),
            platform.system(),
            platform.machine(),
            f"{uuid.getnode():012x}",
        ]
    except OSError as e:
        logger.warning(f"Could not fingerprint host: {e}")
        features = []

    if not any(features):
        return f"device-{secrets.token_hex(8)}"

    fingerprint = "|".join(features)
    return f"device-{hashlib.sha256(fingerprint.encode('utf-8')).hexdigest()[:16]}"


def get_or_create_device_id(kv: KeyValueStore) -> str:
    """Return the persisted device id, creating it on first use."""
    device_id = kv.get(DEVICE_ID_KEY)
    if not device_id:
        device_id = generate_device_id()
        kv.set(DEVICE_ID_KEY, device_id)
        logger.info(f"Created device id {device_id}")
    return device_id
