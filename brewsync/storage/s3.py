"""S3 object store for brewsync."""

import asyncio
import logging
from typing import TYPE_CHECKING

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .base import FileEntry, ObjectStore

if TYPE_CHECKING:
    from brewsync.config import Settings

logger = logging.getLogger(__name__)


class S3ObjectStore(ObjectStore):
    """Object store backed by S3 or any S3-compatible service.

    boto3 is blocking, so every call runs in a worker thread to keep the
    event loop free.
    """

    def __init__(self, settings: "Settings", client=None):
        """Initialize S3 client.

        Args:
            settings: Connection settings
            client: Pre-built boto3 S3 client, mainly for tests
        """
        self.s3 = client or boto3.client(
            "s3",
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
            endpoint_url=settings.s3_endpoint_url,
        )
        self.bucket = settings.s3_bucket
        self.prefix = settings.s3_prefix.strip("/")

    def _make_key(self, key: str) -> str:
        """Convert a store-relative key to a full S3 key."""
        key = key.lstrip("/")
        return f"{self.prefix}/{key}" if self.prefix else key

    def _strip_prefix(self, full_key: str) -> str:
        if self.prefix and full_key.startswith(f"{self.prefix}/"):
            return full_key[len(self.prefix) + 1 :]
        return full_key

    # ── Blocking primitives ────────────────────────────────────────────

    def _test_connection(self) -> bool:
        try:
            self.s3.list_objects_v2(
                Bucket=self.bucket, Prefix=self._make_key(""), MaxKeys=1
            )
            return True
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Connection test failed: {e}")
            return False

    def _upload(self, key: str, content: str | bytes) -> bool:
        body = content.encode("utf-8") if isinstance(content, str) else content
        content_type = (
            "application/json" if key.endswith(".json") else "application/octet-stream"
        )
        try:
            self.s3.put_object(
                Bucket=self.bucket,
                Key=self._make_key(key),
                Body=body,
                ContentType=content_type,
            )
            logger.debug(f"Uploaded {key} ({len(body)} bytes)")
            return True
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error uploading {key}: {e}")
            return False

    def _download(self, key: str) -> str | None:
        try:
            response = self.s3.get_object(Bucket=self.bucket, Key=self._make_key(key))
            return response["Body"].read().decode("utf-8")
        except ClientError as e:
            if e.response["Error"]["Code"] in ("NoSuchKey", "404"):
                logger.debug(f"Object not found: {key}")
            else:
                logger.error(f"Error downloading {key}: {e}")
            return None
        except (BotoCoreError, UnicodeDecodeError) as e:
            logger.error(f"Error downloading {key}: {e}")
            return None

    def _delete(self, key: str) -> bool:
        try:
            self.s3.delete_object(Bucket=self.bucket, Key=self._make_key(key))
            logger.debug(f"Deleted {key}")
            return True
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error deleting {key}: {e}")
            return False

    def _list(self, prefix: str, max_keys: int) -> list[FileEntry]:
        entries: list[FileEntry] = []
        paginator = self.s3.get_paginator("list_objects_v2")

        try:
            for page in paginator.paginate(
                Bucket=self.bucket, Prefix=self._make_key(prefix)
            ):
                for obj in page.get("Contents", []):
                    entries.append(
                        FileEntry(
                            key=self._strip_prefix(obj["Key"]),
                            size=obj.get("Size", 0),
                            last_modified=obj.get("LastModified"),
                            etag=obj.get("ETag", "").strip('"'),
                        )
                    )
                    if len(entries) >= max_keys:
                        return entries
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error listing objects under {prefix!r}: {e}")

        return entries

    def _copy(self, source: str, destination: str) -> bool:
        try:
            self.s3.copy_object(
                Bucket=self.bucket,
                Key=self._make_key(destination),
                CopySource={"Bucket": self.bucket, "Key": self._make_key(source)},
            )
            logger.debug(f"Copied {source} -> {destination}")
            return True
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error copying {source} to {destination}: {e}")
            return False

    # ── ObjectStore interface ──────────────────────────────────────────

    async def test_connection(self) -> bool:
        return await asyncio.to_thread(self._test_connection)

    async def upload_file(self, key: str, content: str | bytes) -> bool:
        return await asyncio.to_thread(self._upload, key, content)

    async def download_file(self, key: str) -> str | None:
        return await asyncio.to_thread(self._download, key)

    async def delete_file(self, key: str) -> bool:
        return await asyncio.to_thread(self._delete, key)

    async def list_objects(
        self, prefix: str = "", max_keys: int = 1000
    ) -> list[FileEntry]:
        return await asyncio.to_thread(self._list, prefix, max_keys)

    async def copy_file(self, source: str, destination: str) -> bool:
        return await asyncio.to_thread(self._copy, source, destination)
