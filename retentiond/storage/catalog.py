"""
Storage catalog adapters for backup objects.

A catalog lists backup objects under a prefix and deletes single objects.
It is the only part of the retention system that talks to the network.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .retention_models import StorageObject, StorageError, ListingError
from .retention_config import StorageSettings

logger = logging.getLogger(__name__)


class StorageCatalog(ABC):
    """Abstract interface for object storage holding backups."""

    bucket: str = ""

    @abstractmethod
    async def list_objects(self, prefix: str) -> List[StorageObject]:
        """List every object under prefix, exhausting pagination. Raises ListingError."""
        pass

    @abstractmethod
    async def delete_object(self, key: str) -> None:
        """Delete a single object. Raises StorageError on failure."""
        pass

    async def close(self) -> None:
        """Release client resources."""
        pass


class S3StorageCatalog(StorageCatalog):
    """
    S3-compatible catalog (AWS S3, Cloudflare R2, MinIO).

    boto3 is blocking, so every call runs in a worker thread.
    """

    def __init__(self, settings: StorageSettings, client=None):
        self.settings = settings
        self.bucket = settings.bucket_name
        if client is None:
            config = Config(
                signature_version="s3v4",
                retries={"max_attempts": settings.max_attempts, "mode": "standard"},
            )
            client = boto3.client(
                "s3",
                endpoint_url=settings.endpoint_url,
                region_name=settings.region,
                aws_access_key_id=settings.access_key_id,
                aws_secret_access_key=settings.secret_access_key,
                config=config,
            )
        self._client = client

    async def list_objects(self, prefix: str) -> List[StorageObject]:
        try:
            return await asyncio.to_thread(self._list_all_pages, prefix)
        except (BotoCoreError, ClientError) as e:
            raise ListingError(f"Failed to list s3://{self.bucket}/{prefix}: {e}") from e

    def _list_all_pages(self, prefix: str) -> List[StorageObject]:
        objects = []
        pages = 0
        paginator = self._client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            pages += 1
            for item in page.get("Contents", []) or []:
                last_modified = item["LastModified"]
                if last_modified.tzinfo is None:
                    last_modified = last_modified.replace(tzinfo=timezone.utc)
                objects.append(StorageObject(
                    key=item["Key"],
                    size_bytes=int(item.get("Size", 0) or 0),
                    last_modified=last_modified,
                ))
        logger.debug(f"Listed {len(objects)} objects under {prefix} in {pages} page(s)")
        return objects

    async def delete_object(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(str(e)) from e

    async def close(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            close()
        logger.debug(f"Closed storage client for bucket {self.bucket}")


class InMemoryStorageCatalog(StorageCatalog):
    """Test double for storage interactions."""

    def __init__(self, objects: Optional[List[StorageObject]] = None, bucket: str = "memory",
                 delete_delay_seconds: float = 0.0):
        self.bucket = bucket
        self.objects: Dict[str, StorageObject] = {obj.key: obj for obj in objects or []}
        self.failing_keys: Dict[str, str] = {}
        self.list_error: Optional[str] = None
        self.delete_delay_seconds = delete_delay_seconds
        self.list_calls = 0
        self.delete_calls: List[str] = []
        self.max_in_flight = 0
        self.closed = False
        self._in_flight = 0

    def add(self, key: str, size_bytes: int, last_modified: datetime) -> StorageObject:
        obj = StorageObject(key=key, size_bytes=size_bytes, last_modified=last_modified)
        self.objects[key] = obj
        return obj

    def fail_deletes_for(self, key: str, message: str = "Access Denied"):
        self.failing_keys[key] = message

    async def list_objects(self, prefix: str) -> List[StorageObject]:
        self.list_calls += 1
        if self.list_error:
            raise ListingError(self.list_error)
        return [obj for key, obj in sorted(self.objects.items()) if key.startswith(prefix)]

    async def delete_object(self, key: str) -> None:
        self.delete_calls.append(key)
        self._in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            if self.delete_delay_seconds:
                await asyncio.sleep(self.delete_delay_seconds)
            if key in self.failing_keys:
                raise StorageError(self.failing_keys[key])
            self.objects.pop(key, None)
        finally:
            self._in_flight -= 1

    async def close(self) -> None:
        self.closed = True


def create_storage_catalog(settings: StorageSettings) -> StorageCatalog:
    """Create an S3 catalog from validated settings."""
    return S3StorageCatalog(settings)
