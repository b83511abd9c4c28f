"""File storage abstraction. Local filesystem for dev, S3 or Supabase Storage for production.

Every backend stores bytes under a storage key and turns a key back into a
URL the browser can load. SDK calls are blocking, so the cloud backends run
them with asyncio.to_thread.
"""
import asyncio
import logging
import os
import time
from abc import ABC, abstractmethod
from pathlib import Path

import aiofiles

from imagevault.config import Settings
from imagevault.errors import StorageError, StorageWriteError

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """Byte storage addressed by storage key."""

    name: str = ""
    # Prepended to "<id>.<ext>" when building storage keys
    key_prefix: str = ""

    def build_key(self, image_id: str, content_type: str) -> str:
        """Derive the storage key from the image id and MIME subtype."""
        ext = content_type.split("/")[-1]
        return f"{self.key_prefix}{image_id}.{ext}"

    @abstractmethod
    async def save(self, key: str, data: bytes, content_type: str) -> None:
        """Write bytes at `key`. Raises StorageWriteError on failure."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete the object at `key`. Raises StorageError on failure."""

    @abstractmethod
    async def url_for(self, key: str) -> str:
        """Return a URL for the object at `key`, valid at the time of the call."""


class LocalFileStorage(StorageBackend):
    """Stores files under a directory that main.py serves at /uploads."""

    name = "local"

    def __init__(self, base_path: str, public_base_url: str = ""):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    def _path(self, key: str) -> Path:
        return self.base_path / key

    async def save(self, key: str, data: bytes, content_type: str) -> None:
        file_path = self._path(key)
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(file_path, "wb") as f:
                await f.write(data)
        except OSError as e:
            raise StorageWriteError(f"Could not write {key}: {e}") from e

    async def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            if path.exists():
                os.remove(path)
        except OSError as e:
            raise StorageError(f"Could not delete {key}: {e}") from e

    async def url_for(self, key: str) -> str:
        return f"{self.public_base_url}/uploads/{key}"


class S3FileStorage(StorageBackend):
    """Amazon S3 (or compatible) bucket with presigned GET URLs.

    Presigned URLs are cached per key for `expires_in - refresh_margin`
    seconds, so a cached URL always has at least `refresh_margin` seconds of
    validity left when handed out.
    """

    name = "s3"
    key_prefix = "images/"

    def __init__(self, client, bucket_name: str, expires_in: int = 3600, refresh_margin: int = 300):
        self.client = client
        self.bucket_name = bucket_name
        self.expires_in = expires_in
        self.cache_ttl = max(0, expires_in - refresh_margin)
        self._url_cache: dict[str, tuple[str, float]] = {}

    async def save(self, key: str, data: bytes, content_type: str) -> None:
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except Exception as e:
            raise StorageWriteError(f"S3 upload failed for {key}: {e}") from e

    async def delete(self, key: str) -> None:
        self._url_cache.pop(key, None)
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket_name, Key=key)
        except Exception as e:
            raise StorageError(f"S3 delete failed for {key}: {e}") from e

    async def url_for(self, key: str) -> str:
        now = time.monotonic()
        cached = self._url_cache.get(key)
        if cached and cached[1] > now:
            return cached[0]

        try:
            url = await asyncio.to_thread(
                self.client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self.bucket_name, "Key": key},
                ExpiresIn=self.expires_in,
            )
        except Exception as e:
            raise StorageError(f"Failed to generate signed URL for {key}: {e}") from e

        if self.cache_ttl > 0:
            self._url_cache[key] = (url, now + self.cache_ttl)
        return url


class SupabaseFileStorage(StorageBackend):
    """Supabase Storage bucket with public URLs."""

    name = "supabase"
    key_prefix = "images/"

    def __init__(self, client, bucket_name: str):
        self.client = client
        self.bucket_name = bucket_name

    def _bucket(self):
        return self.client.storage.from_(self.bucket_name)

    async def save(self, key: str, data: bytes, content_type: str) -> None:
        try:
            await asyncio.to_thread(
                self._bucket().upload,
                key,
                data,
                {"content-type": content_type, "cache-control": "3600", "upsert": "false"},
            )
        except Exception as e:
            raise StorageWriteError(f"Supabase upload failed for {key}: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._bucket().remove, [key])
        except Exception as e:
            raise StorageError(f"Supabase delete failed for {key}: {e}") from e

    async def url_for(self, key: str) -> str:
        return self._bucket().get_public_url(key)


def build_file_storage(settings: Settings) -> StorageBackend:
    """Create the storage backend named by FILE_STORAGE_TYPE."""
    if settings.FILE_STORAGE_TYPE == "local":
        return LocalFileStorage(settings.FILE_STORAGE_PATH, settings.PUBLIC_BASE_URL)

    elif settings.FILE_STORAGE_TYPE == "s3":
        if not settings.S3_BUCKET_NAME:
            raise RuntimeError("S3_BUCKET_NAME environment variable is not set")
        import boto3

        client = boto3.client(
            "s3",
            region_name=settings.AWS_REGION,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None,
            endpoint_url=settings.S3_ENDPOINT_URL or None,
        )
        return S3FileStorage(
            client,
            settings.S3_BUCKET_NAME,
            expires_in=settings.SIGNED_URL_EXPIRY,
            refresh_margin=settings.SIGNED_URL_REFRESH_MARGIN,
        )

    elif settings.FILE_STORAGE_TYPE == "supabase":
        if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_KEY:
            raise RuntimeError("Missing Supabase environment variables")
        from supabase import create_client

        client = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_KEY)
        return SupabaseFileStorage(client, settings.SUPABASE_STORAGE_BUCKET)

    raise ValueError(f"Unknown storage type: {settings.FILE_STORAGE_TYPE}")
