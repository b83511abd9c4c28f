"""Image service: upload pipeline, listing, search, stats and delete.

Coordinates the three collaborators injected at construction:

    optimizer (ImageOptimizer) -> storage (StorageBackend) -> store (MetadataStore)

Upload writes bytes first and metadata second. When the metadata write
fails the stored object is deleted once as compensation; if that delete
fails too, the object is left orphaned and logged at ERROR with its key.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence

from imagevault.config import Settings
from imagevault.errors import (
    EmptyQueryError,
    ImageVaultError,
    InvalidFileError,
    MetadataWriteError,
    StorageError,
)
from imagevault.models.image_record import ImageRecord
from imagevault.services.file_storage import StorageBackend
from imagevault.services.image_optimizer import ImageOptimizer
from imagevault.services.image_query import PageRequest, Pagination, build_pagination, tokenize
from imagevault.services.metadata_store import MetadataStore

logger = logging.getLogger(__name__)


@dataclass
class IncomingFile:
    """One file of an upload request, already read into memory."""
    data: bytes
    content_type: str
    original_name: str


@dataclass
class ImageView:
    """A record together with the URL it can be fetched from right now."""
    record: ImageRecord
    url: str


@dataclass
class ImagePage:
    images: list[ImageView]
    pagination: Pagination


@dataclass
class ImageStats:
    total_images: int
    total_size: int
    recent_uploads: list[ImageView]


class ImageService:
    """Upload pipeline and query engine over an injected storage/store pair."""

    def __init__(
        self,
        storage: StorageBackend,
        store: MetadataStore,
        optimizer: ImageOptimizer,
        *,
        allowed_types: Sequence[str],
        max_file_size: int,
        require_query: bool = False,
    ):
        self.storage = storage
        self.store = store
        self.optimizer = optimizer
        self.allowed_types = list(allowed_types)
        self.max_file_size = max_file_size
        self.require_query = require_query

    @classmethod
    def from_settings(cls, settings: Settings, storage: StorageBackend, store: MetadataStore) -> "ImageService":
        optimizer = ImageOptimizer(
            max_width=settings.OPTIMIZE_MAX_WIDTH,
            jpeg_quality=settings.JPEG_QUALITY,
            webp_quality=settings.WEBP_QUALITY,
            png_compress_level=settings.PNG_COMPRESS_LEVEL,
        )
        return cls(
            storage,
            store,
            optimizer,
            allowed_types=settings.allowed_file_types,
            max_file_size=settings.MAX_FILE_SIZE,
            require_query=settings.SEARCH_REQUIRE_QUERY,
        )

    # ── Upload ──────────────────────────────────────────────────────

    def validate_file(self, data: bytes, content_type: Optional[str]) -> None:
        """Raise InvalidFileError for a disallowed type, an empty file or an oversized file."""
        if content_type not in self.allowed_types:
            raise InvalidFileError(
                f"Invalid file type. Allowed types: {', '.join(self.allowed_types)}"
            )
        if not data:
            raise InvalidFileError("Uploaded file is empty.")
        if len(data) > self.max_file_size:
            max_mb = self.max_file_size / (1024 * 1024)
            raise InvalidFileError(f"File size too large. Maximum size is {max_mb:g}MB.")

    async def upload(
        self,
        data: bytes,
        content_type: str,
        original_name: str,
        keywords: Sequence[str] = (),
    ) -> ImageRecord:
        """Optimize, store and record one image. Returns the persisted record."""
        self.validate_file(data, content_type)

        image_id = str(uuid.uuid4())
        optimized = await asyncio.to_thread(self.optimizer.optimize, data, content_type)
        key = self.storage.build_key(image_id, content_type)

        await self.storage.save(key, optimized, content_type)

        record = ImageRecord(
            id=image_id,
            storage_key=key,
            original_name=original_name,
            keywords=list(keywords),
            upload_date=datetime.now(timezone.utc),
            file_size=len(optimized),
            content_type=content_type,
        )

        try:
            await self.store.put(record)
        except Exception as e:
            logger.error(f"Metadata write failed for {image_id}: {e}")
            await self._compensate(key)
            raise MetadataWriteError(str(e)) from e

        logger.info(
            f"Uploaded {original_name!r} as {key} "
            f"({len(data)} -> {len(optimized)} bytes, keywords={list(keywords)})"
        )
        return record

    async def _compensate(self, key: str) -> None:
        try:
            await self.storage.delete(key)
            logger.info(f"Removed {key} after failed metadata write")
        except Exception as e:
            logger.error(f"Orphaned storage object {key}: compensating delete failed: {e}")

    async def upload_many(
        self,
        files: Sequence[IncomingFile],
        keywords: Sequence[str] = (),
    ) -> list[ImageRecord | ImageVaultError]:
        """Upload files concurrently. Each result is a record or the error for that file."""
        results = await asyncio.gather(
            *(self.upload(f.data, f.content_type, f.original_name, keywords) for f in files),
            return_exceptions=True,
        )
        outcomes: list[ImageRecord | ImageVaultError] = []
        for f, result in zip(files, results):
            if isinstance(result, ImageVaultError):
                logger.warning(f"Upload of {f.original_name!r} failed: {result}")
                outcomes.append(result)
            elif isinstance(result, Exception):
                logger.error(f"Upload of {f.original_name!r} failed unexpectedly: {result!r}")
                outcomes.append(ImageVaultError(str(result)))
            elif isinstance(result, BaseException):
                raise result
            else:
                outcomes.append(result)
        return outcomes

    # ── Queries ─────────────────────────────────────────────────────

    async def view(self, record: ImageRecord) -> ImageView:
        return ImageView(record=record, url=await self.storage.url_for(record.storage_key))

    async def _page(self, tokens: list[str], request: PageRequest) -> ImagePage:
        records, total = await self.store.find(tokens, request.offset, request.limit)
        views = [await self.view(r) for r in records]
        return ImagePage(images=views, pagination=build_pagination(request, total))

    async def list_images(self, request: PageRequest) -> ImagePage:
        return await self._page([], request)

    async def search_images(self, query: Optional[str], request: PageRequest) -> ImagePage:
        """Search by keyword or file name.

        A blank query lists every image, unless the service was built with
        `require_query`, in which case it raises EmptyQueryError.
        """
        tokens = tokenize(query)
        if not tokens and self.require_query:
            raise EmptyQueryError()
        logger.debug(f"Searching for tokens {tokens} (page {request.page}, limit {request.limit})")
        return await self._page(tokens, request)

    async def get_image(self, image_id: str) -> ImageView:
        return await self.view(await self.store.get(image_id))

    async def get_stats(self, recent: int = 5) -> ImageStats:
        total_images, total_size = await self.store.summarize()
        recent_records, _ = await self.store.find([], 0, recent)
        return ImageStats(
            total_images=total_images,
            total_size=total_size,
            recent_uploads=[await self.view(r) for r in recent_records],
        )

    # ── Delete ──────────────────────────────────────────────────────

    async def delete_image(self, image_id: str) -> None:
        """Delete stored bytes and metadata. A storage failure is logged and
        does not keep the metadata record alive."""
        record = await self.store.get(image_id)
        try:
            await self.storage.delete(record.storage_key)
        except StorageError as e:
            logger.warning(f"Storage deletion failed for {record.storage_key}, removing metadata anyway: {e}")
        await self.store.delete(image_id)
        logger.info(f"Deleted image {image_id}")
