"""Metadata stores: image id -> ImageRecord.

Three interchangeable implementations, selected by METADATA_STORE_TYPE:

- InMemoryMetadataStore: process-local dict, lost on restart.
- JsonFileMetadataStore: the in-memory dict mirrored to a JSON file after
  every write and reloaded on startup.
- SqlMetadataStore: the `images` table through SQLAlchemy async. Search is
  pushed down into SQL and returns the same records as the in-memory filter.

The in-memory dict itself is not locked; the service targets a single
process. JsonFileMetadataStore serializes its file writes with an asyncio.Lock.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path

import aiofiles
from sqlalchemy import delete, desc, func, or_, select, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from imagevault.config import Settings
from imagevault.errors import NotFoundError
from imagevault.models.base import Base
from imagevault.models.image import ImageRow
from imagevault.models.image_record import ImageRecord
from imagevault.services.image_query import filter_records, sort_newest_first

logger = logging.getLogger(__name__)


class MetadataStore(ABC):
    """Persistence contract for image records."""

    name: str = ""

    async def initialize(self) -> None:
        """Prepare the store (load files, create tables). Called on startup."""

    async def close(self) -> None:
        """Release resources. Called on shutdown."""

    async def ping(self) -> bool:
        return True

    @abstractmethod
    async def put(self, record: ImageRecord) -> None:
        ...

    @abstractmethod
    async def get(self, image_id: str) -> ImageRecord:
        """Return the record or raise NotFoundError."""

    @abstractmethod
    async def list_all(self) -> list[ImageRecord]:
        """All records, newest first."""

    @abstractmethod
    async def delete(self, image_id: str) -> None:
        """Remove the record or raise NotFoundError."""

    async def find(self, tokens: list[str], offset: int, limit: int) -> tuple[list[ImageRecord], int]:
        """Return one page of records matching `tokens` and the total match count.

        An empty token list matches every record.
        """
        matched = filter_records(await self.list_all(), tokens)
        return matched[offset:offset + limit], len(matched)

    async def summarize(self) -> tuple[int, int]:
        """Return (record count, total stored bytes)."""
        records = await self.list_all()
        return len(records), sum(r.file_size for r in records)


class InMemoryMetadataStore(MetadataStore):
    name = "memory"

    def __init__(self):
        self._records: dict[str, ImageRecord] = {}

    async def put(self, record: ImageRecord) -> None:
        self._records[record.id] = record

    async def get(self, image_id: str) -> ImageRecord:
        record = self._records.get(image_id)
        if record is None:
            raise NotFoundError()
        return record

    async def list_all(self) -> list[ImageRecord]:
        return sort_newest_first(self._records.values())

    async def delete(self, image_id: str) -> None:
        if self._records.pop(image_id, None) is None:
            raise NotFoundError()


class JsonFileMetadataStore(InMemoryMetadataStore):
    """In-memory store mirrored to a JSON file keyed by image id."""

    name = "json_file"

    def __init__(self, file_path: str):
        super().__init__()
        self.file_path = Path(file_path)
        # Concurrent uploads share one temp file; writes must not interleave
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        if not self.file_path.exists():
            logger.info(f"No metadata file at {self.file_path}, starting fresh")
            return

        async with aiofiles.open(self.file_path, "r", encoding="utf-8") as f:
            raw = json.loads(await f.read() or "{}")
        self._records = {image_id: _record_from_json(data) for image_id, data in raw.items()}
        logger.info(f"Loaded {len(self._records)} images from {self.file_path}")

    async def put(self, record: ImageRecord) -> None:
        async with self._lock:
            previous = self._records.get(record.id)
            await super().put(record)
            try:
                await self._save()
            except Exception:
                if previous is None:
                    self._records.pop(record.id, None)
                else:
                    self._records[record.id] = previous
                raise

    async def delete(self, image_id: str) -> None:
        async with self._lock:
            record = await self.get(image_id)
            await super().delete(image_id)
            try:
                await self._save()
            except Exception:
                self._records[image_id] = record
                raise

    async def _save(self) -> None:
        """Rewrite the mirror. Callers hold `_lock`."""
        payload = {image_id: _record_to_json(r) for image_id, r in self._records.items()}
        # Write then rename so a crash never leaves a truncated mirror
        tmp_path = self.file_path.with_suffix(self.file_path.suffix + ".tmp")
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(payload, indent=2))
        tmp_path.replace(self.file_path)
        logger.debug(f"Saved metadata for {len(self._records)} images")


class SqlMetadataStore(MetadataStore):
    """Records in the `images` table. Works with SQLite (aiosqlite) and
    PostgreSQL (asyncpg), including a Supabase-hosted database."""

    name = "sql"

    def __init__(self, engine: AsyncEngine, session_factory: async_sessionmaker[AsyncSession]):
        self.engine = engine
        self.session_factory = session_factory

    async def initialize(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    async def ping(self) -> bool:
        async with self.session_factory() as db:
            await db.execute(text("SELECT 1"))
        return True

    async def put(self, record: ImageRecord) -> None:
        async with self.session_factory() as db:
            db.add(_record_to_row(record))
            await db.commit()

    async def get(self, image_id: str) -> ImageRecord:
        async with self.session_factory() as db:
            row = await db.get(ImageRow, image_id)
            if not row:
                raise NotFoundError()
            return _row_to_record(row)

    async def list_all(self) -> list[ImageRecord]:
        async with self.session_factory() as db:
            result = await db.execute(select(ImageRow).order_by(desc(ImageRow.upload_date)))
            return [_row_to_record(r) for r in result.scalars().all()]

    async def delete(self, image_id: str) -> None:
        async with self.session_factory() as db:
            result = await db.execute(delete(ImageRow).where(ImageRow.id == image_id))
            await db.commit()
            if result.rowcount == 0:
                raise NotFoundError()

    async def find(self, tokens: list[str], offset: int, limit: int) -> tuple[list[ImageRecord], int]:
        conditions = []
        for token in tokens:
            conditions.append(ImageRow.keywords_search.contains(token, autoescape=True))
            conditions.append(ImageRow.name_search.contains(token, autoescape=True))

        count_query = select(func.count()).select_from(ImageRow)
        page_query = select(ImageRow).order_by(desc(ImageRow.upload_date)).offset(offset).limit(limit)
        if conditions:
            count_query = count_query.where(or_(*conditions))
            page_query = page_query.where(or_(*conditions))

        async with self.session_factory() as db:
            total = (await db.execute(count_query)).scalar_one()
            # Past the last page; also keeps huge offsets out of the driver
            if offset >= total:
                return [], total
            rows = (await db.execute(page_query)).scalars().all()
        return [_row_to_record(r) for r in rows], total

    async def summarize(self) -> tuple[int, int]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(func.count(), func.coalesce(func.sum(ImageRow.file_size), 0)).select_from(ImageRow)
            )
            count, total_size = result.one()
        return int(count), int(total_size)


def _utc(value: datetime) -> datetime:
    """SQLite drops tzinfo; stored values are always UTC."""
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _record_to_json(record: ImageRecord) -> dict:
    return {
        "id": record.id,
        "storageKey": record.storage_key,
        "originalName": record.original_name,
        "keywords": list(record.keywords),
        "uploadDate": record.upload_date.isoformat(),
        "fileSize": record.file_size,
        "contentType": record.content_type,
    }


def _record_from_json(data: dict) -> ImageRecord:
    return ImageRecord(
        id=data["id"],
        storage_key=data["storageKey"],
        original_name=data["originalName"],
        keywords=data.get("keywords") or [],
        upload_date=_utc(datetime.fromisoformat(data["uploadDate"])),
        file_size=data["fileSize"],
        content_type=data["contentType"],
    )


def _record_to_row(record: ImageRecord) -> ImageRow:
    return ImageRow(
        id=record.id,
        storage_key=record.storage_key,
        original_name=record.original_name,
        keywords=list(record.keywords),
        upload_date=record.upload_date,
        file_size=record.file_size,
        content_type=record.content_type,
        name_search=record.original_name.lower(),
        keywords_search="\n".join(k.lower() for k in record.keywords),
    )


def _row_to_record(row: ImageRow) -> ImageRecord:
    return ImageRecord(
        id=row.id,
        storage_key=row.storage_key,
        original_name=row.original_name,
        keywords=list(row.keywords or []),
        upload_date=_utc(row.upload_date),
        file_size=row.file_size,
        content_type=row.content_type,
    )


def build_metadata_store(settings: Settings) -> MetadataStore:
    """Create the metadata store named by METADATA_STORE_TYPE."""
    if settings.METADATA_STORE_TYPE == "memory":
        return InMemoryMetadataStore()

    elif settings.METADATA_STORE_TYPE == "json_file":
        return JsonFileMetadataStore(settings.METADATA_FILE_PATH)

    elif settings.METADATA_STORE_TYPE == "sql":
        from imagevault.database import create_engine, create_session_factory

        engine = create_engine(settings.DATABASE_URL)
        return SqlMetadataStore(engine, create_session_factory(engine))

    raise ValueError(f"Unknown metadata store type: {settings.METADATA_STORE_TYPE}")
