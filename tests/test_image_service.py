"""Tests for the upload pipeline and the query operations of ImageService."""
import io
import logging
from unittest.mock import AsyncMock, Mock

import pytest
from PIL import Image

from conftest import make_image
from imagevault.database import create_engine, create_session_factory
from imagevault.errors import (
    EmptyQueryError,
    ImageVaultError,
    InvalidFileError,
    MetadataWriteError,
    NotFoundError,
    StorageError,
    StorageWriteError,
)
from imagevault.models.image_record import ImageRecord
from imagevault.services.image_query import PageRequest
from imagevault.services.image_optimizer import ImageOptimizer
from imagevault.services.image_service import ImageService, IncomingFile
from imagevault.services.metadata_store import InMemoryMetadataStore, JsonFileMetadataStore, SqlMetadataStore


def stored_files(service) -> list:
    return [p for p in service.storage.base_path.rglob("*") if p.is_file()]


# ── Upload ───────────────────────────────────────────────────────

async def test_upload_stores_optimized_bytes(service):
    record = await service.upload(make_image("PNG", size=(200, 100)), "image/png", "wide.png", ["Beach"])

    stored = (service.storage.base_path / record.storage_key).read_bytes()
    assert record.file_size == len(stored)
    assert Image.open(io.BytesIO(stored)).size == (64, 32)
    assert record.storage_key == f"{record.id}.png"
    assert record.keywords == ["Beach"]
    assert record.upload_date.tzinfo is not None
    assert await service.store.get(record.id) == record


async def test_undecodable_image_is_stored_as_is(service):
    data = b"\xff\xd8 not really a jpeg"
    record = await service.upload(data, "image/jpeg", "broken.jpg")
    assert (service.storage.base_path / record.storage_key).read_bytes() == data
    assert record.file_size == len(data)


async def test_invalid_type_is_rejected_before_any_write(service):
    with pytest.raises(InvalidFileError) as exc_info:
        await service.upload(b"plain text", "text/plain", "notes.txt")

    assert exc_info.value.details.startswith("Invalid file type. Allowed types: image/jpeg")
    assert stored_files(service) == []
    assert await service.store.list_all() == []


async def test_oversized_file_is_rejected(service):
    with pytest.raises(InvalidFileError) as exc_info:
        await service.upload(b"x" * (256 * 1024 + 1), "image/png", "big.png")
    assert exc_info.value.details == "File size too large. Maximum size is 0.25MB."
    assert stored_files(service) == []


async def test_empty_file_is_rejected(service):
    with pytest.raises(InvalidFileError):
        await service.upload(b"", "image/png", "empty.png")


async def test_storage_failure_leaves_no_metadata(service):
    service.storage.save = AsyncMock(side_effect=StorageWriteError("disk full"))
    with pytest.raises(StorageWriteError):
        await service.upload(make_image(), "image/png", "a.png")
    assert await service.store.list_all() == []


async def test_metadata_failure_deletes_stored_bytes(service):
    service.store.put = AsyncMock(side_effect=RuntimeError("database is locked"))
    with pytest.raises(MetadataWriteError):
        await service.upload(make_image(), "image/png", "a.png")
    assert stored_files(service) == []


async def test_failed_compensation_logs_orphaned_key(service, caplog):
    service.store.put = AsyncMock(side_effect=RuntimeError("database is locked"))
    service.storage.delete = AsyncMock(side_effect=StorageError("permission denied"))

    with caplog.at_level(logging.ERROR, logger="imagevault.services.image_service"):
        with pytest.raises(MetadataWriteError):
            await service.upload(make_image(), "image/png", "a.png")

    orphaned = [r for r in caplog.records if "Orphaned storage object" in r.getMessage()]
    assert len(orphaned) == 1
    key = service.storage.delete.call_args.args[0]
    assert key in orphaned[0].getMessage()


async def test_upload_many_reports_each_file(service):
    files = [
        IncomingFile(make_image("PNG"), "image/png", "good.png"),
        IncomingFile(b"plain text", "text/plain", "bad.txt"),
        IncomingFile(make_image("JPEG"), "image/jpeg", "good.jpg"),
    ]
    outcomes = await service.upload_many(files, ["shared"])

    assert isinstance(outcomes[0], ImageRecord)
    assert isinstance(outcomes[1], InvalidFileError)
    assert isinstance(outcomes[2], ImageRecord)
    assert outcomes[0].keywords == outcomes[2].keywords == ["shared"]
    assert len(await service.store.list_all()) == 2


@pytest.fixture(params=["memory", "json_file", "sql"])
async def store_backed_service(request, tmp_path, storage):
    """Service over each metadata store kind."""
    if request.param == "memory":
        store = InMemoryMetadataStore()
    elif request.param == "json_file":
        store = JsonFileMetadataStore(str(tmp_path / "data" / "metadata.json"))
    else:
        engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'images.db'}")
        store = SqlMetadataStore(engine, create_session_factory(engine))
    await store.initialize()
    yield ImageService(
        storage,
        store,
        ImageOptimizer(max_width=64),
        allowed_types=["image/png"],
        max_file_size=256 * 1024,
    )
    await store.close()


async def test_concurrent_batches_keep_every_upload(store_backed_service):
    service = store_backed_service
    for round_no in range(5):
        files = [IncomingFile(make_image(), "image/png", f"{round_no}-{i}.png") for i in range(5)]
        outcomes = await service.upload_many(files, ["batch"])
        assert all(isinstance(o, ImageRecord) for o in outcomes), outcomes

    records = await service.store.list_all()
    assert len(records) == 25
    # Every listed record still has its bytes
    assert {p.name for p in stored_files(service)} == {r.storage_key for r in records}


async def test_concurrent_batch_with_rejected_file(store_backed_service):
    service = store_backed_service
    files = [
        IncomingFile(make_image(), "image/png", "a.png"),
        IncomingFile(make_image("JPEG"), "image/jpeg", "b.jpg"),
        IncomingFile(make_image(), "image/png", "c.png"),
    ]
    outcomes = await service.upload_many(files)

    assert [type(o) for o in outcomes] == [ImageRecord, InvalidFileError, ImageRecord]
    listed = {r.original_name for r in await service.store.list_all()}
    assert listed == {"a.png", "c.png"}
    assert len(stored_files(service)) == 2


async def test_json_store_failed_write_leaves_no_record(tmp_path, storage):
    store = JsonFileMetadataStore(str(tmp_path / "data" / "metadata.json"))
    await store.initialize()
    service = ImageService(
        storage, store, ImageOptimizer(max_width=64), allowed_types=["image/png"], max_file_size=256 * 1024
    )
    store._save = AsyncMock(side_effect=OSError("disk full"))

    with pytest.raises(MetadataWriteError):
        await service.upload(make_image(), "image/png", "a.png")
    assert await store.list_all() == []
    assert stored_files(service) == []


async def test_upload_many_wraps_unexpected_errors(service):
    service.storage.build_key = Mock(side_effect=RuntimeError("boom"))
    outcomes = await service.upload_many([IncomingFile(make_image(), "image/png", "a.png")])
    assert len(outcomes) == 1
    assert isinstance(outcomes[0], ImageVaultError)
    assert outcomes[0].status_code == 500
    assert outcomes[0].details == "boom"


# ── Queries ──────────────────────────────────────────────────────

async def _upload_scenario(service):
    await service.upload(make_image(), "image/png", "IMG_1.png", ["Sunset", "Beach"])
    await service.upload(make_image(), "image/png", "IMG_2.png", ["mountain"])
    await service.upload(make_image(), "image/png", "beach-day.png", [])


@pytest.mark.parametrize(
    "query, expected_names",
    [
        ("beach", {"IMG_1.png", "beach-day.png"}),
        ("SUNSET", {"IMG_1.png"}),
        ("beach mountain", {"IMG_1.png", "IMG_2.png", "beach-day.png"}),
        ("forest", set()),
    ],
)
async def test_search_by_keyword_or_name(service, query, expected_names):
    await _upload_scenario(service)
    result = await service.search_images(query, PageRequest())
    assert {v.record.original_name for v in result.images} == expected_names
    assert result.pagination.total_images == len(expected_names)


@pytest.mark.parametrize("query", [None, "", "   "])
async def test_blank_query_lists_everything(service, query):
    await _upload_scenario(service)
    result = await service.search_images(query, PageRequest())
    assert result.pagination.total_images == 3


async def test_blank_query_rejected_when_required(service):
    service.require_query = True
    with pytest.raises(EmptyQueryError):
        await service.search_images("  ", PageRequest())


async def test_search_results_are_a_subset_of_the_listing(service):
    await _upload_scenario(service)
    listed = {v.record.id for v in (await service.list_images(PageRequest(limit=50))).images}
    found = {v.record.id for v in (await service.search_images("png beach", PageRequest(limit=50))).images}
    assert found <= listed


async def test_listing_second_page_of_fifteen(service):
    for i in range(15):
        await service.upload(make_image(), "image/png", f"{i}.png")

    first = await service.list_images(PageRequest(page=1, limit=12))
    second = await service.list_images(PageRequest(page=2, limit=12))

    assert len(first.images) == 12
    assert len(second.images) == 3
    assert second.pagination.total_pages == 2
    assert second.pagination.has_next is False
    assert second.pagination.has_prev is True
    dates = [v.record.upload_date for v in first.images + second.images]
    assert dates == sorted(dates, reverse=True)


async def test_get_image_after_upload(service):
    record = await service.upload(make_image(), "image/png", "a.png", ["x"])
    view = await service.get_image(record.id)
    assert view.record == record
    assert view.url == f"/uploads/{record.storage_key}"


async def test_get_missing_image(service):
    with pytest.raises(NotFoundError):
        await service.get_image("does-not-exist")


async def test_stats(service):
    sizes = 0
    for i in range(7):
        record = await service.upload(make_image(size=(10 + i, 10)), "image/png", f"{i}.png")
        sizes += record.file_size

    stats = await service.get_stats()
    assert stats.total_images == 7
    assert stats.total_size == sizes
    assert len(stats.recent_uploads) == 5


async def test_stats_when_empty(service):
    stats = await service.get_stats()
    assert (stats.total_images, stats.total_size, stats.recent_uploads) == (0, 0, [])


# ── Delete ───────────────────────────────────────────────────────

async def test_delete_removes_bytes_and_metadata(service):
    record = await service.upload(make_image(), "image/png", "a.png")
    await service.delete_image(record.id)
    assert stored_files(service) == []
    with pytest.raises(NotFoundError):
        await service.get_image(record.id)


async def test_delete_continues_when_storage_fails(service):
    record = await service.upload(make_image(), "image/png", "a.png")
    service.storage.delete = AsyncMock(side_effect=StorageError("gone"))

    await service.delete_image(record.id)
    with pytest.raises(NotFoundError):
        await service.store.get(record.id)


async def test_delete_missing_image(service):
    with pytest.raises(NotFoundError):
        await service.delete_image("does-not-exist")
