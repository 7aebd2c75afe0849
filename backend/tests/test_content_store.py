"""Tests for the deduplicating book store: ingest, lookup, download checks."""

import asyncio
import hashlib
from pathlib import Path

import pytest
from sqlalchemy import func, select

from readersync.db.session import session_scope
from readersync.errors import AssetNotFound, FileIdConflict, StorageFault
from readersync.files.content_store import ContentStore
from readersync.files.models import BookAsset

BOOK = b"ten bytes!"
BOOK_HASH = hashlib.sha256(BOOK).hexdigest()


@pytest.fixture
def content_store(session_factory, settings):
    return ContentStore(session_factory, settings.library_path)


def _temp_file(tmp_path: Path, name: str, data: bytes = BOOK) -> Path:
    path = tmp_path / name
    path.write_bytes(data)
    return path


async def _asset_count(session_factory) -> int:
    async with session_scope(session_factory) as session:
        result = await session.execute(select(func.count()).select_from(BookAsset))
        return result.scalar_one()


@pytest.mark.asyncio
async def test_ingest_stores_file_and_row(content_store, session_factory, tmp_path):
    temp = _temp_file(tmp_path, "upload_a")
    result = await content_store.ingest(temp, BOOK_HASH, len(BOOK), "F1", "moby.epub", 1)
    assert result.file_id == "F1"
    assert result.created is True
    assert temp.exists()
    stored = content_store.library_root / "f1" / "F1"
    assert hashlib.sha256(stored.read_bytes()).hexdigest() == BOOK_HASH
    assert await content_store.find_by_hash_and_size(BOOK_HASH, len(BOOK)) == "F1"
    assert await content_store.exists("F1")
    assert await _asset_count(session_factory) == 1


@pytest.mark.asyncio
async def test_ingest_same_content_returns_existing_id(content_store, session_factory, tmp_path):
    """Second ingest of identical bytes keeps one asset and drops the new copy."""
    await content_store.ingest(_temp_file(tmp_path, "a"), BOOK_HASH, len(BOOK), "F1", "a.epub", 1)
    result = await content_store.ingest(
        _temp_file(tmp_path, "b"), BOOK_HASH, len(BOOK), "F2", "b.epub", 2
    )
    assert result.file_id == "F1"
    assert result.created is False
    assert not (content_store.library_root / "f2" / "F2").exists()
    assert await _asset_count(session_factory) == 1


@pytest.mark.asyncio
async def test_concurrent_ingest_of_same_content(content_store, session_factory, tmp_path):
    """Racing ingests of the same new content all resolve to a single file id."""
    temps = [_temp_file(tmp_path, f"race_{i}") for i in range(5)]
    results = await asyncio.gather(
        *(
            content_store.ingest(t, BOOK_HASH, len(BOOK), f"R{i}", "race.epub", i)
            for i, t in enumerate(temps)
        )
    )
    ids = {r.file_id for r in results}
    assert len(ids) == 1
    assert sum(1 for r in results if r.created) == 1
    assert await _asset_count(session_factory) == 1
    winner = ids.pop()
    stored = [p for p in content_store.library_root.rglob("*") if p.is_file()]
    assert [p.name for p in stored] == [winner]


@pytest.mark.asyncio
async def test_concurrent_ingest_with_shared_file_id(content_store, session_factory, tmp_path):
    """Racing ingests of the same bytes under one client file id all get that id back."""
    temps = [_temp_file(tmp_path, f"shared_{i}") for i in range(5)]
    results = await asyncio.gather(
        *(
            content_store.ingest(t, BOOK_HASH, len(BOOK), "B1", "b.epub", i)
            for i, t in enumerate(temps)
        )
    )
    assert [r.file_id for r in results] == ["B1"] * 5
    assert sum(1 for r in results if r.created) == 1
    assert await _asset_count(session_factory) == 1
    stored = [p for p in content_store.library_root.rglob("*") if p.is_file()]
    assert [p.name for p in stored] == ["B1"]
    assert stored[0].read_bytes() == BOOK


@pytest.mark.asyncio
async def test_ingest_file_id_held_by_other_content(content_store, session_factory, tmp_path):
    """Reusing a stored file id for different bytes fails and leaves the stored book intact."""
    await content_store.ingest(_temp_file(tmp_path, "a"), BOOK_HASH, len(BOOK), "B1", "a", 1)
    other = b"other bytes"
    with pytest.raises(FileIdConflict):
        await content_store.ingest(
            _temp_file(tmp_path, "b", other),
            hashlib.sha256(other).hexdigest(),
            len(other),
            "B1",
            "b",
            2,
        )
    assert (content_store.library_root / "b1" / "B1").read_bytes() == BOOK
    assert await _asset_count(session_factory) == 1


@pytest.mark.asyncio
async def test_ingest_orphan_library_file_is_not_overwritten(content_store, session_factory, tmp_path):
    """A library file with no row is left alone and the insert is rolled back."""
    orphan = content_store.library_root / "f1" / "F1"
    orphan.parent.mkdir(parents=True)
    orphan.write_bytes(b"orphan")
    with pytest.raises(StorageFault):
        await content_store.ingest(_temp_file(tmp_path, "a"), BOOK_HASH, len(BOOK), "F1", "a", 1)
    assert orphan.read_bytes() == b"orphan"
    assert await _asset_count(session_factory) == 0


@pytest.mark.asyncio
async def test_same_hash_different_size_is_distinct(content_store, session_factory, tmp_path):
    await content_store.ingest(_temp_file(tmp_path, "a"), BOOK_HASH, len(BOOK), "F1", "a", 1)
    await content_store.ingest(_temp_file(tmp_path, "b"), BOOK_HASH, len(BOOK) + 1, "F2", "b", 2)
    assert await _asset_count(session_factory) == 2


@pytest.mark.asyncio
async def test_ingest_unsafe_file_id_is_storage_fault(content_store, tmp_path):
    with pytest.raises(StorageFault):
        await content_store.ingest(_temp_file(tmp_path, "a"), BOOK_HASH, len(BOOK), "../x", "a", 1)


@pytest.mark.asyncio
async def test_find_by_hash_and_size_unknown(content_store):
    assert await content_store.find_by_hash_and_size(BOOK_HASH, len(BOOK)) is None
    assert not await content_store.exists("nope")


@pytest.mark.asyncio
async def test_open_for_download(content_store, tmp_path):
    await content_store.ingest(_temp_file(tmp_path, "a"), BOOK_HASH, len(BOOK), "F1", "moby.epub", 1)
    target = await content_store.open_for_download("F1")
    assert target.path.read_bytes() == BOOK
    assert target.size == len(BOOK)
    assert target.content_hash == BOOK_HASH
    assert target.client_file_name == "moby.epub"


@pytest.mark.asyncio
async def test_open_for_download_missing_row(content_store):
    with pytest.raises(AssetNotFound):
        await content_store.open_for_download("F404")


@pytest.mark.asyncio
async def test_open_for_download_missing_file(content_store, tmp_path):
    await content_store.ingest(_temp_file(tmp_path, "a"), BOOK_HASH, len(BOOK), "F1", "a", 1)
    (content_store.library_root / "f1" / "F1").unlink()
    with pytest.raises(AssetNotFound):
        await content_store.open_for_download("F1")


@pytest.mark.asyncio
async def test_open_for_download_size_mismatch(content_store, tmp_path):
    """A file whose size disagrees with its row is a storage fault, not a missing book."""
    await content_store.ingest(_temp_file(tmp_path, "a"), BOOK_HASH, len(BOOK), "F1", "a", 1)
    (content_store.library_root / "f1" / "F1").write_bytes(b"truncated")
    with pytest.raises(StorageFault):
        await content_store.open_for_download("F1")
