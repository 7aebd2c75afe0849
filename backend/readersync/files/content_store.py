"""
Deduplicated, content-addressed storage for book files.

Each distinct (sha256, size) pair is stored once. Concurrent uploads of the same new
content are resolved by the books table's unique constraint: the insert that loses
does nothing, and the loser gets the winner's file id back.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.concurrency import run_in_threadpool

from readersync.db.session import session_scope
from readersync.errors import AssetNotFound, FileIdConflict, StorageFault
from readersync.files.models import BookAsset
from readersync.files.storage import library_file_path, publish_to_library, remove_quietly

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestResult:
    """Committed file id. created is False when identical content was already stored."""

    file_id: str
    created: bool


@dataclass(frozen=True)
class DownloadTarget:
    path: Path
    size: int
    content_hash: str
    client_file_name: str


class ContentStore:
    """Owns the books table and the files under library_root."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], library_root: Path) -> None:
        self._session_factory = session_factory
        self._library_root = Path(library_root)

    @property
    def library_root(self) -> Path:
        return self._library_root

    async def find_by_hash_and_size(self, content_hash: str, size: int) -> Optional[str]:
        """Return the file id stored for exactly this content, or None."""
        async with session_scope(self._session_factory) as session:
            return await self._lookup(session, content_hash, size)

    async def get(self, file_id: str) -> Optional[BookAsset]:
        async with session_scope(self._session_factory) as session:
            return await session.get(BookAsset, file_id)

    async def exists(self, file_id: str) -> bool:
        return await self.get(file_id) is not None

    async def ingest(
        self,
        temp_path: Path,
        content_hash: str,
        size: int,
        file_id: str,
        client_file_name: str,
        now: int,
    ) -> IngestResult:
        """
        Record an already verified temp file and link it into the library.
        The caller must have checked that temp_path holds exactly size bytes hashing to
        content_hash, and remains responsible for removing temp_path.

        The row is inserted first, inside a BEGIN IMMEDIATE transaction that stays open
        until the file is published, so a competing ingest only sees the row once the
        bytes are in place. An insert that conflicts on (content_hash, size) returns the
        stored id with created=False, including when both calls used the same file id.
        Raises FileIdConflict when file_id is already stored with other content, and
        StorageFault on filesystem or database failure. Only bytes this call published
        are ever removed.
        """
        try:
            dst = library_file_path(self._library_root, file_id)
        except ValueError as e:
            raise StorageFault(str(e)) from e

        stmt = (
            insert(BookAsset.__table__)
            .values(
                file_id=file_id,
                content_hash=content_hash,
                size=size,
                location=str(dst),
                client_file_name=client_file_name,
                created_at=now,
            )
            .on_conflict_do_nothing()
        )
        published = False
        winner: Optional[str] = None
        try:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(stmt)
                if result.rowcount == 1:
                    published = await run_in_threadpool(publish_to_library, temp_path, dst)
                    if not published:
                        log.error("ingest: orphan library file without a row: %s", dst)
                        raise StorageFault(f"library file already exists for {file_id}")
                else:
                    winner = await self._lookup(session, content_hash, size)
        except (SQLAlchemyError, OSError) as e:
            if published:
                remove_quietly(dst)
            log.error("ingest: failed file_id=%s sha256=%s: %s", file_id, content_hash, e)
            raise StorageFault(f"could not store {file_id}") from e

        if published:
            log.info("ingest: stored file_id=%s size=%d sha256=%s", file_id, size, content_hash)
            return IngestResult(file_id=file_id, created=True)
        if winner is None:
            log.warning("ingest: file_id=%s already holds other content", file_id)
            raise FileIdConflict(file_id)
        log.info("ingest: deduplicated file_id=%s -> %s", file_id, winner)
        return IngestResult(file_id=winner, created=False)

    async def open_for_download(self, file_id: str) -> DownloadTarget:
        """
        Locate the file for file_id. Raises AssetNotFound when the row or the file is
        missing, StorageFault when the file's size disagrees with the recorded size.
        """
        asset = await self.get(file_id)
        if asset is None:
            raise AssetNotFound(f"book record not found: {file_id}")
        path = Path(asset.location)
        try:
            actual = path.stat().st_size
        except FileNotFoundError as e:
            raise AssetNotFound(f"file not found: {file_id}") from e
        except OSError as e:
            raise StorageFault(f"stat failed for {file_id}: {e}") from e
        if actual != asset.size:
            raise StorageFault(f"size mismatch for {file_id}: recorded={asset.size} actual={actual}")
        return DownloadTarget(
            path=path,
            size=asset.size,
            content_hash=asset.content_hash,
            client_file_name=asset.client_file_name,
        )

    @staticmethod
    async def _lookup(session: AsyncSession, content_hash: str, size: int) -> Optional[str]:
        result = await session.execute(
            select(BookAsset.file_id).where(
                BookAsset.content_hash == content_hash,
                BookAsset.size == size,
            )
        )
        return result.scalar_one_or_none()
