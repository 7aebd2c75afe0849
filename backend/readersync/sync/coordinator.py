"""
Sync policy layer: turns validated requests into SyncStore / ContentStore calls.

Requests are validated completely before any storage call. Storage and filesystem
faults are logged here with the operation and key, then surfaced as an opaque
server_error. Conflicts are ordinary results.
"""

import logging
import time
import uuid
from contextlib import contextmanager
from typing import Any, BinaryIO, Callable, Dict, Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from readersync.config import Settings
from readersync.errors import (
    CHECKSUM_MISMATCH,
    CONFLICT,
    INVALID_REQUEST,
    NOT_FOUND,
    SERVER_ERROR,
    TOO_LARGE,
    AssetNotFound,
    FileIdConflict,
    StorageFault,
    SyncError,
    UploadOverrun,
)
from readersync.files.content_store import ContentStore, DownloadTarget
from readersync.files.hashing import normalize_hash, spool_to_temp
from readersync.files.storage import remove_quietly, sanitize_file_id
from readersync.sync.kinds import EntityKind, kind_for_table
from readersync.sync.schemas import (
    DeleteRequest,
    ProbeRequest,
    PullRequest,
    PushRequest,
    ResolveRequest,
    SinceRequest,
)
from readersync.sync.store import RowStatus, SyncStore

log = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
MAX_LIMIT = 1000
# fileId values meaning "server, pick an id for me"
_UNASSIGNED_IDS = ("", "0")


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class SyncCoordinator:
    def __init__(
        self,
        sync_store: SyncStore,
        content_store: ContentStore,
        settings: Settings,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._sync = sync_store
        self._content = content_store
        self._settings = settings
        self._clock = clock

    async def probe(self, owner: str, req: ProbeRequest) -> Dict[str, Any]:
        """Three-way existence check, reported as exists/deleted plus the relevant timestamp."""
        kind = _kind(req.table)
        file_id = _file_id(req.file_id)
        item_id = _item_id(kind, req.item_id, required=True)
        with self._fault_boundary("probe", owner, kind, file_id, item_id):
            state = await self._sync.probe(kind, owner, file_id, item_id)
        if state.status is RowStatus.ABSENT:
            return {"ok": True, "exists": False, "deleted": False}
        if state.status is RowStatus.TOMBSTONED:
            return {"ok": True, "exists": False, "deleted": True, "updatedAt": state.deleted_at}
        return {"ok": True, "exists": True, "deleted": False, "updatedAt": state.updated_at}

    async def pull_one(self, owner: str, req: PullRequest) -> Dict[str, Any]:
        """Rows for one book: 0..1 for progress; one item, or every item when id is omitted."""
        kind = _kind(req.table)
        file_id = _file_id(req.file_id)
        item_id = _item_id(kind, req.item_id, required=False)
        with self._fault_boundary("pull_one", owner, kind, file_id, item_id):
            rows = await self._sync.list(kind, owner, file_id, item_id)
        return {"ok": True, "rows": [r.to_wire() for r in rows]}

    async def pull_delta(self, owner: str, req: SinceRequest) -> Dict[str, Any]:
        kind = _kind(req.table)
        limit = DEFAULT_LIMIT if req.limit is None else max(1, min(MAX_LIMIT, req.limit))
        with self._fault_boundary("pull_delta", owner, kind, None, None):
            page = await self._sync.changes_since(kind, owner, req.since, limit)
        log.debug(
            "pull_delta user=%s kind=%s since=%d rows=%d next=%d",
            owner, kind.name, req.since, len(page.rows), page.next_since,
        )
        return {"ok": True, "rows": [r.to_wire() for r in page.rows], "nextSince": page.next_since}

    async def push(self, owner: str, req: PushRequest) -> Dict[str, Any]:
        """
        Conflict-checked upsert. The referenced book must exist. The stored timestamp is
        the server's clock at write time, not the client's updatedAt.
        """
        kind = _kind(req.table)
        row = req.row
        file_id = _file_id(row.file_id)
        item_id = _item_id(kind, row.item_id, required=True)
        payload = kind.payload_from_wire(row.model_extra or {})
        with self._fault_boundary("push", owner, kind, file_id, item_id):
            if not await self._content.exists(file_id):
                raise SyncError(INVALID_REQUEST, "unknown fileId")
            result = await self._sync.upsert(
                kind, owner, file_id, item_id, payload, row.updated_at, req.force, self._clock()
            )
        if not result.applied:
            return {"ok": False, "error": CONFLICT, "serverUpdatedAt": result.server_updated_at}
        log.debug("push user=%s kind=%s file_id=%s id=%s", owner, kind.name, file_id, item_id)
        return {"ok": True, "updatedAt": result.updated_at}

    async def delete(self, owner: str, req: DeleteRequest) -> Dict[str, Any]:
        kind = _kind(req.table)
        file_id = _file_id(req.file_id)
        item_id = _item_id(kind, req.item_id, required=True)
        with self._fault_boundary("delete", owner, kind, file_id, item_id):
            result = await self._sync.soft_delete(kind, owner, file_id, item_id, self._clock())
        if not result.found:
            raise SyncError(NOT_FOUND)
        log.info("delete user=%s kind=%s file_id=%s id=%s", owner, kind.name, file_id, item_id)
        return {"ok": True, "deletedAt": result.deleted_at}

    async def resolve_by_hash(self, req: ResolveRequest) -> Dict[str, Any]:
        content_hash = _content_hash(req.content_hash)
        if req.size <= 0:
            raise SyncError(INVALID_REQUEST, "invalid filesize")
        try:
            file_id = await self._content.find_by_hash_and_size(content_hash, req.size)
        except SQLAlchemyError:
            log.exception("resolve failed sha256=%s size=%d", content_hash, req.size)
            raise SyncError(SERVER_ERROR)
        if file_id is None:
            return {"ok": True, "exists": False}
        return {"ok": True, "exists": True, "fileId": file_id}

    async def upload(
        self,
        owner: str,
        claimed_file_id: Optional[str],
        claimed_hash: str,
        claimed_size: int,
        stream: Optional[BinaryIO],
        client_file_name: Optional[str],
    ) -> Dict[str, Any]:
        """
        Store a book once per distinct content. Without a file id, known content is
        answered before any bytes are read. The received bytes are hashed off the event
        loop and must match the claimed size and hash before anything is persisted.
        """
        content_hash = _content_hash(claimed_hash, reason="bad checksum")
        if claimed_size <= 0:
            raise SyncError(INVALID_REQUEST, "bad filesize")
        max_size = self._settings.max_file_size_bytes
        if max_size > 0 and claimed_size > max_size:
            raise SyncError(TOO_LARGE)

        claimed = (claimed_file_id or "").strip()
        with self._upload_boundary(owner, claimed or "-", content_hash):
            if claimed in _UNASSIGNED_IDS:
                existing = await self._content.find_by_hash_and_size(content_hash, claimed_size)
                if existing:
                    log.info("upload user=%s deduplicated before transfer -> %s", owner, existing)
                    return _upload_ok(existing, claimed_size, content_hash)
                new_id = uuid.uuid4().hex
            else:
                new_id = sanitize_file_id(claimed)
                if not new_id:
                    raise SyncError(INVALID_REQUEST, "bad fileId")
                asset = await self._content.get(new_id)
                if asset is not None:
                    if asset.content_hash == content_hash and asset.size == claimed_size:
                        return _upload_ok(new_id, claimed_size, content_hash)
                    raise SyncError(INVALID_REQUEST, "fileId already in use")

            if stream is None:
                raise SyncError(INVALID_REQUEST, "no file")
            try:
                spooled = await run_in_threadpool(
                    spool_to_temp, stream, self._settings.upload_tmp_path, claimed_size
                )
            except UploadOverrun:
                log.warning("upload user=%s stream longer than claimed size=%d", owner, claimed_size)
                raise SyncError(CHECKSUM_MISMATCH, "filesize mismatch")
            try:
                if spooled.size != claimed_size:
                    log.warning(
                        "upload user=%s size mismatch claimed=%d actual=%d",
                        owner, claimed_size, spooled.size,
                    )
                    raise SyncError(CHECKSUM_MISMATCH, "filesize mismatch")
                if spooled.content_hash != content_hash:
                    log.warning("upload user=%s checksum mismatch claimed=%s", owner, content_hash)
                    raise SyncError(CHECKSUM_MISMATCH)
                try:
                    result = await self._content.ingest(
                        spooled.path,
                        content_hash,
                        claimed_size,
                        new_id,
                        (client_file_name or "").strip() or new_id,
                        self._clock(),
                    )
                except FileIdConflict:
                    raise SyncError(INVALID_REQUEST, "fileId already in use")
            finally:
                remove_quietly(spooled.path)
        log.info(
            "upload user=%s file_id=%s size=%d created=%s",
            owner, result.file_id, claimed_size, result.created,
        )
        return _upload_ok(result.file_id, claimed_size, content_hash)

    async def open_download(self, file_id: str) -> DownloadTarget:
        """Locate a book for streaming. 404 when missing, 500 when the index disagrees with the file."""
        safe = sanitize_file_id(file_id)
        if not safe:
            raise SyncError(NOT_FOUND, "book record not found", status_code=404)
        try:
            return await self._content.open_for_download(safe)
        except AssetNotFound as e:
            raise SyncError(NOT_FOUND, str(e).split(":")[0], status_code=404) from e
        except (StorageFault, SQLAlchemyError) as e:
            log.error("download file_id=%s failed: %s", safe, e)
            raise SyncError(SERVER_ERROR, status_code=500) from e

    @contextmanager
    def _fault_boundary(
        self,
        op: str,
        owner: str,
        kind: EntityKind,
        file_id: Optional[str],
        item_id: Optional[int],
    ) -> Iterator[None]:
        try:
            yield
        except (StorageFault, SQLAlchemyError, OSError):
            log.exception(
                "%s failed user=%s kind=%s file_id=%s id=%s", op, owner, kind.name, file_id, item_id
            )
            raise SyncError(SERVER_ERROR)

    @contextmanager
    def _upload_boundary(self, owner: str, file_id: str, content_hash: str) -> Iterator[None]:
        try:
            yield
        except (StorageFault, SQLAlchemyError, OSError):
            log.exception("upload failed user=%s file_id=%s sha256=%s", owner, file_id, content_hash)
            raise SyncError(SERVER_ERROR)


def _kind(table: str) -> EntityKind:
    kind = kind_for_table(table)
    if kind is None:
        raise SyncError(INVALID_REQUEST, "unknown table")
    return kind


def _file_id(file_id: str) -> str:
    file_id = (file_id or "").strip()
    if not file_id:
        raise SyncError(INVALID_REQUEST, "no fileId")
    return file_id


def _item_id(kind: EntityKind, item_id: Optional[int], required: bool) -> Optional[int]:
    """Item kinds need an id for point operations; progress has none."""
    if not kind.has_item_id:
        return None
    if item_id is None and required:
        raise SyncError(INVALID_REQUEST, "no id")
    return item_id


def _content_hash(value: str, reason: str = "sha256 is not hex") -> str:
    try:
        return normalize_hash(value)
    except ValueError:
        raise SyncError(INVALID_REQUEST, reason)


def _upload_ok(file_id: str, size: int, content_hash: str) -> Dict[str, Any]:
    return {"ok": True, "fileId": file_id, "size": size, "contentHash": content_hash}
