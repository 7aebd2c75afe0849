"""Sync API routes: probe, pull, push, delete, resolve, book upload and download."""

import logging
from typing import Annotated, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import FileResponse

from readersync.auth.dependencies import get_current_user, require_user_http
from readersync.errors import INVALID_REQUEST, SyncError
from readersync.limiter import limiter
from readersync.sync.coordinator import SyncCoordinator
from readersync.sync.schemas import (
    DeleteRequest,
    ProbeRequest,
    PullRequest,
    PushRequest,
    ResolveRequest,
    SinceRequest,
)

router = APIRouter(tags=["sync"])
log = logging.getLogger(__name__)


def get_coordinator(request: Request) -> SyncCoordinator:
    return request.app.state.coordinator


Owner = Annotated[str, Depends(get_current_user)]
Coordinator = Annotated[SyncCoordinator, Depends(get_coordinator)]


@router.post("/check")
@limiter.limit("600/minute")
async def check(request: Request, body: ProbeRequest, owner: Owner, sync: Coordinator) -> dict:
    """Does this record exist on the server, and is it deleted?"""
    return await sync.probe(owner, body)


@router.post("/get")
@limiter.limit("600/minute")
async def get_rows(request: Request, body: PullRequest, owner: Owner, sync: Coordinator) -> dict:
    return await sync.pull_one(owner, body)


@router.post("/getSince")
@limiter.limit("600/minute")
async def get_since(request: Request, body: SinceRequest, owner: Owner, sync: Coordinator) -> dict:
    """One page of the change feed; clients loop on nextSince until rows come back empty."""
    return await sync.pull_delta(owner, body)


@router.post("/update")
@limiter.limit("600/minute")
async def update(request: Request, body: PushRequest, owner: Owner, sync: Coordinator) -> dict:
    return await sync.push(owner, body)


@router.post("/delete")
@limiter.limit("600/minute")
async def delete(request: Request, body: DeleteRequest, owner: Owner, sync: Coordinator) -> dict:
    return await sync.delete(owner, body)


@router.post("/resolve")
@limiter.limit("600/minute")
async def resolve(request: Request, body: ResolveRequest, owner: Owner, sync: Coordinator) -> dict:
    """Look up a book by content so a client can skip uploading it."""
    return await sync.resolve_by_hash(body)


def _parse_size(raw: Optional[str]) -> int:
    raw = (raw or "").strip()
    if not raw.isdigit():
        raise SyncError(INVALID_REQUEST, "bad filesize")
    return int(raw)


@router.post("/uploadBook")
@limiter.limit("60/minute")
async def upload_book(
    request: Request,
    owner: Annotated[str, Depends(require_user_http)],
    sync: Coordinator,
    file: Annotated[Optional[UploadFile], File()] = None,
    fileId: Annotated[Optional[str], Form()] = None,
    contentHash: Annotated[Optional[str], Form()] = None,
    sha256: Annotated[Optional[str], Form()] = None,
    size: Annotated[Optional[str], Form()] = None,
    filesize: Annotated[Optional[str], Form()] = None,
) -> dict:
    """
    Multipart upload of one book. Form fields: fileId (optional; "" or "0" lets the
    server assign one), contentHash or sha256, size or filesize, and the file part.
    """
    claimed_hash = contentHash if contentHash is not None else sha256
    claimed_size = _parse_size(size if size is not None else filesize)
    try:
        return await sync.upload(
            owner,
            fileId,
            claimed_hash or "",
            claimed_size,
            file.file if file is not None else None,
            file.filename if file is not None else None,
        )
    finally:
        if file is not None:
            await file.close()


@router.get("/book/{file_id}")
@limiter.limit("600/minute")
async def download_book(
    request: Request,
    file_id: str,
    owner: Annotated[str, Depends(require_user_http)],
    sync: Coordinator,
) -> FileResponse:
    """Stream a stored book. Checksum and original filename are sent as headers."""
    target = await sync.open_download(file_id)
    log.info("download user=%s file_id=%s size=%d", owner, file_id, target.size)
    return FileResponse(
        target.path,
        media_type="application/octet-stream",
        filename=target.client_file_name,
        headers={
            "X-Checksum-SHA256": target.content_hash,
            "X-Filename": quote(target.client_file_name, safe=" ()[],._-"),
        },
    )
