"""User routes: login, token check, server banner."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from readersync.auth.dependencies import get_session_store
from readersync.auth.sessions import SessionStore
from readersync.db.session import get_db
from readersync.errors import INVALID_CREDENTIALS, UNAUTHORISED, WRONG_VERSION, SyncError
from readersync.limiter import limiter
from readersync.users.models import LoginRequest, LoginResponse
from readersync.users.service import authenticate

router = APIRouter(tags=["users"])
log = logging.getLogger(__name__)


@router.post("/login", response_model=LoginResponse)
@limiter.limit("10/minute")
async def login(
    request: Request,
    body: LoginRequest,
    session: Annotated[AsyncSession, Depends(get_db)],
    sessions: Annotated[SessionStore, Depends(get_session_store)],
) -> LoginResponse:
    """Check client version and credentials; returns an opaque session token."""
    settings = request.app.state.settings
    if body.version != settings.compat_version:
        log.warning(
            "Login rejected for user=%s: client version %r, expected %r",
            body.username, body.version, settings.compat_version,
        )
        raise SyncError(
            WRONG_VERSION,
            status_code=status.HTTP_401_UNAUTHORIZED,
            extra={"expected": settings.compat_version},
        )
    user = await authenticate(session, body.username, body.password)
    if not user:
        log.warning("Login failed for user=%s", body.username)
        raise SyncError(INVALID_CREDENTIALS, status_code=status.HTTP_401_UNAUTHORIZED)
    token, expires_at = sessions.issue(user.username, body.device or "", settings.token_ttl_seconds)
    log.info("Login successful for user=%s", user.username)
    return LoginResponse(token=token, expiresAt=int(expires_at * 1000))


@router.get("/ruOK/{token}")
async def are_you_ok(
    token: str,
    sessions: Annotated[SessionStore, Depends(get_session_store)],
) -> dict:
    """Report whether a session token is still live."""
    if not sessions.resolve(token):
        raise SyncError(UNAUTHORISED, status_code=status.HTTP_401_UNAUTHORIZED)
    return {"ok": True}


@router.get("/")
async def banner() -> dict:
    return {"ok": True, "status": "server up"}
