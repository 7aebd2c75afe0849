"""FastAPI dependencies for auth."""

import logging
from typing import Annotated, Optional

from fastapi import Depends, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from readersync.auth.sessions import SessionStore
from readersync.errors import UNAUTHORISED, SyncError

security = HTTPBearer(auto_error=False)
log = logging.getLogger(__name__)


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.sessions


def _resolve_owner(
    credentials: Optional[HTTPAuthorizationCredentials],
    sessions: SessionStore,
    status_code: int,
) -> str:
    if not credentials:
        log.debug("Request missing Bearer token")
        raise SyncError(UNAUTHORISED, "missing token", status_code=status_code)
    owner = sessions.resolve(credentials.credentials)
    if not owner:
        log.debug("Unknown or expired session token")
        raise SyncError(UNAUTHORISED, "invalid or expired token", status_code=status_code)
    return owner


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    sessions: Annotated[SessionStore, Depends(get_session_store)],
) -> str:
    """Resolve Bearer token to a username for JSON endpoints (reported in-band with HTTP 200)."""
    return _resolve_owner(credentials, sessions, status.HTTP_200_OK)


async def require_user_http(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    sessions: Annotated[SessionStore, Depends(get_session_store)],
) -> str:
    """Same as get_current_user but fails with a real 401, for upload and download."""
    return _resolve_owner(credentials, sessions, status.HTTP_401_UNAUTHORIZED)
