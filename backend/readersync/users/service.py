"""User service: lookup, password check, create/replace, bootstrap user."""

import logging
import time
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from readersync.auth.passwords import hash_password, verify_password
from readersync.config import Settings, get_settings
from readersync.users.models import User

log = logging.getLogger(__name__)


async def get_user(session: AsyncSession, username: str) -> Optional[User]:
    """Return user by username or None."""
    result = await session.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


async def authenticate(session: AsyncSession, username: str, password: str) -> Optional[User]:
    """Return the user when username exists and password verifies, else None."""
    user = await get_user(session, username)
    if not user or not verify_password(password, user.password_hash):
        return None
    return user


async def set_user(session: AsyncSession, username: str, password: str) -> User:
    """
    Create the user, or replace the password of an existing one.
    Caller must commit session.
    """
    username = username.strip()
    if not username:
        raise ValueError("Username must not be empty")
    if not password:
        raise ValueError("Password must not be empty")
    user = await get_user(session, username)
    if user:
        user.password_hash = hash_password(password)
        log.info("Password replaced for user=%s", username)
        return user
    user = User(
        username=username,
        password_hash=hash_password(password),
        created_at=int(time.time() * 1000),
    )
    session.add(user)
    await session.flush()
    log.info("Created user=%s", username)
    return user


async def ensure_admin_exists(session: AsyncSession, settings: Optional[Settings] = None) -> None:
    """
    If READERSYNC_ADMIN_USERNAME and READERSYNC_ADMIN_INITIAL_PASSWORD are set
    and no user exists with that name, create it.
    """
    settings = settings or get_settings()
    if not settings.admin_username or not settings.admin_initial_password:
        return
    existing = await get_user(session, settings.admin_username)
    if existing:
        return
    log.info("Creating bootstrap user=%s", settings.admin_username)
    await set_user(session, settings.admin_username, settings.admin_initial_password)
