"""SQLite engine and sessions.

Every transaction is opened with BEGIN IMMEDIATE so SQLite's single writer lock
serializes read-then-write sequences (conflict checks, dedup inserts) across
concurrent requests.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Seconds a writer waits for the lock before failing with "database is locked"
_BUSY_TIMEOUT = 30


def create_engine(db_path: Path) -> AsyncEngine:
    """Create an async engine for the SQLite file at db_path."""
    db_path = Path(db_path)
    # SQLAlchemy async needs sqlite+aiosqlite and path as URL
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}",
        echo=False,
        connect_args={"timeout": _BUSY_TIMEOUT},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:
        # Take over transaction control from the driver so BEGIN IMMEDIATE is used
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to engine."""
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create tables and indexes if they do not exist."""
    # Import models so they register with Base before create_all
    from readersync.files import models as _files  # noqa: F401
    from readersync.sync import models as _sync  # noqa: F401
    from readersync.users import models as _users  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session that commits on success and rolls back on error."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Dependency: yield a request-scoped session from the app's session factory."""
    async with session_scope(request.app.state.session_factory) as session:
        yield session
