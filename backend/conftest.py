"""Pytest configuration: set test env before any readersync imports so settings use test values."""

import hashlib
import os
import tempfile
import time
from pathlib import Path

import pytest
import pytest_asyncio

# Set before readersync.config / readersync.limiter are imported
_tmp = tempfile.mkdtemp(prefix="readersync_test_")
os.environ.setdefault("READERSYNC_DB_PATH", os.path.join(_tmp, "test.db"))
os.environ.setdefault("READERSYNC_LIBRARY_PATH", os.path.join(_tmp, "library"))
os.environ.setdefault("READERSYNC_UPLOAD_TMP_PATH", os.path.join(_tmp, "tmp"))
os.environ.setdefault("READERSYNC_RATE_LIMIT_ENABLED", "false")
# Bootstrap user for API tests (login as alice / wonderland)
os.environ.setdefault("READERSYNC_ADMIN_USERNAME", "alice")
os.environ.setdefault("READERSYNC_ADMIN_INITIAL_PASSWORD", "wonderland")

ADMIN_USERNAME = "alice"
ADMIN_PASSWORD = "wonderland"


@pytest.fixture
def settings(tmp_path: Path):
    """Settings pointing every path at this test's tmp dir."""
    from readersync.config import Settings

    return Settings(
        db_path=tmp_path / "app.db",
        library_path=tmp_path / "library",
        upload_tmp_path=tmp_path / "tmp",
        admin_username=ADMIN_USERNAME,
        admin_initial_password=ADMIN_PASSWORD,
        max_file_size_mb=1,
        rate_limit_enabled=False,
    )


@pytest_asyncio.fixture
async def session_factory(settings):
    """Fresh SQLite database per test; yields an async_sessionmaker."""
    from readersync.db.session import create_engine, create_session_factory, init_db

    engine = create_engine(settings.db_path)
    await init_db(engine)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def seed(session_factory):
    """Helpers that insert users and book rows directly, for stores with foreign keys."""
    from readersync.db.session import session_scope
    from readersync.files.models import BookAsset
    from readersync.users.models import User

    class Seed:
        async def user(self, username: str = ADMIN_USERNAME) -> str:
            async with session_scope(session_factory) as session:
                session.add(User(username=username, password_hash="x", created_at=0))
            return username

        async def book(self, file_id: str, size: int = 10) -> str:
            async with session_scope(session_factory) as session:
                session.add(
                    BookAsset(
                        file_id=file_id,
                        content_hash=hashlib.sha256(file_id.encode()).hexdigest(),
                        size=size,
                        location=f"/nonexistent/{file_id}",
                        client_file_name=f"{file_id}.epub",
                        created_at=int(time.time() * 1000),
                    )
                )
            return file_id

    return Seed()
