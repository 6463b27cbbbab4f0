"""
Test configuration for visitlog tests.

sys.path is configured so 'from visitlog...' resolves when pytest runs from the
project root without the package installed.

Database: every test gets its own SQLite file (aiosqlite) with the schema created
from Base.metadata. The app's get_db / get_session_factory dependencies are
overridden to use it, and the request clock (get_now) is driven by FakeClock.
"""
import sys
from pathlib import Path

_package_dir = Path(__file__).parent.parent        # .../visitlog/
_project_root = _package_dir.parent               # project root

if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import visitlog.models  # noqa: F401 — registers tables on Base.metadata
from visitlog.database import Base, get_db, get_session_factory
from visitlog.main import app
from visitlog.tracking.routes import get_now

from helpers import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'visitlog.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    """A session for direct store-level tests (no HTTP)."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory, clock):
    """Async httpx client using ASGI transport — no live server needed."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_now] = lambda: clock.now

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
