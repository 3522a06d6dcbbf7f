import pytest
import pytest_asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

from httpx import ASGITransport, AsyncClient

# Ensure the package root is on sys.path when pytest changes CWD to this tests dir
HERE = Path(__file__).resolve()
PKG_ROOT = HERE.parents[2]
if str(PKG_ROOT) not in sys.path:
    sys.path.insert(0, str(PKG_ROOT))

from storyapp.config import Settings  # noqa: E402
from storyapp.main import create_app  # noqa: E402
from storyapp.models import Base  # noqa: E402
from storyapp.storage import InMemoryBlobStore  # noqa: E402


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    # SQLite stands in for Postgres so the tests run without a database server
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'stories.db'}",
        jwt_secret='test-secret',
        password_hash_rounds=4,
        use_in_memory_storage=True,
        log_level='WARNING',
    )


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


@pytest_asyncio.fixture
async def app(settings, blob_store, clock):
    app = create_app(settings, blob_store=blob_store, clock=clock)
    async with app.state.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield app
    await app.state.engine.dispose()


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url='http://test') as ac:
        yield ac


@pytest.fixture
def credentials(app):
    return app.state.credentials


@pytest.fixture
def stories(app):
    return app.state.stories
