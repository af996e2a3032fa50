"""Pytest configuration and shared fixtures.

Every test gets its own SQLite file (aiosqlite) so the conditional update in
SessionStore.claim() runs against a real database, including under concurrency.
"""

import os
import tempfile

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Set env before app imports so config/engine pick it up
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'sessionguard-test.db')}",
)
os.environ.setdefault("JWT_SECRET", "test-access-secret")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret")

from sessionguard.api.deps import get_rotation_engine
from sessionguard.core.passwords import SecretHasher
from sessionguard.db.base import Base
from sessionguard.db.session import build_engine
from sessionguard.main import app
from sessionguard.models import RefreshSession  # noqa: F401 - registers all models
from sessionguard.services.rotation import RotationEngine, TokenConfig
from sessionguard.services.session_store import SessionStore

ACCESS_SECRET = "test-access-secret"
REFRESH_SECRET = "test-refresh-secret"
ALICE_EMAIL = "alice@example.com"
ALICE_PASSWORD = "correct horse battery staple"


@pytest.fixture(scope="session")
def fast_hasher():
    """Argon2id with minimal cost so tests stay fast; digests are still real argon2id."""
    return SecretHasher(time_cost=1, memory_cost=1024, parallelism=1)


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'sessionguard.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def token_config():
    return TokenConfig(
        access_secret=ACCESS_SECRET,
        refresh_secret=REFRESH_SECRET,
        access_ttl="15m",
        refresh_ttl="7d",
    )


@pytest.fixture
def rotation(session_maker, token_config, fast_hasher):
    return RotationEngine(session_maker, token_config, fast_hasher)


@pytest_asyncio.fixture
async def alice(rotation):
    """Registered identity (email given in mixed case to exercise normalization)."""
    return await rotation.register("  Alice@Example.COM ", "Alice", ALICE_PASSWORD)


@pytest.fixture
def list_sessions(session_maker):
    async def _list(user_id: int):
        async with session_maker() as session:
            return await SessionStore(session).list_for_user(user_id)

    return _list


@pytest_asyncio.fixture
async def client(rotation):
    """AsyncClient against the app with the engine bound to this test's database (no lifespan/scheduler)."""
    app.dependency_overrides[get_rotation_engine] = lambda: rotation
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
