"""Pytest configuration and shared fixtures."""

import os
import tempfile
import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test DB before app imports so config/engine use it
_TEST_DB_DIR = tempfile.mkdtemp(prefix="pullup-trainer-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{os.path.join(_TEST_DB_DIR, 'test.db')}")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("LLM_PROVIDER", "mock")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("AI_GENERATION_ENABLED", "true")

from pullup_trainer.core.auth import create_access_token
from pullup_trainer.db.base import Base
from pullup_trainer.db.session import async_session_maker, engine, init_db
from pullup_trainer.main import app


@pytest_asyncio.fixture
async def ensure_db():
    """Create tables; dispose pooled connections after the test (each test has its own loop)."""
    await init_db()
    yield
    await engine.dispose()


async def _delete_all():
    """Delete all rows in reverse dependency order so tests start clean."""
    async with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())


@pytest_asyncio.fixture
async def clean_db(ensure_db):
    await _delete_all()
    yield


@pytest_asyncio.fixture
async def client(clean_db):
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def db_session(clean_db):
    async with async_session_maker() as session:
        yield session


@pytest.fixture
def user_id() -> str:
    return f"user-{uuid.uuid4()}"


@pytest.fixture
def auth_headers(user_id):
    """Authorization header for user_id."""
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture
def other_auth_headers():
    return {"Authorization": f"Bearer {create_access_token(f'user-{uuid.uuid4()}')}"}
