"""Shared fixtures for realtime tests."""

import pytest
import pytest_asyncio

from helpers import SECRET
from matcha_realtime import Database, InMemorySessionStore, RealtimeConfig


@pytest.fixture
def config() -> RealtimeConfig:
    """Create a config instance for testing."""
    return RealtimeConfig(session_secret=SECRET)


@pytest.fixture
def session_store() -> InMemorySessionStore:
    """Session store holding sessions for users 1 and 2."""
    store = InMemorySessionStore()
    store.set("sid-1", {"userId": 1, "username": "alice"})
    store.set("sid-2", {"userId": 2, "username": "bob"})
    return store


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest_asyncio.fixture
async def database(db_url: str):
    """File-backed SQLite database with the schema created."""
    db = Database(db_url)
    await db.create_all()
    yield db
    await db.dispose()
