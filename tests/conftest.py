"""Shared fixtures for concierge tests."""

import pytest
import pytest_asyncio

import concierge.config as config_module
from concierge.cache import (
    ActivityStore,
    CacheStore,
    ChatStore,
    DatabaseManager,
    InstructionStore,
    SyncRunStore,
    UserStore,
)
from concierge.utils.circuit_breaker import reset_all_circuits


@pytest.fixture(autouse=True)
def isolate_env(monkeypatch, tmp_path):
    """Prevent tests from reading real .env or touching real data."""
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test_key")
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.setenv("AZURE_ENVIRONMENT", "false")
    monkeypatch.setenv("SCHEDULER_TIMEZONE", "UTC")
    monkeypatch.setenv("PAGE_DELAY_SECONDS", "0")
    monkeypatch.setenv("FETCH_PACING_SECONDS", "0")
    monkeypatch.setattr(config_module, "_settings", None)
    reset_all_circuits()
    yield
    reset_all_circuits()


@pytest_asyncio.fixture
async def db(tmp_path):
    manager = DatabaseManager(db_path=str(tmp_path / "test.db"))
    await manager.init()
    yield manager
    await manager.close()


@pytest.fixture
def cache(db):
    return CacheStore(db)


@pytest.fixture
def users(db):
    return UserStore(db)


@pytest.fixture
def runs(db):
    return SyncRunStore(db)


@pytest.fixture
def instructions(db):
    return InstructionStore(db)


@pytest.fixture
def activities(db):
    return ActivityStore(db)


@pytest.fixture
def chat_store(db):
    return ChatStore(db)


@pytest_asyncio.fixture
async def user_id(users):
    """User 1 with both Google and HubSpot connected."""
    await users.upsert_user(
        1, email="advisor@example.com",
        google_access_token="g-token", hubspot_access_token="h-token",
    )
    return 1
