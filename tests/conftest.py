"""Shared fixtures for the dashboard tests."""

from pathlib import Path

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from twin_dashboard.config import Settings
from twin_dashboard.main import create_app
from twin_dashboard.storage import AgentStore


def sqlite_url(path: Path) -> str:
    return f"sqlite+aiosqlite:///{path}"


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a throwaway SQLite file."""
    return Settings(
        database_url=sqlite_url(tmp_path / "test_api.db"),
        environment="test",
        elevenlabs_api_key="",
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    """Test client with the lifespan (tables + seed) already run."""
    with TestClient(app) as c:
        yield c


@pytest_asyncio.fixture
async def store(tmp_path):
    """Empty AgentStore with tables created."""
    s = AgentStore(sqlite_url(tmp_path / "test_store.db"))
    await s.init_models()
    yield s
    await s.dispose()
