from __future__ import annotations

import os
import tempfile
from pathlib import Path

# Point settings at a throwaway SQLite database before any toolforge module builds the engine.
_TEST_DB_DIR = Path(tempfile.mkdtemp(prefix="toolforge-tests-"))
os.environ["DATABASE_URL"] = os.environ.get(
    "TEST_DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_DB_DIR / 'toolforge.db'}"
)
os.environ.setdefault("NEWS_SYNC_ENABLED", "false")
os.environ.setdefault("NEWS_RSS_FEEDS", "")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from toolforge.core.config import get_settings  # noqa: E402
from toolforge.domain.models import Base  # noqa: E402
from toolforge.persistence.db import engine  # noqa: E402


@pytest.fixture(autouse=True)
async def database_schema() -> None:
    # Fresh schema per test keeps integration tests independent of ordering.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()


@pytest.fixture
async def client() -> AsyncClient:
    from toolforge.apps.api.main import create_app

    get_settings.cache_clear()
    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http
