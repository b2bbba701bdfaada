"""Shared fixtures: a throwaway SQLite database per test"""
import os
import tempfile
from datetime import datetime

# Point the module-level engine away from ./data before the app is imported
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'proxystats-test.db')}"
)

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import proxystats.models  # noqa: F401  register tables
from proxystats.core.database import Base, create_engine_for_url
from proxystats.schemas.traffic import TrafficEvent
from proxystats.services.traffic_writer import TrafficWriter


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'stats.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def writer():
    return TrafficWriter(max_retries=3, retry_backoff=0, max_pending=4)


@pytest.fixture
def make_event():
    def _make(ts, upload=0, download=0, **fields):
        if isinstance(ts, str):
            ts = datetime.fromisoformat(ts)
        return TrafficEvent(timestamp=ts, upload=upload, download=download, **fields)
    return _make
