import pytest
from sqlalchemy import func, select

from proxystats.core.config import settings
from proxystats.models.traffic import MinuteStats
from proxystats.schemas.config import RetentionConfigUpdate
from proxystats.services.retention_service import RetentionService
from proxystats.tasks.retention_tasks import _auto_cleanup_async


@pytest.fixture
def task_database(tmp_path, engine, monkeypatch):
    # Same file the engine fixture created
    monkeypatch.setattr(settings, "DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'stats.db'}")


@pytest.mark.asyncio
async def test_auto_cleanup_skips_when_disabled(db, task_database):
    assert await _auto_cleanup_async() == {"status": "skipped"}


@pytest.mark.asyncio
async def test_auto_cleanup_applies_retention(db, writer, make_event, task_database):
    await writer.apply(db, 1, make_event("2020-01-01T10:00:00", 1, 0))
    await RetentionService.update_retention_config(db, RetentionConfigUpdate(auto_cleanup=True))

    result = await _auto_cleanup_async()

    assert result["status"] == "success"
    assert result["deleted"] == {"minute": 1, "hourly": 1}
    await db.commit()
    count = (await db.execute(select(func.count(MinuteStats.id)))).scalar()
    assert count == 0
