"""Persisted key/value settings"""
from datetime import datetime
from typing import Dict, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from proxystats.core.database import dialect_insert
from proxystats.models.config import AppConfig


class ConfigService:
    """Service for the app_config table"""

    @staticmethod
    async def get_values(db: AsyncSession, keys: Iterable[str]) -> Dict[str, str]:
        result = await db.execute(
            select(AppConfig.key, AppConfig.value).where(AppConfig.key.in_(list(keys)))
        )
        return {row.key: row.value for row in result.all()}

    @staticmethod
    async def get_value(db: AsyncSession, key: str) -> Optional[str]:
        values = await ConfigService.get_values(db, [key])
        return values.get(key)

    @staticmethod
    async def set_values(db: AsyncSession, values: Dict[str, str]) -> None:
        """Upsert several settings in one transaction"""
        if not values:
            return
        insert = dialect_insert(db)
        now = datetime.utcnow()
        for key, value in values.items():
            stmt = insert(AppConfig).values(key=key, value=value, updated_at=now)
            stmt = stmt.on_conflict_do_update(
                index_elements=["key"],
                set_={"value": stmt.excluded["value"], "updated_at": now}
            )
            await db.execute(stmt)
        await db.commit()
