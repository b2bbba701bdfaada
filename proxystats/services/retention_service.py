"""Retention policy, cleanup and database maintenance"""
import logging
import os
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from proxystats.core.buckets import hour_key, minute_key, to_utc
from proxystats.core.exceptions import CleanupIncomplete
from proxystats.models.traffic import (
    CUMULATIVE_MODELS, PAIRWISE_MODELS, MINUTE_MODELS, HOURLY_MODELS,
    MinuteStats, HourlyStats,
)
from proxystats.schemas.config import RetentionConfigUpdate
from proxystats.services.config_service import ConfigService

logger = logging.getLogger(__name__)

FAMILY_MINUTE = "minute"
FAMILY_HOURLY = "hourly"
FAMILY_CUMULATIVE = "cumulative"

KEY_CONNECTION_LOGS_DAYS = "retention.connection_logs_days"
KEY_HOURLY_STATS_DAYS = "retention.hourly_stats_days"
KEY_AUTO_CLEANUP = "retention.auto_cleanup"

DEFAULT_CONNECTION_LOGS_DAYS = 7
DEFAULT_HOURLY_STATS_DAYS = 30

# Sorts before every real bucket key
EARLIEST_KEY = "0001-01-01T00:00:00"


def _cutoff_key(now: datetime, days: int, key) -> str:
    try:
        return key(now - timedelta(days=days))
    except OverflowError:
        # Older than any representable date: nothing can be past the cutoff
        return EARLIEST_KEY


class RetentionService:
    """Service for retention configuration and rollup cleanup"""

    @staticmethod
    async def get_retention_config(db: AsyncSession) -> Dict[str, Any]:
        values = await ConfigService.get_values(
            db, [KEY_CONNECTION_LOGS_DAYS, KEY_HOURLY_STATS_DAYS, KEY_AUTO_CLEANUP]
        )
        return {
            "connection_logs_days": int(values.get(KEY_CONNECTION_LOGS_DAYS, DEFAULT_CONNECTION_LOGS_DAYS)),
            "hourly_stats_days": int(values.get(KEY_HOURLY_STATS_DAYS, DEFAULT_HOURLY_STATS_DAYS)),
            "auto_cleanup": values.get(KEY_AUTO_CLEANUP) == "1",
        }

    @staticmethod
    async def update_retention_config(db: AsyncSession, update: RetentionConfigUpdate) -> Dict[str, Any]:
        values = {}
        if update.connection_logs_days is not None:
            values[KEY_CONNECTION_LOGS_DAYS] = str(update.connection_logs_days)
        if update.hourly_stats_days is not None:
            values[KEY_HOURLY_STATS_DAYS] = str(update.hourly_stats_days)
        if update.auto_cleanup is not None:
            values[KEY_AUTO_CLEANUP] = "1" if update.auto_cleanup else "0"
        await ConfigService.set_values(db, values)
        return await RetentionService.get_retention_config(db)

    @staticmethod
    def _plan(days: int, hourly_days: Optional[int], now: datetime) -> List[Tuple[str, tuple, Optional[tuple]]]:
        if days == 0:
            return [
                (FAMILY_MINUTE, MINUTE_MODELS, None),
                (FAMILY_HOURLY, HOURLY_MODELS, None),
                # Pairwise rows go with their dimensions so a wipe never
                # leaves one without the other
                (FAMILY_CUMULATIVE, CUMULATIVE_MODELS + PAIRWISE_MODELS, None),
            ]

        minute_cutoff = _cutoff_key(now, days, minute_key)
        hour_cutoff = _cutoff_key(now, hourly_days or days, hour_key)
        return [
            (FAMILY_MINUTE, MINUTE_MODELS, ("minute", minute_cutoff)),
            (FAMILY_HOURLY, HOURLY_MODELS, ("hour", hour_cutoff)),
        ]

    @staticmethod
    async def cleanup(
        db: AsyncSession,
        backend_id: Optional[int],
        days: int,
        hourly_days: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Delete rollup rows for one backend (or all when ``backend_id`` is None).

        ``days == 0`` wipes every rollup table in scope and compacts the
        database. ``days > 0`` removes minute rows older than ``now - days``
        and hourly rows older than ``now - (hourly_days or days)``;
        cumulative and pairwise rows are all-time totals and stay.

        Each table family commits on its own. If one fails, CleanupIncomplete
        reports what was completed; re-running is safe.
        """
        if days < 0:
            raise ValueError("days must be >= 0")

        now = to_utc(now or datetime.utcnow())
        plan = RetentionService._plan(days, hourly_days, now)
        scope = "all backends" if backend_id is None else f"backend {backend_id}"

        deleted: Dict[str, int] = {}
        tables: Dict[str, int] = {}
        completed: List[str] = []

        for index, (family, models, cutoff) in enumerate(plan):
            family_tables = {}
            try:
                for model in models:
                    stmt = delete(model)
                    if backend_id is not None:
                        stmt = stmt.where(model.backend_id == backend_id)
                    if cutoff is not None:
                        column, key = cutoff
                        stmt = stmt.where(getattr(model, column) < key)
                    result = await db.execute(stmt)
                    family_tables[model.__tablename__] = result.rowcount or 0
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                pending = [f for f, _, _ in plan[index:]]
                logger.error(f"Cleanup of {family} rollups for {scope} failed: {e}", exc_info=True)
                raise CleanupIncomplete(
                    f"Cleanup stopped at the {family} tables: {e.__class__.__name__}",
                    completed=completed,
                    pending=pending,
                    deleted=deleted
                ) from e

            tables.update(family_tables)
            deleted[family] = sum(family_tables.values())
            completed.append(family)
            logger.info(f"Deleted {deleted[family]} {family} rollup rows for {scope}")

        vacuumed = False
        if days == 0:
            try:
                await RetentionService.vacuum(db)
            except SQLAlchemyError as e:
                logger.error(f"Vacuum after wipe of {scope} failed: {e}", exc_info=True)
                raise CleanupIncomplete(
                    f"Rows deleted but compaction failed: {e.__class__.__name__}",
                    completed=completed,
                    pending=["vacuum"],
                    deleted=deleted
                ) from e
            vacuumed = True

        logger.info(f"Cleanup completed for {scope}: {deleted}")
        return {"deleted": deleted, "tables": tables, "vacuumed": vacuumed}

    @staticmethod
    async def vacuum(db: AsyncSession) -> None:
        """Reclaim disk space; VACUUM must run outside a transaction"""
        await db.commit()
        async with db.bind.connect() as conn:
            conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
            await conn.execute(text("VACUUM"))
        logger.info("Database vacuumed")

    @staticmethod
    async def get_database_size(db: AsyncSession) -> int:
        """On-disk size of the database in bytes"""
        bind = db.get_bind()
        if bind.dialect.name == "postgresql":
            result = await db.execute(text("SELECT pg_database_size(current_database())"))
            return int(result.scalar() or 0)

        database = bind.url.database
        if not database or database == ":memory:":
            return 0
        return sum(
            os.path.getsize(path)
            for path in (database, f"{database}-wal")
            if os.path.exists(path)
        )

    @staticmethod
    async def get_cleanup_stats(db: AsyncSession) -> Dict[str, Any]:
        minute = (await db.execute(
            select(func.count(MinuteStats.id), func.min(MinuteStats.minute))
        )).one()
        hourly = (await db.execute(
            select(func.count(HourlyStats.id), func.min(HourlyStats.hour))
        )).one()
        return {
            "connection_logs_count": minute[0] or 0,
            "hourly_stats_count": hourly[0] or 0,
            "oldest_connection_log": minute[1],
            "oldest_hourly_stat": hourly[1],
        }

    @staticmethod
    async def run_auto_cleanup(db: AsyncSession, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        """Apply the persisted retention policy to every backend, if enabled"""
        config = await RetentionService.get_retention_config(db)
        if not config["auto_cleanup"]:
            logger.debug("Auto cleanup disabled, skipping")
            return None
        return await RetentionService.cleanup(
            db,
            None,
            config["connection_logs_days"],
            hourly_days=config["hourly_stats_days"],
            now=now
        )
