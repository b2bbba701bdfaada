"""System initialization and setup utilities"""
import asyncio
import logging
from sqlalchemy import text
from proxystats.core.database import AsyncSessionLocal, engine, Base
import proxystats.models  # Register all models
from proxystats.services.config_service import ConfigService
from proxystats.services.retention_service import (
    DEFAULT_CONNECTION_LOGS_DAYS, DEFAULT_HOURLY_STATS_DAYS,
    KEY_AUTO_CLEANUP, KEY_CONNECTION_LOGS_DAYS, KEY_HOURLY_STATS_DAYS,
)

logger = logging.getLogger(__name__)


async def create_tables():
    """Create all database tables"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created successfully")


async def seed_data():
    """Seed default retention settings"""
    defaults = {
        KEY_CONNECTION_LOGS_DAYS: str(DEFAULT_CONNECTION_LOGS_DAYS),
        KEY_HOURLY_STATS_DAYS: str(DEFAULT_HOURLY_STATS_DAYS),
        KEY_AUTO_CLEANUP: "0",
    }
    async with AsyncSessionLocal() as session:
        existing = await ConfigService.get_values(session, defaults)
        missing = {k: v for k, v in defaults.items() if k not in existing}
        if missing:
            logger.info(f"Seeding default settings: {sorted(missing)}")
            await ConfigService.set_values(session, missing)


async def check_database_connection():
    """Check database connection"""
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        logger.info("Database connection successful")
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False


async def init_system():
    """Initialize system on startup"""
    logger.info("Initializing ProxyStats...")

    db_ok = await check_database_connection()
    if not db_ok:
        logger.error("Cannot start: Database connection failed")
        return False

    await create_tables()
    await seed_data()

    logger.info("System initialized successfully")
    return True


if __name__ == "__main__":
    asyncio.run(init_system())
