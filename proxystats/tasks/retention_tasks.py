"""Celery tasks for rollup retention"""
import asyncio
import logging
from celery import shared_task

from proxystats.core.exceptions import CleanupIncomplete
from proxystats.services.retention_service import RetentionService
from proxystats.tasks.utils import create_task_db_session

logger = logging.getLogger(__name__)


async def _auto_cleanup_async():
    task_engine, session_factory = create_task_db_session()
    try:
        async with session_factory() as db:
            try:
                result = await RetentionService.run_auto_cleanup(db)
            except CleanupIncomplete as e:
                logger.error(f"Auto cleanup incomplete: {e.message}")
                return {"status": "error", **e.to_dict()}
    finally:
        await task_engine.dispose()

    if result is None:
        return {"status": "skipped"}

    logger.info(f"Auto cleanup completed: {result['deleted']}")
    return {"status": "success", "deleted": result["deleted"]}


@shared_task(name="proxystats.tasks.retention.auto_cleanup")
def auto_cleanup():
    """
    Apply the persisted retention policy.
    Runs hourly; does nothing unless auto_cleanup is enabled.
    """
    return asyncio.run(_auto_cleanup_async())
