"""Shared utilities for Celery tasks"""
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession
from proxystats.core.config import settings
from proxystats.core.database import create_engine_for_url


def create_task_db_session():
    """
    Create a new database engine and session factory for use in Celery tasks.

    Each task runs its coroutine under its own asyncio.run() loop, and pooled
    async connections are bound to the loop that opened them, so the
    application's global engine cannot be reused here. The caller disposes
    the returned engine when done.
    """
    task_engine = create_engine_for_url(
        str(settings.DATABASE_URL),
        echo=settings.DEBUG,
    )
    session_factory = async_sessionmaker(
        task_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    return task_engine, session_factory
