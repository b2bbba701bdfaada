"""Database engine, session factory and dialect helpers"""
import os
from typing import AsyncGenerator

from sqlalchemy import event, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from proxystats.core.config import settings

Base = declarative_base()


def create_engine_for_url(url: str, **kwargs):
    """
    Create an async engine for the given URL.

    SQLite databases are switched to WAL mode with a busy timeout so that
    readers keep working on a consistent snapshot while the single writer
    holds its transaction.
    """
    if url.startswith("sqlite"):
        database = url.split(":///", 1)[-1]
        if database and database != ":memory:":
            directory = os.path.dirname(database)
            if directory:
                os.makedirs(directory, exist_ok=True)
        engine = create_async_engine(url, **kwargs)
        attach_sqlite_pragmas(engine)
        return engine

    kwargs.setdefault("pool_size", settings.DATABASE_POOL_SIZE)
    kwargs.setdefault("max_overflow", settings.DATABASE_MAX_OVERFLOW)
    return create_async_engine(url, **kwargs)


def attach_sqlite_pragmas(engine) -> None:
    """Register the connect hook that configures every new SQLite connection"""

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={settings.DATABASE_BUSY_TIMEOUT_MS}")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()


engine = create_engine_for_url(settings.DATABASE_URL, echo=False)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a database session"""
    async with AsyncSessionLocal() as session:
        yield session


def dialect_name(db: AsyncSession) -> str:
    return db.get_bind().dialect.name


def dialect_insert(db: AsyncSession):
    """Return the dialect specific ``insert`` that supports ON CONFLICT"""
    if dialect_name(db) == "postgresql":
        return postgresql.insert
    return sqlite.insert


def greatest(db: AsyncSession, left, right):
    """Scalar maximum of two expressions (GREATEST on Postgres, max() on SQLite)"""
    if dialect_name(db) == "postgresql":
        return func.greatest(left, right)
    return func.max(left, right)
