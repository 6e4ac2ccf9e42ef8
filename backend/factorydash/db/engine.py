"""
Database engine configuration for factorydash.

Provides async SQLAlchemy engines (SQLite WAL mode by default, any async
dialect accepted), crash-safe PRAGMA configuration, and session factories.
"""
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from factorydash.config import settings


def configure_sqlite_pragmas(dbapi_conn, connection_record):
    """
    Configure SQLite PRAGMA settings for crash safety and concurrency.

    - WAL mode: readers do not block the callback writers
    - Foreign keys: steps, costs and media must reference a real session
    - Busy timeout: wait up to 5s for locks instead of failing the callback
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine, registering SQLite PRAGMAs when applicable."""
    engine = create_async_engine(database_url, echo=echo, pool_pre_ping=True)
    if engine.dialect.name == "sqlite":
        # CRITICAL: Use engine.sync_engine for aiosqlite compatibility
        event.listens_for(engine.sync_engine, "connect")(configure_sqlite_pragmas)
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: rows are handed to the fan-out after commit
    return async_sessionmaker(
        engine,
        expire_on_commit=False,
        class_=AsyncSession,
    )


# Default engine and session factory for the running service
engine = build_engine(settings.database.url, echo=settings.database.echo)
async_session = build_session_factory(engine)


async def shutdown(target: AsyncEngine = engine):
    """Dispose of engine and close all connections."""
    await target.dispose()
