"""
Database module for factorydash.

Provides async SQLAlchemy engines, session management, schema
initialization and a liveness probe for the relational store.
"""
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from factorydash.db.engine import async_session, build_engine, build_session_factory, engine, shutdown
from factorydash.db.models import Base, CostEntry, MediaFile, PipelineSession, PipelineStep, WorkflowError

logger = logging.getLogger(__name__)


async def init_database(target: AsyncEngine = engine):
    """Create the ledger tables if they do not exist yet."""
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def check_connection(target: AsyncEngine = engine) -> bool:
    """Return True if the relational store answers ``SELECT 1``."""
    try:
        async with target.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database not available: {type(e).__name__}: {e}")
        return False


__all__ = [
    "Base",
    "engine",
    "async_session",
    "build_engine",
    "build_session_factory",
    "shutdown",
    "init_database",
    "check_connection",
    "PipelineSession",
    "PipelineStep",
    "CostEntry",
    "WorkflowError",
    "MediaFile",
]
