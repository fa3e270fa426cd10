"""
NeighborLink Backend — Database Engine & Session Management
============================================================

What:  Async SQLAlchemy engine, session factory, declarative base and
       lifecycle helpers (startup connectivity probe, shutdown disposal).
How:   Creates an async engine with connection pooling. The relational store
       (neighborlink.store.relational) opens one short-lived session per
       operation from `async_session_factory`.

Connection Pooling:
    pool_size=20, max_overflow=10 → at most 30 connections.
    pool_pre_ping validates connections before use.
    pool_recycle=3600 recycles connections every hour.
"""

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from tenacity import (
    before_sleep_log,
    retry,
    stop_after_attempt,
    wait_exponential_jitter,
)

from neighborlink.config import settings

logger = logging.getLogger(__name__)


# ── Engine Configuration ──────────────────────────────────────────────────
engine = create_async_engine(
    settings.database_url,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=settings.db_pool_pre_ping,
    pool_recycle=3600,
    echo=settings.log_level == "DEBUG",
)

# ── Session Factory ───────────────────────────────────────────────────────
# expire_on_commit=False: rows are converted to pydantic copies after commit,
# outside the session context.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ── Base Model ────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Every model registers with this metadata; Alembic reads it for
    --autogenerate.
    """
    pass


# ── Lifecycle Helpers ─────────────────────────────────────────────────────
@retry(
    stop=stop_after_attempt(settings.db_connect_attempts),
    wait=wait_exponential_jitter(
        initial=settings.retry_min_wait,
        max=settings.retry_max_wait,
    ),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def wait_for_database() -> None:
    """
    Block startup until the database answers `SELECT 1`.

    Retried with exponential backoff and jitter; the last error is re-raised
    once `db_connect_attempts` is exhausted.
    """
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("Database connection verified")


async def dispose_engine() -> None:
    """Gracefully close all connections in the pool (application shutdown)."""
    await engine.dispose()
