"""
Database session management.

Two session sources:
  1. The API process shares one pooled engine (``engine`` / ``AsyncSessionLocal``).
     ``get_db()`` is the FastAPI dependency; it opens a transaction per request
     and commits when the route returns.
  2. Celery workers run each task inside a fresh event loop (``asyncio.run``),
     and asyncpg connections are bound to the loop that created them. Workers
     therefore build a throwaway NullPool engine per task through
     ``worker_session_factory()`` and dispose of it when the task ends.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from logbook.core.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

engine: AsyncEngine = create_async_engine(
    settings.database_url,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,          # detect stale connections before use
    pool_recycle=3600,           # recycle connections every hour
    echo=settings.db_echo_sql,
)

# Session factory: expire_on_commit=False keeps ORM objects usable after commit
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that yields a transactional session.

    Usage in a route:
        @router.get("/documents/{document_id}/status")
        async def status(db: DB): ...

    Commits when the route returns and rolls back if it raises. Services
    may commit earlier (e.g. before publishing a task that reads the row).
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """Transactional session for code running outside a request."""
    async with AsyncSessionLocal() as session:
        async with session.begin():
            yield session


# ---------------------------------------------------------------------------
# Worker engine (one per Celery task)
# ---------------------------------------------------------------------------

def worker_session_factory() -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    Build a NullPool engine and its session factory for a single worker task.
    The caller owns the engine and must ``await engine.dispose()`` when done.
    """
    task_engine = create_async_engine(
        settings.database_url,
        poolclass=NullPool,
        echo=settings.db_echo_sql,
    )
    factory = async_sessionmaker(
        bind=task_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return task_engine, factory


# ---------------------------------------------------------------------------
# Health check helper
# ---------------------------------------------------------------------------

async def check_db_health() -> dict:
    """Ping the database; used by /ready endpoint."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        logger.error("DB health check failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
