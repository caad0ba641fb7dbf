"""
Database engine and sessions for the compliance store.

SQLite backs development and tests; PostgreSQL backs production. Services
commit their own unit of work (inside the per-case / per-condominium lock),
so the request session only has to roll back whatever a failure left behind.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool

from app.core.config import get_settings


class Base(DeclarativeBase):
    pass


_engine: Optional[AsyncEngine] = None
_sessions: Optional[async_sessionmaker[AsyncSession]] = None


def _engine_options(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        # One connection per session; writers wait on the file lock for 30s
        return {"poolclass": NullPool, "connect_args": {"timeout": 30}}
    return {
        "poolclass": AsyncAdaptedQueuePool,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 1800,
        "pool_pre_ping": True,
    }


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.database_url,
            echo=settings.debug,
            **_engine_options(settings.database_url),
        )
    return _engine


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Session outside a request (tests, scripts).

        async with get_db_session() as db:
            case = await case_registry.get_case(db, case_id)
    """
    global _sessions
    if _sessions is None:
        _sessions = async_sessionmaker(get_engine(), expire_on_commit=False, autoflush=False)
    async with _sessions() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request."""
    async with get_db_session() as session:
        yield session


async def init_db() -> None:
    """Create missing tables on startup."""
    from app.models import models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    global _engine, _sessions
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessions = None
