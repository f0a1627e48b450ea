"""
WATCHTOWER - Database
=====================
Async engine, session scopes and health checks.

PostgreSQL (asyncpg) in production, SQLite (aiosqlite) for development and
tests. Sweeps and poll loops run outside request handling, so every one of
them opens its own ``session_scope``; request handlers go through ``get_db``.
"""

from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncGenerator, Callable, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from watchtower.config import Settings, settings

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


def normalize_database_url(url: str) -> str:
    """Force the async driver for plain ``sqlite://`` URLs."""
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def build_engine(url: str, config: Settings = settings) -> AsyncEngine:
    url = normalize_database_url(url)
    if url.startswith("postgresql"):
        return create_async_engine(
            url,
            echo=config.debug,
            pool_pre_ping=True,
            pool_size=config.db_pool_size,
            max_overflow=config.db_max_overflow,
            pool_timeout=config.db_pool_timeout,
            pool_recycle=config.db_pool_recycle,
        )
    if not url.startswith("sqlite"):
        return create_async_engine(url, echo=config.debug, pool_pre_ping=True)
    # Concurrent sweeps each hold their own connection; writers queue on the file lock.
    return create_async_engine(
        url,
        echo=config.debug,
        poolclass=NullPool,
        connect_args={"check_same_thread": False, "timeout": config.sqlite_busy_timeout},
    )


def make_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False, autoflush=False)


def session_scope(maker: async_sessionmaker[AsyncSession]) -> SessionFactory:
    """
    Turn a sessionmaker into a unit-of-work factory.

    Each ``async with factory() as db`` block commits when it exits cleanly
    and rolls back when it raises.
    """

    @asynccontextmanager
    async def scope() -> AsyncGenerator[AsyncSession, None]:
        async with maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return scope


engine = build_engine(settings.database_url)
AsyncSessionLocal = make_sessionmaker(engine)
async_session = session_scope(AsyncSessionLocal)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one unit of work per request."""
    async with async_session() as session:
        yield session


async def init_db():
    """Create tables directly; migrations are the production path."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    await engine.dispose()


async def check_db_health(bind: Optional[AsyncEngine] = None) -> dict:
    """Round-trip a trivial query. Never raises."""
    bind = bind or engine
    try:
        async with bind.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        return {"connected": False, "dialect": bind.dialect.name, "error": str(e)}
    return {"connected": True, "dialect": bind.dialect.name}
