"""
WATCHTOWER - Database Helper Tests
==================================
Test engine construction and unit-of-work session scopes.
"""

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from watchtower.config import Settings
from watchtower.db.database import build_engine, check_db_health, normalize_database_url, session_scope
from watchtower.db.models import User


class TestEngine:
    """Test engine construction from settings."""

    def test_plain_sqlite_url_gets_async_driver(self):
        assert normalize_database_url("sqlite:///./dev.db") == "sqlite+aiosqlite:///./dev.db"
        assert normalize_database_url("sqlite+aiosqlite:///x.db") == "sqlite+aiosqlite:///x.db"

    def test_postgres_pool_sized_from_settings(self):
        config = Settings(
            database_url="postgresql+asyncpg://u:p@localhost/db",
            db_pool_size=3,
            db_max_overflow=4,
        )

        engine = build_engine(config.database_url, config)

        assert engine.pool.size() == 3

    @pytest.mark.asyncio
    async def test_health_reports_dialect(self, db_engine):
        assert await check_db_health(db_engine) == {"connected": True, "dialect": "sqlite"}

    @pytest.mark.asyncio
    async def test_health_reports_failure(self, tmp_path):
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/missing/dir/x.db")

        health = await check_db_health(engine)

        assert health["connected"] is False
        assert "error" in health
        await engine.dispose()


class TestSessionScope:
    """Test the commit-or-rollback unit of work."""

    @pytest.mark.asyncio
    async def test_commits_on_clean_exit(self, session_maker, db_session: AsyncSession):
        scope = session_scope(session_maker)

        async with scope() as db:
            db.add(User(email="scope@watchtower.dev"))

        count = await db_session.scalar(select(func.count()).select_from(User))
        assert count == 1

    @pytest.mark.asyncio
    async def test_rolls_back_and_reraises(self, session_maker, db_session: AsyncSession):
        scope = session_scope(session_maker)

        with pytest.raises(RuntimeError):
            async with scope() as db:
                db.add(User(email="scope@watchtower.dev"))
                await db.flush()
                raise RuntimeError("boom")

        count = await db_session.scalar(select(func.count()).select_from(User))
        assert count == 0
