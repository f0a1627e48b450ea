"""
WATCHTOWER - Test Configuration
===============================
Pytest fixtures and configuration for all test types.
"""

import os
from typing import AsyncGenerator
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment before importing app
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["INTERNAL_FUNCTION_SECRET"] = "test-internal-secret"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ.pop("LEAKCHECK_API_KEY", None)
os.environ.pop("WORKFLOW_API_KEY", None)
os.environ.pop("ALERT_WEBHOOK_URL", None)

from watchtower.db.database import Base, make_sessionmaker, session_scope
from watchtower.db.models import Investigation, MonitoredSubject, SubjectType, User

INTERNAL_SECRET = "test-internal-secret"


# ===========================================
# Database Fixtures
# ===========================================

@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create async engine for testing with in-memory SQLite."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return make_sessionmaker(db_engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def session_factory(session_maker):
    """Drop-in for ``watchtower.db.database.async_session`` bound to the test engine."""
    return session_scope(session_maker)


# ===========================================
# Model Fixtures
# ===========================================

@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Create a test user."""
    user = User(
        id=uuid4(),
        email=make_email(),
        name="Test User",
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_investigation(db_session: AsyncSession, test_user: User) -> Investigation:
    """Create a test investigation."""
    investigation = Investigation(
        id=uuid4(),
        user_id=test_user.id,
        target="Jane Doe",
    )
    db_session.add(investigation)
    await db_session.commit()
    await db_session.refresh(investigation)
    return investigation


# ===========================================
# HTTP Client Fixtures
# ===========================================

@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    from watchtower.api.server import app
    from watchtower.db.database import get_db

    # Override database dependency
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ===========================================
# Utility Functions
# ===========================================

async def make_subject(
    db: AsyncSession,
    user_id: UUID,
    subject_value: str,
    subject_type: SubjectType = SubjectType.EMAIL,
) -> UUID:
    """Insert a monitored subject and return its id."""
    subject = MonitoredSubject(
        id=uuid4(),
        user_id=user_id,
        subject_type=subject_type,
        subject_value=subject_value,
    )
    db.add(subject)
    await db.commit()
    return subject.id


def make_email():
    """Generate a unique test email."""
    return f"test_{uuid4().hex[:8]}@watchtower.dev"


def breach_body(sources: dict, dates: dict = None) -> dict:
    """LeakCheck-shaped success body for {source_name: [records]}."""
    dates = dates or {}
    return {
        "success": True,
        "found": sum(len(records) for records in sources.values()),
        "sources": [{"name": name, "date": dates.get(name)} for name in sources],
        "sources_data": sources,
    }
