"""
Global pytest configuration and fixtures for auth247 platform tests.

Every test gets its own in-memory SQLite database. A single shared connection
(StaticPool) keeps the schema visible to every session the test opens, so
concurrent work must be serialized (e.g. job concurrency of 1).
"""

import os
from collections.abc import AsyncIterator
from datetime import UTC, datetime

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("OBSERVABILITY__OTEL_ENABLED", "false")

import auth247.platform.models  # noqa: E402,F401
from auth247.platform.db import Base, get_async_session  # noqa: E402
from auth247.platform.metering.metrics import MeteringMetrics  # noqa: E402
from auth247.platform.metering.recorder import ActivityRecorder  # noqa: E402

# Mid-month instant used as "now" throughout the suite; the previous
# billing period is therefore 2025-02.
FIXED_NOW = datetime(2025, 3, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Create an in-memory SQLite database with the full schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def async_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


class FrozenClock:
    """Clock that returns a fixed instant until moved."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(FIXED_NOW)


@pytest.fixture
def metrics() -> MeteringMetrics:
    """Metrics against the default (no-op) meter provider."""
    return MeteringMetrics()


@pytest.fixture
def activity_recorder(
    session_factory: async_sessionmaker[AsyncSession],
    clock: FrozenClock,
    metrics: MeteringMetrics,
) -> ActivityRecorder:
    """A recorder that is not started; tests drive it with flush()."""
    return ActivityRecorder(session_factory, clock=clock, metrics=metrics)


@pytest.fixture
async def async_client(
    session_factory: async_sessionmaker[AsyncSession],
    activity_recorder: ActivityRecorder,
) -> AsyncIterator[AsyncClient]:
    """HTTP client against the application wired to the test database."""
    from auth247.platform.main import create_application

    app = create_application()

    async def override_session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_async_session] = override_session
    app.state.activity_recorder = activity_recorder

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
