"""
Async SQLAlchemy plumbing for the usage and billing tables.

The engine and session maker are built on first use, so importing models
never touches the database.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any
from urllib.parse import quote_plus

from sqlalchemy import DateTime, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from auth247.platform.clock import utc_now
from auth247.platform.settings import settings

LOCAL_SQLITE_URL = "sqlite:///./auth247_dev.sqlite"

_ASYNC_DRIVERS = {
    "postgresql://": "postgresql+asyncpg://",
    "sqlite://": "sqlite+aiosqlite://",
}


def get_database_url() -> str:
    """Plain (driverless) URL; local runs without a password fall back to SQLite."""
    db = settings.database
    if db.url:
        return str(db.url)
    if not db.password and (settings.is_development or settings.is_testing):
        return LOCAL_SQLITE_URL

    credentials = quote_plus(db.username)
    if db.password:
        credentials += ":" + quote_plus(db.password)
    return f"postgresql://{credentials}@{db.host}:{db.port}/{db.database}"


def get_async_database_url() -> str:
    url = get_database_url()
    for prefix, async_prefix in _ASYNC_DRIVERS.items():
        if url.startswith(prefix):
            return async_prefix + url[len(prefix) :]
    return url


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    """``created_at`` / ``updated_at`` maintained from the UTC clock."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )


_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def _engine_options(url: str) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": settings.database.echo}
    if url.startswith("sqlite"):
        return options
    db = settings.database
    options.update(
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
        pool_recycle=db.pool_recycle,
        pool_pre_ping=db.pool_pre_ping,
    )
    return options


def get_async_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        url = get_async_database_url()
        _engine = create_async_engine(url, **_engine_options(url))
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Session factory shared by requests, the recorder and the monthly job."""
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(
            get_async_engine(), class_=AsyncSession, autoflush=False, expire_on_commit=False
        )
    return _session_maker


async def dispose_engine() -> None:
    """Drop pooled connections; the next caller builds a fresh engine."""
    global _engine, _session_maker
    engine, _engine, _session_maker = _engine, None, None
    if engine is not None:
        await engine.dispose()


@asynccontextmanager
async def get_async_db() -> AsyncIterator[AsyncSession]:
    """Unit of work: commit when the block exits cleanly, roll back otherwise."""
    async with get_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_async_session() -> AsyncIterator[AsyncSession]:
    """Request-scoped session dependency; handlers commit explicitly."""
    async with get_session_maker()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def create_all_tables_async() -> None:
    import auth247.platform.models  # noqa: F401  registers every table

    async with get_async_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def check_database_health() -> bool:
    try:
        async with get_async_db() as session:
            await session.execute(text("SELECT 1"))
    except Exception:
        return False
    return True


__all__ = [
    "Base",
    "TimestampMixin",
    "get_async_engine",
    "get_session_maker",
    "dispose_engine",
    "get_async_db",
    "get_async_session",
    "create_all_tables_async",
    "check_database_health",
]
