"""
Tests for the activity recorder.

Recording must never raise or block: a full buffer drops the event, a
rejected event is dropped alone and an unreachable store loses the batch,
all with a log entry only.
"""

from unittest.mock import MagicMock

import pytest
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from auth247.platform.db import Base
from auth247.platform.metering.models import UserActivity
from auth247.platform.metering.recorder import ActivityRecorder
from tests.factories import create_tenant, create_user


async def stored_activity(session_factory) -> list[UserActivity]:
    async with session_factory() as session:
        result = await session.execute(select(UserActivity).order_by(UserActivity.id))
        return list(result.scalars().all())


@pytest.fixture
async def user(async_session):
    await create_tenant(async_session, "acme")
    user = await create_user(async_session, "acme", "alice@acme.example.com")
    await async_session.commit()
    return user


class TestRecord:
    """Test queueing and writing events."""

    async def test_flush_writes_queued_events(
        self, activity_recorder, session_factory, clock, user
    ):
        """Test queued events land in the activity log stamped with the clock."""
        activity_recorder.record(
            user.id,
            "acme",
            "login",
            {"method": "password", "mfa": True},
            source_ip="203.0.113.7",
            user_agent="pytest",
        )
        assert activity_recorder.pending == 1

        await activity_recorder.flush()

        assert activity_recorder.pending == 0
        rows = await stored_activity(session_factory)
        assert len(rows) == 1
        row = rows[0]
        assert row.user_id == user.id
        assert row.tenant_id == "acme"
        assert row.activity_type == "login"
        assert row.activity_metadata == {"method": "password", "mfa": True}
        assert row.source_ip == "203.0.113.7"
        assert row.user_agent == "pytest"
        assert row.timestamp.replace(tzinfo=None) == clock().replace(tzinfo=None)

    async def test_background_worker_batches(self, session_factory, clock, metrics, user):
        """Test a started recorder drains its queue in batches."""
        recorder = ActivityRecorder(session_factory, clock=clock, batch_size=2, metrics=metrics)
        await recorder.start()
        assert recorder.running
        try:
            for activity_type in ("login", "api_call", "token_refresh"):
                recorder.record(user.id, "acme", activity_type)
            await recorder.flush()
        finally:
            await recorder.stop()

        assert not recorder.running
        rows = await stored_activity(session_factory)
        assert [row.activity_type for row in rows] == ["login", "api_call", "token_refresh"]

    async def test_record_now_writes_immediately(self, activity_recorder, session_factory, user):
        await activity_recorder.record_now(user.id, "acme", "login")

        rows = await stored_activity(session_factory)
        assert len(rows) == 1
        assert activity_recorder.pending == 0

    async def test_stop_flushes_pending_events(self, session_factory, clock, metrics, user):
        recorder = ActivityRecorder(session_factory, clock=clock, metrics=metrics)
        await recorder.start()
        recorder.record(user.id, "acme", "login")
        await recorder.stop()

        assert len(await stored_activity(session_factory)) == 1


class TestRecordNeverFails:
    """Test recording failures stay inside the recorder."""

    async def test_full_queue_drops_event(self, session_factory, clock, user):
        """Test an event beyond the buffer is dropped and counted."""
        metrics = MagicMock()
        recorder = ActivityRecorder(session_factory, clock=clock, queue_size=1, metrics=metrics)

        recorder.record(user.id, "acme", "login")
        recorder.record(user.id, "acme", "login")

        assert recorder.pending == 1
        metrics.record_activity_dropped.assert_called_once_with("acme")

        await recorder.flush()
        assert len(await stored_activity(session_factory)) == 1

    async def test_store_failure_is_swallowed(self, clock):
        """Test a broken session factory loses the batch without raising."""
        metrics = MagicMock()

        def broken_factory():
            raise ConnectionError("database unreachable")

        recorder = ActivityRecorder(broken_factory, clock=clock, metrics=metrics)
        recorder.record(1, "acme", "login")
        recorder.record(2, "acme", "login")

        await recorder.flush()
        await recorder.record_now(3, "acme", "login")

        assert recorder.pending == 0
        assert metrics.record_activity_failed.call_args_list[0].args == (2,)
        assert metrics.record_activity_failed.call_args_list[1].args == (1,)
        metrics.record_activity.assert_not_called()

    async def test_worker_survives_store_failure(self, clock):
        """Test the background worker keeps draining after a failed batch."""
        calls = []

        def broken_factory():
            calls.append(1)
            raise ConnectionError("database unreachable")

        recorder = ActivityRecorder(broken_factory, clock=clock, metrics=MagicMock())
        await recorder.start()
        try:
            recorder.record(1, "acme", "login")
            await recorder.flush()
            recorder.record(2, "acme", "login")
            await recorder.flush()
            assert recorder.running
        finally:
            await recorder.stop()

        assert len(calls) == 2


@pytest.fixture
async def enforcing_session_factory():
    """Session factory over a database that enforces foreign keys."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


class TestRejectedEvents:
    """Test a rejected event does not take the rest of its batch with it."""

    async def test_unknown_user_dropped_alone(self, enforcing_session_factory, clock):
        metrics = MagicMock()
        async with enforcing_session_factory() as session:
            await create_tenant(session, "acme")
            user = await create_user(session, "acme", "alice@acme.example.com")
            await session.commit()

        recorder = ActivityRecorder(enforcing_session_factory, clock=clock, metrics=metrics)
        recorder.record(user.id, "acme", "login")
        recorder.record(999999, "acme", "login")
        recorder.record(user.id, "acme", "api_call")

        await recorder.flush()

        rows = await stored_activity(enforcing_session_factory)
        assert [(row.user_id, row.activity_type) for row in rows] == [
            (user.id, "login"),
            (user.id, "api_call"),
        ]
        metrics.record_activity_failed.assert_called_once_with(1)
        assert metrics.record_activity.call_count == 2
