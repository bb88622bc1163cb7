"""
Activity recorder.

Appends user activity events to ``user_activity`` without ever failing or
slowing the caller. ``record`` only enqueues; a background worker drains the
bounded queue and writes events in batches through its own session.
"""

import asyncio
import contextlib
from collections.abc import Callable
from typing import Any

import structlog
from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth247.platform.clock import Clock, utc_now
from auth247.platform.metering.metrics import MeteringMetrics, get_metering_metrics
from auth247.platform.metering.models import UserActivity
from auth247.platform.metering.schemas import MetadataValue
from auth247.platform.settings import settings

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]


class ActivityRecorder:
    """
    Fire-and-forget activity event sink.

    When the queue is full new events are dropped with a warning. An event
    the database rejects is dropped on its own; an unreachable store loses
    the whole batch. Both are logged and neither reaches callers.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        clock: Clock = utc_now,
        queue_size: int | None = None,
        batch_size: int | None = None,
        metrics: MeteringMetrics | None = None,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.batch_size = batch_size or settings.metering.recorder_batch_size
        self.metrics = metrics or get_metering_metrics()
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(
            maxsize=queue_size or settings.metering.recorder_queue_size
        )
        self._worker: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        """Start the background writer."""
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="activity-recorder")
        logger.info("activity_recorder.started", batch_size=self.batch_size)

    async def stop(self) -> None:
        """Write everything still queued, then stop the writer."""
        await self.flush()
        if self._worker is not None:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None
        logger.info("activity_recorder.stopped")

    async def flush(self) -> None:
        """Wait until every queued event has been written (or dropped on error)."""
        if self.running:
            await self._queue.join()
            return

        while not self._queue.empty():
            await self._drain(self._take_batch())

    def record(
        self,
        user_id: int,
        tenant_id: str,
        activity_type: str,
        metadata: dict[str, MetadataValue] | None = None,
        *,
        source_ip: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        """Queue an event stamped with the current time. Never raises."""
        try:
            event = self._build_event(
                user_id, tenant_id, activity_type, metadata, source_ip, user_agent
            )
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.metrics.record_activity_dropped(tenant_id)
            logger.warning(
                "activity_recorder.queue_full",
                tenant_id=tenant_id,
                user_id=user_id,
                activity_type=activity_type,
            )
        except Exception as e:
            logger.error(
                "activity_recorder.record_failed",
                tenant_id=tenant_id,
                user_id=user_id,
                error=str(e),
            )

    async def record_now(
        self,
        user_id: int,
        tenant_id: str,
        activity_type: str,
        metadata: dict[str, MetadataValue] | None = None,
        *,
        source_ip: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        """Write one event immediately, bypassing the queue. Never raises."""
        try:
            event = self._build_event(
                user_id, tenant_id, activity_type, metadata, source_ip, user_agent
            )
        except Exception as e:
            logger.error("activity_recorder.record_failed", tenant_id=tenant_id, error=str(e))
            return
        await self._write_batch([event])

    def _build_event(
        self,
        user_id: int,
        tenant_id: str,
        activity_type: str,
        metadata: dict[str, MetadataValue] | None,
        source_ip: str | None,
        user_agent: str | None,
    ) -> dict[str, Any]:
        return {
            "user_id": user_id,
            "tenant_id": tenant_id,
            "activity_type": activity_type,
            "timestamp": self.clock(),
            "activity_metadata": dict(metadata) if metadata else None,
            "source_ip": source_ip,
            "user_agent": user_agent,
        }

    def _take_batch(self, first: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        batch = [first] if first is not None else []
        while len(batch) < self.batch_size:
            try:
                batch.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return batch

    async def _run(self) -> None:
        while True:
            first = await self._queue.get()
            await self._drain(self._take_batch(first))

    async def _drain(self, batch: list[dict[str, Any]]) -> None:
        try:
            await self._write_batch(batch)
        finally:
            for _ in batch:
                self._queue.task_done()

    async def _insert(self, events: list[dict[str, Any]]) -> None:
        async with self.session_factory() as session:
            session.add_all([UserActivity(**event) for event in events])
            await session.commit()

    async def _write_batch(self, events: list[dict[str, Any]]) -> None:
        if not events:
            return
        try:
            await self._insert(events)
        except (IntegrityError, DataError) as e:
            if len(events) > 1:
                # one bad row aborts the batch; isolate it so the rest are kept
                logger.warning(
                    "activity_recorder.batch_rejected", events=len(events), error=str(e)
                )
                for event in events:
                    await self._write_batch([event])
                return
            self.metrics.record_activity_failed(1)
            logger.error(
                "activity_recorder.event_rejected",
                tenant_id=events[0]["tenant_id"],
                user_id=events[0]["user_id"],
                activity_type=events[0]["activity_type"],
                error=str(e),
            )
            return
        except Exception as e:
            self.metrics.record_activity_failed(len(events))
            logger.error(
                "activity_recorder.write_failed",
                events=len(events),
                error=str(e),
            )
            return

        for event in events:
            self.metrics.record_activity(event["tenant_id"])


__all__ = ["ActivityRecorder", "SessionFactory"]
