"""
Domain event fan-out over Redis Pub/Sub and SSE.

Features:
- One pub/sub channel per user; an event is published once per recipient
- Publication only after the owning transaction commits
- Per-task ordering lock held across commit and publish
- Outbox replay for events whose publication failed, ahead of the task's next
  event and on a timer
- Keepalive heartbeat every 30 seconds on the SSE stream
"""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, AsyncIterator, Callable, Optional, Protocol
from uuid import UUID

import structlog
from fastapi import Request
from sqlalchemy import func as sa_func
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select
from sse_starlette.sse import ServerSentEvent

from madadkaro_server.core.redis import get_redis
from madadkaro_server.models.event import Event
from madadkaro_shared.schemas.events import DomainEvent

log = structlog.get_logger()

# Configuration
REDIS_USER_CHANNEL_PREFIX = "mk:events:user:"
HEARTBEAT_INTERVAL = 30  # seconds
OUTBOX_REPLAY_LIMIT = 1000  # tasks per replay pass
OUTBOX_REPLAY_INTERVAL = 10.0  # seconds


def user_channel(user_id: UUID | str) -> str:
    return f"{REDIS_USER_CHANNEL_PREFIX}{user_id}"


class Publisher(Protocol):
    async def publish(self, channel: str, message: str) -> None: ...


class RedisPublisher:
    """Publishes raw messages on Redis pub/sub channels."""

    async def publish(self, channel: str, message: str) -> None:
        redis = await get_redis()
        await redis.publish(channel, message)


class EventDispatcher:
    """Delivers committed domain events to every recipient's channel."""

    def __init__(self, publisher: Optional[Publisher] = None):
        self.publisher = publisher or RedisPublisher()
        self._locks: dict[UUID, asyncio.Lock] = {}
        self._lock_users: dict[UUID, int] = {}

    @asynccontextmanager
    async def ordering(self, task_id: UUID) -> AsyncIterator[None]:
        """Serialize commit+publish for one task within this process."""
        lock = self._locks.setdefault(task_id, asyncio.Lock())
        self._lock_users[task_id] = self._lock_users.get(task_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[task_id] -= 1
            if self._lock_users[task_id] == 0:
                del self._lock_users[task_id]
                del self._locks[task_id]

    async def publish(self, event: DomainEvent) -> None:
        """Publish an event to each recipient. Raises if the publisher fails."""
        message = json.dumps(event.to_wire())
        for recipient in event.recipients:
            await self.publisher.publish(user_channel(recipient), message)
        log.info(
            "dispatcher.published",
            type=event.type.value,
            task_id=str(event.task_id),
            sequence_id=event.sequence_id,
            recipients=len(event.recipients),
        )

    async def _publish_and_stamp(self, session: AsyncSession, event: DomainEvent) -> bool:
        try:
            await self.publish(event)
        except Exception:
            log.exception(
                "dispatcher.publish_failed",
                task_id=str(event.task_id),
                sequence_id=event.sequence_id,
            )
            return False
        await session.execute(
            update(Event)
            .where(Event.sequence_id == event.sequence_id)
            .values(published_at=datetime.now(timezone.utc))
        )
        await session.commit()
        return True

    async def _unpublished(
        self,
        session: AsyncSession,
        task_id: UUID,
        before: Optional[int] = None,
    ) -> list[Event]:
        stmt = (
            select(Event)
            .where(Event.task_id == task_id, Event.published_at.is_(None))
            .order_by(Event.sequence_id)
            .execution_options(populate_existing=True)
        )
        if before is not None:
            stmt = stmt.where(Event.sequence_id < before)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def _drain_task(
        self,
        session: AsyncSession,
        task_id: UUID,
        before: Optional[int] = None,
    ) -> tuple[int, bool]:
        """Publish a task's unpublished rows in sequence order; stop at the first failure."""
        delivered = 0
        for row in await self._unpublished(session, task_id, before):
            if not await self._publish_and_stamp(session, event_from_row(row)):
                return delivered, False
            delivered += 1
        return delivered, True

    async def deliver(self, session: AsyncSession, event: DomainEvent) -> bool:
        """Publish a committed event and stamp its outbox row.

        Must be called under ``ordering(event.task_id)``. Earlier events for the
        same task that are still unpublished go out first, so a task's events
        always leave in sequence order. Failures are logged and leave rows
        unpublished for the next delivery or replay.
        """
        backlog, ok = await self._drain_task(session, event.task_id, before=event.sequence_id)
        if backlog:
            log.info("dispatcher.backlog_flushed", task_id=str(event.task_id), delivered=backlog)
        if not ok:
            return False
        return await self._publish_and_stamp(session, event)

    async def replay_outbox(self, session: AsyncSession) -> int:
        """Publish every committed-but-unpublished event, task by task in sequence order."""
        result = await session.execute(
            select(Event.task_id)
            .where(Event.published_at.is_(None))
            .group_by(Event.task_id)
            .order_by(sa_func.min(Event.sequence_id))
            .limit(OUTBOX_REPLAY_LIMIT)
        )
        task_ids = list(result.scalars().all())
        delivered = 0
        for task_id in task_ids:
            async with self.ordering(task_id):
                count, _ = await self._drain_task(session, task_id)
            delivered += count
        if task_ids:
            log.info("dispatcher.outbox_replayed", tasks=len(task_ids), delivered=delivered)
        return delivered

    async def run_replayer(
        self,
        session_factory: Callable[[], AsyncSession],
        interval: float = OUTBOX_REPLAY_INTERVAL,
    ) -> None:
        """Replay the outbox every ``interval`` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            try:
                async with session_factory() as session:
                    await self.replay_outbox(session)
            except Exception:
                log.exception("dispatcher.replay_failed")


def event_from_row(row: Event) -> DomainEvent:
    """Rebuild the wire event from its outbox row."""
    return DomainEvent.model_validate(
        {**row.payload, "sequence_id": row.sequence_id, "recipients": row.recipients}
    )


dispatcher = EventDispatcher()


def get_dispatcher() -> EventDispatcher:
    """FastAPI dependency for the process-wide dispatcher."""
    return dispatcher


async def event_generator(
    request: Request,
    user_id: UUID,
) -> AsyncGenerator[dict | ServerSentEvent, None]:
    """
    SSE generator for one user's channel.

    Nothing is replayed: the stream opens with ``stream.ready`` so the client
    refreshes its views, then relays live events and a 30s heartbeat.
    """
    redis = await get_redis()
    pubsub = redis.pubsub()
    channel = user_channel(user_id)
    await pubsub.subscribe(channel)
    log.info("sse.connected", user_id=str(user_id))

    loop = asyncio.get_running_loop()
    last_sent = loop.time()
    try:
        yield {"event": "stream.ready", "data": json.dumps({"userId": str(user_id)})}

        while True:
            if await request.is_disconnected():
                break

            message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            if message is None:
                if loop.time() - last_sent >= HEARTBEAT_INTERVAL:
                    last_sent = loop.time()
                    yield ServerSentEvent(comment="heartbeat")
                continue

            if message["type"] == "message":
                last_sent = loop.time()
                event_data = json.loads(message["data"])
                yield {
                    "event": event_data["type"],
                    "id": str(event_data.get("sequenceId") or ""),
                    "data": message["data"],
                }

    except asyncio.CancelledError:
        log.info("sse.cancelled", user_id=str(user_id))
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.aclose()
