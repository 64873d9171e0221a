"""
Shared fixtures for the sync client tests.

Server responses come from ``httpx.MockTransport`` handlers; the SSE transport
is replaced by a stub when a test only exercises what sits above it.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Callable, Optional

import pytest

from madadkaro_shared.schemas.bids import BidRead
from madadkaro_shared.schemas.common import BidStatus, EventType, TaskStatus
from madadkaro_shared.schemas.events import DomainEvent
from madadkaro_shared.schemas.tasks import TaskRead
from madadkaro_sync.config import SyncConfig
from madadkaro_sync.metrics import MetricsCollector
from madadkaro_sync.views import ViewStore


class StubStream:
    """Records handler installation and start/stop without any network."""

    def __init__(self):
        self.handlers = []
        self.running = False
        self.starts = 0
        self.stops = 0

    def on_event(self, handler) -> None:
        self.handlers.append(handler)

    async def start(self) -> None:
        self.running = True
        self.starts += 1

    async def stop(self) -> None:
        self.running = False
        self.stops += 1

    async def emit(self, event: DomainEvent) -> None:
        for handler in self.handlers:
            await handler(event)


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def customer_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def store(user_id) -> ViewStore:
    return ViewStore(user_id)


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def stream() -> StubStream:
    return StubStream()


@pytest.fixture
def fast_config() -> SyncConfig:
    return SyncConfig.model_validate({
        "server": {"url": "http://mk.test"},
        "sync": {
            "reconcile_delay_seconds": 0.01,
            "reconcile_timeout_seconds": 0.5,
            "reconcile_retries": 2,
            "reconcile_backoff_seconds": 0.01,
            "reconnect_base_seconds": 0.01,
            "reconnect_max_seconds": 0.05,
        },
        "metrics": {"enabled": False},
    })


@pytest.fixture
def make_task() -> Callable[..., TaskRead]:
    def _make(
        customer_id: uuid.UUID,
        status: TaskStatus = TaskStatus.OPEN,
        assigned_to: Optional[uuid.UUID] = None,
        **overrides,
    ) -> TaskRead:
        now = datetime.now(timezone.utc)
        fields = {
            "id": uuid.uuid4(),
            "customer_id": customer_id,
            "title": "Assemble wardrobe",
            "description": "Flat-pack wardrobe, two doors.",
            "category": "handyman",
            "budget": 1200,
            "address": "Flat 3, Block B, Karachi",
            "date_required": date(2026, 11, 5),
            "time_required": "14:00",
            "duration": 3,
            "status": status,
            "assigned_to": assigned_to,
            "created_at": now,
            "updated_at": now,
            **overrides,
        }
        return TaskRead.model_validate(fields)
    return _make


@pytest.fixture
def make_bid() -> Callable[..., BidRead]:
    def _make(
        task: TaskRead,
        tasker_id: uuid.UUID,
        amount: float = 1000,
        status: BidStatus = BidStatus.PENDING,
        **overrides,
    ) -> BidRead:
        now = datetime.now(timezone.utc)
        fields = {
            "id": uuid.uuid4(),
            "task_id": task.id,
            "tasker_id": tasker_id,
            "amount": amount,
            "message": "Done by evening",
            "status": status,
            "created_at": now,
            "updated_at": now,
            **overrides,
        }
        return BidRead.model_validate(fields)
    return _make


@pytest.fixture
def make_event() -> Callable[..., DomainEvent]:
    def _make(
        event_type: EventType,
        task_id: uuid.UUID,
        status: str,
        sequence_id: Optional[int] = None,
        **fields,
    ) -> DomainEvent:
        return DomainEvent(
            type=event_type,
            task_id=task_id,
            status=status,
            sequence_id=sequence_id,
            **fields,
        )
    return _make
