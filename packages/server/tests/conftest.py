"""
Shared fixtures for the workflow server tests.

The database is a throwaway SQLite file per test; Redis publication is
replaced with a recording publisher through the dispatcher dependency.
"""

from __future__ import annotations

import json
import uuid
from datetime import date, datetime, timezone
from typing import Callable, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

import madadkaro_server.models  # noqa: F401  registers tables on the metadata
from madadkaro_server.core.auth import AuthenticatedUser, create_access_token
from madadkaro_server.core.database import get_session
from madadkaro_server.core.events import EventDispatcher, get_dispatcher
from madadkaro_server.main import app
from madadkaro_shared.schemas.bids import BidRead
from madadkaro_shared.schemas.common import BidStatus, Role, TaskStatus
from madadkaro_shared.schemas.tasks import TaskCreate, TaskRead


class RecordingPublisher:
    """Stands in for Redis pub/sub and remembers every message."""

    def __init__(self):
        self.messages: list[tuple[str, dict]] = []
        self.fail = False

    async def publish(self, channel: str, message: str) -> None:
        if self.fail:
            raise ConnectionError("redis unavailable")
        self.messages.append((channel, json.loads(message)))

    def events_for(self, user_id: uuid.UUID) -> list[dict]:
        channel = f"mk:events:user:{user_id}"
        return [payload for ch, payload in self.messages if ch == channel]

    def event_types(self) -> list[str]:
        """Distinct events in publish order (one per transition)."""
        seen: list[tuple[int, str]] = []
        for _, payload in self.messages:
            key = (payload["sequenceId"], payload["type"])
            if key not in seen:
                seen.append(key)
        return [t for _, t in seen]


# ---------------------------------------------------------------------------
# Identities
# ---------------------------------------------------------------------------


@pytest.fixture
def customer() -> AuthenticatedUser:
    return AuthenticatedUser(user_id=uuid.uuid4(), role=Role.CUSTOMER)


@pytest.fixture
def tasker_a() -> AuthenticatedUser:
    return AuthenticatedUser(user_id=uuid.uuid4(), role=Role.TASKER)


@pytest.fixture
def tasker_b() -> AuthenticatedUser:
    return AuthenticatedUser(user_id=uuid.uuid4(), role=Role.TASKER)


@pytest.fixture
def auth_headers() -> Callable[[AuthenticatedUser], dict]:
    def _headers(user: AuthenticatedUser) -> dict:
        token = create_access_token(user.user_id, user.role)
        return {"Authorization": f"Bearer {token}"}
    return _headers


# ---------------------------------------------------------------------------
# Snapshots for engine tests
# ---------------------------------------------------------------------------


@pytest.fixture
def task_payload() -> dict:
    return TaskCreate(
        title="Fix leaking kitchen tap",
        description="Tap drips constantly, washer probably worn.",
        category="plumbing",
        budget=500,
        address="House 12, Street 4, Lahore",
        latitude=31.52,
        longitude=74.35,
        date_required=date(2026, 11, 2),
        time_required="10:00",
        duration=2,
    ).model_dump(mode="json")


@pytest.fixture
def make_task(task_payload) -> Callable[..., TaskRead]:
    def _make(
        customer_id: uuid.UUID,
        status: TaskStatus = TaskStatus.OPEN,
        assigned_to: Optional[uuid.UUID] = None,
        **overrides,
    ) -> TaskRead:
        now = datetime.now(timezone.utc)
        fields = {
            **task_payload,
            "id": uuid.uuid4(),
            "customer_id": customer_id,
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
        amount: float = 450,
        status: BidStatus = BidStatus.PENDING,
        **overrides,
    ) -> BidRead:
        now = datetime.now(timezone.utc)
        return BidRead(
            id=uuid.uuid4(),
            task_id=task.id,
            tasker_id=tasker_id,
            amount=amount,
            message="I can do this today",
            status=status,
            created_at=now,
            updated_at=now,
            **overrides,
        )
    return _make


# ---------------------------------------------------------------------------
# Database, dispatcher, HTTP client
# ---------------------------------------------------------------------------


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'workflow.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def dispatcher(publisher) -> EventDispatcher:
    return EventDispatcher(publisher)


@pytest.fixture
async def client(session_factory, dispatcher):
    async def _session():
        async with session_factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
