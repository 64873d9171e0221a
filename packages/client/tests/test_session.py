"""
Tests for the sync session end to end over ``httpx.MockTransport``.

Tests cover:
- Startup loads "my tasks" and "my bids"
- Optimistic bid placement shows a placeholder until confirmation
- A refused mutation rolls the optimistic change back and raises
- A malformed answer or a cancellation rolls it back too
- "My tasks" pages until a short page comes back
- Opening a task loads its detail
- Events flow from the stream into the views
- A reconnect refreshes every displayed view
"""

from __future__ import annotations

import asyncio
import json
import uuid

import httpx
import pydantic
import pytest

from madadkaro_shared.schemas.common import BidStatus, EventType, RejectionCode
from madadkaro_sync.api import TASKS_PAGE_SIZE, ConflictError, InvalidInput
from madadkaro_sync.session import SyncSession
from madadkaro_sync.views import View


async def _wait_for(condition, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class FakeServer:
    """Scripted workflow server: REST reads from dicts, SSE bodies from a queue."""

    def __init__(self):
        self.tasks: list = []
        self.bids: list = []
        self.task_bids: dict[str, list] = {}
        self.stream_bodies: list[str] = []
        self.bids_after_stream: list | None = None
        self.calls: list[tuple[str, str]] = []
        self.on_post = None

    def count(self, method: str, path: str) -> int:
        return sum(1 for c in self.calls if c == (method, path))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))

        if path == "/api/v1/events/stream":
            if not self.stream_bodies:
                return httpx.Response(503)
            if self.bids_after_stream is not None:
                self.bids = self.bids_after_stream
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                content=self.stream_bodies.pop(0).encode(),
            )
        if request.method == "GET" and path == "/api/v1/tasks/":
            page = int(request.url.params.get("page", 1))
            per_page = int(request.url.params.get("per_page", 25))
            chunk = self.tasks[(page - 1) * per_page : page * per_page]
            return httpx.Response(200, json=[t.model_dump(mode="json") for t in chunk])
        if request.method == "GET" and path == "/api/v1/bids/mine":
            return httpx.Response(200, json=[b.model_dump(mode="json") for b in self.bids])
        if request.method == "GET" and path.endswith("/bids") and path.startswith("/api/v1/tasks/"):
            task_id = path.split("/")[4]
            return httpx.Response(200, json=[b.model_dump(mode="json") for b in self.task_bids.get(task_id, [])])
        if request.method == "GET" and path.startswith("/api/v1/tasks/"):
            task_id = path.split("/")[4]
            for task in self.tasks:
                if str(task.id) == task_id:
                    return httpx.Response(200, json=task.model_dump(mode="json"))
            return httpx.Response(404, json={"detail": "Task not found", "code": "NotFound"})
        if self.on_post is not None:
            return self.on_post(request)
        return httpx.Response(404, json={"detail": "Not Found"})


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
async def session(fast_config, user_id, server):
    s = SyncSession(fast_config, user_id, "token-abc", transport=httpx.MockTransport(server))
    yield s
    await s.stop()


class TestStartup:
    @pytest.mark.asyncio
    async def test_start_loads_my_views(self, session, server, user_id, customer_id, make_task, make_bid):
        task = make_task(user_id)
        bidded = make_task(customer_id)
        server.tasks = [task]
        server.bids = [make_bid(bidded, user_id)]

        await session.start()

        assert list(session.store.my_tasks) == [task.id]
        assert len(session.store.my_bids) == 1
        assert session.store.displayed == {View.MY_TASKS, View.MY_BIDS}
        assert session.stream.running
        assert len(session.registry) == len(EventType)

    @pytest.mark.asyncio
    async def test_my_tasks_follows_every_page(self, session, server, user_id, make_task):
        server.tasks = [make_task(user_id) for _ in range(TASKS_PAGE_SIZE + 50)]

        await session.start()

        assert len(session.store.my_tasks) == TASKS_PAGE_SIZE + 50
        assert server.count("GET", "/api/v1/tasks/") == 2

    @pytest.mark.asyncio
    async def test_full_last_page_needs_one_empty_page(self, session, server, user_id, make_task):
        server.tasks = [make_task(user_id) for _ in range(6)]
        await session.api.open()

        tasks = await session.api.list_my_tasks(page_size=3)

        assert [t.id for t in tasks] == [t.id for t in server.tasks]
        assert server.count("GET", "/api/v1/tasks/") == 3

    @pytest.mark.asyncio
    async def test_unreachable_api_marks_views_stale(self, fast_config, user_id):
        def down(request):
            raise httpx.ConnectError("refused", request=request)

        s = SyncSession(fast_config, user_id, "token-abc", transport=httpx.MockTransport(down))
        try:
            await s.start()
            assert s.store.stale == {View.MY_TASKS, View.MY_BIDS}
        finally:
            await s.stop()


class TestOptimisticBids:
    @pytest.mark.asyncio
    async def test_placeholder_until_confirmed(self, session, server, user_id, customer_id, make_task, make_bid):
        task = make_task(customer_id)
        confirmed = make_bid(task, user_id, amount=1100)
        seen_placeholder = []

        def on_post(request):
            seen_placeholder.append(task.id in session.store.placeholders)
            body = json.loads(request.content)
            assert body["task_id"] == str(task.id)
            assert body["amount"] == 1100
            return httpx.Response(201, json=confirmed.model_dump(mode="json"))

        server.on_post = on_post
        await session.start()

        bid = await session.place_bid(task.id, 1100, "Done by evening")

        assert seen_placeholder == [True]
        assert bid.id == confirmed.id
        assert session.store.placeholders == {}
        assert session.store.my_bids[bid.id].status == BidStatus.PENDING

    @pytest.mark.asyncio
    async def test_refused_bid_drops_placeholder(self, session, server, customer_id, make_task):
        task = make_task(customer_id)
        server.on_post = lambda request: httpx.Response(
            409, json={"detail": "Task is not open", "code": "InvalidState"}
        )
        await session.start()

        with pytest.raises(ConflictError) as exc_info:
            await session.place_bid(task.id, 900, "Available now")

        assert exc_info.value.code == RejectionCode.INVALID_STATE
        assert exc_info.value.status_code == 409
        assert session.store.placeholders == {}
        assert session.store.my_bids == {}

    @pytest.mark.asyncio
    async def test_refused_update_restores_bid(self, session, server, user_id, customer_id, make_task, make_bid):
        task = make_task(customer_id)
        bid = make_bid(task, user_id, amount=1000)
        server.bids = [bid]
        server.on_post = lambda request: httpx.Response(
            422, json={"detail": "amount must be positive", "code": "ValidationError"}
        )
        await session.start()

        with pytest.raises(InvalidInput):
            await session.update_bid(bid.id, amount=-5)

        assert session.store.my_bids[bid.id].amount == 1000

    @pytest.mark.asyncio
    async def test_malformed_answer_drops_placeholder(self, session, server, customer_id, make_task):
        task = make_task(customer_id)
        server.on_post = lambda request: httpx.Response(201, json={"id": "not-a-bid"})
        await session.start()

        with pytest.raises(pydantic.ValidationError):
            await session.place_bid(task.id, 900, "Available now")

        assert session.store.placeholders == {}
        assert session.store.my_bids == {}

    @pytest.mark.asyncio
    async def test_cancelled_placement_drops_placeholder(self, session, server, customer_id, make_task):
        task = make_task(customer_id)
        never = asyncio.Event()

        async def hang(request):
            await never.wait()

        server.on_post = hang
        await session.start()

        placing = asyncio.create_task(session.place_bid(task.id, 900, "Available now"))
        await _wait_for(lambda: task.id in session.store.placeholders)
        placing.cancel()
        with pytest.raises(asyncio.CancelledError):
            await placing

        assert session.store.placeholders == {}

    @pytest.mark.asyncio
    async def test_malformed_update_answer_restores_bid(
        self, session, server, user_id, customer_id, make_task, make_bid
    ):
        task = make_task(customer_id)
        bid = make_bid(task, user_id, amount=1000)
        server.bids = [bid]
        server.on_post = lambda request: httpx.Response(200, json={"amount": "lots"})
        await session.start()

        with pytest.raises(pydantic.ValidationError):
            await session.update_bid(bid.id, amount=850)

        assert session.store.my_bids[bid.id].amount == 1000

    @pytest.mark.asyncio
    async def test_update_applies_server_answer(self, session, server, user_id, customer_id, make_task, make_bid):
        task = make_task(customer_id)
        bid = make_bid(task, user_id, amount=1000)
        server.bids = [bid]
        edited = bid.model_copy(update={"amount": 850, "version": 2})

        def on_patch(request):
            assert request.method == "PATCH"
            assert json.loads(request.content) == {"amount": 850}
            return httpx.Response(200, json=edited.model_dump(mode="json"))

        server.on_post = on_patch
        await session.start()

        result = await session.update_bid(bid.id, amount=850)

        assert result.version == 2
        assert session.store.my_bids[bid.id].amount == 850


class TestDetailAndEvents:
    @pytest.mark.asyncio
    async def test_open_task_loads_detail(self, session, server, user_id, make_task, make_bid):
        task = make_task(user_id)
        bids = [make_bid(task, uuid.uuid4()), make_bid(task, uuid.uuid4())]
        server.tasks = [task]
        server.task_bids[str(task.id)] = bids
        await session.start()

        await session.open_task(task.id)

        assert session.store.detail_task.id == task.id
        assert set(session.store.detail_bids) == {b.id for b in bids}

        session.close_task()
        assert View.TASK_DETAIL not in session.store.displayed

    @pytest.mark.asyncio
    async def test_stream_event_patches_and_reconciles(
        self, session, server, user_id, customer_id, make_task, make_bid, make_event
    ):
        task = make_task(customer_id)
        bid = make_bid(task, user_id)
        server.bids = [bid]
        event = make_event(
            EventType.BID_STATUS_CHANGED, task.id, "rejected", 3,
            bid_id=bid.id, amount=bid.amount, reason="Found someone closer",
        )
        server.stream_bodies = [
            f"event: {event.type.value}\nid: 3\ndata: {json.dumps(event.to_wire())}\n\n"
        ]
        rejected = bid.model_copy(update={"status": BidStatus.REJECTED, "rejection_reason": "Found someone closer"})

        # Server state moves on once the event is out
        server.bids_after_stream = [rejected]

        await session.start()
        await _wait_for(lambda: session.store.my_bids[bid.id].status == BidStatus.REJECTED)
        await _wait_for(lambda: server.count("GET", "/api/v1/bids/mine") >= 2)

        assert session.store.my_bids[bid.id].rejection_reason == "Found someone closer"
        assert session.metrics.get("events_routed_total") == 1

    @pytest.mark.asyncio
    async def test_reconnect_refreshes_displayed_views(self, session, server):
        server.stream_bodies = [": hello\n\n", ": hello again\n\n"]

        await session.start()
        await _wait_for(lambda: session.stream.reconnect_count == 1)
        await _wait_for(lambda: server.count("GET", "/api/v1/tasks/") >= 2)

        assert server.count("GET", "/api/v1/bids/mine") >= 2

    @pytest.mark.asyncio
    async def test_watch_scoped_to_task(self, session, server, customer_id, make_task, make_event):
        task = make_task(customer_id)
        event = make_event(EventType.TASK_STATUS_CHANGED, task.id, "cancelled", 1)
        other = make_event(EventType.TASK_STATUS_CHANGED, uuid.uuid4(), "cancelled", 1)
        server.stream_bodies = [
            "".join(
                f"event: {e.type.value}\ndata: {json.dumps(e.to_wire())}\n\n" for e in (other, event)
            )
        ]
        seen = []
        await session.watch(EventType.TASK_STATUS_CHANGED, seen.append, task.id)
        await session.start()

        await _wait_for(lambda: len(seen) == 1)
        assert seen[0].task_id == task.id
