"""
Sync session orchestrator.

Wires one logged-in user's transport, subscription registry, router,
reconciler and view store together, and exposes the mutations a user
triggers. Bid placement and bid edits are applied to the views optimistically
and rolled back if the server refuses them.
"""

from __future__ import annotations

import uuid
from typing import Optional

import httpx
import structlog

from madadkaro_shared.schemas.bids import BidRead
from madadkaro_shared.schemas.common import EventType
from madadkaro_shared.schemas.tasks import TaskRead

from .api import ApiClient
from .config import SyncConfig
from .metrics import MetricsCollector
from .reconciler import Reconciler
from .router import EventRouter
from .subscriptions import Callback, Subscription, SubscriptionRegistry
from .transport import EventStream
from .views import PendingBid, View, ViewStore

log = structlog.get_logger()


class SyncSession:
    """One user's live view of their tasks and bids."""

    def __init__(
        self,
        config: SyncConfig,
        user_id: uuid.UUID,
        token: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self._config = config
        self.user_id = user_id
        self.metrics = metrics or MetricsCollector()
        self.store = ViewStore(user_id)
        self.api = ApiClient(
            config.server.url,
            token,
            verify_tls=config.server.verify_tls,
            request_timeout=config.server.request_timeout_seconds,
            transport=transport,
        )
        self.stream = EventStream(
            config.server.url,
            token,
            verify_tls=config.server.verify_tls,
            reconnect_base=config.sync.reconnect_base_seconds,
            reconnect_max=config.sync.reconnect_max_seconds,
            transport=transport,
            metrics=self.metrics,
        )
        self.registry = SubscriptionRegistry(self.stream)
        self.reconciler = Reconciler(
            self.store,
            {
                View.MY_TASKS: self._fetch_my_tasks,
                View.MY_BIDS: self._fetch_my_bids,
                View.TASK_DETAIL: self._fetch_detail,
            },
            delay=config.sync.reconcile_delay_seconds,
            timeout=config.sync.reconcile_timeout_seconds,
            retries=config.sync.reconcile_retries,
            retry_base=config.sync.reconcile_backoff_seconds,
            metrics=self.metrics,
        )
        self.router = EventRouter(self.store, self.reconciler, metrics=self.metrics)
        self._router_subscriptions: list[Subscription] = []
        self.stream.on_reconnect(self._on_reconnect)

    async def start(self) -> None:
        log.info("session.starting", user_id=str(self.user_id))
        await self.api.open()
        for event_type in EventType:
            sub = await self.registry.subscribe(event_type, self.router.handle_event)
            self._router_subscriptions.append(sub)
        self.store.show(View.MY_TASKS)
        self.store.show(View.MY_BIDS)
        await self.reconciler.refresh_all(self.store.displayed)

    async def stop(self) -> None:
        for sub in self._router_subscriptions:
            await self.registry.unsubscribe(sub)
        self._router_subscriptions.clear()
        if self.stream.running:
            await self.stream.stop()
        await self.reconciler.close()
        await self.api.close()
        log.info("session.stopped", user_id=str(self.user_id))

    # --- Page helpers ---

    async def open_task(self, task_id: uuid.UUID) -> None:
        self.store.open_detail(task_id)
        await self.reconciler.refresh(View.TASK_DETAIL)

    def close_task(self) -> None:
        self.store.close_detail()

    async def watch(
        self,
        event_type: EventType,
        callback: Callback,
        scope_id: Optional[object] = None,
    ) -> Subscription:
        return await self.registry.subscribe(event_type, callback, scope_id)

    async def unwatch(self, subscription: Subscription) -> None:
        await self.registry.unsubscribe(subscription)

    # --- Fetchers ---

    async def _fetch_my_tasks(self) -> None:
        self.store.replace_my_tasks(await self.api.list_my_tasks())

    async def _fetch_my_bids(self) -> None:
        self.store.replace_my_bids(await self.api.list_my_bids())

    async def _fetch_detail(self) -> None:
        task_id = self.store.detail_task_id
        if task_id is None:
            return
        task = await self.api.get_task(task_id)
        bids = await self.api.list_task_bids(task_id)
        self.store.set_detail(task, bids)

    async def _on_reconnect(self) -> None:
        log.info("session.resync", views=sorted(v.value for v in self.store.displayed))
        await self.reconciler.refresh_all(set(self.store.displayed))

    # --- Optimistic mutations ---

    async def place_bid(
        self,
        task_id: uuid.UUID,
        amount: float,
        message: str,
        estimated_days: Optional[int] = None,
    ) -> BidRead:
        self.store.add_placeholder(
            PendingBid(task_id=task_id, amount=amount, message=message, estimated_days=estimated_days)
        )
        try:
            bid = await self.api.place_bid(task_id, amount, message, estimated_days)
        except BaseException:
            self.store.drop_placeholder(task_id)
            raise
        self.store.upsert_bid(bid)
        return bid

    async def update_bid(
        self,
        bid_id: uuid.UUID,
        *,
        amount: Optional[float] = None,
        message: Optional[str] = None,
        estimated_days: Optional[int] = None,
    ) -> BidRead:
        previous = self.store.my_bids.get(bid_id) or self.store.detail_bids.get(bid_id)
        self.store.patch_bid(bid_id, amount=amount, message=message, estimated_days=estimated_days)
        try:
            bid = await self.api.update_bid(
                bid_id, amount=amount, message=message, estimated_days=estimated_days
            )
        except BaseException:
            if previous is not None:
                self.store.upsert_bid(previous)
            raise
        self.store.upsert_bid(bid)
        return bid

    # --- Plain mutations ---

    async def accept_bid(self, bid_id: uuid.UUID) -> BidRead:
        bid = await self.api.accept_bid(bid_id)
        self.store.upsert_bid(bid)
        return bid

    async def reject_bid(self, bid_id: uuid.UUID, reason: Optional[str] = None) -> BidRead:
        bid = await self.api.reject_bid(bid_id, reason)
        self.store.upsert_bid(bid)
        return bid

    async def withdraw_bid(self, bid_id: uuid.UUID) -> BidRead:
        bid = await self.api.withdraw_bid(bid_id)
        self.store.upsert_bid(bid)
        return bid

    async def start_task(self, task_id: uuid.UUID) -> TaskRead:
        task = await self.api.start_task(task_id)
        self.store.upsert_task(task)
        return task

    async def request_completion(self, task_id: uuid.UUID, note: str) -> TaskRead:
        task = await self.api.request_completion(task_id, note)
        self.store.upsert_task(task)
        return task

    async def confirm_completion(self, task_id: uuid.UUID, feedback: Optional[str] = None) -> TaskRead:
        task = await self.api.confirm_completion(task_id, feedback)
        self.store.upsert_task(task)
        return task

    async def reject_completion(self, task_id: uuid.UUID, reason: str) -> TaskRead:
        task = await self.api.reject_completion(task_id, reason)
        self.store.upsert_task(task)
        return task

    async def cancel_task(self, task_id: uuid.UUID) -> TaskRead:
        task = await self.api.cancel_task(task_id)
        self.store.upsert_task(task)
        return task
