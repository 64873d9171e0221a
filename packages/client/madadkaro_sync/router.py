"""
Event routing into the view store.

Each event is checked against the last sequence id seen for its task, applied
to the cached views straight from its payload, and then handed to the
reconciler for every affected view currently on screen.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog

from madadkaro_shared.schemas.common import BidStatus, EventType, TaskStatus
from madadkaro_shared.schemas.events import DomainEvent

from .metrics import MetricsCollector
from .reconciler import Reconciler
from .views import View, ViewStore

log = structlog.get_logger()


# Which views an event may affect
EVENT_VIEWS: dict[EventType, frozenset[View]] = {
    EventType.BID_PLACED: frozenset({View.MY_BIDS, View.TASK_DETAIL}),
    EventType.BID_UPDATED: frozenset({View.MY_BIDS, View.TASK_DETAIL}),
    EventType.BID_STATUS_CHANGED: frozenset({View.MY_BIDS, View.MY_TASKS, View.TASK_DETAIL}),
    EventType.TASK_UPDATED: frozenset({View.MY_TASKS, View.TASK_DETAIL}),
    EventType.TASK_STATUS_CHANGED: frozenset({View.MY_TASKS, View.MY_BIDS, View.TASK_DETAIL}),
    EventType.COMPLETION_REQUESTED: frozenset({View.MY_TASKS, View.TASK_DETAIL}),
    EventType.COMPLETION_CONFIRMED: frozenset({View.MY_TASKS, View.TASK_DETAIL}),
    EventType.COMPLETION_REJECTED: frozenset({View.MY_TASKS, View.TASK_DETAIL}),
}

_BID_EVENTS = {EventType.BID_PLACED, EventType.BID_UPDATED, EventType.BID_STATUS_CHANGED}


class EventRouter:
    """Routes domain events to view patches and reconciliation."""

    def __init__(
        self,
        store: ViewStore,
        reconciler: Reconciler,
        metrics: Optional[MetricsCollector] = None,
    ):
        self._store = store
        self._reconciler = reconciler
        self._metrics = metrics
        self._last_seen: dict[uuid.UUID, int] = {}

    def affected_views(self, event: DomainEvent) -> set[View]:
        views = set(EVENT_VIEWS[event.type]) & self._store.displayed
        if not self._store.shows_task(event.task_id):
            views.discard(View.TASK_DETAIL)
        return views

    async def handle_event(self, event: DomainEvent) -> None:
        if not self._in_order(event):
            log.debug(
                "router.out_of_order",
                task_id=str(event.task_id),
                sequence_id=event.sequence_id,
                last_seen=self._last_seen.get(event.task_id),
            )
            if self._metrics:
                self._metrics.inc("events_dropped_total", type=event.type.value)
            return

        self._patch(event)
        views = self.affected_views(event)
        for view in views:
            self._reconciler.schedule(view)

        if self._metrics:
            self._metrics.inc("events_routed_total", type=event.type.value)
        log.info(
            "router.event",
            type=event.type.value,
            task_id=str(event.task_id),
            sequence_id=event.sequence_id,
            views=sorted(v.value for v in views),
        )

    def _in_order(self, event: DomainEvent) -> bool:
        if event.sequence_id is None:
            return True
        last = self._last_seen.get(event.task_id)
        if last is not None and event.sequence_id <= last:
            return False
        self._last_seen[event.task_id] = event.sequence_id
        return True

    def _patch(self, event: DomainEvent) -> None:
        store = self._store
        if event.type in _BID_EVENTS:
            if event.bid_id is None:
                return
            status = BidStatus(event.status)
            store.patch_bid(
                event.bid_id,
                status=status,
                amount=event.amount,
                reason=event.reason if status == BidStatus.REJECTED else None,
            )
            if status == BidStatus.ACCEPTED:
                bid = store.my_bids.get(event.bid_id) or store.detail_bids.get(event.bid_id)
                store.patch_task(
                    event.task_id,
                    status=TaskStatus.ASSIGNED,
                    assigned_to=bid.tasker_id if bid else None,
                )
            return

        status = TaskStatus(event.status)
        store.patch_task(event.task_id, status=status, title=event.task_title)
        if status == TaskStatus.CANCELLED:
            store.cancel_pending_bids(event.task_id)
