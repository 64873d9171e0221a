"""
Client-side view store.

Holds the cached projections a session displays: "my tasks", "my bids", and
at most one open task detail with its bids. Every write is an upsert by entity
id. An optimistic bid placeholder is keyed by task id and disappears once the
confirmed bid for that task arrives, whichever path delivers it first.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable, Optional

from madadkaro_shared.schemas.bids import BidRead
from madadkaro_shared.schemas.common import BidStatus, TaskStatus
from madadkaro_shared.schemas.tasks import TaskRead


class View(str, Enum):
    MY_TASKS = "my_tasks"
    MY_BIDS = "my_bids"
    TASK_DETAIL = "task_detail"


@dataclass
class PendingBid:
    """An optimistic bid shown before the server confirms it."""

    task_id: uuid.UUID
    amount: float
    message: str
    estimated_days: Optional[int] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


ChangeListener = Callable[[View], None]


class ViewStore:
    def __init__(self, user_id: uuid.UUID):
        self.user_id = user_id
        self.my_tasks: dict[uuid.UUID, TaskRead] = {}
        self.my_bids: dict[uuid.UUID, BidRead] = {}
        self.detail_task_id: Optional[uuid.UUID] = None
        self.detail_task: Optional[TaskRead] = None
        self.detail_bids: dict[uuid.UUID, BidRead] = {}
        self.placeholders: dict[uuid.UUID, PendingBid] = {}
        self.displayed: set[View] = set()
        self.stale: set[View] = set()
        self._listeners: list[ChangeListener] = []

    def on_change(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def _changed(self, *views: View) -> None:
        for view in views:
            for listener in self._listeners:
                listener(view)

    # --- Visibility ---

    def show(self, view: View) -> None:
        self.displayed.add(view)

    def open_detail(self, task_id: uuid.UUID) -> None:
        if self.detail_task_id != task_id:
            self.detail_task = None
            self.detail_bids = {}
        self.detail_task_id = task_id
        self.displayed.add(View.TASK_DETAIL)

    def close_detail(self) -> None:
        self.detail_task_id = None
        self.detail_task = None
        self.detail_bids = {}
        self.displayed.discard(View.TASK_DETAIL)
        self.stale.discard(View.TASK_DETAIL)

    def shows_task(self, task_id: uuid.UUID) -> bool:
        return self.detail_task_id == task_id

    # --- Staleness ---

    def mark_stale(self, view: View) -> None:
        self.stale.add(view)
        self._changed(view)

    def clear_stale(self, view: View) -> None:
        self.stale.discard(view)

    # --- Authoritative replacement (reconciliation) ---

    def replace_my_tasks(self, tasks: Iterable[TaskRead]) -> None:
        self.my_tasks = {t.id: t for t in tasks}
        self._changed(View.MY_TASKS)

    def replace_my_bids(self, bids: Iterable[BidRead]) -> None:
        self.my_bids = {b.id: b for b in bids}
        for bid in self.my_bids.values():
            self._confirm_placeholder(bid)
        self._changed(View.MY_BIDS)

    def set_detail(self, task: TaskRead, bids: Iterable[BidRead]) -> None:
        if self.detail_task_id != task.id:
            return
        self.detail_task = task
        self.detail_bids = {b.id: b for b in bids}
        for bid in self.detail_bids.values():
            self._confirm_placeholder(bid)
        self._changed(View.TASK_DETAIL)

    # --- Upserts ---

    def upsert_task(self, task: TaskRead) -> None:
        changed = []
        if task.id in self.my_tasks or task.customer_id == self.user_id or task.assigned_to == self.user_id:
            self.my_tasks[task.id] = task
            changed.append(View.MY_TASKS)
        if self.shows_task(task.id):
            self.detail_task = task
            changed.append(View.TASK_DETAIL)
        self._changed(*changed)

    def upsert_bid(self, bid: BidRead) -> None:
        changed = []
        if bid.tasker_id == self.user_id:
            self.my_bids[bid.id] = bid
            self._confirm_placeholder(bid)
            changed.append(View.MY_BIDS)
        if self.shows_task(bid.task_id):
            self.detail_bids[bid.id] = bid
            changed.append(View.TASK_DETAIL)
        self._changed(*changed)

    # --- Optimistic placeholders ---

    def add_placeholder(self, pending: PendingBid) -> None:
        self.placeholders[pending.task_id] = pending
        self._changed(View.MY_BIDS)

    def drop_placeholder(self, task_id: uuid.UUID) -> None:
        if self.placeholders.pop(task_id, None) is not None:
            self._changed(View.MY_BIDS)

    def _confirm_placeholder(self, bid: BidRead) -> None:
        if bid.tasker_id == self.user_id and bid.status == BidStatus.PENDING:
            self.placeholders.pop(bid.task_id, None)

    # --- Patches from event payloads ---

    def patch_task(
        self,
        task_id: uuid.UUID,
        *,
        status: Optional[TaskStatus] = None,
        title: Optional[str] = None,
        assigned_to: Optional[uuid.UUID] = None,
    ) -> None:
        update = {}
        if status is not None:
            update["status"] = status
        if title is not None:
            update["title"] = title
        if assigned_to is not None:
            update["assigned_to"] = assigned_to
        if not update:
            return
        changed = []
        if task_id in self.my_tasks:
            self.my_tasks[task_id] = self.my_tasks[task_id].model_copy(update=update)
            changed.append(View.MY_TASKS)
        if self.detail_task is not None and self.detail_task.id == task_id:
            self.detail_task = self.detail_task.model_copy(update=update)
            changed.append(View.TASK_DETAIL)
        self._changed(*changed)

    def patch_bid(
        self,
        bid_id: uuid.UUID,
        *,
        status: Optional[BidStatus] = None,
        amount: Optional[float] = None,
        message: Optional[str] = None,
        estimated_days: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> None:
        update = {}
        if status is not None:
            update["status"] = status
        if amount is not None:
            update["amount"] = amount
        if message is not None:
            update["message"] = message
        if estimated_days is not None:
            update["estimated_days"] = estimated_days
        if reason is not None:
            update["rejection_reason"] = reason
        if not update:
            return
        changed = []
        if bid_id in self.my_bids:
            self.my_bids[bid_id] = self.my_bids[bid_id].model_copy(update=update)
            changed.append(View.MY_BIDS)
        if bid_id in self.detail_bids:
            self.detail_bids[bid_id] = self.detail_bids[bid_id].model_copy(update=update)
            changed.append(View.TASK_DETAIL)
        self._changed(*changed)

    def cancel_pending_bids(self, task_id: uuid.UUID) -> None:
        """Mirror the server's cascade when a task is cancelled."""
        for bids in (self.my_bids, self.detail_bids):
            for bid_id, bid in list(bids.items()):
                if bid.task_id == task_id and bid.status == BidStatus.PENDING:
                    self.patch_bid(bid_id, status=BidStatus.CANCELLED)
        self.drop_placeholder(task_id)
