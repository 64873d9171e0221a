"""
Transition engine.

Every workflow action is a pure function from immutable snapshots to a
``Transition``: the resulting task, the resulting bids (with the pre-images the
commit step compares against) and exactly one domain event. Guards run before
anything is built, in a fixed order: identity, then state, then input.
Nothing here touches the database.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional, Sequence

from madadkaro_server.core.auth import AuthenticatedUser
from madadkaro_server.core.errors import InvalidState, Unauthorized, ValidationError
from madadkaro_server.services.fees import FeeSchedule, compute_fees
from madadkaro_shared.schemas.bids import BidRead
from madadkaro_shared.schemas.common import (
    ASSIGNED_STATUSES,
    Action,
    BidStatus,
    EventType,
    Role,
    TaskStatus,
)
from madadkaro_shared.schemas.events import ACTION_EVENTS, DomainEvent
from madadkaro_shared.schemas.tasks import TaskRead, TaskUpdate


class Party(str, Enum):
    """Who, relative to the task, may perform a status action."""

    CUSTOMER = "customer"
    ASSIGNEE = "assignee"


# action -> (source status, target status, required party)
TASK_TRANSITIONS: dict[Action, tuple[TaskStatus, TaskStatus, Party]] = {
    Action.ACCEPT_BID: (TaskStatus.OPEN, TaskStatus.ASSIGNED, Party.CUSTOMER),
    Action.START: (TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS, Party.ASSIGNEE),
    Action.REQUEST_COMPLETION: (
        TaskStatus.IN_PROGRESS,
        TaskStatus.COMPLETION_REQUESTED,
        Party.ASSIGNEE,
    ),
    Action.CONFIRM_COMPLETION: (
        TaskStatus.COMPLETION_REQUESTED,
        TaskStatus.COMPLETED,
        Party.CUSTOMER,
    ),
    Action.REJECT_COMPLETION: (
        TaskStatus.COMPLETION_REQUESTED,
        TaskStatus.IN_PROGRESS,
        Party.CUSTOMER,
    ),
    Action.CANCEL_TASK: (TaskStatus.OPEN, TaskStatus.CANCELLED, Party.CUSTOMER),
}


@dataclass(frozen=True)
class BidChange:
    """A bid written by a transition. ``before`` is None for an insert."""

    before: Optional[BidRead]
    after: BidRead


@dataclass(frozen=True)
class Transition:
    action: Action
    actor_id: uuid.UUID
    task_before: TaskRead
    task_after: TaskRead
    event: DomainEvent
    bid_changes: tuple[BidChange, ...] = field(default_factory=tuple)

    @property
    def task_changed(self) -> bool:
        return self.task_before != self.task_after

    @property
    def bid(self) -> Optional[BidRead]:
        """The bid the action was aimed at, if any."""
        if self.event.bid_id is None:
            return None
        for change in self.bid_changes:
            if change.after.id == self.event.bid_id:
                return change.after
        return None


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _recipients(*user_ids: Optional[uuid.UUID]) -> list[uuid.UUID]:
    seen: list[uuid.UUID] = []
    for user_id in user_ids:
        if user_id is not None and user_id not in seen:
            seen.append(user_id)
    return seen


def _is_blank(text: Optional[str]) -> bool:
    return text is None or not text.strip()


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------

def _require_party(task: TaskRead, actor: AuthenticatedUser, party: Party) -> None:
    if party is Party.CUSTOMER:
        if actor.user_id != task.customer_id:
            raise Unauthorized("Only the task's customer can do this")
    elif task.assigned_to is None or actor.user_id != task.assigned_to:
        raise Unauthorized("Only the assigned tasker can do this")


def _guard_task_action(task: TaskRead, actor: AuthenticatedUser, action: Action) -> TaskStatus:
    """Check identity then source status for a table-driven action; return the target."""
    source, target, party = TASK_TRANSITIONS[action]
    _require_party(task, actor, party)
    if task.status != source:
        raise InvalidState(
            f"Cannot {action.value} a task in status '{task.status.value}'"
            f" (requires '{source.value}')"
        )
    return target


def _require_bid_of_task(task: TaskRead, bid: BidRead) -> None:
    if bid.task_id != task.id:
        raise ValidationError("Bid does not belong to this task")


def _validate_bid_terms(amount: float, message: str, estimated_days: Optional[int]) -> None:
    if amount is None or amount <= 0:
        raise ValidationError("Bid amount must be greater than zero")
    if _is_blank(message):
        raise ValidationError("Bid message is required")
    if estimated_days is not None and estimated_days <= 0:
        raise ValidationError("Estimated days must be a positive number")


def _build_event(
    action: Action,
    task: TaskRead,
    recipients: Iterable[uuid.UUID],
    now: datetime,
    *,
    event_type: Optional[EventType] = None,
    bid: Optional[BidRead] = None,
    status: Optional[str] = None,
    reason: Optional[str] = None,
) -> DomainEvent:
    return DomainEvent(
        type=event_type or ACTION_EVENTS[action],
        task_id=task.id,
        bid_id=bid.id if bid is not None else None,
        status=status or (bid.status.value if bid is not None else task.status.value),
        amount=bid.amount if bid is not None else None,
        task_title=task.title,
        reason=reason,
        recipients=list(recipients),
        occurred_at=now,
    )


# ---------------------------------------------------------------------------
# Task lifecycle
# ---------------------------------------------------------------------------

def start(task: TaskRead, actor: AuthenticatedUser, *, now: Optional[datetime] = None) -> Transition:
    target = _guard_task_action(task, actor, Action.START)
    now = _now(now)
    after = task.model_copy(update={"status": target, "started_at": now})
    return Transition(
        action=Action.START,
        actor_id=actor.user_id,
        task_before=task,
        task_after=after,
        event=_build_event(Action.START, after, _recipients(task.customer_id, task.assigned_to), now),
    )


def request_completion(
    task: TaskRead,
    actor: AuthenticatedUser,
    note: str,
    *,
    now: Optional[datetime] = None,
) -> Transition:
    target = _guard_task_action(task, actor, Action.REQUEST_COMPLETION)
    if _is_blank(note):
        raise ValidationError("A completion note is required")
    now = _now(now)
    after = task.model_copy(
        update={
            "status": target,
            "completion_note": note.strip(),
            "completion_requested_at": now,
        }
    )
    return Transition(
        action=Action.REQUEST_COMPLETION,
        actor_id=actor.user_id,
        task_before=task,
        task_after=after,
        event=_build_event(
            Action.REQUEST_COMPLETION,
            after,
            _recipients(task.customer_id, task.assigned_to),
            now,
            reason=after.completion_note,
        ),
    )


def confirm_completion(
    task: TaskRead,
    actor: AuthenticatedUser,
    feedback: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> Transition:
    target = _guard_task_action(task, actor, Action.CONFIRM_COMPLETION)
    now = _now(now)
    after = task.model_copy(
        update={
            "status": target,
            "completed_at": now,
            "customer_feedback": feedback.strip() if feedback else None,
            "review_eligible": True,
        }
    )
    return Transition(
        action=Action.CONFIRM_COMPLETION,
        actor_id=actor.user_id,
        task_before=task,
        task_after=after,
        event=_build_event(
            Action.CONFIRM_COMPLETION,
            after,
            _recipients(task.customer_id, task.assigned_to),
            now,
        ),
    )


def reject_completion(
    task: TaskRead,
    actor: AuthenticatedUser,
    reason: str,
    *,
    now: Optional[datetime] = None,
) -> Transition:
    target = _guard_task_action(task, actor, Action.REJECT_COMPLETION)
    if _is_blank(reason):
        raise ValidationError("A reason is required to reject completion")
    now = _now(now)
    after = task.model_copy(
        update={
            "status": target,
            "completion_note": None,
            "completion_requested_at": None,
        }
    )
    return Transition(
        action=Action.REJECT_COMPLETION,
        actor_id=actor.user_id,
        task_before=task,
        task_after=after,
        event=_build_event(
            Action.REJECT_COMPLETION,
            after,
            _recipients(task.customer_id, task.assigned_to),
            now,
            reason=reason.strip(),
        ),
    )


def cancel_task(
    task: TaskRead,
    bids: Sequence[BidRead],
    actor: AuthenticatedUser,
    *,
    now: Optional[datetime] = None,
) -> Transition:
    """Cancel an open task; every pending bid on it is cancelled with it."""
    target = _guard_task_action(task, actor, Action.CANCEL_TASK)
    now = _now(now)
    after = task.model_copy(update={"status": target})
    changes = tuple(
        BidChange(before=bid, after=bid.model_copy(update={"status": BidStatus.CANCELLED}))
        for bid in bids
        if bid.task_id == task.id and bid.status == BidStatus.PENDING
    )
    return Transition(
        action=Action.CANCEL_TASK,
        actor_id=actor.user_id,
        task_before=task,
        task_after=after,
        bid_changes=changes,
        event=_build_event(
            Action.CANCEL_TASK,
            after,
            _recipients(task.customer_id, *(c.after.tasker_id for c in changes)),
            now,
        ),
    )


def edit_task(
    task: TaskRead,
    bids: Sequence[BidRead],
    actor: AuthenticatedUser,
    changes: TaskUpdate,
    fees: FeeSchedule,
    *,
    now: Optional[datetime] = None,
) -> Transition:
    if actor.user_id != task.customer_id:
        raise Unauthorized("Only the task's customer can edit it")
    if task.status != TaskStatus.OPEN:
        raise InvalidState(f"Cannot edit a task in status '{task.status.value}'")

    updates = changes.model_dump(exclude_unset=True)
    for name in ("title", "description", "category", "address", "date_required",
                 "time_required", "duration", "budget", "is_urgent", "images"):
        if name in updates and updates[name] is None:
            raise ValidationError(f"'{name}' cannot be cleared")
    latitude = updates.get("latitude", task.latitude)
    longitude = updates.get("longitude", task.longitude)
    if (latitude is None) != (longitude is None):
        raise ValidationError("latitude and longitude must be provided together")
    if "budget" in updates and updates["budget"] != task.budget:
        updates.update(compute_fees(updates["budget"], fees))

    now = _now(now)
    after = task.model_copy(update=updates)
    pending_taskers = [
        bid.tasker_id for bid in bids
        if bid.task_id == task.id and bid.status == BidStatus.PENDING
    ]
    return Transition(
        action=Action.EDIT_TASK,
        actor_id=actor.user_id,
        task_before=task,
        task_after=after,
        event=_build_event(
            Action.EDIT_TASK,
            after,
            _recipients(task.customer_id, *pending_taskers),
            now,
        ),
    )


# ---------------------------------------------------------------------------
# Bids
# ---------------------------------------------------------------------------

def accept_bid(
    task: TaskRead,
    bid: BidRead,
    bids: Sequence[BidRead],
    actor: AuthenticatedUser,
    *,
    now: Optional[datetime] = None,
) -> Transition:
    """Accept a pending bid and assign its tasker, as one unit.

    Other pending bids on the task are left as they are.
    """
    target = _guard_task_action(task, actor, Action.ACCEPT_BID)
    _require_bid_of_task(task, bid)
    if bid.status != BidStatus.PENDING:
        raise InvalidState(f"Cannot accept a bid in status '{bid.status.value}'")
    if any(b.status == BidStatus.ACCEPTED and b.id != bid.id for b in bids):
        raise InvalidState("Task already has an accepted bid")

    now = _now(now)
    accepted = bid.model_copy(update={"status": BidStatus.ACCEPTED})
    after = task.model_copy(update={"status": target, "assigned_to": bid.tasker_id})
    return Transition(
        action=Action.ACCEPT_BID,
        actor_id=actor.user_id,
        task_before=task,
        task_after=after,
        bid_changes=(BidChange(before=bid, after=accepted),),
        event=_build_event(
            Action.ACCEPT_BID,
            after,
            _recipients(task.customer_id, bid.tasker_id),
            now,
            bid=accepted,
        ),
    )


def reject_bid(
    task: TaskRead,
    bid: BidRead,
    actor: AuthenticatedUser,
    reason: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> Transition:
    if actor.user_id != task.customer_id:
        raise Unauthorized("Only the task's customer can reject bids")
    _require_bid_of_task(task, bid)
    if bid.status != BidStatus.PENDING:
        raise InvalidState(f"Cannot reject a bid in status '{bid.status.value}'")

    now = _now(now)
    reason = reason.strip() if reason and reason.strip() else None
    rejected = bid.model_copy(update={"status": BidStatus.REJECTED, "rejection_reason": reason})
    return Transition(
        action=Action.REJECT_BID,
        actor_id=actor.user_id,
        task_before=task,
        task_after=task,
        bid_changes=(BidChange(before=bid, after=rejected),),
        event=_build_event(
            Action.REJECT_BID,
            task,
            _recipients(task.customer_id, bid.tasker_id),
            now,
            bid=rejected,
            reason=reason,
        ),
    )


def place_bid(
    task: TaskRead,
    bids: Sequence[BidRead],
    actor: AuthenticatedUser,
    amount: float,
    message: str,
    estimated_days: Optional[int] = None,
    *,
    now: Optional[datetime] = None,
) -> Transition:
    """Place a bid, or resubmit the tasker's pending bid on the same task."""
    if actor.role != Role.TASKER:
        raise Unauthorized("Only taskers can place bids")
    if actor.user_id == task.customer_id:
        raise Unauthorized("You cannot bid on your own task")
    if task.status != TaskStatus.OPEN:
        raise InvalidState(f"Cannot bid on a task in status '{task.status.value}'")
    _validate_bid_terms(amount, message, estimated_days)

    now = _now(now)
    terms = {"amount": amount, "message": message.strip(), "estimated_days": estimated_days}
    existing = next(
        (
            b for b in bids
            if b.task_id == task.id and b.tasker_id == actor.user_id and b.status == BidStatus.PENDING
        ),
        None,
    )
    if existing is not None:
        change = BidChange(before=existing, after=existing.model_copy(update=terms))
        event_type = EventType.BID_UPDATED
    else:
        change = BidChange(
            before=None,
            after=BidRead(
                id=uuid.uuid4(),
                task_id=task.id,
                tasker_id=actor.user_id,
                status=BidStatus.PENDING,
                version=1,
                created_at=now,
                updated_at=now,
                **terms,
            ),
        )
        event_type = EventType.BID_PLACED

    return Transition(
        action=Action.PLACE_BID,
        actor_id=actor.user_id,
        task_before=task,
        task_after=task,
        bid_changes=(change,),
        event=_build_event(
            Action.PLACE_BID,
            task,
            _recipients(task.customer_id, actor.user_id),
            now,
            event_type=event_type,
            bid=change.after,
        ),
    )


def update_bid(
    task: TaskRead,
    bid: BidRead,
    actor: AuthenticatedUser,
    *,
    amount: Optional[float] = None,
    message: Optional[str] = None,
    estimated_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Transition:
    """Replace the terms of a pending bid. Omitted terms keep their value."""
    if actor.user_id != bid.tasker_id:
        raise Unauthorized("Only the bidder can edit this bid")
    _require_bid_of_task(task, bid)
    if bid.status != BidStatus.PENDING:
        raise InvalidState(f"Cannot edit a bid in status '{bid.status.value}'")
    if task.status != TaskStatus.OPEN:
        raise InvalidState(f"Cannot edit a bid on a task in status '{task.status.value}'")

    terms = {
        "amount": bid.amount if amount is None else amount,
        "message": bid.message if message is None else message,
        "estimated_days": bid.estimated_days if estimated_days is None else estimated_days,
    }
    _validate_bid_terms(terms["amount"], terms["message"], terms["estimated_days"])
    terms["message"] = terms["message"].strip()

    now = _now(now)
    updated = bid.model_copy(update=terms)
    return Transition(
        action=Action.UPDATE_BID,
        actor_id=actor.user_id,
        task_before=task,
        task_after=task,
        bid_changes=(BidChange(before=bid, after=updated),),
        event=_build_event(
            Action.UPDATE_BID,
            task,
            _recipients(task.customer_id, bid.tasker_id),
            now,
            bid=updated,
        ),
    )


def withdraw_bid(
    task: TaskRead,
    bid: BidRead,
    actor: AuthenticatedUser,
    *,
    now: Optional[datetime] = None,
) -> Transition:
    if actor.user_id != bid.tasker_id:
        raise Unauthorized("Only the bidder can withdraw this bid")
    _require_bid_of_task(task, bid)
    if bid.status != BidStatus.PENDING:
        raise InvalidState(f"Cannot withdraw a bid in status '{bid.status.value}'")

    now = _now(now)
    withdrawn = bid.model_copy(update={"status": BidStatus.CANCELLED})
    return Transition(
        action=Action.WITHDRAW_BID,
        actor_id=actor.user_id,
        task_before=task,
        task_after=task,
        bid_changes=(BidChange(before=bid, after=withdrawn),),
        event=_build_event(
            Action.WITHDRAW_BID,
            task,
            _recipients(task.customer_id, bid.tasker_id),
            now,
            bid=withdrawn,
        ),
    )


# ---------------------------------------------------------------------------
# Consistency
# ---------------------------------------------------------------------------

def invariant_violations(task: TaskRead, bids: Sequence[BidRead]) -> list[str]:
    """Describe every way the task and its bids break the workflow rules."""
    problems: list[str] = []
    assigned = task.status in ASSIGNED_STATUSES
    if assigned and task.assigned_to is None:
        problems.append(f"task is '{task.status.value}' but has no assignee")
    if not assigned and task.assigned_to is not None:
        problems.append(f"task is '{task.status.value}' but has an assignee")

    own = [b for b in bids if b.task_id == task.id]
    accepted = [b for b in own if b.status == BidStatus.ACCEPTED]
    if len(accepted) > 1:
        problems.append(f"{len(accepted)} accepted bids")
    if accepted and accepted[0].tasker_id != task.assigned_to:
        problems.append("accepted bid's tasker is not the assignee")

    pending_taskers = [b.tasker_id for b in own if b.status == BidStatus.PENDING]
    if len(pending_taskers) != len(set(pending_taskers)):
        problems.append("a tasker holds more than one pending bid")
    if task.status == TaskStatus.CANCELLED and pending_taskers:
        problems.append("cancelled task still has pending bids")
    return problems
