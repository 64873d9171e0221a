"""
Atomic commit of engine transitions.

A transition is written in one database transaction: a conditional UPDATE per
changed row (matching id, version and status, bumping version), an INSERT per
new bid, and the outbox event. If any conditional UPDATE matches no row the
whole transaction is rolled back. The event is published only after COMMIT.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from madadkaro_server.core.errors import ConflictingAccept, InvalidState
from madadkaro_server.core.events import EventDispatcher
from madadkaro_server.models.bid import Bid
from madadkaro_server.models.event import Event
from madadkaro_server.models.task import Task
from madadkaro_server.services.transitions import BidChange, Transition
from madadkaro_shared.schemas.bids import BidRead
from madadkaro_shared.schemas.common import Action, BidStatus

log = structlog.get_logger()

# Columns never written through a conditional update
_BOOKKEEPING = {"id", "version", "created_at", "updated_at"}


class _StaleWrite(Exception):
    """A conditional UPDATE matched no row."""


def _column_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _changed_columns(before: BaseModel, after: BaseModel) -> dict[str, Any]:
    old = before.model_dump()
    new = after.model_dump()
    return {
        name: _column_value(new[name])
        for name in new
        if name not in _BOOKKEEPING and new[name] != old[name]
    }


def _conflict(transition: Transition) -> Exception:
    if transition.action == Action.ACCEPT_BID:
        return ConflictingAccept("Another bid was accepted for this task first")
    return InvalidState("The task or bid changed concurrently; refresh and try again")


async def _write_task(session: AsyncSession, transition: Transition, now: datetime) -> None:
    before = transition.task_before
    if transition.task_changed:
        stmt = (
            update(Task)
            .where(
                Task.id == before.id,
                Task.version == before.version,
                Task.status == before.status.value,
            )
            .values(
                **_changed_columns(before, transition.task_after),
                version=before.version + 1,
                updated_at=now,
            )
        )
    else:
        # Bid-only transitions still require the task to hold its status
        stmt = (
            update(Task)
            .where(Task.id == before.id, Task.status == before.status.value)
            .values(version=Task.version)
        )
    result = await session.execute(stmt, execution_options={"synchronize_session": False})
    if result.rowcount != 1:
        raise _StaleWrite(f"task {before.id}")


async def _write_bid(session: AsyncSession, change: BidChange, now: datetime) -> None:
    if change.before is None:
        values = change.after.model_dump()
        values["status"] = change.after.status.value
        session.add(Bid(**values))
        await session.flush()
        return

    before = change.before
    stmt = (
        update(Bid)
        .where(
            Bid.id == before.id,
            Bid.version == before.version,
            Bid.status == before.status.value,
        )
        .values(
            **_changed_columns(before, change.after),
            version=before.version + 1,
            updated_at=now,
        )
    )
    result = await session.execute(stmt, execution_options={"synchronize_session": False})
    if result.rowcount != 1:
        raise _StaleWrite(f"bid {before.id}")


async def _cancel_pending_bids(
    session: AsyncSession, transition: Transition, now: datetime
) -> Transition:
    """Cancel every pending bid the task has in storage, not just the ones read.

    Bids placed after the cancel was planned are caught here too; the event
    goes to the taskers whose bids were actually cancelled.
    """
    task = transition.task_before
    stmt = (
        update(Bid)
        .where(Bid.task_id == task.id, Bid.status == BidStatus.PENDING.value)
        .values(status=BidStatus.CANCELLED.value, version=Bid.version + 1, updated_at=now)
        .returning(*Bid.__table__.columns)
    )
    result = await session.execute(stmt, execution_options={"synchronize_session": False})
    changes = []
    for row in result.mappings().all():
        after = BidRead.model_validate(dict(row))
        before = after.model_copy(
            update={"status": BidStatus.PENDING, "version": after.version - 1}
        )
        changes.append(BidChange(before=before, after=after))

    recipients = list(dict.fromkeys([task.customer_id, *(c.after.tasker_id for c in changes)]))
    event = transition.event.model_copy(update={"recipients": recipients})
    return replace(transition, bid_changes=tuple(changes), event=event)


def _committed(transition: Transition, sequence_id: int, now: datetime) -> Transition:
    """The transition as it now stands in storage."""
    task_after = transition.task_after
    if transition.task_changed:
        task_after = task_after.model_copy(
            update={"version": transition.task_before.version + 1, "updated_at": now}
        )
    changes = tuple(
        change if change.before is None else BidChange(
            before=change.before,
            after=change.after.model_copy(
                update={"version": change.before.version + 1, "updated_at": now}
            ),
        )
        for change in transition.bid_changes
    )
    event = transition.event.model_copy(update={"sequence_id": sequence_id})
    return replace(transition, task_after=task_after, bid_changes=changes, event=event)


async def commit_transition(
    session: AsyncSession,
    transition: Transition,
    dispatcher: EventDispatcher,
) -> Transition:
    """Apply a transition atomically, then publish its event.

    Returns the committed transition (bumped versions, assigned sequence id).
    Raises ConflictingAccept or InvalidState when another writer got there
    first; nothing is written or published in that case.
    """
    task_id = transition.task_before.id
    async with dispatcher.ordering(task_id):
        now = datetime.now(timezone.utc)
        try:
            await _write_task(session, transition, now)
            if transition.action == Action.CANCEL_TASK:
                transition = await _cancel_pending_bids(session, transition, now)
            else:
                for change in transition.bid_changes:
                    await _write_bid(session, change, now)

            event = transition.event
            outbox = Event(
                type=event.type.value,
                action=transition.action.value,
                task_id=task_id,
                bid_id=event.bid_id,
                actor_id=transition.actor_id,
                recipients=[str(r) for r in event.recipients],
                payload=event.model_dump(
                    mode="json", by_alias=True, exclude={"sequence_id", "recipients"}
                ),
                timestamp=event.occurred_at,
            )
            session.add(outbox)
            await session.flush()
            sequence_id = outbox.sequence_id
            await session.commit()
        except _StaleWrite as exc:
            await session.rollback()
            log.info(
                "transition.conflict",
                action=transition.action.value,
                task_id=str(task_id),
                stale=str(exc),
            )
            raise _conflict(transition) from None
        except IntegrityError:
            await session.rollback()
            log.info(
                "transition.duplicate",
                action=transition.action.value,
                task_id=str(task_id),
            )
            raise InvalidState("You already have a pending bid on this task") from None

        committed = _committed(transition, sequence_id, now)
        log.info(
            "transition.committed",
            action=transition.action.value,
            task_id=str(task_id),
            actor_id=str(transition.actor_id),
            sequence_id=sequence_id,
            status=committed.task_after.status.value,
        )
        await dispatcher.deliver(session, committed.event)
    return committed
