"""
Task service layer.

Handles:
- Task creation with the fee breakdown
- Snapshot loading for the transition engine
- Lifecycle actions (start, completion cycle, cancel, edit) via commit_transition
- Reviews once a task is completed
"""

from __future__ import annotations

import uuid
from typing import List, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from madadkaro_server.core.auth import AuthenticatedUser
from madadkaro_server.core.errors import InvalidState, NotFound, Unauthorized
from madadkaro_server.core.events import EventDispatcher
from madadkaro_server.models.bid import Bid
from madadkaro_server.models.review import Review
from madadkaro_server.models.task import Task
from madadkaro_server.services import transitions
from madadkaro_server.services.fees import FeeSchedule, compute_fees
from madadkaro_server.services.workflow import commit_transition
from madadkaro_shared.schemas.bids import BidRead
from madadkaro_shared.schemas.common import Role, TaskStatus
from madadkaro_shared.schemas.tasks import ReviewCreate, TaskCreate, TaskRead, TaskUpdate

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


async def get_task_or_404(session: AsyncSession, task_id: uuid.UUID) -> Task:
    # populate_existing: conditional updates bypass the identity map
    result = await session.execute(
        select(Task).where(Task.id == task_id).execution_options(populate_existing=True)
    )
    task = result.scalar_one_or_none()
    if task is None:
        raise NotFound("Task not found")
    return task


async def load_task(session: AsyncSession, task_id: uuid.UUID) -> TaskRead:
    return TaskRead.model_validate(await get_task_or_404(session, task_id))


async def load_task_bids(session: AsyncSession, task_id: uuid.UUID) -> list[BidRead]:
    result = await session.execute(
        select(Bid)
        .where(Bid.task_id == task_id)
        .order_by(Bid.created_at)
        .execution_options(populate_existing=True)
    )
    return [BidRead.model_validate(b) for b in result.scalars().all()]


async def list_tasks(
    session: AsyncSession,
    auth: AuthenticatedUser,
    status: Optional[TaskStatus] = None,
    mine: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> List[TaskRead]:
    """List tasks, newest first.

    ``mine`` means tasks posted by a customer, or tasks assigned to a tasker.
    """
    stmt = select(Task).execution_options(populate_existing=True)
    if status:
        stmt = stmt.where(Task.status == status.value)
    if mine:
        if auth.role == Role.CUSTOMER:
            stmt = stmt.where(Task.customer_id == auth.user_id)
        else:
            stmt = stmt.where(Task.assigned_to == auth.user_id)
    stmt = stmt.order_by(Task.created_at.desc(), Task.id).offset(offset).limit(limit)
    result = await session.execute(stmt)
    return [TaskRead.model_validate(t) for t in result.scalars().all()]


async def list_visible_bids(
    session: AsyncSession, task_id: uuid.UUID, auth: AuthenticatedUser
) -> list[BidRead]:
    """The task's customer sees every bid; anyone else sees only their own."""
    task = await load_task(session, task_id)
    bids = await load_task_bids(session, task_id)
    if auth.user_id == task.customer_id:
        return bids
    return [b for b in bids if b.tasker_id == auth.user_id]


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


async def create_task(
    session: AsyncSession,
    task_in: TaskCreate,
    customer_id: uuid.UUID,
    fees: FeeSchedule,
) -> TaskRead:
    task = Task(
        **task_in.model_dump(),
        **compute_fees(task_in.budget, fees),
        customer_id=customer_id,
        status=TaskStatus.OPEN.value,
    )
    session.add(task)
    await session.commit()
    await session.refresh(task)
    log.info("task.created", task_id=str(task.id), customer_id=str(customer_id))
    return TaskRead.model_validate(task)


# ---------------------------------------------------------------------------
# Lifecycle actions
# ---------------------------------------------------------------------------


async def start_task(
    session: AsyncSession,
    dispatcher: EventDispatcher,
    task_id: uuid.UUID,
    auth: AuthenticatedUser,
) -> TaskRead:
    task = await load_task(session, task_id)
    committed = await commit_transition(session, transitions.start(task, auth), dispatcher)
    return committed.task_after


async def request_completion(
    session: AsyncSession,
    dispatcher: EventDispatcher,
    task_id: uuid.UUID,
    auth: AuthenticatedUser,
    note: str,
) -> TaskRead:
    task = await load_task(session, task_id)
    transition = transitions.request_completion(task, auth, note)
    committed = await commit_transition(session, transition, dispatcher)
    return committed.task_after


async def confirm_completion(
    session: AsyncSession,
    dispatcher: EventDispatcher,
    task_id: uuid.UUID,
    auth: AuthenticatedUser,
    feedback: Optional[str] = None,
) -> TaskRead:
    task = await load_task(session, task_id)
    transition = transitions.confirm_completion(task, auth, feedback)
    committed = await commit_transition(session, transition, dispatcher)
    return committed.task_after


async def reject_completion(
    session: AsyncSession,
    dispatcher: EventDispatcher,
    task_id: uuid.UUID,
    auth: AuthenticatedUser,
    reason: str,
) -> TaskRead:
    task = await load_task(session, task_id)
    transition = transitions.reject_completion(task, auth, reason)
    committed = await commit_transition(session, transition, dispatcher)
    return committed.task_after


async def cancel_task(
    session: AsyncSession,
    dispatcher: EventDispatcher,
    task_id: uuid.UUID,
    auth: AuthenticatedUser,
) -> TaskRead:
    task = await load_task(session, task_id)
    bids = await load_task_bids(session, task_id)
    committed = await commit_transition(
        session, transitions.cancel_task(task, bids, auth), dispatcher
    )
    return committed.task_after


async def edit_task(
    session: AsyncSession,
    dispatcher: EventDispatcher,
    task_id: uuid.UUID,
    auth: AuthenticatedUser,
    changes: TaskUpdate,
    fees: FeeSchedule,
) -> TaskRead:
    task = await load_task(session, task_id)
    bids = await load_task_bids(session, task_id)
    transition = transitions.edit_task(task, bids, auth, changes, fees)
    committed = await commit_transition(session, transition, dispatcher)
    return committed.task_after


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------


async def create_review(
    session: AsyncSession,
    task_id: uuid.UUID,
    auth: AuthenticatedUser,
    review_in: ReviewCreate,
) -> Review:
    """Record one review per participant on a completed task."""
    task = await load_task(session, task_id)
    if auth.user_id == task.customer_id:
        reviewed = task.assigned_to
    elif task.assigned_to is not None and auth.user_id == task.assigned_to:
        reviewed = task.customer_id
    else:
        raise Unauthorized("Only the task's participants can review it")
    if task.status != TaskStatus.COMPLETED or not task.review_eligible:
        raise InvalidState("Reviews open once the task is completed")

    review = Review(
        task_id=task.id,
        reviewer_id=auth.user_id,
        reviewed_user_id=reviewed,
        rating=review_in.rating,
        comment=review_in.comment,
    )
    session.add(review)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise InvalidState("You have already reviewed this task") from None
    await session.refresh(review)
    log.info("review.created", task_id=str(task.id), reviewer_id=str(auth.user_id))
    return review

