"""
Bid service layer: loading, listing, and the bid actions of the workflow.
"""

from __future__ import annotations

import uuid
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from madadkaro_server.core.auth import AuthenticatedUser
from madadkaro_server.core.errors import NotFound
from madadkaro_server.core.events import EventDispatcher
from madadkaro_server.models.bid import Bid
from madadkaro_server.services import transitions
from madadkaro_server.services.tasks import load_task, load_task_bids
from madadkaro_server.services.workflow import commit_transition
from madadkaro_shared.schemas.bids import BidCreate, BidRead, BidUpdate
from madadkaro_shared.schemas.common import BidStatus


async def get_bid_or_404(session: AsyncSession, bid_id: uuid.UUID) -> Bid:
    result = await session.execute(
        select(Bid).where(Bid.id == bid_id).execution_options(populate_existing=True)
    )
    bid = result.scalar_one_or_none()
    if bid is None:
        raise NotFound("Bid not found")
    return bid


async def load_bid(session: AsyncSession, bid_id: uuid.UUID) -> BidRead:
    return BidRead.model_validate(await get_bid_or_404(session, bid_id))


async def load_visible_bid(
    session: AsyncSession, bid_id: uuid.UUID, auth: AuthenticatedUser
) -> BidRead:
    """A bid is visible to its tasker and to the task's customer."""
    bid = await load_bid(session, bid_id)
    if auth.user_id != bid.tasker_id:
        task = await load_task(session, bid.task_id)
        if auth.user_id != task.customer_id:
            raise NotFound("Bid not found")
    return bid


async def list_my_bids(
    session: AsyncSession,
    tasker_id: uuid.UUID,
    status: Optional[BidStatus] = None,
) -> List[BidRead]:
    stmt = (
        select(Bid)
        .where(Bid.tasker_id == tasker_id)
        .execution_options(populate_existing=True)
    )
    if status:
        stmt = stmt.where(Bid.status == status.value)
    result = await session.execute(stmt.order_by(Bid.created_at.desc()))
    return [BidRead.model_validate(b) for b in result.scalars().all()]


async def place_bid(
    session: AsyncSession,
    dispatcher: EventDispatcher,
    bid_in: BidCreate,
    auth: AuthenticatedUser,
) -> BidRead:
    """Place a bid, or update the caller's pending bid on the same task."""
    task = await load_task(session, bid_in.task_id)
    bids = await load_task_bids(session, task.id)
    transition = transitions.place_bid(
        task, bids, auth, bid_in.amount, bid_in.message, bid_in.estimated_days
    )
    committed = await commit_transition(session, transition, dispatcher)
    return committed.bid_changes[0].after


async def update_bid(
    session: AsyncSession,
    dispatcher: EventDispatcher,
    bid_id: uuid.UUID,
    bid_in: BidUpdate,
    auth: AuthenticatedUser,
) -> BidRead:
    bid = await load_bid(session, bid_id)
    task = await load_task(session, bid.task_id)
    transition = transitions.update_bid(
        task,
        bid,
        auth,
        amount=bid_in.amount,
        message=bid_in.message,
        estimated_days=bid_in.estimated_days,
    )
    committed = await commit_transition(session, transition, dispatcher)
    return committed.bid_changes[0].after


async def accept_bid(
    session: AsyncSession,
    dispatcher: EventDispatcher,
    bid_id: uuid.UUID,
    auth: AuthenticatedUser,
) -> BidRead:
    bid = await load_bid(session, bid_id)
    task = await load_task(session, bid.task_id)
    bids = await load_task_bids(session, task.id)
    committed = await commit_transition(
        session, transitions.accept_bid(task, bid, bids, auth), dispatcher
    )
    return committed.bid_changes[0].after


async def reject_bid(
    session: AsyncSession,
    dispatcher: EventDispatcher,
    bid_id: uuid.UUID,
    auth: AuthenticatedUser,
    reason: Optional[str] = None,
) -> BidRead:
    bid = await load_bid(session, bid_id)
    task = await load_task(session, bid.task_id)
    committed = await commit_transition(
        session, transitions.reject_bid(task, bid, auth, reason), dispatcher
    )
    return committed.bid_changes[0].after


async def withdraw_bid(
    session: AsyncSession,
    dispatcher: EventDispatcher,
    bid_id: uuid.UUID,
    auth: AuthenticatedUser,
) -> BidRead:
    bid = await load_bid(session, bid_id)
    task = await load_task(session, bid.task_id)
    committed = await commit_transition(
        session, transitions.withdraw_bid(task, bid, auth), dispatcher
    )
    return committed.bid_changes[0].after
