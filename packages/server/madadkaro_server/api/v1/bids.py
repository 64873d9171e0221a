"""
Bid endpoints.

A tasker holds at most one pending bid per task: posting again on the same
task updates that bid. Accepting a bid assigns its tasker in the same commit.
"""

from __future__ import annotations

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from madadkaro_server.core.auth import AuthenticatedUser, get_current_user
from madadkaro_server.core.database import get_session
from madadkaro_server.core.events import EventDispatcher, get_dispatcher
from madadkaro_server.services import bids as bid_service
from madadkaro_shared.schemas.bids import BidCreate, BidRead, BidRejection, BidUpdate
from madadkaro_shared.schemas.common import BidStatus

router = APIRouter()


@router.post("/", response_model=BidRead, status_code=201)
async def place_bid_endpoint(
    bid_in: BidCreate,
    auth: AuthenticatedUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    return await bid_service.place_bid(session, dispatcher, bid_in, auth)


@router.get("/mine", response_model=List[BidRead])
async def list_my_bids_endpoint(
    status: Optional[BidStatus] = None,
    auth: AuthenticatedUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return await bid_service.list_my_bids(session, auth.user_id, status)


@router.get("/{bid_id}", response_model=BidRead)
async def get_bid_endpoint(
    bid_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return await bid_service.load_visible_bid(session, bid_id, auth)


@router.patch("/{bid_id}", response_model=BidRead)
async def update_bid_endpoint(
    bid_id: uuid.UUID,
    bid_in: BidUpdate,
    auth: AuthenticatedUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    return await bid_service.update_bid(session, dispatcher, bid_id, bid_in, auth)


@router.post("/{bid_id}/accept", response_model=BidRead)
async def accept_bid_endpoint(
    bid_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    return await bid_service.accept_bid(session, dispatcher, bid_id, auth)


@router.post("/{bid_id}/reject", response_model=BidRead)
async def reject_bid_endpoint(
    bid_id: uuid.UUID,
    body: Optional[BidRejection] = None,
    auth: AuthenticatedUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    reason = body.reason if body else None
    return await bid_service.reject_bid(session, dispatcher, bid_id, auth, reason)


@router.post("/{bid_id}/withdraw", response_model=BidRead)
async def withdraw_bid_endpoint(
    bid_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    return await bid_service.withdraw_bid(session, dispatcher, bid_id, auth)
