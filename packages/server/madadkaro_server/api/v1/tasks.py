"""
Task endpoints: creation, listing, editing, and the lifecycle actions.

Lifecycle: open → assigned → inProgress → completionRequested → completed
- completionRequested → inProgress on rejection
- open → cancelled on cancellation (pending bids are cancelled with it)
- Every action publishes exactly one domain event after it commits.
"""

from __future__ import annotations

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from madadkaro_server.core.auth import AuthenticatedUser, get_current_user, require_customer
from madadkaro_server.core.database import get_session
from madadkaro_server.core.events import EventDispatcher, get_dispatcher
from madadkaro_server.services import tasks as task_service
from madadkaro_server.services.fees import FeeSchedule, get_fee_schedule
from madadkaro_shared.schemas.bids import BidRead
from madadkaro_shared.schemas.common import TaskStatus
from madadkaro_shared.schemas.tasks import (
    CompletionConfirmation,
    CompletionRejection,
    CompletionRequest,
    ReviewCreate,
    ReviewRead,
    TaskCreate,
    TaskRead,
    TaskUpdate,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# Task CRUD
# ---------------------------------------------------------------------------


@router.get("/", response_model=List[TaskRead])
async def list_tasks_endpoint(
    status: Optional[TaskStatus] = None,
    mine: bool = False,
    page: int = Query(1, ge=1),
    per_page: int = Query(25, ge=1, le=100),
    auth: AuthenticatedUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """List tasks, optionally only the caller's (posted or assigned) and by status."""
    return await task_service.list_tasks(
        session, auth, status=status, mine=mine, limit=per_page, offset=(page - 1) * per_page
    )


@router.post("/", response_model=TaskRead, status_code=201)
async def create_task_endpoint(
    task_in: TaskCreate,
    auth: AuthenticatedUser = Depends(require_customer),
    session: AsyncSession = Depends(get_session),
    fees: FeeSchedule = Depends(get_fee_schedule),
):
    return await task_service.create_task(session, task_in, auth.user_id, fees)


@router.get("/{task_id}", response_model=TaskRead)
async def get_task_endpoint(
    task_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return await task_service.load_task(session, task_id)


@router.patch("/{task_id}", response_model=TaskRead)
async def update_task_endpoint(
    task_id: uuid.UUID,
    changes: TaskUpdate,
    auth: AuthenticatedUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
    fees: FeeSchedule = Depends(get_fee_schedule),
):
    """Edit an open task. A budget change recomputes the fee breakdown."""
    return await task_service.edit_task(session, dispatcher, task_id, auth, changes, fees)


@router.get("/{task_id}/bids", response_model=List[BidRead])
async def list_task_bids_endpoint(
    task_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """All bids for the task's customer; only the caller's own bids otherwise."""
    return await task_service.list_visible_bids(session, task_id, auth)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@router.post("/{task_id}/start", response_model=TaskRead)
async def start_task_endpoint(
    task_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    return await task_service.start_task(session, dispatcher, task_id, auth)


@router.post("/{task_id}/request-completion", response_model=TaskRead)
async def request_completion_endpoint(
    task_id: uuid.UUID,
    body: CompletionRequest,
    auth: AuthenticatedUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    return await task_service.request_completion(session, dispatcher, task_id, auth, body.note)


@router.post("/{task_id}/confirm-completion", response_model=TaskRead)
async def confirm_completion_endpoint(
    task_id: uuid.UUID,
    body: Optional[CompletionConfirmation] = None,
    auth: AuthenticatedUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    feedback = body.feedback if body else None
    return await task_service.confirm_completion(session, dispatcher, task_id, auth, feedback)


@router.post("/{task_id}/reject-completion", response_model=TaskRead)
async def reject_completion_endpoint(
    task_id: uuid.UUID,
    body: CompletionRejection,
    auth: AuthenticatedUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    return await task_service.reject_completion(session, dispatcher, task_id, auth, body.reason)


@router.post("/{task_id}/cancel", response_model=TaskRead)
async def cancel_task_endpoint(
    task_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    return await task_service.cancel_task(session, dispatcher, task_id, auth)


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------


@router.post("/{task_id}/reviews", response_model=ReviewRead, status_code=201)
async def create_review_endpoint(
    task_id: uuid.UUID,
    review_in: ReviewCreate,
    auth: AuthenticatedUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return await task_service.create_review(session, task_id, auth, review_in)
