"""
SSE event streaming.

- GET /stream: the caller's domain events, live only, with a 30s heartbeat
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from madadkaro_server.core.auth import AuthenticatedUser, get_current_user
from madadkaro_server.core.events import event_generator

router = APIRouter()


@router.get("/stream")
async def stream_events(
    request: Request,
    auth: AuthenticatedUser = Depends(get_current_user),
):
    """
    Stream the caller's domain events via SSE.

    Events are not queued while the caller is offline. The first message is a
    ``stream.ready`` event; clients refresh their views when they see it.
    """
    return EventSourceResponse(event_generator(request, auth.user_id))
