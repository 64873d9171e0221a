"""
API v1 Router
"""

from fastapi import APIRouter
from . import bids, events, tasks

router = APIRouter()

router.include_router(tasks.router, prefix="/tasks", tags=["Tasks"])
router.include_router(bids.router, prefix="/bids", tags=["Bids"])
router.include_router(events.router, prefix="/events", tags=["Events"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/tasks",
            "/bids",
            "/events/stream",
        ],
    }
