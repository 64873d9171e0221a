"""Bid-related Pydantic schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, UUID4

from .common import BidStatus


class BidCreate(BaseModel):
    """Request body for POST /bids. Re-posting on the same task updates the pending bid."""
    task_id: UUID4
    amount: float
    message: str
    estimated_days: Optional[int] = None


class BidUpdate(BaseModel):
    amount: Optional[float] = None
    message: Optional[str] = None
    estimated_days: Optional[int] = None


class BidRejection(BaseModel):
    """Request body for POST /bids/{bidId}/reject."""
    reason: Optional[str] = None


class BidRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID4
    task_id: UUID4
    tasker_id: UUID4
    amount: float
    message: str
    estimated_days: Optional[int] = None
    status: BidStatus
    rejection_reason: Optional[str] = None
    version: int = 1
    created_at: datetime
    updated_at: datetime
