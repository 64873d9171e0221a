"""Task-related Pydantic schemas shared by the server and the sync client."""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, UUID4, model_validator

from .common import TaskStatus


# ---------------------------------------------------------------------------
# Task CRUD
# ---------------------------------------------------------------------------

class TaskBase(BaseModel):
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    category: str
    subcategory: Optional[str] = None
    budget: float = Field(gt=0)
    address: str = Field(min_length=1)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    date_required: date
    time_required: str
    duration: float = Field(gt=0)  # hours
    is_urgent: bool = False
    images: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _coordinates_come_in_pairs(self):
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be provided together")
        return self


class TaskCreate(TaskBase):
    pass


class TaskUpdate(BaseModel):
    """Partial edit of an open task. Unset fields are left untouched."""
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = Field(default=None, min_length=1)
    category: Optional[str] = None
    subcategory: Optional[str] = None
    budget: Optional[float] = Field(default=None, gt=0)
    address: Optional[str] = Field(default=None, min_length=1)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    date_required: Optional[date] = None
    time_required: Optional[str] = None
    duration: Optional[float] = Field(default=None, gt=0)
    is_urgent: Optional[bool] = None
    images: Optional[List[str]] = None


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID4
    customer_id: UUID4
    title: str
    description: str
    category: str
    subcategory: Optional[str] = None
    budget: float
    address: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    date_required: date
    time_required: str
    duration: float
    is_urgent: bool = False
    images: List[str] = Field(default_factory=list)
    status: TaskStatus
    assigned_to: Optional[UUID4] = None

    started_at: Optional[datetime] = None
    completion_requested_at: Optional[datetime] = None
    completion_note: Optional[str] = None
    completed_at: Optional[datetime] = None
    customer_feedback: Optional[str] = None
    review_eligible: bool = False

    platform_fee: float = 0.0
    commission_rate: float = 0.0
    commission_amount: float = 0.0
    trust_and_support_fee: float = 0.0
    final_tasker_payout: float = 0.0
    total_amount_paid_by_customer: float = 0.0

    version: int = 1
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Lifecycle request bodies
# ---------------------------------------------------------------------------

class CompletionRequest(BaseModel):
    """Request body for POST /tasks/{taskId}/request-completion."""
    note: str = ""


class CompletionConfirmation(BaseModel):
    """Request body for POST /tasks/{taskId}/confirm-completion."""
    feedback: Optional[str] = None


class CompletionRejection(BaseModel):
    """Request body for POST /tasks/{taskId}/reject-completion."""
    reason: str = ""


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------

class ReviewCreate(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = None


class ReviewRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID4
    task_id: UUID4
    reviewer_id: UUID4
    reviewed_user_id: UUID4
    rating: int
    comment: Optional[str] = None
    created_at: datetime
