"""Task model."""

from datetime import date, datetime
from typing import List, Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin, VersionMixin


class Task(UUIDMixin, TimestampMixin, VersionMixin, SQLModel, table=True):
    __tablename__ = "tasks"

    customer_id: uuid.UUID = Field(nullable=False, index=True)
    title: str = Field(nullable=False)
    description: str = Field(nullable=False)
    category: str = Field(nullable=False, index=True)
    subcategory: Optional[str] = None
    budget: float = Field(nullable=False)
    address: str = Field(nullable=False)
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    date_required: date = Field(nullable=False)
    time_required: str = Field(nullable=False)
    duration: float = Field(nullable=False)  # hours
    is_urgent: bool = Field(default=False, nullable=False)
    images: List[str] = Field(default_factory=list, sa_type=sa.JSON)
    status: str = Field(nullable=False, default="open", index=True)  # open | assigned | inProgress | completionRequested | completed | cancelled
    assigned_to: Optional[uuid.UUID] = Field(default=None, index=True)

    started_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    completion_requested_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    completion_note: Optional[str] = None
    completed_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    customer_feedback: Optional[str] = None
    review_eligible: bool = Field(default=False, nullable=False)

    platform_fee: float = Field(default=0.0, nullable=False)
    commission_rate: float = Field(default=0.0, nullable=False)
    commission_amount: float = Field(default=0.0, nullable=False)
    trust_and_support_fee: float = Field(default=0.0, nullable=False)
    final_tasker_payout: float = Field(default=0.0, nullable=False)
    total_amount_paid_by_customer: float = Field(default=0.0, nullable=False)
