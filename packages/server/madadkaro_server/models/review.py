"""Review model."""

from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class Review(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "reviews"
    __table_args__ = (
        sa.UniqueConstraint("task_id", "reviewer_id", name="uq_reviews_task_reviewer"),
    )

    task_id: uuid.UUID = Field(foreign_key="tasks.id", nullable=False, index=True)
    reviewer_id: uuid.UUID = Field(nullable=False)
    reviewed_user_id: uuid.UUID = Field(nullable=False, index=True)
    rating: int = Field(nullable=False)
    comment: Optional[str] = None
