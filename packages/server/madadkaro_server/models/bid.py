"""Bid model."""

from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin, VersionMixin


class Bid(UUIDMixin, TimestampMixin, VersionMixin, SQLModel, table=True):
    __tablename__ = "bids"
    __table_args__ = (
        # One pending bid per tasker per task
        sa.Index(
            "uq_bids_pending_per_tasker",
            "task_id",
            "tasker_id",
            unique=True,
            postgresql_where=sa.text("status = 'pending'"),
            sqlite_where=sa.text("status = 'pending'"),
        ),
    )

    task_id: uuid.UUID = Field(foreign_key="tasks.id", nullable=False, index=True)
    tasker_id: uuid.UUID = Field(nullable=False, index=True)
    amount: float = Field(nullable=False)
    message: str = Field(nullable=False)
    estimated_days: Optional[int] = None
    status: str = Field(nullable=False, default="pending", index=True)  # pending | accepted | rejected | cancelled
    rejection_reason: Optional[str] = None
