"""Event outbox model (immutable, one row per committed transition)."""

from datetime import datetime, timezone
from typing import List, Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


class Event(SQLModel, table=True):
    __tablename__ = "events"

    # Database-assigned and strictly increasing in commit order
    sequence_id: Optional[int] = Field(default=None, primary_key=True)
    type: str = Field(nullable=False)  # e.g., bid_status_changed, completion_requested
    action: str = Field(nullable=False)  # e.g., ACCEPT_BID
    task_id: uuid.UUID = Field(nullable=False, index=True)
    bid_id: Optional[uuid.UUID] = Field(default=None, index=True)
    actor_id: uuid.UUID = Field(nullable=False)
    recipients: List[str] = Field(default_factory=list, sa_type=sa.JSON)
    payload: dict = Field(default_factory=dict, sa_type=sa.JSON, nullable=False)
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
    )
    # Set once the event has been handed to the pub/sub layer
    published_at: Optional[datetime] = Field(
        default=None, sa_type=sa.DateTime(timezone=True), index=True
    )
