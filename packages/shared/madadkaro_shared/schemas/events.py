"""
Domain event payload and the closed action → event lookup table.

Events travel over the wire in camelCase (``taskId``, ``bidId``, ``taskTitle``);
Python code uses the snake_case attribute names.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, UUID4
from pydantic.alias_generators import to_camel

from .common import Action, EventType


# Every action produces exactly one event of a fixed type. PLACE_BID resolves
# to BID_UPDATED instead when it resubmits an existing pending bid.
ACTION_EVENTS: dict[Action, EventType] = {
    Action.START: EventType.TASK_STATUS_CHANGED,
    Action.REQUEST_COMPLETION: EventType.COMPLETION_REQUESTED,
    Action.CONFIRM_COMPLETION: EventType.COMPLETION_CONFIRMED,
    Action.REJECT_COMPLETION: EventType.COMPLETION_REJECTED,
    Action.ACCEPT_BID: EventType.BID_STATUS_CHANGED,
    Action.REJECT_BID: EventType.BID_STATUS_CHANGED,
    Action.CANCEL_TASK: EventType.TASK_STATUS_CHANGED,
    Action.EDIT_TASK: EventType.TASK_UPDATED,
    Action.PLACE_BID: EventType.BID_PLACED,
    Action.UPDATE_BID: EventType.BID_UPDATED,
    Action.WITHDRAW_BID: EventType.BID_STATUS_CHANGED,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DomainEvent(BaseModel):
    """A committed transition, as delivered to every recipient."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    type: EventType
    task_id: UUID4
    bid_id: Optional[UUID4] = None
    status: str
    amount: Optional[float] = None
    task_title: Optional[str] = None
    reason: Optional[str] = None
    recipients: List[UUID4] = Field(default_factory=list)
    sequence_id: Optional[int] = None
    occurred_at: datetime = Field(default_factory=_utcnow)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

    def scope_ids(self) -> set[str]:
        """Ids a subscription scope may match against."""
        ids = {str(self.task_id)}
        if self.bid_id is not None:
            ids.add(str(self.bid_id))
        return ids
