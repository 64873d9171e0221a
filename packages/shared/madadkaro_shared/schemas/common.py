from enum import Enum
from typing import Optional
from pydantic import BaseModel

class TaskStatus(str, Enum):
    OPEN = "open"
    ASSIGNED = "assigned"
    IN_PROGRESS = "inProgress"
    COMPLETION_REQUESTED = "completionRequested"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class BidStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

class Role(str, Enum):
    CUSTOMER = "customer"
    TASKER = "tasker"

class Action(str, Enum):
    START = "START"
    REQUEST_COMPLETION = "REQUEST_COMPLETION"
    CONFIRM_COMPLETION = "CONFIRM_COMPLETION"
    REJECT_COMPLETION = "REJECT_COMPLETION"
    ACCEPT_BID = "ACCEPT_BID"
    REJECT_BID = "REJECT_BID"
    CANCEL_TASK = "CANCEL_TASK"
    EDIT_TASK = "EDIT_TASK"
    PLACE_BID = "PLACE_BID"
    UPDATE_BID = "UPDATE_BID"
    WITHDRAW_BID = "WITHDRAW_BID"

class EventType(str, Enum):
    BID_PLACED = "bid_placed"
    BID_UPDATED = "bid_updated"
    BID_STATUS_CHANGED = "bid_status_changed"
    TASK_UPDATED = "task_updated"
    TASK_STATUS_CHANGED = "task_status_changed"
    COMPLETION_REQUESTED = "completion_requested"
    COMPLETION_CONFIRMED = "completion_confirmed"
    COMPLETION_REJECTED = "completion_rejected"

class RejectionCode(str, Enum):
    UNAUTHORIZED = "Unauthorized"
    INVALID_STATE = "InvalidState"
    CONFLICTING_ACCEPT = "ConflictingAccept"
    VALIDATION_ERROR = "ValidationError"
    NOT_FOUND = "NotFound"

# Statuses in which a task carries an assigned tasker
ASSIGNED_STATUSES: frozenset["TaskStatus"] = frozenset({
    TaskStatus.ASSIGNED,
    TaskStatus.IN_PROGRESS,
    TaskStatus.COMPLETION_REQUESTED,
    TaskStatus.COMPLETED,
})


# Body of every rejected request
class ErrorBody(BaseModel):
    detail: str
    code: Optional[RejectionCode] = None
