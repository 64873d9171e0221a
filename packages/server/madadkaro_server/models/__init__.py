from .base import TimestampMixin, UUIDMixin, VersionMixin
from .bid import Bid
from .event import Event
from .review import Review
from .task import Task

__all__ = [
    "Bid",
    "Event",
    "Review",
    "Task",
    "TimestampMixin",
    "UUIDMixin",
    "VersionMixin",
]
