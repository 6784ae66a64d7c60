"""SQLAlchemy models."""

from shared.models.base import Base
from shared.models.event import Event, EventKind
from shared.models.user import User

__all__ = [
    "Base",
    "Event",
    "EventKind",
    "User",
]
