"""
Database models
"""

from app.models.event import Event, EventStatus, EventCategory
from app.models.registration import Registration

__all__ = [
    "Event",
    "EventStatus",
    "EventCategory",
    "Registration",
]
