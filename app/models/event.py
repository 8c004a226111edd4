"""
Event model
"""

from sqlalchemy import Column, String, Integer, Text, Date, DateTime, Enum, Numeric, Boolean, Uuid, CheckConstraint
from sqlalchemy.orm import relationship
import enum

from app.models.base import BaseModel
from app.domain.models import EventSnapshot, as_utc


class EventStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class EventCategory(str, enum.Enum):
    ACADEMIC = "academic"
    CULTURAL = "cultural"
    SPORTS = "sports"
    TECHNICAL = "technical"
    WORKSHOP = "workshop"
    CONFERENCE = "conference"
    SEMINAR = "seminar"
    NETWORKING = "networking"
    OTHER = "other"


class Event(BaseModel):
    """
    Event owned by the event-management portal; read-only to registration
    """
    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint("capacity IS NULL OR capacity >= 0", name="ck_events_capacity_non_negative"),
    )

    title = Column(String(255), nullable=False, index=True)
    description = Column(Text)
    date = Column(Date, index=True)
    location = Column(String(255))
    category = Column(Enum(EventCategory), default=EventCategory.OTHER, nullable=False, index=True)
    # NULL means unbounded
    capacity = Column(Integer, nullable=True)
    ticket_price = Column(Numeric(10, 2), default=0)
    is_virtual = Column(Boolean, default=False, nullable=False)
    registration_deadline = Column(DateTime(timezone=True))
    organizer_id = Column(Uuid(as_uuid=True), index=True)
    status = Column(
        Enum(EventStatus),
        default=EventStatus.PUBLISHED,
        nullable=False,
        index=True
    )

    registrations = relationship("Registration", back_populates="event", cascade="all, delete-orphan")

    def to_snapshot(self) -> EventSnapshot:
        return EventSnapshot(
            id=self.id,
            capacity=self.capacity,
            registration_deadline=as_utc(self.registration_deadline),
            title=self.title,
            organizer_id=self.organizer_id,
        )

    def __repr__(self):
        return f"<Event(id={self.id}, title={self.title}, status={self.status}, capacity={self.capacity})>"
