"""
Registration model
"""

from sqlalchemy import Column, Text, DateTime, Enum, ForeignKey, Index, Uuid, text
from sqlalchemy.orm import relationship

from app.models.base import BaseModel
from app.domain.models import Registration as RegistrationRecord, RegistrationStatus, as_utc

_ACTIVE_PREDICATE = text("status IN ('CONFIRMED', 'WAITLISTED')")


class Registration(BaseModel):
    """
    One user's registration for one event
    """
    __tablename__ = "registrations"
    __table_args__ = (
        # At most one active registration per (event, user); cancelled rows are kept for audit
        Index(
            "uq_registrations_active_event_user",
            "event_id",
            "user_id",
            unique=True,
            postgresql_where=_ACTIVE_PREDICATE,
            sqlite_where=_ACTIVE_PREDICATE,
        ),
        Index("ix_registrations_event_status_created", "event_id", "status", "created_at"),
    )

    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    status = Column(Enum(RegistrationStatus), nullable=False)
    ticket = Column(Text)
    cancelled_at = Column(DateTime(timezone=True))
    promoted_at = Column(DateTime(timezone=True))

    event = relationship("Event", back_populates="registrations")

    def to_record(self) -> RegistrationRecord:
        return RegistrationRecord(
            id=self.id,
            event_id=self.event_id,
            user_id=self.user_id,
            status=self.status,
            created_at=as_utc(self.created_at),
            ticket=self.ticket,
            cancelled_at=as_utc(self.cancelled_at),
            promoted_at=as_utc(self.promoted_at),
        )

    @classmethod
    def from_record(cls, record: RegistrationRecord) -> "Registration":
        return cls(
            id=record.id,
            event_id=record.event_id,
            user_id=record.user_id,
            status=record.status,
            created_at=record.created_at,
            updated_at=record.created_at,
            ticket=record.ticket,
            cancelled_at=record.cancelled_at,
            promoted_at=record.promoted_at,
        )

    def __repr__(self):
        return f"<Registration(id={self.id}, event_id={self.event_id}, user_id={self.user_id}, status={self.status})>"
