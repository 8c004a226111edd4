"""Domain models for the registration workflow.

These are plain value objects passed between the service and the stores.
SQLAlchemy models live in app/models (persistence layer).
"""

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4


class RegistrationStatus(str, enum.Enum):
    CONFIRMED = "confirmed"
    WAITLISTED = "waitlisted"
    CANCELLED = "cancelled"
    ATTENDED = "attended"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

    def can_transition_to(self, target: "RegistrationStatus") -> bool:
        return target in _TRANSITIONS[self]


ACTIVE_STATUSES = frozenset({RegistrationStatus.CONFIRMED, RegistrationStatus.WAITLISTED})

# Promotion is the only way into CONFIRMED after creation; ATTENDED belongs to check-in
_TRANSITIONS = {
    RegistrationStatus.WAITLISTED: frozenset({RegistrationStatus.CONFIRMED, RegistrationStatus.CANCELLED}),
    RegistrationStatus.CONFIRMED: frozenset({RegistrationStatus.CANCELLED, RegistrationStatus.ATTENDED}),
    RegistrationStatus.CANCELLED: frozenset(),
    RegistrationStatus.ATTENDED: frozenset(),
}


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (SQLite drops the offset) as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class EventSnapshot:
    """The slice of an event the registration workflow reads."""

    id: UUID
    capacity: Optional[int]
    registration_deadline: Optional[datetime] = None
    title: str = ""
    organizer_id: Optional[UUID] = None

    def __post_init__(self) -> None:
        if self.capacity is not None and self.capacity < 0:
            raise ValueError("Capacity cannot be negative")

    @property
    def is_unbounded(self) -> bool:
        return self.capacity is None

    def has_room(self, confirmed_count: int) -> bool:
        return self.is_unbounded or confirmed_count < self.capacity

    def is_organized_by(self, user_id: UUID) -> bool:
        return self.organizer_id is not None and self.organizer_id == user_id


@dataclass(frozen=True)
class Registration:
    """One user's relationship to one event."""

    event_id: UUID
    user_id: UUID
    status: RegistrationStatus
    created_at: datetime
    id: UUID = field(default_factory=uuid4)
    ticket: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    promoted_at: Optional[datetime] = None

    @property
    def sort_key(self) -> tuple:
        """Waitlist order: FIFO by creation time, id as a total tie-break."""
        return (self.created_at, str(self.id))

    def with_status(
        self,
        status: RegistrationStatus,
        ticket: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> "Registration":
        changes = {"status": status, "ticket": ticket}
        if status == RegistrationStatus.CANCELLED:
            changes["cancelled_at"] = at
        elif status == RegistrationStatus.CONFIRMED and self.status == RegistrationStatus.WAITLISTED:
            changes["promoted_at"] = at
        return replace(self, **changes)


@dataclass(frozen=True)
class RegistrationResult:
    registration_id: UUID
    event_id: UUID
    user_id: UUID
    status: RegistrationStatus
    ticket: Optional[str] = None
    position: Optional[int] = None


@dataclass(frozen=True)
class CancellationResult:
    registration_id: UUID
    event_id: UUID
    previous_status: RegistrationStatus
    promoted_registration_id: Optional[UUID] = None
    promoted_user_id: Optional[UUID] = None


@dataclass(frozen=True)
class EventSummary:
    event_id: UUID
    title: str
    capacity: Optional[int]
    registration_deadline: Optional[datetime]
    confirmed_count: int
    waitlist_count: int

    @property
    def remaining(self) -> Optional[int]:
        if self.capacity is None:
            return None
        return max(self.capacity - self.confirmed_count, 0)
