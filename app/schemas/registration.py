"""
Registration schemas
"""

from pydantic import Field, computed_field
from datetime import datetime
from typing import Optional
from uuid import UUID

from app.domain.models import RegistrationStatus
from app.schemas.base import BaseSchema


class RegistrationResponse(BaseSchema):
    """Outcome of a registration, or the caller's current registration"""
    registration_id: UUID
    event_id: UUID
    user_id: UUID
    status: RegistrationStatus
    ticket: Optional[str] = Field(None, description="PNG QR code data URL, confirmed only")
    position: Optional[int] = Field(None, ge=1, description="1-based waitlist rank, waitlisted only")


class CancellationResponse(BaseSchema):
    """Cancellation outcome including the promoted registrant, if any"""
    registration_id: UUID
    event_id: UUID
    previous_status: RegistrationStatus
    promoted_registration_id: Optional[UUID] = None
    promoted_user_id: Optional[UUID] = None


class AttendeeResponse(BaseSchema):
    """One row of an event's attendee list"""
    id: UUID
    user_id: UUID
    status: RegistrationStatus
    created_at: datetime
    cancelled_at: Optional[datetime] = None
    promoted_at: Optional[datetime] = None


class EventSummaryResponse(BaseSchema):
    """Capacity and occupancy of an event"""
    event_id: UUID
    title: str
    capacity: Optional[int] = Field(None, ge=0, description="None means unbounded")
    registration_deadline: Optional[datetime] = None
    confirmed_count: int = Field(..., ge=0)
    waitlist_count: int = Field(..., ge=0)

    @computed_field
    @property
    def remaining(self) -> Optional[int]:
        if self.capacity is None:
            return None
        return max(self.capacity - self.confirmed_count, 0)
