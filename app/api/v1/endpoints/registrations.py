"""
Event registration endpoints
"""

from typing import Any, List
from uuid import UUID
import logging
from fastapi import APIRouter, Depends

from app.config import settings
from app.core.cache import cache_manager
from app.core.security import CurrentUser, get_current_user, require_roles
from app.schemas.registration import (
    AttendeeResponse,
    CancellationResponse,
    EventSummaryResponse,
    RegistrationResponse,
)
from app.services.registration_service import RegistrationService, get_registration_service

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/{event_id}/register", response_model=RegistrationResponse)
async def register_for_event(
    event_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    service: RegistrationService = Depends(get_registration_service)
) -> Any:
    """
    Register the current user; confirmed while seats remain, otherwise waitlisted
    """
    result = await service.register(event_id, current_user.id)
    return RegistrationResponse.model_validate(result)


@router.delete("/{event_id}/register", response_model=CancellationResponse)
async def cancel_registration(
    event_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    service: RegistrationService = Depends(get_registration_service)
) -> Any:
    """
    Cancel the current user's registration, promoting the next waitlisted user
    """
    result = await service.cancel(event_id, current_user.id)
    return CancellationResponse.model_validate(result)


@router.get("/{event_id}/registration", response_model=RegistrationResponse)
async def get_my_registration(
    event_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    service: RegistrationService = Depends(get_registration_service)
) -> Any:
    """
    Get the current user's active registration and waitlist position
    """
    result = await service.get_status(event_id, current_user.id)
    return RegistrationResponse.model_validate(result)


@router.get("/{event_id}/attendees", response_model=List[AttendeeResponse])
async def list_attendees(
    event_id: UUID,
    current_user: CurrentUser = Depends(require_roles(*settings.ORGANIZER_ROLES)),
    service: RegistrationService = Depends(get_registration_service)
) -> Any:
    """
    List every registration for an event, newest first (the event organizer or an admin)
    """
    registrations = await service.list_attendees(event_id, current_user)
    logger.info(f"User {current_user.id} listed {len(registrations)} registrations for event {event_id}")
    return [AttendeeResponse.model_validate(r) for r in registrations]


@router.get("/{event_id}/summary", response_model=EventSummaryResponse)
async def get_event_summary(
    event_id: UUID,
    service: RegistrationService = Depends(get_registration_service)
) -> Any:
    """
    Get capacity and occupancy for an event
    """
    # Read the generation before the database so a concurrent invalidation retires this key
    generation = await cache_manager.event_generation(event_id)
    if generation is None:
        return EventSummaryResponse.model_validate(await service.get_event_summary(event_id))

    cache_key = cache_manager.event_summary_key(event_id, generation)
    cached = await cache_manager.get_model(cache_key, EventSummaryResponse)
    if cached is not None:
        return cached

    summary = EventSummaryResponse.model_validate(await service.get_event_summary(event_id))
    await cache_manager.set_model(cache_key, summary)
    return summary
