"""
Event registration service with capacity enforcement and FIFO waitlist

Every register/cancel runs inside one unit of work that locks the event,
re-derives the confirmed count from registration rows, writes the new state
and issues tickets before committing. A write conflict is retried once with a
fresh unit of work; domain rejections are never retried.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, TypeVar
from uuid import UUID

from app.config import settings
from app.core.cache import CacheManager, cache_manager
from app.core.database import async_session
from app.core.exceptions import (
    AuthorizationError,
    ConcurrencyConflictError,
    DeadlinePassedError,
    DuplicateRegistrationError,
    EventHubException,
    EventNotFoundError,
    InvalidTransitionError,
    RegistrationNotFoundError,
    TicketIssuanceError,
    WriteConflictError,
)
from app.core.metrics import MetricsCollector, metrics_collector
from app.core.security import CurrentUser
from app.domain.models import (
    CancellationResult,
    EventSummary,
    Registration,
    RegistrationResult,
    RegistrationStatus,
    as_utc,
)
from app.services.ticket_service import TicketIssuer, ticket_issuer
from app.stores.interfaces import UnitOfWork
from app.stores.sqlalchemy_store import sqlalchemy_unit_of_work_factory

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RegistrationService:
    """
    Owns the confirmed/waitlisted/cancelled state machine for event registrations
    """

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        ticket_issuer: TicketIssuer,
        cache: Optional[CacheManager] = None,
        metrics: MetricsCollector = metrics_collector,
        clock: Callable[[], datetime] = utcnow,
        max_retries: int = settings.REGISTRATION_MAX_RETRIES,
    ):
        self._uow_factory = uow_factory
        self.ticket_issuer = ticket_issuer
        self.cache = cache
        self.metrics = metrics
        self.clock = clock
        self.max_retries = max_retries
        self.logger = logging.getLogger(__name__)

    async def register(self, event_id: UUID, user_id: UUID) -> RegistrationResult:
        """
        Register a user for an event: confirmed while capacity remains, waitlisted after.

        Raises:
            DuplicateRegistrationError: the user already holds an active registration.
            EventNotFoundError: the event does not exist.
            DeadlinePassedError: the registration deadline is in the past.
            ConcurrencyConflictError: a write conflict persisted after the retry.
            TicketIssuanceError: the ticket could not be produced.
        """
        async with self.metrics.track_operation("register"):
            result = await self._run_atomic("register", lambda uow: self._register(uow, event_id, user_id))

        if result.status == RegistrationStatus.CONFIRMED:
            self.logger.info(f"User {user_id} confirmed for event {event_id} (registration {result.registration_id})")
        else:
            self.logger.info(f"User {user_id} waitlisted for event {event_id} at position {result.position}")

        await self._invalidate(event_id)
        return result

    async def cancel(self, event_id: UUID, user_id: UUID) -> CancellationResult:
        """
        Cancel the user's active registration; a freed confirmed slot goes to
        the earliest waitlisted registrant.

        Raises:
            RegistrationNotFoundError: no active registration exists for the pair.
        """
        async with self.metrics.track_operation("cancel"):
            result = await self._run_atomic("cancel", lambda uow: self._cancel(uow, event_id, user_id))

        self.logger.info(f"User {user_id} cancelled {result.previous_status.value} registration for event {event_id}")
        if result.promoted_registration_id:
            self.metrics.record_promotion()
            self.logger.info(
                f"Promoted registration {result.promoted_registration_id} "
                f"(user {result.promoted_user_id}) from waitlist for event {event_id}"
            )

        await self._invalidate(event_id)
        return result

    async def get_status(self, event_id: UUID, user_id: UUID) -> RegistrationResult:
        async with self._uow_factory() as uow:
            registration = await uow.registrations.find_active(event_id, user_id)
            if registration is None:
                raise RegistrationNotFoundError(event_id, user_id)

            position = None
            if registration.status == RegistrationStatus.WAITLISTED:
                position = await uow.registrations.waitlist_position(registration)

        return self._to_result(registration, position)

    async def list_attendees(self, event_id: UUID, requester: CurrentUser) -> list[Registration]:
        """
        All registrations for the event, newest first, cancelled ones included.

        Only the event's organizer, or an admin, may read the list.

        Raises:
            EventNotFoundError: the event does not exist.
            AuthorizationError: the requester neither organizes the event nor is an admin.
        """
        async with self._uow_factory() as uow:
            event = await uow.events.get(event_id)
            if event is None:
                raise EventNotFoundError(event_id)
            if requester.role not in settings.ADMIN_ROLES and not event.is_organized_by(requester.id):
                self.logger.warning(f"User {requester.id} denied attendee list for event {event_id}, not the organizer")
                raise AuthorizationError(
                    "Not authorized to view attendees",
                    details={"event_id": str(event_id)}
                )
            return await uow.registrations.list_for_event(event_id)

    async def get_event_summary(self, event_id: UUID) -> EventSummary:
        async with self._uow_factory() as uow:
            event = await uow.events.get(event_id)
            if event is None:
                raise EventNotFoundError(event_id)

            return EventSummary(
                event_id=event.id,
                title=event.title,
                capacity=event.capacity,
                registration_deadline=event.registration_deadline,
                confirmed_count=await uow.registrations.count_confirmed(event_id),
                waitlist_count=await uow.registrations.count_waitlisted(event_id),
            )

    async def _run_atomic(self, operation: str, work: Callable[[UnitOfWork], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            try:
                async with self._uow_factory() as uow:
                    result = await work(uow)
                    await uow.commit()
                    return result
            except WriteConflictError as e:
                if attempt >= self.max_retries:
                    self.logger.error(f"{operation} failed after {attempt + 1} attempts: {e}")
                    raise ConcurrencyConflictError() from e
                attempt += 1
                self.metrics.record_retry(operation)
                self.logger.warning(f"Write conflict during {operation}, retrying with fresh state: {e}")
            except EventHubException as e:
                if e.status_code >= 500:
                    self.logger.error(f"{operation} rolled back: {e.code}: {e.message}")
                else:
                    self.logger.info(f"{operation} rejected: {e.code}")
                raise
            except Exception:
                self.logger.error(f"{operation} rolled back after unexpected error", exc_info=True)
                raise

    async def _register(self, uow: UnitOfWork, event_id: UUID, user_id: UUID) -> RegistrationResult:
        event = await uow.events.get(event_id, lock=True)

        existing = await uow.registrations.find_active(event_id, user_id)
        if existing is not None:
            raise DuplicateRegistrationError(event_id, user_id, existing.id)

        if event is None:
            raise EventNotFoundError(event_id)

        now = self.clock()
        deadline = as_utc(event.registration_deadline)
        if deadline is not None and now > deadline:
            raise DeadlinePassedError(event_id, deadline)

        confirmed_count = await uow.registrations.count_confirmed(event_id)

        if event.has_room(confirmed_count):
            registration = Registration(
                event_id=event_id,
                user_id=user_id,
                status=RegistrationStatus.CONFIRMED,
                created_at=now,
            )
            registration = replace(registration, ticket=await self._issue_ticket(registration.id))
            await uow.registrations.insert(registration)
            return self._to_result(registration)

        registration = Registration(
            event_id=event_id,
            user_id=user_id,
            status=RegistrationStatus.WAITLISTED,
            created_at=now,
        )
        await uow.registrations.insert(registration)
        position = await uow.registrations.waitlist_position(registration)
        return self._to_result(registration, position)

    async def _cancel(self, uow: UnitOfWork, event_id: UUID, user_id: UUID) -> CancellationResult:
        event = await uow.events.get(event_id, lock=True)

        registration = await uow.registrations.find_active(event_id, user_id)
        if registration is None:
            raise RegistrationNotFoundError(event_id, user_id)

        now = self.clock()
        self._check_transition(registration.status, RegistrationStatus.CANCELLED)
        await uow.registrations.update_status(registration.id, RegistrationStatus.CANCELLED, at=now)

        promoted = None
        if registration.status == RegistrationStatus.CONFIRMED:
            promoted = await self._promote_next(uow, event, now)

        return CancellationResult(
            registration_id=registration.id,
            event_id=event_id,
            previous_status=registration.status,
            promoted_registration_id=promoted.id if promoted else None,
            promoted_user_id=promoted.user_id if promoted else None,
        )

    async def _promote_next(self, uow: UnitOfWork, event, now: datetime) -> Optional[Registration]:
        candidate = await uow.registrations.earliest_waitlisted(event.id)
        if candidate is None:
            return None

        # Capacity may have been lowered below the confirmed count by the organizer
        confirmed_count = await uow.registrations.count_confirmed(event.id)
        if not event.has_room(confirmed_count):
            return None

        self._check_transition(candidate.status, RegistrationStatus.CONFIRMED)
        ticket = await self._issue_ticket(candidate.id)
        return await uow.registrations.update_status(
            candidate.id, RegistrationStatus.CONFIRMED, ticket=ticket, at=now
        )

    async def _issue_ticket(self, registration_id: UUID) -> str:
        try:
            return await self.ticket_issuer.issue(registration_id)
        except TicketIssuanceError:
            raise
        except Exception as e:
            self.logger.error(f"Ticket issuer failed for registration {registration_id}: {type(e).__name__}: {e}")
            raise TicketIssuanceError(registration_id) from e

    async def _invalidate(self, event_id: UUID) -> None:
        if self.cache is not None:
            await self.cache.invalidate_event(event_id)

    @staticmethod
    def _check_transition(current: RegistrationStatus, target: RegistrationStatus) -> None:
        if not current.can_transition_to(target):
            raise InvalidTransitionError(current.value, target.value)

    @staticmethod
    def _to_result(registration: Registration, position: Optional[int] = None) -> RegistrationResult:
        return RegistrationResult(
            registration_id=registration.id,
            event_id=registration.event_id,
            user_id=registration.user_id,
            status=registration.status,
            ticket=registration.ticket,
            position=position,
        )


def create_registration_service(session_factory=async_session) -> RegistrationService:
    """Build the service over a SQLAlchemy session factory"""
    return RegistrationService(
        uow_factory=sqlalchemy_unit_of_work_factory(session_factory),
        ticket_issuer=ticket_issuer,
        cache=cache_manager,
    )


# Initialize global registration service
registration_service = create_registration_service()


async def get_registration_service() -> RegistrationService:
    """
    Dependency providing the registration service
    """
    return registration_service
