"""SQLAlchemy (async) implementation of the registration stores.

Concurrency control:
- ``events.get(..., lock=True)`` issues ``SELECT ... FOR UPDATE`` on the event
  row, so every register/cancel for one event is serialized on PostgreSQL.
  SQLite has no row locks; the engine opens every transaction with
  ``BEGIN IMMEDIATE`` instead (see app.core.database).
- The partial unique index on active (event_id, user_id) rows backs the
  uniqueness invariant if a caller skips the lock.
- Serialization failures, deadlocks, lock timeouts and unique-index races
  surface as WriteConflictError so the service can retry them.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import WriteConflictError
from app.domain.models import EventSnapshot, Registration, RegistrationStatus
from app.models.event import Event as EventModel
from app.models.registration import Registration as RegistrationModel
from app.stores.interfaces import EventStore, RegistrationStore, UnitOfWork

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected, lock_not_available, unique_violation
_CONFLICT_SQLSTATES = {"40001", "40P01", "55P03", "23505"}


def is_write_conflict(error: DBAPIError) -> bool:
    """Classify a driver error as a transient conflict worth one retry"""
    orig = error.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _CONFLICT_SQLSTATES:
        return True

    message = str(orig).lower()
    if isinstance(error, IntegrityError) and "unique constraint failed" in message:
        return True
    if isinstance(error, OperationalError) and "database is locked" in message:
        return True
    return False


class SqlAlchemyEventStore(EventStore):
    def __init__(self, uow: "SqlAlchemyUnitOfWork") -> None:
        self._uow = uow

    async def get(self, event_id: UUID, lock: bool = False) -> Optional[EventSnapshot]:
        stmt = select(EventModel).where(EventModel.id == event_id)
        if lock:
            stmt = stmt.with_for_update()
        result = await self._uow.execute(stmt)
        event = result.scalar_one_or_none()
        return event.to_snapshot() if event else None


class SqlAlchemyRegistrationStore(RegistrationStore):
    def __init__(self, uow: "SqlAlchemyUnitOfWork") -> None:
        self._uow = uow

    async def _count(self, event_id: UUID, status: RegistrationStatus) -> int:
        stmt = select(func.count(RegistrationModel.id)).where(
            and_(
                RegistrationModel.event_id == event_id,
                RegistrationModel.status == status
            )
        )
        result = await self._uow.execute(stmt)
        return result.scalar_one()

    async def count_confirmed(self, event_id: UUID) -> int:
        return await self._count(event_id, RegistrationStatus.CONFIRMED)

    async def count_waitlisted(self, event_id: UUID) -> int:
        return await self._count(event_id, RegistrationStatus.WAITLISTED)

    async def find_active(self, event_id: UUID, user_id: UUID) -> Optional[Registration]:
        stmt = select(RegistrationModel).where(
            and_(
                RegistrationModel.event_id == event_id,
                RegistrationModel.user_id == user_id,
                RegistrationModel.status.in_([RegistrationStatus.CONFIRMED, RegistrationStatus.WAITLISTED])
            )
        )
        result = await self._uow.execute(stmt)
        row = result.scalars().first()
        return row.to_record() if row else None

    async def earliest_waitlisted(self, event_id: UUID) -> Optional[Registration]:
        stmt = (
            select(RegistrationModel)
            .where(
                and_(
                    RegistrationModel.event_id == event_id,
                    RegistrationModel.status == RegistrationStatus.WAITLISTED
                )
            )
            .order_by(RegistrationModel.created_at.asc(), RegistrationModel.id.asc())
            .limit(1)
        )
        result = await self._uow.execute(stmt)
        row = result.scalar_one_or_none()
        return row.to_record() if row else None

    async def waitlist_position(self, registration: Registration) -> int:
        stmt = select(func.count(RegistrationModel.id)).where(
            and_(
                RegistrationModel.event_id == registration.event_id,
                RegistrationModel.status == RegistrationStatus.WAITLISTED,
                or_(
                    RegistrationModel.created_at < registration.created_at,
                    and_(
                        RegistrationModel.created_at == registration.created_at,
                        RegistrationModel.id <= registration.id
                    )
                )
            )
        )
        result = await self._uow.execute(stmt)
        return result.scalar_one()

    async def insert(self, registration: Registration) -> None:
        self._uow.session.add(RegistrationModel.from_record(registration))
        await self._uow.flush()

    async def update_status(
        self,
        registration_id: UUID,
        status: RegistrationStatus,
        ticket: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Registration:
        stmt = select(RegistrationModel).where(RegistrationModel.id == registration_id).with_for_update()
        result = await self._uow.execute(stmt)
        row = result.scalar_one_or_none()
        if row is None:
            raise WriteConflictError(f"Registration {registration_id} disappeared")

        updated = row.to_record().with_status(status, ticket=ticket, at=at)
        row.status = updated.status
        row.ticket = updated.ticket
        row.cancelled_at = updated.cancelled_at
        row.promoted_at = updated.promoted_at
        await self._uow.flush()
        return updated

    async def list_for_event(self, event_id: UUID) -> list[Registration]:
        stmt = (
            select(RegistrationModel)
            .where(RegistrationModel.event_id == event_id)
            .order_by(RegistrationModel.created_at.desc(), RegistrationModel.id.desc())
        )
        result = await self._uow.execute(stmt)
        return [row.to_record() for row in result.scalars().all()]


class SqlAlchemyUnitOfWork(UnitOfWork):
    """
    One AsyncSession, one transaction. Commit explicitly; anything else rolls back.
    """

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory
        self.session: Optional[AsyncSession] = None
        self.events = SqlAlchemyEventStore(self)
        self.registrations = SqlAlchemyRegistrationStore(self)

    async def __aenter__(self) -> "SqlAlchemyUnitOfWork":
        self.session = self._session_factory()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await self.rollback()
        finally:
            await self.session.close()
            self.session = None

    @contextmanager
    def _conflicts_as_retryable(self):
        try:
            yield
        except DBAPIError as e:
            if not is_write_conflict(e):
                raise
            logger.warning(f"Write conflict: {type(e.orig).__name__}: {e.orig}")
            raise WriteConflictError(str(e.orig)) from e

    async def execute(self, stmt):
        with self._conflicts_as_retryable():
            return await self.session.execute(stmt)

    async def flush(self) -> None:
        with self._conflicts_as_retryable():
            await self.session.flush()

    async def commit(self) -> None:
        with self._conflicts_as_retryable():
            await self.session.commit()

    async def rollback(self) -> None:
        if self.session is not None and self.session.in_transaction():
            await self.session.rollback()


def sqlalchemy_unit_of_work_factory(session_factory: async_sessionmaker):
    """Return a zero-argument factory building units of work on ``session_factory``"""
    def factory() -> SqlAlchemyUnitOfWork:
        return SqlAlchemyUnitOfWork(session_factory)
    return factory
