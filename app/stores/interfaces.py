"""Store interfaces (repository pattern).

Stores must be swappable and return domain models. Every read and write made
on behalf of one register/cancel call goes through a single UnitOfWork so the
confirmed count is read and acted upon inside the same transaction.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from uuid import UUID

from app.domain.models import EventSnapshot, Registration, RegistrationStatus


class EventStore(ABC):
    """Read-only access to events."""

    @abstractmethod
    async def get(self, event_id: UUID, lock: bool = False) -> Optional[EventSnapshot]:
        """Return the event, or None if not found.

        With ``lock=True`` the event is locked until the unit of work ends,
        serializing every register/cancel for that event.
        """
        ...


class RegistrationStore(ABC):
    """Interface for registration persistence operations."""

    @abstractmethod
    async def count_confirmed(self, event_id: UUID) -> int:
        ...

    @abstractmethod
    async def count_waitlisted(self, event_id: UUID) -> int:
        ...

    @abstractmethod
    async def find_active(self, event_id: UUID, user_id: UUID) -> Optional[Registration]:
        """Return the confirmed or waitlisted registration for the pair, if any."""
        ...

    @abstractmethod
    async def earliest_waitlisted(self, event_id: UUID) -> Optional[Registration]:
        """Return the waitlisted registration ordered first by (created_at, id)."""
        ...

    @abstractmethod
    async def waitlist_position(self, registration: Registration) -> int:
        """Return the 1-based rank of a waitlisted registration."""
        ...

    @abstractmethod
    async def insert(self, registration: Registration) -> None:
        ...

    @abstractmethod
    async def update_status(
        self,
        registration_id: UUID,
        status: RegistrationStatus,
        ticket: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Registration:
        """Move a registration to ``status`` and return the updated record."""
        ...

    @abstractmethod
    async def list_for_event(self, event_id: UUID) -> list[Registration]:
        """Return all registrations of an event, newest first."""
        ...


class UnitOfWork(ABC):
    """One atomic transaction over the event and registration stores.

    Used as ``async with uow:``; leaving the block without ``commit()`` (or
    through an exception) rolls every write back. Stores raise
    ``WriteConflictError`` for transient failures worth a retry.
    """

    events: EventStore
    registrations: RegistrationStore

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.rollback()

    @abstractmethod
    async def commit(self) -> None:
        ...

    @abstractmethod
    async def rollback(self) -> None:
        ...
