"""In-process implementation of the registration stores.

Backs tests and local experiments. Writes are staged per unit of work and
applied on commit; a per-event asyncio.Lock plays the role of the row lock
the SQL store takes, and commit re-checks both invariants so an unlocked
caller gets a WriteConflictError instead of corrupt state.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from typing import Optional
from uuid import UUID

from app.core.exceptions import WriteConflictError
from app.domain.models import EventSnapshot, Registration, RegistrationStatus
from app.stores.interfaces import EventStore, RegistrationStore, UnitOfWork

logger = logging.getLogger(__name__)


class MemoryDatabase:
    """Committed state shared by every MemoryUnitOfWork built from it."""

    def __init__(self, latency: float = 0.0) -> None:
        self.events: dict[UUID, EventSnapshot] = {}
        self.registrations: dict[UUID, Registration] = {}
        # Seconds to sleep on every store call; widens race windows in tests
        self.latency = latency
        self._locks: defaultdict[UUID, asyncio.Lock] = defaultdict(asyncio.Lock)

    def add_event(self, event: EventSnapshot) -> EventSnapshot:
        self.events[event.id] = event
        return event

    def lock_for(self, event_id: UUID) -> asyncio.Lock:
        return self._locks[event_id]

    def unit_of_work(self) -> "MemoryUnitOfWork":
        return MemoryUnitOfWork(self)

    async def pause(self) -> None:
        await asyncio.sleep(self.latency)


class MemoryEventStore(EventStore):
    def __init__(self, uow: "MemoryUnitOfWork") -> None:
        self._uow = uow

    async def get(self, event_id: UUID, lock: bool = False) -> Optional[EventSnapshot]:
        if lock:
            await self._uow.acquire(event_id)
        await self._uow.db.pause()
        return self._uow.db.events.get(event_id)


class MemoryRegistrationStore(RegistrationStore):
    def __init__(self, uow: "MemoryUnitOfWork") -> None:
        self._uow = uow

    async def _rows(self, event_id: UUID) -> list[Registration]:
        await self._uow.db.pause()
        return [r for r in self._uow.view().values() if r.event_id == event_id]

    async def count_confirmed(self, event_id: UUID) -> int:
        rows = await self._rows(event_id)
        return sum(1 for r in rows if r.status == RegistrationStatus.CONFIRMED)

    async def count_waitlisted(self, event_id: UUID) -> int:
        rows = await self._rows(event_id)
        return sum(1 for r in rows if r.status == RegistrationStatus.WAITLISTED)

    async def find_active(self, event_id: UUID, user_id: UUID) -> Optional[Registration]:
        rows = await self._rows(event_id)
        return next((r for r in rows if r.user_id == user_id and r.status.is_active), None)

    async def earliest_waitlisted(self, event_id: UUID) -> Optional[Registration]:
        rows = await self._rows(event_id)
        waitlisted = [r for r in rows if r.status == RegistrationStatus.WAITLISTED]
        return min(waitlisted, key=lambda r: r.sort_key, default=None)

    async def waitlist_position(self, registration: Registration) -> int:
        rows = await self._rows(registration.event_id)
        return sum(
            1 for r in rows
            if r.status == RegistrationStatus.WAITLISTED and r.sort_key <= registration.sort_key
        )

    async def insert(self, registration: Registration) -> None:
        await self._uow.db.pause()
        if registration.id in self._uow.view():
            raise WriteConflictError(f"Registration {registration.id} already exists")
        self._uow.stage(registration)

    async def update_status(
        self,
        registration_id: UUID,
        status: RegistrationStatus,
        ticket: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Registration:
        await self._uow.db.pause()
        current = self._uow.view().get(registration_id)
        if current is None:
            raise WriteConflictError(f"Registration {registration_id} disappeared")
        updated = current.with_status(status, ticket=ticket, at=at)
        self._uow.stage(updated)
        return updated

    async def list_for_event(self, event_id: UUID) -> list[Registration]:
        rows = await self._rows(event_id)
        return sorted(rows, key=lambda r: r.sort_key, reverse=True)


class MemoryUnitOfWork(UnitOfWork):
    def __init__(self, db: MemoryDatabase) -> None:
        self.db = db
        self.events = MemoryEventStore(self)
        self.registrations = MemoryRegistrationStore(self)
        self._staged: dict[UUID, Registration] = {}
        self._held: dict[UUID, asyncio.Lock] = {}

    def view(self) -> dict[UUID, Registration]:
        return {**self.db.registrations, **self._staged}

    def stage(self, registration: Registration) -> None:
        self._staged[registration.id] = registration

    async def acquire(self, event_id: UUID) -> None:
        if event_id in self._held:
            return
        lock = self.db.lock_for(event_id)
        await lock.acquire()
        self._held[event_id] = lock

    def _release(self) -> None:
        for lock in self._held.values():
            lock.release()
        self._held.clear()

    def _check_invariants(self) -> None:
        merged = self.view()
        touched = {r.event_id for r in self._staged.values()}
        for event_id in touched:
            rows = [r for r in merged.values() if r.event_id == event_id]
            active_users = [r.user_id for r in rows if r.status.is_active]
            if len(active_users) != len(set(active_users)):
                raise WriteConflictError(f"Concurrent active registration for event {event_id}")

            # Only writes that add confirmed seats can overbook
            event = self.db.events.get(event_id)
            confirmed = sum(1 for r in rows if r.status == RegistrationStatus.CONFIRMED)
            committed = sum(
                1 for r in self.db.registrations.values()
                if r.event_id == event_id and r.status == RegistrationStatus.CONFIRMED
            )
            if event is not None and confirmed > committed and not event.has_room(confirmed - 1):
                raise WriteConflictError(f"Capacity exceeded for event {event_id}")

    async def commit(self) -> None:
        try:
            self._check_invariants()
            self.db.registrations.update(self._staged)
            self._staged.clear()
        finally:
            self._release()

    async def rollback(self) -> None:
        if self._staged:
            logger.debug(f"Discarding {len(self._staged)} staged registration writes")
        self._staged.clear()
        self._release()
