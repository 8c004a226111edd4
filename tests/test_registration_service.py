"""
Registration service tests over the in-memory store
Covers confirmation, waitlisting, FIFO promotion, rejections and retries
"""

import random
from dataclasses import replace
import pytest
from datetime import timedelta
from uuid import uuid4

from app.core.exceptions import (
    AuthorizationError,
    ConcurrencyConflictError,
    DeadlinePassedError,
    DuplicateRegistrationError,
    EventNotFoundError,
    RegistrationNotFoundError,
    TicketIssuanceError,
    WriteConflictError,
)
from app.core.security import CurrentUser
from app.domain.models import RegistrationStatus
from app.services.registration_service import RegistrationService
from app.stores.memory_store import MemoryUnitOfWork


def rows_for(memory_db, event_id):
    return [r for r in memory_db.registrations.values() if r.event_id == event_id]


def count_status(memory_db, event_id, status):
    return sum(1 for r in rows_for(memory_db, event_id) if r.status == status)


class ConflictingUnitOfWork(MemoryUnitOfWork):
    """Fails commit with a write conflict while the shared budget lasts"""

    def __init__(self, db, budget):
        super().__init__(db)
        self.budget = budget

    async def commit(self):
        if self.budget["conflicts"] > 0:
            self.budget["conflicts"] -= 1
            raise WriteConflictError("simulated serialization failure")
        await super().commit()


@pytest.mark.asyncio
class TestRegister:
    """Test registration outcomes"""

    async def test_capacity_two_scenario(self, service, make_event, ticket_issuer):
        """A and B confirmed, C and D waitlisted in arrival order"""
        event = make_event(capacity=2)
        a, b, c, d = (uuid4() for _ in range(4))

        result_a = await service.register(event.id, a)
        result_b = await service.register(event.id, b)
        result_c = await service.register(event.id, c)
        result_d = await service.register(event.id, d)

        assert result_a.status == RegistrationStatus.CONFIRMED
        assert result_b.status == RegistrationStatus.CONFIRMED
        assert result_a.ticket == f"ticket:{result_a.registration_id}"
        assert result_a.position is None

        assert result_c.status == RegistrationStatus.WAITLISTED
        assert result_c.position == 1
        assert result_c.ticket is None
        assert result_d.status == RegistrationStatus.WAITLISTED
        assert result_d.position == 2

        assert ticket_issuer.issued == [result_a.registration_id, result_b.registration_id]

    async def test_unbounded_capacity_confirms_everyone(self, service, make_event, memory_db):
        event = make_event(capacity=None)

        for _ in range(5):
            result = await service.register(event.id, uuid4())
            assert result.status == RegistrationStatus.CONFIRMED

        assert count_status(memory_db, event.id, RegistrationStatus.CONFIRMED) == 5

    async def test_zero_capacity_waitlists_first_registrant(self, service, make_event):
        event = make_event(capacity=0)

        result = await service.register(event.id, uuid4())

        assert result.status == RegistrationStatus.WAITLISTED
        assert result.position == 1

    async def test_duplicate_registration_rejected(self, service, make_event, memory_db):
        event = make_event(capacity=2)
        user = uuid4()
        first = await service.register(event.id, user)

        with pytest.raises(DuplicateRegistrationError) as exc_info:
            await service.register(event.id, user)

        assert exc_info.value.code == "DUPLICATE_REGISTRATION"
        assert exc_info.value.details["registration_id"] == str(first.registration_id)
        assert len(rows_for(memory_db, event.id)) == 1

    async def test_duplicate_while_waitlisted_rejected(self, service, make_event, memory_db):
        event = make_event(capacity=0)
        user = uuid4()
        await service.register(event.id, user)

        with pytest.raises(DuplicateRegistrationError):
            await service.register(event.id, user)

        assert count_status(memory_db, event.id, RegistrationStatus.WAITLISTED) == 1

    async def test_unknown_event(self, service):
        with pytest.raises(EventNotFoundError) as exc_info:
            await service.register(uuid4(), uuid4())
        assert exc_info.value.status_code == 404

    async def test_deadline_passed_creates_nothing(self, service, make_event, memory_db, clock):
        event = make_event(capacity=10, deadline=clock.now - timedelta(seconds=1))

        with pytest.raises(DeadlinePassedError):
            await service.register(event.id, uuid4())

        assert rows_for(memory_db, event.id) == []

    async def test_registration_at_deadline_accepted(self, service, make_event, clock):
        # The clock returns now + 1ms on its next reading
        event = make_event(capacity=10, deadline=clock.now + timedelta(milliseconds=1))

        result = await service.register(event.id, uuid4())

        assert result.status == RegistrationStatus.CONFIRMED

    async def test_ticket_failure_rolls_back(self, service, make_event, memory_db, ticket_issuer):
        ticket_issuer.fail = True
        event = make_event(capacity=2)

        with pytest.raises(TicketIssuanceError):
            await service.register(event.id, uuid4())

        assert rows_for(memory_db, event.id) == []

    async def test_unexpected_ticket_error_is_wrapped(self, memory_db, make_event, metrics):
        class BrokenIssuer:
            async def issue(self, registration_id):
                raise RuntimeError("printer on fire")

        service = RegistrationService(
            uow_factory=memory_db.unit_of_work,
            ticket_issuer=BrokenIssuer(),
            metrics=metrics,
        )
        event = make_event(capacity=1)

        with pytest.raises(TicketIssuanceError) as exc_info:
            await service.register(event.id, uuid4())

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert rows_for(memory_db, event.id) == []

    async def test_outcomes_are_counted(self, service, make_event, metrics):
        event = make_event(capacity=1)
        user = uuid4()
        await service.register(event.id, user)
        with pytest.raises(DuplicateRegistrationError):
            await service.register(event.id, user)

        assert metrics.requests.labels(operation="register", outcome="success")._value.get() == 1
        assert metrics.requests.labels(operation="register", outcome="duplicate_registration")._value.get() == 1


@pytest.mark.asyncio
class TestCancel:
    """Test cancellation and FIFO promotion"""

    async def test_cancel_confirmed_promotes_earliest_waitlisted(self, service, make_event, memory_db, ticket_issuer):
        event = make_event(capacity=2)
        a, b, c, d = (uuid4() for _ in range(4))
        for user in (a, b, c, d):
            await service.register(event.id, user)

        result = await service.cancel(event.id, a)

        assert result.previous_status == RegistrationStatus.CONFIRMED
        assert result.promoted_user_id == c

        promoted = memory_db.registrations[result.promoted_registration_id]
        assert promoted.status == RegistrationStatus.CONFIRMED
        assert promoted.ticket == f"ticket:{promoted.id}"
        assert promoted.promoted_at is not None
        assert ticket_issuer.issued[-1] == promoted.id

        cancelled = memory_db.registrations[result.registration_id]
        assert cancelled.status == RegistrationStatus.CANCELLED
        assert cancelled.cancelled_at is not None
        assert cancelled.ticket is None

        status_d = await service.get_status(event.id, d)
        assert status_d.status == RegistrationStatus.WAITLISTED
        assert status_d.position == 1
        assert count_status(memory_db, event.id, RegistrationStatus.CONFIRMED) == 2

    async def test_register_after_promotion_is_first_in_line(self, service, make_event):
        event = make_event(capacity=2)
        u1, u2, u3, u4 = (uuid4() for _ in range(4))
        await service.register(event.id, u1)
        await service.register(event.id, u2)
        assert (await service.register(event.id, u3)).position == 1

        await service.cancel(event.id, u1)
        result = await service.register(event.id, u4)

        assert (await service.get_status(event.id, u3)).status == RegistrationStatus.CONFIRMED
        assert result.status == RegistrationStatus.WAITLISTED
        assert result.position == 1

    async def test_fifo_promotion_order(self, service, make_event):
        event = make_event(capacity=1)
        holder, first, second = uuid4(), uuid4(), uuid4()
        for user in (holder, first, second):
            await service.register(event.id, user)

        result = await service.cancel(event.id, holder)

        assert result.promoted_user_id == first
        assert (await service.get_status(event.id, second)).status == RegistrationStatus.WAITLISTED

    async def test_cancel_confirmed_without_waitlist(self, service, make_event, memory_db):
        event = make_event(capacity=2)
        user = uuid4()
        await service.register(event.id, user)

        result = await service.cancel(event.id, user)

        assert result.promoted_registration_id is None
        assert count_status(memory_db, event.id, RegistrationStatus.CONFIRMED) == 0

    async def test_cancel_waitlisted_does_not_promote(self, service, make_event, memory_db):
        event = make_event(capacity=1)
        a, b, c = uuid4(), uuid4(), uuid4()
        for user in (a, b, c):
            await service.register(event.id, user)

        result = await service.cancel(event.id, b)

        assert result.previous_status == RegistrationStatus.WAITLISTED
        assert result.promoted_registration_id is None
        assert count_status(memory_db, event.id, RegistrationStatus.CONFIRMED) == 1
        assert (await service.get_status(event.id, c)).position == 1

    async def test_cancel_waitlisted_after_capacity_lowered(self, service, make_event, memory_db):
        event = make_event(capacity=2)
        a, b, c = uuid4(), uuid4(), uuid4()
        for user in (a, b, c):
            await service.register(event.id, user)
        memory_db.add_event(replace(event, capacity=1))

        result = await service.cancel(event.id, c)

        assert result.previous_status == RegistrationStatus.WAITLISTED
        assert count_status(memory_db, event.id, RegistrationStatus.CONFIRMED) == 2
        assert count_status(memory_db, event.id, RegistrationStatus.CANCELLED) == 1

    async def test_cancel_confirmed_after_capacity_lowered_skips_promotion(self, service, make_event, memory_db):
        event = make_event(capacity=2)
        a, b, c = uuid4(), uuid4(), uuid4()
        for user in (a, b, c):
            await service.register(event.id, user)
        memory_db.add_event(replace(event, capacity=1))

        result = await service.cancel(event.id, a)

        assert result.promoted_registration_id is None
        assert (await service.get_status(event.id, c)).status == RegistrationStatus.WAITLISTED
        assert count_status(memory_db, event.id, RegistrationStatus.CONFIRMED) == 1

    async def test_cancel_without_registration(self, service, make_event):
        event = make_event(capacity=1)

        with pytest.raises(RegistrationNotFoundError) as exc_info:
            await service.cancel(event.id, uuid4())

        assert exc_info.value.code == "REGISTRATION_NOT_FOUND"

    async def test_cancel_twice_rejected(self, service, make_event):
        event = make_event(capacity=1)
        user = uuid4()
        await service.register(event.id, user)
        await service.cancel(event.id, user)

        with pytest.raises(RegistrationNotFoundError):
            await service.cancel(event.id, user)

    async def test_reregister_after_cancel_joins_back_of_queue(self, service, make_event, memory_db):
        event = make_event(capacity=1)
        a, b, c = uuid4(), uuid4(), uuid4()
        for user in (a, b, c):
            await service.register(event.id, user)

        await service.cancel(event.id, b)
        result = await service.register(event.id, b)

        assert result.status == RegistrationStatus.WAITLISTED
        assert result.position == 2
        # The cancelled row is kept alongside the new one
        assert len([r for r in rows_for(memory_db, event.id) if r.user_id == b]) == 2

    async def test_promotion_ticket_failure_rolls_back_cancel(self, service, make_event, memory_db, ticket_issuer):
        event = make_event(capacity=1)
        a, b = uuid4(), uuid4()
        await service.register(event.id, a)
        await service.register(event.id, b)

        ticket_issuer.fail = True
        with pytest.raises(TicketIssuanceError):
            await service.cancel(event.id, a)

        assert (await service.get_status(event.id, a)).status == RegistrationStatus.CONFIRMED
        assert (await service.get_status(event.id, b)).status == RegistrationStatus.WAITLISTED

    async def test_promotion_counted(self, service, make_event, metrics):
        event = make_event(capacity=1)
        a, b = uuid4(), uuid4()
        await service.register(event.id, a)
        await service.register(event.id, b)

        await service.cancel(event.id, a)

        assert metrics.promotions._value.get() == 1


@pytest.mark.asyncio
class TestRetry:
    """Test the single retry on write conflicts"""

    def _service(self, memory_db, ticket_issuer, metrics, conflicts):
        budget = {"conflicts": conflicts}
        return RegistrationService(
            uow_factory=lambda: ConflictingUnitOfWork(memory_db, budget),
            ticket_issuer=ticket_issuer,
            metrics=metrics,
        )

    async def test_single_conflict_is_retried(self, memory_db, make_event, ticket_issuer, metrics):
        service = self._service(memory_db, ticket_issuer, metrics, conflicts=1)
        event = make_event(capacity=1)

        result = await service.register(event.id, uuid4())

        assert result.status == RegistrationStatus.CONFIRMED
        assert len(rows_for(memory_db, event.id)) == 1
        assert metrics.retries.labels(operation="register")._value.get() == 1

    async def test_persistent_conflict_raises_concurrency_conflict(self, memory_db, make_event, ticket_issuer, metrics):
        service = self._service(memory_db, ticket_issuer, metrics, conflicts=2)
        event = make_event(capacity=1)

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            await service.register(event.id, uuid4())

        assert exc_info.value.status_code == 409
        assert isinstance(exc_info.value.__cause__, WriteConflictError)
        assert rows_for(memory_db, event.id) == []
        # Locks were released; the event is usable again
        assert not memory_db.lock_for(event.id).locked()

    async def test_rejections_are_not_retried(self, memory_db, make_event, ticket_issuer, metrics):
        service = self._service(memory_db, ticket_issuer, metrics, conflicts=0)

        with pytest.raises(EventNotFoundError):
            await service.register(uuid4(), uuid4())

        assert metrics.retries.labels(operation="register")._value.get() == 0

    async def test_retry_budget_is_configurable(self, memory_db, make_event, ticket_issuer, metrics):
        budget = {"conflicts": 2}
        service = RegistrationService(
            uow_factory=lambda: ConflictingUnitOfWork(memory_db, budget),
            ticket_issuer=ticket_issuer,
            metrics=metrics,
            max_retries=2,
        )
        event = make_event(capacity=1)

        result = await service.register(event.id, uuid4())

        assert result.status == RegistrationStatus.CONFIRMED


@pytest.mark.asyncio
class TestQueries:
    """Test read-only operations"""

    async def test_get_status_without_registration(self, service, make_event):
        event = make_event()
        with pytest.raises(RegistrationNotFoundError):
            await service.get_status(event.id, uuid4())

    async def test_list_attendees_newest_first_including_cancelled(self, service, make_event):
        organizer = CurrentUser(id=uuid4(), role="organizer")
        event = make_event(capacity=1, organizer_id=organizer.id)
        a, b = uuid4(), uuid4()
        await service.register(event.id, a)
        await service.register(event.id, b)
        await service.cancel(event.id, a)

        attendees = await service.list_attendees(event.id, organizer)

        assert [r.user_id for r in attendees] == [b, a]
        assert attendees[0].status == RegistrationStatus.CONFIRMED
        assert attendees[1].status == RegistrationStatus.CANCELLED

    async def test_list_attendees_denied_to_other_organizer(self, service, make_event):
        event = make_event(organizer_id=uuid4())
        await service.register(event.id, uuid4())

        with pytest.raises(AuthorizationError) as exc_info:
            await service.list_attendees(event.id, CurrentUser(id=uuid4(), role="organizer"))

        assert exc_info.value.status_code == 403
        assert exc_info.value.details["event_id"] == str(event.id)

    async def test_list_attendees_denied_when_event_has_no_organizer(self, service, make_event):
        event = make_event()

        with pytest.raises(AuthorizationError):
            await service.list_attendees(event.id, CurrentUser(id=uuid4(), role="organizer"))

    async def test_admin_lists_any_event(self, service, make_event):
        event = make_event(organizer_id=uuid4())
        user = uuid4()
        await service.register(event.id, user)

        attendees = await service.list_attendees(event.id, CurrentUser(id=uuid4(), role="admin"))

        assert [r.user_id for r in attendees] == [user]

    async def test_list_attendees_unknown_event(self, service):
        with pytest.raises(EventNotFoundError):
            await service.list_attendees(uuid4(), CurrentUser(id=uuid4(), role="admin"))

    async def test_event_summary(self, service, make_event):
        event = make_event(capacity=2)
        for _ in range(3):
            await service.register(event.id, uuid4())

        summary = await service.get_event_summary(event.id)

        assert summary.confirmed_count == 2
        assert summary.waitlist_count == 1
        assert summary.remaining == 0
        assert summary.title == "Test Event"


@pytest.mark.asyncio
async def test_random_operation_sequences_keep_invariants(service, make_event, memory_db):
    """Capacity, uniqueness and no-idle-seat invariants hold after every step"""
    rng = random.Random(20260101)
    capacity = 3
    event = make_event(capacity=capacity)
    users = [uuid4() for _ in range(8)]

    for _ in range(300):
        user = rng.choice(users)
        try:
            if rng.random() < 0.6:
                await service.register(event.id, user)
            else:
                await service.cancel(event.id, user)
        except (DuplicateRegistrationError, RegistrationNotFoundError):
            pass

        rows = rows_for(memory_db, event.id)
        confirmed = [r for r in rows if r.status == RegistrationStatus.CONFIRMED]
        waitlisted = [r for r in rows if r.status == RegistrationStatus.WAITLISTED]
        active_users = [r.user_id for r in rows if r.status.is_active]

        assert len(confirmed) <= capacity
        assert len(active_users) == len(set(active_users))
        assert all(r.ticket for r in confirmed)
        assert not any(r.ticket for r in waitlisted)
        if waitlisted:
            assert len(confirmed) == capacity
