"""
Test configuration and fixtures
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from prometheus_client import CollectorRegistry

# Set test environment
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CACHE_ENABLED"] = "false"
os.environ["LOG_FORMAT"] = "text"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-registration-tests-only"

# Import models BEFORE creating fixtures so create_all sees every table
from app import models  # noqa: F401
from app.core.database import Base, create_engine_for_url, create_session_factory
from app.core.exceptions import TicketIssuanceError
from app.core.metrics import MetricsCollector
from app.core.security import create_access_token
from app.domain.models import EventSnapshot
from app.models.event import Event
from app.services.registration_service import RegistrationService
from app.services.ticket_service import TicketIssuer
from app.stores.memory_store import MemoryDatabase
from app.stores.sqlalchemy_store import sqlalchemy_unit_of_work_factory


class FakeTicketIssuer(TicketIssuer):
    """Records issued tickets; optionally fails"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.issued = []

    async def issue(self, registration_id: UUID) -> str:
        if self.fail:
            raise TicketIssuanceError(registration_id)
        self.issued.append(registration_id)
        return f"ticket:{registration_id}"


class TickingClock:
    """Clock advancing one millisecond per reading so creation order is strict"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(milliseconds=1)
        return self.now


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def ticket_issuer():
    return FakeTicketIssuer()


@pytest.fixture
def metrics():
    """Metrics on a private registry so tests don't share counters"""
    return MetricsCollector(registry=CollectorRegistry())


@pytest.fixture
def memory_db():
    return MemoryDatabase()


@pytest.fixture
def make_event(memory_db):
    """Add an event to the in-memory database"""
    def _make_event(
        capacity: Optional[int] = 2,
        deadline: Optional[datetime] = None,
        organizer_id: Optional[UUID] = None
    ) -> EventSnapshot:
        return memory_db.add_event(
            EventSnapshot(
                id=uuid4(),
                capacity=capacity,
                registration_deadline=deadline,
                title="Test Event",
                organizer_id=organizer_id,
            )
        )
    return _make_event


@pytest.fixture
def service(memory_db, ticket_issuer, metrics, clock):
    """Registration service over the in-memory store"""
    return RegistrationService(
        uow_factory=memory_db.unit_of_work,
        ticket_issuer=ticket_issuer,
        metrics=metrics,
        clock=clock,
    )


@pytest_asyncio.fixture
async def sqlite_engine(tmp_path):
    """File-backed SQLite so concurrent units of work use separate connections"""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'registrations.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine):
    return create_session_factory(sqlite_engine)


@pytest.fixture
def sql_service(session_factory, ticket_issuer, metrics):
    """Registration service over the SQLAlchemy store"""
    return RegistrationService(
        uow_factory=sqlalchemy_unit_of_work_factory(session_factory),
        ticket_issuer=ticket_issuer,
        metrics=metrics,
    )


async def create_event(
    session_factory,
    capacity: Optional[int] = 2,
    deadline: Optional[datetime] = None,
    title: str = "Test Event",
    organizer_id: Optional[UUID] = None
) -> UUID:
    """Insert an event row and return its id"""
    event = Event(
        id=uuid4(),
        title=title,
        capacity=capacity,
        registration_deadline=deadline,
        organizer_id=organizer_id,
    )
    async with session_factory() as session:
        session.add(event)
        await session.commit()
    return event.id


@pytest.fixture
def organizer_id():
    return uuid4()


@pytest_asyncio.fixture
async def sql_event(session_factory, organizer_id):
    return await create_event(session_factory, capacity=2, organizer_id=organizer_id)


@pytest_asyncio.fixture
async def client(sql_service, session_factory):
    """Create test client with dependency override"""
    from app.main import app
    from app.core.database import get_session
    from app.services.registration_service import get_registration_service

    async def override_get_session():
        async with session_factory() as session:
            yield session

    async def override_get_registration_service():
        return sql_service

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_registration_service] = override_get_registration_service

    try:
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


def auth_headers(user_id: Optional[UUID] = None, role: str = "attendee") -> dict:
    """Generate bearer headers for a user"""
    token = create_access_token(data={"sub": str(user_id or uuid4()), "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def attendee_headers():
    return auth_headers()


@pytest.fixture
def organizer_headers(organizer_id):
    """Headers for the organizer who owns sql_event"""
    return auth_headers(organizer_id, role="organizer")
