"""Pytest configuration and fixtures for Yardbook tests.

The workflow runs against the in-memory repository with a controllable
clock and a recording audit sink; API tests drive the real FastAPI app
through httpx with signed JWTs.
"""

import asyncio
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from yardbook.auth.jwt import create_access_token
from yardbook.auth.permissions import Actor
from yardbook.config import settings
from yardbook.database import Base
from yardbook.repositories.memory import InMemoryBookingRepository
from yardbook.repositories.sql_repository import SqlAlchemyBookingRepository
from yardbook.schemas.booking import BookingCreate
from yardbook.services.audit import AuditSink, TransitionEvent
from yardbook.services.workflow import BookingWorkflow


# ── Test doubles ─────────────────────────────────────────────────

class FakeClock:
    """Deterministic clock: each call advances one minute."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(minutes=1)):
        self.now = start or datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now += self.step
        return current

    def rewind(self, delta: timedelta) -> None:
        self.now -= delta


class RecordingAuditSink(AuditSink):
    def __init__(self):
        self.events: list[TransitionEvent] = []
        self.closed = False

    async def emit(self, event: TransitionEvent) -> None:
        self.events.append(event)

    async def close(self) -> None:
        self.closed = True


class FailingAuditSink(AuditSink):
    async def emit(self, event: TransitionEvent) -> None:
        raise ConnectionError("audit channel down")


# ── Workflow ─────────────────────────────────────────────────────

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repository() -> InMemoryBookingRepository:
    return InMemoryBookingRepository()


@pytest.fixture
def sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def workflow(repository, sink, clock) -> BookingWorkflow:
    """Workflow where operators' bookings are held for approval."""
    return BookingWorkflow(repository, sink, clock=clock, approval_roles={"operator"})


# ── Actors ───────────────────────────────────────────────────────

@pytest.fixture
def admin() -> Actor:
    return Actor.for_role("admin-1", "Ada Admin", "administrator")


@pytest.fixture
def supervisor() -> Actor:
    return Actor.for_role("sup-1", "Sam Supervisor", "supervisor")


@pytest.fixture
def operator() -> Actor:
    return Actor.for_role("op-1", "Olu Operator", "operator")


@pytest.fixture
def other_operator() -> Actor:
    return Actor.for_role("op-2", "Kim Operator", "operator")


@pytest.fixture
def viewer() -> Actor:
    return Actor.for_role("view-1", "Vic Viewer", "viewer")


# ── Test Data Fixtures ───────────────────────────────────────────

@pytest.fixture
def booking_data():
    def _make(**overrides) -> BookingCreate:
        data = {
            "vehicle_number": "ca 123-456",
            "driver_name": "Thabo Nkosi",
            "supplier_name": "Green Valley Farms",
            "box_count": 100,
            "weight_tons": Decimal("12.500"),
        }
        data.update(overrides)
        return BookingCreate(**data)

    return _make


@pytest.fixture
def make_booking(workflow, admin, booking_data):
    """Create a booking through the workflow (default: by an administrator)."""

    async def _make(actor: Actor | None = None, **overrides):
        return await workflow.create_booking(booking_data(**overrides), actor or admin)

    return _make


# ── API client ───────────────────────────────────────────────────

def token_for(actor: Actor) -> str:
    return create_access_token(
        actor_id=actor.id,
        name=actor.name,
        role=actor.role,
        permissions=sorted(actor.permissions),
    )


@pytest.fixture
def auth_headers():
    def _headers(actor: Actor) -> dict:
        return {"Authorization": f"Bearer {token_for(actor)}"}

    return _headers


@pytest_asyncio.fixture
async def client(workflow) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with the workflow dependency overridden."""
    from yardbook.main import app
    from yardbook.services.workflow import get_workflow

    app.dependency_overrides[get_workflow] = lambda: workflow

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Test Database Setup ──────────────────────────────────────────

def pg_test_url() -> str:
    """YARDBOOK_TEST_DATABASE_URL, else the configured database with a _test suffix."""
    return os.getenv("YARDBOOK_TEST_DATABASE_URL") or f"{settings.database_url}_test"


@pytest_asyncio.fixture
async def pg_session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh booking tables in the test database; skips when it is unreachable."""
    import yardbook.models  # noqa: F401

    engine = create_async_engine(pg_test_url(), echo=False)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
    except (DBAPIError, OSError, asyncio.TimeoutError) as exc:
        await engine.dispose()
        pytest.skip(f"Test database unavailable: {exc}")

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def sql_repository(pg_session_factory) -> SqlAlchemyBookingRepository:
    return SqlAlchemyBookingRepository(pg_session_factory)


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "api: HTTP API tests")
    config.addinivalue_line("markers", "slow: Slow tests")
    config.addinivalue_line("markers", "auth: Authentication tests")
    config.addinivalue_line("markers", "integration: Needs a PostgreSQL test database")
