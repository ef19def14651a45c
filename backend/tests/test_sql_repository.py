"""Tests for the PostgreSQL booking repository.

`TestStoreFailures` runs against stand-in sessions and needs no server.
`TestSqlRepository` needs a PostgreSQL test database (see
`pg_session_factory` in conftest) and is skipped when none is reachable.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from yardbook.middleware.exceptions import Conflict, NotFound, PersistenceUnavailable
from yardbook.models.booking import BookingStatus
from yardbook.repositories.sql_repository import SqlAlchemyBookingRepository
from yardbook.schemas.booking import Booking, BookingFilter, BookingHistoryEntry
from yardbook.services.workflow import BookingWorkflow

T0 = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


def new_booking(minutes: int = 0, **overrides) -> Booking:
    data = {
        "vehicle_number": f"CA{minutes:04d}",
        "box_count": 10,
        "created_at": T0 + timedelta(minutes=minutes),
        "created_by": "admin-1",
        "updated_at": T0 + timedelta(minutes=minutes),
    }
    data.update(overrides)
    return Booking(**data)


def entry(booking: Booking, event_type: str = "created") -> BookingHistoryEntry:
    return BookingHistoryEntry(
        booking_id=booking.id,
        event_type=event_type,
        to_status=booking.status.value,
        actor_id="admin-1",
        recorded_at=booking.updated_at,
    )


def received(booking: Booking, minutes: int) -> Booking:
    at = booking.created_at + timedelta(minutes=minutes)
    return booking.evolve(
        status=BookingStatus.RECEIVED, received_at=at, updated_at=at, version=booking.version + 1,
    )


# ── Stand-in sessions ────────────────────────────────────────────

class Result:
    def __init__(self, rowcount: int):
        self.rowcount = rowcount


class StubSession:
    """Async session whose calls fail with `error`, or report `rowcount` rows updated."""

    def __init__(self, error: Exception | None = None, rowcount: int = 1, existing: int = 0):
        self.error = error
        self.rowcount = rowcount
        self.existing = existing
        self.added: list = []
        self.rollbacks = 0
        self.commits = 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def _fail(self):
        if self.error is not None:
            raise self.error

    async def get(self, *args, **kwargs):
        self._fail()

    async def execute(self, *args, **kwargs):
        self._fail()
        return Result(self.rowcount)

    async def scalar(self, *args, **kwargs):
        self._fail()
        return self.existing

    def add(self, obj):
        self.added.append(obj)

    async def flush(self):
        self._fail()

    async def commit(self):
        self.commits += 1

    async def rollback(self):
        self.rollbacks += 1


class UnreachableSession(StubSession):
    async def __aenter__(self):
        raise ConnectionRefusedError("connection refused")


def repository_over(session: StubSession) -> SqlAlchemyBookingRepository:
    return SqlAlchemyBookingRepository(lambda: session)


@pytest.mark.unit
@pytest.mark.asyncio
class TestStoreFailures:
    """Connectivity failures become PersistenceUnavailable; lost races never commit."""

    async def test_operational_error_on_load(self):
        session = StubSession(OperationalError("SELECT 1", {}, Exception("server closed the connection")))

        with pytest.raises(PersistenceUnavailable):
            await repository_over(session).load("b-1")
        assert session.rollbacks == 1

    async def test_invalidated_connection_on_save(self):
        booking = new_booking()
        error = DBAPIError("UPDATE", {}, Exception("reset by peer"), connection_invalidated=True)
        session = StubSession(error)

        with pytest.raises(PersistenceUnavailable):
            await repository_over(session).save(received(booking, 5), entry(booking, "transition"))
        assert session.commits == 0

    async def test_refused_connection_on_list(self):
        with pytest.raises(PersistenceUnavailable):
            await repository_over(UnreachableSession()).list(BookingFilter())

    async def test_other_database_errors_propagate(self):
        booking = new_booking()
        session = StubSession(IntegrityError("INSERT", {}, Exception("duplicate key")))

        with pytest.raises(IntegrityError):
            await repository_over(session).add(booking, entry(booking))

    async def test_lost_race_is_conflict_without_history(self):
        booking = new_booking()
        session = StubSession(rowcount=0, existing=1)

        with pytest.raises(Conflict):
            await repository_over(session).save(received(booking, 5), entry(booking, "transition"))
        assert session.added == []
        assert session.commits == 0
        assert session.rollbacks >= 1

    async def test_missing_row_is_not_found(self):
        booking = new_booking()
        session = StubSession(rowcount=0, existing=0)

        with pytest.raises(NotFound):
            await repository_over(session).save(received(booking, 5), entry(booking, "transition"))
        assert session.commits == 0

    async def test_guarded_update_commits_history(self):
        booking = new_booking()
        session = StubSession(rowcount=1)

        await repository_over(session).save(received(booking, 5), entry(booking, "transition"))

        assert len(session.added) == 1
        assert session.added[0].event_type == "transition"
        assert session.commits == 1


# ── Against PostgreSQL ───────────────────────────────────────────

@pytest.mark.integration
@pytest.mark.asyncio
class TestSqlRepository:
    """Round trips, guarded updates and filters on a real database."""

    async def test_add_and_load(self, sql_repository):
        booking = new_booking(driver_name="Thabo Nkosi")
        await sql_repository.add(booking, entry(booking))

        loaded = await sql_repository.load(booking.id)

        assert loaded.id == booking.id
        assert loaded.vehicle_number == booking.vehicle_number
        assert loaded.status == BookingStatus.BOOKED
        assert loaded.created_at == booking.created_at
        assert loaded.version == 1

    async def test_save_bumps_version_and_appends_history(self, sql_repository):
        booking = new_booking()
        await sql_repository.add(booking, entry(booking))

        await sql_repository.save(received(booking, 5), entry(received(booking, 5), "transition"))

        loaded = await sql_repository.load(booking.id)
        assert loaded.status == BookingStatus.RECEIVED
        assert loaded.version == 2
        history = await sql_repository.history(booking.id)
        assert [h.event_type for h in history] == ["created", "transition"]

    async def test_stale_save_conflicts_and_discards_history(self, sql_repository):
        booking = new_booking()
        await sql_repository.add(booking, entry(booking))
        first = received(booking, 5)
        await sql_repository.save(first, entry(first, "transition"))

        stale = booking.evolve(
            status=BookingStatus.REJECTED,
            rejection_reason="Quality Issue",
            rejected_at=booking.created_at + timedelta(minutes=6),
            updated_at=booking.created_at + timedelta(minutes=6),
            version=2,
        )
        with pytest.raises(Conflict):
            await sql_repository.save(stale, entry(stale, "transition"))

        assert (await sql_repository.load(booking.id)).status == BookingStatus.RECEIVED
        history = await sql_repository.history(booking.id)
        assert [h.to_status for h in history] == ["booked", "received"]

    async def test_save_unknown_booking(self, sql_repository):
        booking = new_booking()
        with pytest.raises(NotFound):
            await sql_repository.save(received(booking, 5), entry(booking, "transition"))

    async def test_history_of_unknown_booking(self, sql_repository):
        with pytest.raises(NotFound):
            await sql_repository.history("missing")

    async def test_filters_count_and_paging(self, sql_repository):
        for minutes, supplier in ((0, "Green Valley"), (10, "Blue Hill"), (20, "Green Valley")):
            booking = new_booking(minutes, supplier_name=supplier)
            await sql_repository.add(booking, entry(booking))

        newest_first = await sql_repository.list(BookingFilter(limit=2))
        assert [b.vehicle_number for b in newest_first] == ["CA0020", "CA0010"]
        assert await sql_repository.count(BookingFilter(limit=2)) == 3

        assert await sql_repository.count(BookingFilter(search="blue")) == 1
        assert await sql_repository.count(BookingFilter(supplier_name="Green Valley")) == 2
        window = BookingFilter(date_from=datetime(2026, 3, 2, 8, 5), date_to=datetime(2026, 3, 2, 8, 15))
        assert [b.vehicle_number for b in await sql_repository.list(window)] == ["CA0010"]

    async def test_deleted_bookings_hidden(self, sql_repository):
        booking = new_booking()
        await sql_repository.add(booking, entry(booking))
        deleted = booking.evolve(is_deleted=True, version=2, updated_at=T0 + timedelta(minutes=1))
        await sql_repository.save(deleted, entry(deleted, "deleted"))

        with pytest.raises(NotFound):
            await sql_repository.load(booking.id)
        assert await sql_repository.count(BookingFilter()) == 0

    async def test_workflow_over_sql_store(self, sql_repository, sink, clock, admin, booking_data):
        workflow = BookingWorkflow(sql_repository, sink, clock=clock, approval_roles={"operator"})

        booking = await workflow.create_booking(booking_data(), admin)
        await workflow.receive(booking.id, admin)
        done = await workflow.reject(booking.id, admin, "Damaged Goods")
        await workflow.drain()

        assert done.status == BookingStatus.REJECTED
        assert done.version == 3
        history = await workflow.history(booking.id, admin)
        assert [h.event for h in history[1:]] == ["receive", "reject"]
        assert [e.event for e in sink.events] == ["receive", "reject"]
