"""Tests for the in-memory booking repository."""

from datetime import datetime, timedelta, timezone

import pytest

from yardbook.middleware.exceptions import Conflict, NotFound
from yardbook.models.booking import BookingStatus
from yardbook.repositories.memory import InMemoryBookingRepository
from yardbook.schemas.booking import Booking, BookingFilter, BookingHistoryEntry

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


@pytest.mark.unit
@pytest.mark.asyncio
class TestInMemoryRepository:

    async def test_add_and_load(self):
        repo = InMemoryBookingRepository()
        booking = new_booking()
        await repo.add(booking, entry(booking))

        assert await repo.load(booking.id) == booking
        assert len(await repo.history(booking.id)) == 1

    async def test_duplicate_add_conflicts(self):
        repo = InMemoryBookingRepository()
        booking = new_booking()
        await repo.add(booking, entry(booking))
        with pytest.raises(Conflict):
            await repo.add(booking, entry(booking))

    async def test_save_requires_next_version(self):
        repo = InMemoryBookingRepository()
        booking = new_booking()
        await repo.add(booking, entry(booking))

        received = booking.evolve(
            status=BookingStatus.RECEIVED, received_at=T0, version=2,
        )
        await repo.save(received, entry(received, "transition"))
        assert (await repo.load(booking.id)).version == 2

        with pytest.raises(Conflict):
            await repo.save(received, entry(received, "transition"))
        assert len(await repo.history(booking.id)) == 2

    async def test_missing_booking(self):
        repo = InMemoryBookingRepository()
        with pytest.raises(NotFound):
            await repo.load("missing")
        with pytest.raises(NotFound):
            await repo.save(new_booking(version=2), entry(new_booking()))

    async def test_list_newest_first_with_paging(self):
        repo = InMemoryBookingRepository()
        for minutes in range(5):
            booking = new_booking(minutes)
            await repo.add(booking, entry(booking))

        page = await repo.list(BookingFilter(limit=2, offset=1))
        assert [b.vehicle_number for b in page] == ["CA0003", "CA0002"]
        assert await repo.count(BookingFilter(limit=2, offset=1)) == 5

    async def test_deleted_bookings_hidden(self):
        repo = InMemoryBookingRepository()
        booking = new_booking()
        await repo.add(booking, entry(booking))
        await repo.save(booking.evolve(is_deleted=True, version=2), entry(booking, "deleted"))

        with pytest.raises(NotFound):
            await repo.load(booking.id)
        assert await repo.count(BookingFilter()) == 0
        assert repo.snapshot(booking.id).is_deleted
