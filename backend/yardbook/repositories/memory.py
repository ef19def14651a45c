"""In-memory booking repository.

Used by the test suite and local tooling.  Bookings are immutable values,
so storing and returning the same object is safe.  Every call yields to
the event loop once, the way a real round trip would, so concurrent
workflow calls genuinely interleave.
"""

from __future__ import annotations

import asyncio
import logging

from yardbook.middleware.exceptions import Conflict, NotFound
from yardbook.repositories.base import BookingRepository, matches
from yardbook.schemas.booking import Booking, BookingFilter, BookingHistoryEntry

logger = logging.getLogger(__name__)


class InMemoryBookingRepository(BookingRepository):

    def __init__(self) -> None:
        self._bookings: dict[str, Booking] = {}
        self._history: dict[str, list[BookingHistoryEntry]] = {}

    async def load(self, booking_id: str) -> Booking:
        await asyncio.sleep(0)
        booking = self._bookings.get(booking_id)
        if booking is None or booking.is_deleted:
            raise NotFound("Booking", booking_id)
        return booking

    async def add(self, booking: Booking, history: BookingHistoryEntry) -> Booking:
        await asyncio.sleep(0)
        if booking.id in self._bookings:
            raise Conflict(booking.id)
        self._bookings[booking.id] = booking
        self._history[booking.id] = [history]
        return booking

    async def save(self, booking: Booking, history: BookingHistoryEntry) -> Booking:
        await asyncio.sleep(0)
        current = self._bookings.get(booking.id)
        if current is None:
            raise NotFound("Booking", booking.id)
        if current.version != booking.version - 1:
            logger.warning(
                f"Version conflict on booking {booking.id}: "
                f"stored v{current.version}, incoming v{booking.version}"
            )
            raise Conflict(booking.id)
        self._bookings[booking.id] = booking
        self._history[booking.id].append(history)
        return booking

    async def list(self, filters: BookingFilter) -> list[Booking]:
        await asyncio.sleep(0)
        found = sorted(
            (b for b in self._bookings.values() if matches(b, filters)),
            key=lambda b: b.created_at,
            reverse=True,
        )
        return found[filters.offset:filters.offset + filters.limit]

    async def count(self, filters: BookingFilter) -> int:
        await asyncio.sleep(0)
        return sum(1 for b in self._bookings.values() if matches(b, filters))

    async def history(self, booking_id: str) -> list[BookingHistoryEntry]:
        await asyncio.sleep(0)
        if booking_id not in self._history:
            raise NotFound("Booking", booking_id)
        return list(self._history[booking_id])

    def snapshot(self, booking_id: str) -> Booking | None:
        """Raw stored value, including deleted bookings (no round trip)."""
        return self._bookings.get(booking_id)
