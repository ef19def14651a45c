"""Booking repository contract.

The workflow engine depends on this interface only.  Implementations must
guarantee:

  - `load` never returns a deleted booking (raise NotFound instead);
  - `save` is a single atomic write of the booking row plus its history
    entry, applied only if the stored version is `booking.version - 1`,
    otherwise `Conflict` and nothing is written;
  - store outages surface as `PersistenceUnavailable`, never as a partial
    write.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from yardbook.schemas.booking import Booking, BookingFilter, BookingHistoryEntry


class BookingRepository(ABC):

    @abstractmethod
    async def load(self, booking_id: str) -> Booking:
        """Return the current booking or raise NotFound."""

    @abstractmethod
    async def add(self, booking: Booking, history: BookingHistoryEntry) -> Booking:
        """Insert a new booking (version 1)."""

    @abstractmethod
    async def save(self, booking: Booking, history: BookingHistoryEntry) -> Booking:
        """Persist `booking` if nobody else wrote since it was loaded."""

    @abstractmethod
    async def list(self, filters: BookingFilter) -> list[Booking]:
        """Return bookings matching `filters`, newest first."""

    @abstractmethod
    async def count(self, filters: BookingFilter) -> int:
        """Count bookings matching `filters`, ignoring limit / offset."""

    @abstractmethod
    async def history(self, booking_id: str) -> list[BookingHistoryEntry]:
        """Return the booking's history, oldest first."""


def matches(booking: Booking, filters: BookingFilter) -> bool:
    """In-process equivalent of the SQL filter, shared by non-SQL stores."""
    if booking.is_deleted:
        return False
    if filters.status and booking.status != filters.status:
        return False
    if filters.approval_status and booking.approval_status != filters.approval_status:
        return False
    if filters.created_by and booking.created_by != filters.created_by:
        return False
    if filters.supplier_name and booking.supplier_name != filters.supplier_name:
        return False
    if filters.date_from and booking.created_at < filters.date_from:
        return False
    if filters.date_to and booking.created_at > filters.date_to:
        return False
    if filters.search:
        q = filters.search.lower()
        haystack = [booking.vehicle_number, booking.driver_name, booking.supplier_name]
        if not any(q in value.lower() for value in haystack if value):
            return False
    return True
