"""PostgreSQL booking repository (async SQLAlchemy).

One short session per call.  `save` issues a single guarded UPDATE:

    UPDATE vehicle_bookings SET ... , version = :new
     WHERE id = :id AND version = :new - 1

and inserts the history row in the same transaction.  Zero affected rows
means another writer got there first → Conflict, and the transaction is
rolled back so the history row is discarded with it.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from yardbook.middleware.exceptions import Conflict, NotFound, PersistenceUnavailable
from yardbook.models.booking import VehicleBooking
from yardbook.models.booking_history import BookingHistory
from yardbook.repositories.base import BookingRepository
from yardbook.schemas.booking import Booking, BookingFilter, BookingHistoryEntry

logger = logging.getLogger(__name__)

# Columns written on save (everything except the primary key)
_ENTITY_EXCLUDE = {"id", "is_pending_approval"}


def _row_values(booking: Booking) -> dict:
    return booking.model_dump(exclude=_ENTITY_EXCLUDE)


def _history_row(entry: BookingHistoryEntry) -> BookingHistory:
    return BookingHistory(**entry.model_dump())


class SqlAlchemyBookingRepository(BookingRepository):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        """Open a session, translating connectivity failures.

        Anything raised before commit rolls the whole transaction back.
        """
        try:
            async with self._session_factory() as session:
                try:
                    yield session
                except Exception:
                    await session.rollback()
                    raise
        except (OperationalError, InterfaceError, OSError) as exc:
            logger.error(f"Booking store unavailable: {exc}")
            raise PersistenceUnavailable() from exc
        except DBAPIError as exc:
            if exc.connection_invalidated:
                logger.error(f"Booking store connection lost: {exc}")
                raise PersistenceUnavailable() from exc
            raise

    async def load(self, booking_id: str) -> Booking:
        async with self._session() as session:
            row = await session.get(VehicleBooking, booking_id)
            if row is None or row.is_deleted:
                raise NotFound("Booking", booking_id)
            return Booking.model_validate(row)

    async def add(self, booking: Booking, history: BookingHistoryEntry) -> Booking:
        async with self._session() as session:
            session.add(VehicleBooking(id=booking.id, **_row_values(booking)))
            await session.flush()
            session.add(_history_row(history))
            await session.commit()
        logger.info(f"Created booking {booking.id} ({booking.vehicle_number})")
        return booking

    async def save(self, booking: Booking, history: BookingHistoryEntry) -> Booking:
        async with self._session() as session:
            result = await session.execute(
                update(VehicleBooking)
                .where(
                    VehicleBooking.id == booking.id,
                    VehicleBooking.version == booking.version - 1,
                )
                .values(**_row_values(booking))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                exists = await session.scalar(
                    select(func.count(VehicleBooking.id)).where(VehicleBooking.id == booking.id)
                )
                if not exists:
                    raise NotFound("Booking", booking.id)
                logger.warning(f"Version conflict on booking {booking.id} (incoming v{booking.version})")
                raise Conflict(booking.id)

            session.add(_history_row(history))
            await session.commit()
        return booking

    def _filtered(self, stmt, filters: BookingFilter):
        stmt = stmt.where(VehicleBooking.is_deleted == False)  # noqa: E712

        if filters.status:
            stmt = stmt.where(VehicleBooking.status == filters.status)
        if filters.approval_status:
            stmt = stmt.where(VehicleBooking.approval_status == filters.approval_status)
        if filters.created_by:
            stmt = stmt.where(VehicleBooking.created_by == filters.created_by)
        if filters.supplier_name:
            stmt = stmt.where(VehicleBooking.supplier_name == filters.supplier_name)
        if filters.date_from:
            stmt = stmt.where(VehicleBooking.created_at >= filters.date_from)
        if filters.date_to:
            stmt = stmt.where(VehicleBooking.created_at <= filters.date_to)
        if filters.search:
            q = f"%{filters.search}%"
            stmt = stmt.where(
                or_(
                    VehicleBooking.vehicle_number.ilike(q),
                    VehicleBooking.driver_name.ilike(q),
                    VehicleBooking.supplier_name.ilike(q),
                )
            )
        return stmt

    async def list(self, filters: BookingFilter) -> list[Booking]:
        stmt = (
            self._filtered(select(VehicleBooking), filters)
            .order_by(VehicleBooking.created_at.desc())
            .offset(filters.offset)
            .limit(filters.limit)
        )
        async with self._session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [Booking.model_validate(row) for row in rows]

    async def count(self, filters: BookingFilter) -> int:
        stmt = self._filtered(select(func.count(VehicleBooking.id)), filters)
        async with self._session() as session:
            return await session.scalar(stmt) or 0

    async def history(self, booking_id: str) -> list[BookingHistoryEntry]:
        async with self._session() as session:
            rows = (
                await session.execute(
                    select(BookingHistory)
                    .where(BookingHistory.booking_id == booking_id)
                    .order_by(BookingHistory.recorded_at.asc())
                )
            ).scalars().all()
            if not rows:
                raise NotFound("Booking", booking_id)
            return [BookingHistoryEntry.model_validate(row) for row in rows]
