"""Booking workflow engine.

Every mutating call follows the same path, under the booking's lock:

    load → authorize (Forbidden) → approval gate / state machine
         (InvalidTransition) → payload checks (ValidationFailed)
         → build new value → save with version check (Conflict)
         → emit audit event (background, never fails the call)

Nothing is written until every check has passed, and the new booking
value is built without touching the loaded one, so a failed attempt
leaves the stored booking exactly as it was.  Every returned booking
carries a permission set freshly derived for the caller.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from yardbook.auth.permissions import Actor
from yardbook.config import settings
from yardbook.middleware.exceptions import InvalidTransition, ValidationFailed, YardbookException
from yardbook.models.booking import ApprovalStatus, BookingStatus, RejectionReason
from yardbook.repositories.base import BookingRepository
from yardbook.schemas.booking import (
    Booking,
    BookingCreate,
    BookingFilter,
    BookingHistoryEntry,
    BookingOut,
    BookingUpdate,
    BulkActionResult,
    BulkFailure,
)
from yardbook.services import approval
from yardbook.services.audit import AuditSink, NullAuditSink, TransitionEvent, build_audit_sink
from yardbook.services.permission_projector import (
    BookingAction,
    authorize,
    authorize_capability,
    derive_permissions,
)
from yardbook.services.state_machine import BookingEvent, apply_transition
from yardbook.utils.locks import KeyedLock

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "vehicle_number", "driver_name", "supplier_name",
    "box_count", "weight_tons", "entry_datetime",
)
# Editable fields an explicit null may blank out
CLEARABLE_FIELDS = frozenset({"driver_name", "supplier_name"})

# Timestamps a new stamp must never precede
_CLOCK_FLOOR_FIELDS = (
    "created_at", "received_at", "offloading_started_at", "offloaded_at",
    "exited_at", "rejected_at", "approval_decided_at", "updated_at",
)

# Actions that can be applied to a multi-selection
BULK_ACTIONS = frozenset({
    BookingAction.APPROVE,
    BookingAction.RECEIVE,
    BookingAction.REJECT,
    BookingAction.START_OFFLOADING,
    BookingAction.UNRECEIVE,
    BookingAction.EXIT,
})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _text(value) -> str | None:
    return None if value is None else str(value)


class BookingWorkflow:
    """Orchestrates booking transitions against a repository."""

    def __init__(
        self,
        repository: BookingRepository,
        sink: Optional[AuditSink] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        approval_roles: frozenset[str] | None = None,
    ):
        self._repository = repository
        self._sink = sink or NullAuditSink()
        self._clock = clock
        self._approval_roles = (
            settings.approval_roles if approval_roles is None else frozenset(approval_roles)
        )
        self._locks = KeyedLock()
        self._pending: set[asyncio.Task] = set()

    # ── Presentation ─────────────────────────────────────────

    def present(self, booking: Booking, actor: Actor) -> BookingOut:
        """Annotate a booking with the actor's fresh permission set."""
        return BookingOut(
            **booking.model_dump(exclude={"is_pending_approval"}),
            permissions=derive_permissions(booking, actor),
        )

    # ── Reads ────────────────────────────────────────────────

    async def get_booking(self, booking_id: str, actor: Actor) -> BookingOut:
        authorize_capability(actor, "booking.read")
        booking = await self._repository.load(booking_id)
        return self.present(booking, actor)

    async def list_bookings(self, filters: BookingFilter, actor: Actor) -> tuple[list[BookingOut], int]:
        authorize_capability(actor, "booking.read")
        bookings = await self._repository.list(filters)
        total = await self._repository.count(filters)
        return [self.present(b, actor) for b in bookings], total

    async def history(self, booking_id: str, actor: Actor) -> list[BookingHistoryEntry]:
        authorize_capability(actor, "booking.read")
        await self._repository.load(booking_id)
        return await self._repository.history(booking_id)

    # ── Creation / editing ───────────────────────────────────

    async def create_booking(self, data: BookingCreate, actor: Actor) -> BookingOut:
        authorize_capability(actor, "booking.write")
        now = self._clock()
        held = approval.requires_approval(actor.role, self._approval_roles)

        booking = Booking(
            vehicle_number=data.vehicle_number,
            driver_name=data.driver_name,
            supplier_name=data.supplier_name,
            box_count=data.box_count,
            weight_tons=data.weight_tons,
            approval_status=ApprovalStatus.PENDING if held else ApprovalStatus.NONE,
            approval_notes=data.approval_notes if held else None,
            created_at=now,
            entry_datetime=data.entry_datetime or now,
            created_by=actor.id,
            created_by_name=actor.name,
            updated_at=now,
        )
        await self._repository.add(
            booking,
            self._history(
                booking, actor, now,
                event_type="created",
                to_status=booking.status.value,
                event_data={"approval_status": booking.approval_status.value},
            ),
        )
        logger.info(
            f"Booking {booking.id} created for {booking.vehicle_number} by {actor.id}"
            + (" (held for approval)" if held else "")
        )
        return self.present(booking, actor)

    async def update_booking(self, booking_id: str, data: BookingUpdate, actor: Actor) -> BookingOut:
        async with self._locks.hold(booking_id):
            booking = await self._repository.load(booking_id)
            authorize(booking, actor, BookingAction.EDIT)
            if booking.status != BookingStatus.BOOKED:
                raise InvalidTransition(booking.status.value, "edit")

            requested = {
                name: value for name, value in data.model_dump(exclude_unset=True).items()
                if name in EDITABLE_FIELDS
            }
            uncleared = {
                name: "This field cannot be cleared"
                for name, value in requested.items()
                if value is None and name not in CLEARABLE_FIELDS
            }
            if uncleared:
                raise ValidationFailed(uncleared)

            changes = {
                name: value for name, value in requested.items()
                if value != getattr(booking, name)
            }
            if not changes:
                return self.present(booking, actor)

            now = self._stamp(booking)
            updated = booking.evolve(**changes, version=booking.version + 1, updated_at=now)
            saved = await self._repository.save(
                updated,
                self._history(
                    booking, actor, now,
                    event_type="updated",
                    event_data={
                        name: {"old": _text(getattr(booking, name)), "new": _text(value)}
                        for name, value in changes.items()
                    },
                ),
            )

        logger.info(f"Booking {booking_id} edited by {actor.id}: {', '.join(changes)}")
        return self.present(saved, actor)

    async def delete_booking(self, booking_id: str, actor: Actor) -> None:
        async with self._locks.hold(booking_id):
            booking = await self._repository.load(booking_id)
            authorize(booking, actor, BookingAction.DELETE)
            if booking.status != BookingStatus.BOOKED:
                raise InvalidTransition(booking.status.value, "delete")

            now = self._stamp(booking)
            await self._repository.save(
                booking.evolve(is_deleted=True, version=booking.version + 1, updated_at=now),
                self._history(booking, actor, now, event_type="deleted"),
            )

        logger.info(f"Booking {booking_id} deleted by {actor.id}")

    # ── Status transitions ───────────────────────────────────

    async def receive(self, booking_id: str, actor: Actor) -> BookingOut:
        def _apply(booking: Booking, at: datetime) -> Booking:
            approval.check_receive_gate(booking)
            return apply_transition(booking, BookingEvent.RECEIVE, at, actor.id)

        return await self._transition(booking_id, actor, BookingAction.RECEIVE, _apply)

    async def reject(
        self,
        booking_id: str,
        actor: Actor,
        reason: RejectionReason | str | None,
        notes: str | None = None,
    ) -> BookingOut:
        def _apply(booking: Booking, at: datetime) -> Booking:
            return apply_transition(
                booking, BookingEvent.REJECT, at, actor.id,
                rejection_reason=reason, rejection_notes=notes,
            )

        return await self._transition(booking_id, actor, BookingAction.REJECT, _apply)

    async def start_offloading(self, booking_id: str, actor: Actor) -> BookingOut:
        def _apply(booking: Booking, at: datetime) -> Booking:
            return apply_transition(booking, BookingEvent.START_OFFLOADING, at, actor.id)

        return await self._transition(booking_id, actor, BookingAction.START_OFFLOADING, _apply)

    async def complete_offloading(
        self,
        booking_id: str,
        actor: Actor,
        actual_box_count: int | None,
        notes: str | None = None,
    ) -> BookingOut:
        def _apply(booking: Booking, at: datetime) -> Booking:
            return apply_transition(
                booking, BookingEvent.COMPLETE_OFFLOADING, at, actor.id,
                actual_box_count=actual_box_count, notes=notes,
            )

        return await self._transition(booking_id, actor, BookingAction.COMPLETE_OFFLOADING, _apply)

    async def unreceive(self, booking_id: str, actor: Actor) -> BookingOut:
        def _apply(booking: Booking, at: datetime) -> Booking:
            return apply_transition(booking, BookingEvent.UNRECEIVE, at, actor.id)

        return await self._transition(booking_id, actor, BookingAction.UNRECEIVE, _apply)

    async def exit(self, booking_id: str, actor: Actor) -> BookingOut:
        def _apply(booking: Booking, at: datetime) -> Booking:
            return apply_transition(booking, BookingEvent.EXIT, at, actor.id)

        return await self._transition(booking_id, actor, BookingAction.EXIT, _apply)

    # ── Approval overlay ─────────────────────────────────────

    async def approve(self, booking_id: str, actor: Actor, notes: str | None = None) -> BookingOut:
        def _apply(booking: Booking, at: datetime) -> Booking:
            return approval.approve(booking, at, actor.id, notes)

        return await self._transition(booking_id, actor, BookingAction.APPROVE, _apply)

    async def reject_approval(self, booking_id: str, actor: Actor, notes: str | None) -> BookingOut:
        def _apply(booking: Booking, at: datetime) -> Booking:
            return approval.reject_approval(booking, at, actor.id, notes)

        return await self._transition(booking_id, actor, BookingAction.REJECT_APPROVAL, _apply)

    # ── Bulk ─────────────────────────────────────────────────

    async def bulk_apply(
        self,
        booking_ids: list[str],
        action: BookingAction,
        actor: Actor,
        *,
        rejection_reason: RejectionReason | str | None = None,
        rejection_notes: str | None = None,
        notes: str | None = None,
    ) -> BulkActionResult:
        """Apply one action to each booking independently.

        Each booking is its own transition (own lock, own write); one
        failure does not stop or undo the others.
        """
        if action not in BULK_ACTIONS:
            raise ValidationFailed({"action": f"'{action.value}' cannot be applied in bulk"})

        calls = {
            BookingAction.APPROVE: lambda bid: self.approve(bid, actor, notes),
            BookingAction.RECEIVE: lambda bid: self.receive(bid, actor),
            BookingAction.REJECT: lambda bid: self.reject(bid, actor, rejection_reason, rejection_notes),
            BookingAction.START_OFFLOADING: lambda bid: self.start_offloading(bid, actor),
            BookingAction.UNRECEIVE: lambda bid: self.unreceive(bid, actor),
            BookingAction.EXIT: lambda bid: self.exit(bid, actor),
        }

        result = BulkActionResult()
        for booking_id in dict.fromkeys(booking_ids):
            try:
                result.succeeded.append(await calls[action](booking_id))
            except YardbookException as exc:
                result.failed.append(BulkFailure(
                    booking_id=booking_id, error_code=exc.error_code, message=exc.message,
                ))

        logger.info(
            f"Bulk {action.value} by {actor.id}: "
            f"{len(result.succeeded)} succeeded, {len(result.failed)} failed"
        )
        return result

    # ── Internals ────────────────────────────────────────────

    async def _transition(
        self,
        booking_id: str,
        actor: Actor,
        action: BookingAction,
        apply: Callable[[Booking, datetime], Booking],
    ) -> BookingOut:
        async with self._locks.hold(booking_id):
            booking = await self._repository.load(booking_id)
            try:
                authorize(booking, actor, action)
                now = self._stamp(booking)
                updated = apply(booking, now)
            except YardbookException as exc:
                logger.warning(
                    f"Refused {action.value} on booking {booking_id} by {actor.id}: "
                    f"{exc.error_code} - {exc.message}"
                )
                raise

            updated = updated.evolve(version=booking.version + 1, updated_at=now)
            event_type = "approval" if action in (
                BookingAction.APPROVE, BookingAction.REJECT_APPROVAL,
            ) else "transition"
            saved = await self._repository.save(
                updated,
                self._history(
                    booking, actor, now,
                    event_type=event_type,
                    event=action.value,
                    to_status=updated.status.value,
                    event_data=self._event_data(action, updated),
                ),
            )

        logger.info(
            f"Booking {booking_id}: {booking.status.value} → {saved.status.value} "
            f"({action.value} by {actor.id})"
        )
        self._dispatch(TransitionEvent(
            booking_id=booking_id,
            event=action.value,
            from_status=booking.status.value,
            to_status=saved.status.value,
            actor_id=actor.id,
            timestamp=now,
            approval_status=saved.approval_status.value,
        ))
        return self.present(saved, actor)

    def _stamp(self, booking: Booking) -> datetime:
        """Current time, clamped so stage timestamps never go backwards."""
        now = self._clock()
        floor = max(
            value for value in (getattr(booking, name) for name in _CLOCK_FLOOR_FIELDS)
            if value is not None
        )
        return max(now, floor)

    @staticmethod
    def _event_data(action: BookingAction, booking: Booking) -> dict | None:
        if action == BookingAction.REJECT:
            return {
                "rejection_reason": booking.rejection_reason.value,
                "rejection_notes": booking.rejection_notes,
            }
        if action == BookingAction.COMPLETE_OFFLOADING:
            return {
                "actual_box_count": booking.actual_box_count,
                "box_count_diff": booking.box_count_diff,
            }
        if action in (BookingAction.APPROVE, BookingAction.REJECT_APPROVAL):
            return {
                "approval_status": booking.approval_status.value,
                "approval_notes": booking.approval_notes,
            }
        return None

    @staticmethod
    def _history(
        booking: Booking,
        actor: Actor,
        at: datetime,
        *,
        event_type: str,
        event: str | None = None,
        to_status: str | None = None,
        event_data: dict | None = None,
    ) -> BookingHistoryEntry:
        return BookingHistoryEntry(
            id=str(uuid.uuid4()),
            booking_id=booking.id,
            event_type=event_type,
            event=event,
            from_status=booking.status.value if event_type != "created" else None,
            to_status=to_status or booking.status.value,
            event_data=event_data,
            actor_id=actor.id,
            actor_name=actor.name,
            recorded_at=at,
        )

    def _dispatch(self, event: TransitionEvent) -> None:
        task = asyncio.create_task(self._deliver(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: TransitionEvent) -> None:
        try:
            await self._sink.emit(event)
        except Exception:
            logger.warning(
                f"Audit sink failed for booking {event.booking_id} ({event.event})",
                exc_info=True,
            )

    async def drain(self) -> None:
        """Wait for in-flight audit deliveries (shutdown, tests)."""
        if self._pending:
            await asyncio.gather(*self._pending)

    async def aclose(self) -> None:
        await self.drain()
        await self._sink.close()


# ── Application-wide instance ────────────────────────────────

_workflow: Optional[BookingWorkflow] = None


def get_workflow() -> BookingWorkflow:
    """Get or create the app-wide workflow (SQL repository + configured sink)."""
    global _workflow
    if _workflow is None:
        from yardbook.database import async_session
        from yardbook.repositories.sql_repository import SqlAlchemyBookingRepository

        _workflow = BookingWorkflow(
            SqlAlchemyBookingRepository(async_session),
            build_audit_sink(settings),
        )
    return _workflow


async def close_workflow() -> None:
    """Close the app-wide workflow (call on app shutdown)."""
    global _workflow
    if _workflow:
        await _workflow.aclose()
        _workflow = None
