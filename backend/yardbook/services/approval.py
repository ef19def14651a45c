"""Approval overlay — a supervisory gate on top of the `booked` status.

Bookings created by roles listed in APPROVAL_REQUIRED_ROLES start with
`approval_status = pending`.  Deciding the approval never changes the
booking's status: an approved booking may be received, a booking whose
approval was rejected stays `booked` but blocked, and can only be
rejected through the state machine.
"""

from datetime import datetime

from yardbook.config import settings
from yardbook.middleware.exceptions import InvalidTransition, ValidationFailed
from yardbook.models.booking import ApprovalStatus
from yardbook.schemas.booking import Booking

# Approval states that keep a booked vehicle out of the yard
BLOCKING_APPROVALS = frozenset({ApprovalStatus.PENDING, ApprovalStatus.REJECTED})


def requires_approval(role: str, approval_roles: frozenset[str]) -> bool:
    return role in approval_roles


def is_decidable(booking: Booking) -> bool:
    return booking.approval_status == ApprovalStatus.PENDING


def gate_allows_receive(booking: Booking) -> bool:
    return booking.approval_status not in BLOCKING_APPROVALS


def check_receive_gate(booking: Booking) -> None:
    """Raise InvalidTransition if the approval overlay blocks `receive`.

    Evaluated before the state machine, so an unresolved or rejected
    approval cannot be bypassed by calling receive directly.
    """
    if booking.approval_status == ApprovalStatus.PENDING:
        raise InvalidTransition(
            booking.approval_status.value,
            "receive",
            message="Booking is waiting for approval and cannot be received yet",
        )
    if booking.approval_status == ApprovalStatus.REJECTED:
        raise InvalidTransition(
            booking.approval_status.value,
            "receive",
            message="Booking approval was rejected; it can only be rejected now",
        )


def _check_decidable(booking: Booking, event: str) -> None:
    if not is_decidable(booking):
        raise InvalidTransition(
            booking.approval_status.value,
            event,
            message=f"Cannot {event.replace('_', ' ')}: booking approval is '{booking.approval_status.value}'",
        )


def _clean_notes(notes: str | None, field: str = "notes") -> str | None:
    cleaned = (notes or "").strip() or None
    if cleaned is not None and len(cleaned) > settings.notes_max_length:
        raise ValidationFailed({field: f"Notes must be at most {settings.notes_max_length} characters"})
    return cleaned


def approve(booking: Booking, at: datetime, actor_id: str, notes: str | None = None) -> Booking:
    _check_decidable(booking, "approve")
    cleaned = _clean_notes(notes)
    return booking.evolve(
        approval_status=ApprovalStatus.APPROVED,
        approval_notes=cleaned if cleaned is not None else booking.approval_notes,
        approval_decided_at=at,
        approval_decided_by=actor_id,
    )


def reject_approval(booking: Booking, at: datetime, actor_id: str, notes: str | None) -> Booking:
    _check_decidable(booking, "reject_approval")
    cleaned = _clean_notes(notes)
    if cleaned is None:
        raise ValidationFailed({"notes": "Notes are required to reject an approval"})
    return booking.evolve(
        approval_status=ApprovalStatus.REJECTED,
        approval_notes=cleaned,
        approval_decided_at=at,
        approval_decided_by=actor_id,
    )
