"""Vehicle booking state machine.

This module is the only place that knows which status transitions exist
and what each one records.  The workflow engine calls `apply_transition`
after authorization and the approval gate; the permission projector calls
`can_fire` to decide which `can_*` flags are open.

    booked ──receive──▶ received ──start_offloading──▶ offloading
      ▲                   │                               │
      └────unreceive──────┘                      complete_offloading
                                                          ▼
    booked | received ──reject──▶ rejected            offloaded ──exit──▶ exited

`exited` and `rejected` are terminal.
"""

import enum
from datetime import datetime

from yardbook.config import settings
from yardbook.middleware.exceptions import InvalidTransition, ValidationFailed
from yardbook.models.booking import ApprovalStatus, BookingStatus, RejectionReason
from yardbook.schemas.booking import Booking


class BookingEvent(str, enum.Enum):
    RECEIVE = "receive"
    REJECT = "reject"
    START_OFFLOADING = "start_offloading"
    UNRECEIVE = "unreceive"
    COMPLETE_OFFLOADING = "complete_offloading"
    EXIT = "exit"


# ── Transition table ─────────────────────────────────────────

BOOKING_TRANSITIONS: dict[BookingStatus, dict[BookingEvent, BookingStatus]] = {
    BookingStatus.BOOKED: {
        BookingEvent.RECEIVE: BookingStatus.RECEIVED,
        BookingEvent.REJECT: BookingStatus.REJECTED,
    },
    BookingStatus.RECEIVED: {
        BookingEvent.START_OFFLOADING: BookingStatus.OFFLOADING,
        BookingEvent.UNRECEIVE: BookingStatus.BOOKED,
        BookingEvent.REJECT: BookingStatus.REJECTED,
    },
    BookingStatus.OFFLOADING: {
        BookingEvent.COMPLETE_OFFLOADING: BookingStatus.OFFLOADED,
    },
    BookingStatus.OFFLOADED: {
        BookingEvent.EXIT: BookingStatus.EXITED,
    },
    BookingStatus.EXITED: {},    # terminal
    BookingStatus.REJECTED: {},  # terminal
}

# Human-readable action names for each transition
TRANSITION_ACTIONS: dict[tuple[BookingStatus, BookingEvent], str] = {
    (BookingStatus.BOOKED, BookingEvent.RECEIVE): "Receive Vehicle",
    (BookingStatus.BOOKED, BookingEvent.REJECT): "Reject Vehicle",
    (BookingStatus.RECEIVED, BookingEvent.START_OFFLOADING): "Start Offloading",
    (BookingStatus.RECEIVED, BookingEvent.UNRECEIVE): "Undo Receive",
    (BookingStatus.RECEIVED, BookingEvent.REJECT): "Reject Vehicle",
    (BookingStatus.OFFLOADING, BookingEvent.COMPLETE_OFFLOADING): "Complete Offloading",
    (BookingStatus.OFFLOADED, BookingEvent.EXIT): "Vehicle Exit",
}

TERMINAL_STATUSES = frozenset(
    status for status, events in BOOKING_TRANSITIONS.items() if not events
)


# ── Helper functions ─────────────────────────────────────────

def can_fire(status: BookingStatus, event: BookingEvent) -> bool:
    """Check if `event` is legal from `status`."""
    return event in BOOKING_TRANSITIONS.get(status, {})


def allowed_events(status: BookingStatus) -> list[BookingEvent]:
    return list(BOOKING_TRANSITIONS.get(status, {}))


def describe_transitions(status: BookingStatus) -> list[dict]:
    """List legal transitions from `status` with display labels."""
    return [
        {
            "event": event.value,
            "to_status": target.value,
            "action": TRANSITION_ACTIONS[(status, event)],
        }
        for event, target in BOOKING_TRANSITIONS.get(status, {}).items()
    ]


def next_status(status: BookingStatus, event: BookingEvent) -> BookingStatus:
    """Return the target status, or raise InvalidTransition."""
    try:
        return BOOKING_TRANSITIONS[status][event]
    except KeyError:
        raise InvalidTransition(status.value, event.value) from None


# ── Payload validation ───────────────────────────────────────

def validate_rejection(
    reason: RejectionReason | str | None,
    notes: str | None,
) -> tuple[RejectionReason, str | None]:
    """Normalize and check a rejection payload.

    Returns the coerced (reason, notes).  Blank notes are stored as None.
    """
    errors: dict[str, str] = {}
    coerced: RejectionReason | None = None

    if reason is None or reason == "":
        errors["rejection_reason"] = "Rejection reason is required"
    else:
        try:
            coerced = RejectionReason(reason)
        except ValueError:
            allowed = ", ".join(r.value for r in RejectionReason)
            errors["rejection_reason"] = f"Unknown rejection reason '{reason}' (expected one of: {allowed})"

    cleaned = (notes or "").strip() or None
    if coerced == RejectionReason.OTHER and cleaned is None:
        errors["rejection_notes"] = "Notes are required when the reason is Other"
    elif cleaned is not None and len(cleaned) > settings.notes_max_length:
        errors["rejection_notes"] = f"Notes must be at most {settings.notes_max_length} characters"

    if errors:
        raise ValidationFailed(errors)
    return coerced, cleaned


def validate_completion(actual_box_count: int | None, notes: str | None) -> str | None:
    errors: dict[str, str] = {}

    if actual_box_count is None:
        errors["actual_box_count"] = "Actual box count is required"
    elif isinstance(actual_box_count, bool) or not isinstance(actual_box_count, int):
        errors["actual_box_count"] = "Actual box count must be a whole number"
    elif actual_box_count <= 0:
        errors["actual_box_count"] = "Actual box count must be greater than zero"

    cleaned = (notes or "").strip() or None
    if cleaned is not None and len(cleaned) > settings.notes_max_length:
        errors["notes"] = f"Notes must be at most {settings.notes_max_length} characters"

    if errors:
        raise ValidationFailed(errors)
    return cleaned


# ── Application ──────────────────────────────────────────────

def apply_transition(
    booking: Booking,
    event: BookingEvent,
    at: datetime,
    actor_id: str,
    *,
    rejection_reason: RejectionReason | str | None = None,
    rejection_notes: str | None = None,
    actual_box_count: int | None = None,
    notes: str | None = None,
) -> Booking:
    """Validate `event` against `booking` and return the transitioned value.

    Raises InvalidTransition or ValidationFailed before anything is built;
    the input booking is never modified.
    """
    target = next_status(booking.status, event)
    changes: dict = {"status": target}

    if event == BookingEvent.RECEIVE:
        changes["received_at"] = at

    elif event == BookingEvent.REJECT:
        reason, cleaned = validate_rejection(rejection_reason, rejection_notes)
        changes.update(
            rejected_at=at,
            rejection_reason=reason,
            rejection_notes=cleaned,
        )
        # A still-pending approval is closed along with the booking
        if booking.approval_status == ApprovalStatus.PENDING:
            changes.update(
                approval_status=ApprovalStatus.REJECTED,
                approval_decided_at=at,
                approval_decided_by=actor_id,
            )

    elif event == BookingEvent.START_OFFLOADING:
        changes["offloading_started_at"] = at

    elif event == BookingEvent.UNRECEIVE:
        changes["received_at"] = None

    elif event == BookingEvent.COMPLETE_OFFLOADING:
        cleaned = validate_completion(actual_box_count, notes)
        changes.update(
            offloaded_at=at,
            actual_box_count=actual_box_count,
            box_count_diff=actual_box_count - booking.box_count,
            offloading_notes=cleaned,
        )

    elif event == BookingEvent.EXIT:
        changes["exited_at"] = at

    return booking.evolve(**changes)
