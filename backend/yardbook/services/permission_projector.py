"""Permission projector — the single source of the `can_*` flags.

Each action flag is the conjunction of two halves:

  holds_capability(actor, action, booking)
      What the actor is allowed to do at all: a capability from the
      actor's permission set, or ownership for edit / delete.  Failing
      this half is `Forbidden`; it does not depend on booking state, so
      a refusal discloses nothing about where the booking is.

  is_open(booking, action)
      What the booking's state allows right now: the approval overlay and
      the state machine.  Failing this half is `InvalidTransition`.

The workflow engine authorizes with the first half and validates with the
second, so a flag is true exactly when the matching engine call succeeds
(given a valid payload).  Flags are derived on every read and never stored.
"""

import enum

from yardbook.auth.permissions import Actor
from yardbook.middleware.exceptions import Forbidden
from yardbook.models.booking import BookingStatus
from yardbook.schemas.booking import Booking, PermissionSet
from yardbook.services import approval
from yardbook.services.state_machine import BookingEvent, can_fire


class BookingAction(str, enum.Enum):
    APPROVE = "approve"
    REJECT_APPROVAL = "reject_approval"
    RECEIVE = "receive"
    REJECT = "reject"
    START_OFFLOADING = "start_offloading"
    COMPLETE_OFFLOADING = "complete_offloading"
    UNRECEIVE = "unreceive"
    EXIT = "exit"
    EDIT = "edit"
    DELETE = "delete"


# Capability an actor must hold; None means any authenticated actor
ACTION_CAPABILITY: dict[BookingAction, str | None] = {
    BookingAction.APPROVE: "booking.approve",
    BookingAction.REJECT_APPROVAL: "booking.approve",
    BookingAction.RECEIVE: "booking.receive",
    BookingAction.REJECT: "booking.reject",
    BookingAction.UNRECEIVE: "booking.unreceive",
    BookingAction.START_OFFLOADING: None,
    BookingAction.COMPLETE_OFFLOADING: None,
    BookingAction.EXIT: None,
    BookingAction.EDIT: None,
    BookingAction.DELETE: None,
}

# Actions that map onto a state machine event
ACTION_EVENTS: dict[BookingAction, BookingEvent] = {
    BookingAction.RECEIVE: BookingEvent.RECEIVE,
    BookingAction.REJECT: BookingEvent.REJECT,
    BookingAction.START_OFFLOADING: BookingEvent.START_OFFLOADING,
    BookingAction.COMPLETE_OFFLOADING: BookingEvent.COMPLETE_OFFLOADING,
    BookingAction.UNRECEIVE: BookingEvent.UNRECEIVE,
    BookingAction.EXIT: BookingEvent.EXIT,
}

OWNER_ACTIONS = frozenset({BookingAction.EDIT, BookingAction.DELETE})

FLAG_NAMES: dict[BookingAction, str] = {action: f"can_{action.value}" for action in BookingAction}


def holds_capability(actor: Actor, action: BookingAction, booking: Booking) -> bool:
    if action in OWNER_ACTIONS:
        return booking.created_by == actor.id or actor.can("booking.manage")
    capability = ACTION_CAPABILITY[action]
    return capability is None or actor.can(capability)


def is_open(booking: Booking, action: BookingAction) -> bool:
    if action in (BookingAction.APPROVE, BookingAction.REJECT_APPROVAL):
        return approval.is_decidable(booking)
    if action in OWNER_ACTIONS:
        return booking.status == BookingStatus.BOOKED
    if action == BookingAction.RECEIVE and not approval.gate_allows_receive(booking):
        return False
    return can_fire(booking.status, ACTION_EVENTS[action])


def derive_permissions(booking: Booking, actor: Actor) -> PermissionSet:
    """Compute the caller's permission set for one booking."""
    return PermissionSet(**{
        FLAG_NAMES[action]: holds_capability(actor, action, booking) and is_open(booking, action)
        for action in BookingAction
    })


def authorize(booking: Booking, actor: Actor, action: BookingAction) -> None:
    """Raise Forbidden unless the actor may perform `action` at all."""
    if not holds_capability(actor, action, booking):
        raise Forbidden(f"You are not allowed to {action.value.replace('_', ' ')} bookings")


def authorize_capability(actor: Actor, capability: str) -> None:
    """Raise Forbidden for non-booking-specific actions (create, read)."""
    if not actor.can(capability):
        raise Forbidden()
