"""Pydantic schemas for vehicle bookings.

`Booking` is the authoritative in-memory value the workflow engine works
on.  It is frozen: every change produces a new value through `evolve()`,
which re-runs the invariant checks, so a half-applied transition or an
illegal field combination (e.g. a pending approval on a received vehicle)
cannot be constructed.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from yardbook.models.booking import ApprovalStatus, BookingStatus, RejectionReason


# ── Stage timestamp rules ────────────────────────────────────

# Timestamps that must be set once a booking is in a given status
REQUIRED_STAMPS: dict[BookingStatus, frozenset[str]] = {
    BookingStatus.BOOKED: frozenset(),
    BookingStatus.RECEIVED: frozenset({"received_at"}),
    BookingStatus.OFFLOADING: frozenset({"received_at", "offloading_started_at"}),
    BookingStatus.OFFLOADED: frozenset({"received_at", "offloading_started_at", "offloaded_at"}),
    BookingStatus.EXITED: frozenset({
        "received_at", "offloading_started_at", "offloaded_at", "exited_at",
    }),
    BookingStatus.REJECTED: frozenset({"rejected_at"}),
}

# Rejection may happen before or after receipt
OPTIONAL_STAMPS: dict[BookingStatus, frozenset[str]] = {
    BookingStatus.REJECTED: frozenset({"received_at"}),
}

STAGE_STAMPS = (
    "received_at", "offloading_started_at", "offloaded_at", "exited_at", "rejected_at",
)

WORKFLOW_ORDER = ("created_at", "received_at", "offloading_started_at", "offloaded_at", "exited_at")
REJECTION_ORDER = ("created_at", "received_at", "rejected_at")

RECONCILED_STATUSES = frozenset({BookingStatus.OFFLOADED, BookingStatus.EXITED})


def as_utc(value: datetime | None) -> datetime | None:
    """Bookings are stamped in UTC; read offset-less input the same way."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ── Entity ───────────────────────────────────────────────────

class Booking(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    vehicle_number: str = Field(..., min_length=1, max_length=30)
    driver_name: str | None = None
    supplier_name: str | None = None
    box_count: int = Field(..., gt=0)
    weight_tons: Decimal = Field(Decimal("0"), ge=0)

    status: BookingStatus = BookingStatus.BOOKED

    approval_status: ApprovalStatus = ApprovalStatus.NONE
    approval_notes: str | None = None
    approval_decided_at: datetime | None = None
    approval_decided_by: str | None = None

    actual_box_count: int | None = None
    box_count_diff: int | None = None
    offloading_notes: str | None = None

    rejection_reason: RejectionReason | None = None
    rejection_notes: str | None = None

    created_at: datetime
    entry_datetime: datetime | None = None
    received_at: datetime | None = None
    offloading_started_at: datetime | None = None
    offloaded_at: datetime | None = None
    exited_at: datetime | None = None
    rejected_at: datetime | None = None

    created_by: str
    created_by_name: str | None = None
    version: int = Field(1, ge=1)
    is_deleted: bool = False
    updated_at: datetime

    @computed_field
    @property
    def is_pending_approval(self) -> bool:
        return self.approval_status == ApprovalStatus.PENDING

    @model_validator(mode="after")
    def _check_invariants(self):
        status = self.status

        # Stage timestamps: set iff the stage was entered
        required = REQUIRED_STAMPS[status]
        allowed = required | OPTIONAL_STAMPS.get(status, frozenset())
        for stamp in STAGE_STAMPS:
            value = getattr(self, stamp)
            if stamp in required and value is None:
                raise ValueError(f"{stamp} must be set when status is {status.value}")
            if stamp not in allowed and value is not None:
                raise ValueError(f"{stamp} must be empty when status is {status.value}")

        order = REJECTION_ORDER if status == BookingStatus.REJECTED else WORKFLOW_ORDER
        stamps = [getattr(self, name) for name in order if getattr(self, name) is not None]
        if any(later < earlier for earlier, later in zip(stamps, stamps[1:])):
            raise ValueError("stage timestamps must follow workflow order")

        # Reconciliation
        if status in RECONCILED_STATUSES:
            if self.actual_box_count is None:
                raise ValueError(f"actual_box_count must be set when status is {status.value}")
            if self.box_count_diff != self.actual_box_count - self.box_count:
                raise ValueError("box_count_diff must equal actual_box_count - box_count")
        elif self.actual_box_count is not None or self.box_count_diff is not None:
            raise ValueError("reconciliation fields are only set once offloading completes")

        # Rejection
        if status == BookingStatus.REJECTED:
            if self.rejection_reason is None:
                raise ValueError("rejection_reason must be set on a rejected booking")
            if self.rejection_reason == RejectionReason.OTHER and not (self.rejection_notes or "").strip():
                raise ValueError("rejection_notes are required when the reason is Other")
        elif self.rejection_reason is not None or self.rejection_notes is not None:
            raise ValueError("rejection fields are only set on a rejected booking")

        # Approval overlay
        if self.approval_status == ApprovalStatus.PENDING and status != BookingStatus.BOOKED:
            raise ValueError("a pending approval can only hold a booked vehicle")
        decided = self.approval_status in (ApprovalStatus.APPROVED, ApprovalStatus.REJECTED)
        if decided != (self.approval_decided_at is not None):
            raise ValueError("approval_decided_at is set iff the approval was decided")

        return self

    def evolve(self, **changes) -> "Booking":
        """Return a new, re-validated Booking with `changes` applied."""
        data = self.model_dump(exclude={"is_pending_approval"})
        data.update(changes)
        return Booking.model_validate(data)


# ── Permission set ───────────────────────────────────────────

class PermissionSet(BaseModel):
    can_approve: bool = False
    can_reject_approval: bool = False
    can_receive: bool = False
    can_reject: bool = False
    can_start_offloading: bool = False
    can_complete_offloading: bool = False
    can_unreceive: bool = False
    can_exit: bool = False
    can_edit: bool = False
    can_delete: bool = False


class BookingOut(Booking):
    """A booking annotated with the caller's fresh permission set."""
    permissions: PermissionSet


# ── Create / update ──────────────────────────────────────────

class BookingCreate(BaseModel):
    vehicle_number: str = Field(..., min_length=1, max_length=30)
    box_count: int = Field(..., gt=0)
    weight_tons: Decimal = Field(Decimal("0"), ge=0)

    # Optional fields
    driver_name: str | None = Field(None, max_length=100)
    supplier_name: str | None = Field(None, max_length=255)
    entry_datetime: datetime | None = None
    approval_notes: str | None = Field(None, max_length=500)

    @field_validator("vehicle_number")
    @classmethod
    def _normalize_vehicle_number(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("vehicle_number cannot be blank")
        return value

    @field_validator("entry_datetime")
    @classmethod
    def _entry_in_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)


class BookingUpdate(BaseModel):
    """Partial edit of descriptive fields.  Only allowed while booked."""
    vehicle_number: str | None = Field(None, min_length=1, max_length=30)
    driver_name: str | None = Field(None, max_length=100)
    supplier_name: str | None = Field(None, max_length=255)
    box_count: int | None = Field(None, gt=0)
    weight_tons: Decimal | None = Field(None, ge=0)
    entry_datetime: datetime | None = None

    @field_validator("vehicle_number")
    @classmethod
    def _normalize_vehicle_number(cls, value: str | None) -> str | None:
        if value is None:
            return value
        value = value.strip().upper()
        if not value:
            raise ValueError("vehicle_number cannot be blank")
        return value

    @field_validator("entry_datetime")
    @classmethod
    def _entry_in_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)


# ── Transition payloads ──────────────────────────────────────

class RejectRequest(BaseModel):
    # Checked by the workflow so a missing or unknown reason is a field error
    rejection_reason: str | None = None
    rejection_notes: str | None = None


class CompleteOffloadingRequest(BaseModel):
    actual_box_count: int
    notes: str | None = None


class ApproveRequest(BaseModel):
    notes: str | None = None


class RejectApprovalRequest(BaseModel):
    notes: str = ""


class BulkActionRequest(BaseModel):
    """Same action applied to several selected bookings."""
    booking_ids: list[str] = Field(..., min_length=1, max_length=100)
    rejection_reason: str | None = None
    rejection_notes: str | None = None
    notes: str | None = None


class BulkFailure(BaseModel):
    booking_id: str
    error_code: str
    message: str


class BulkActionResult(BaseModel):
    succeeded: list[BookingOut] = []
    failed: list[BulkFailure] = []


class BookingPage(BaseModel):
    """One page of a filtered booking list; `total` ignores limit / offset."""
    items: list[BookingOut]
    total: int
    limit: int
    offset: int


# ── Queries ──────────────────────────────────────────────────

class BookingFilter(BaseModel):
    status: BookingStatus | None = None
    approval_status: ApprovalStatus | None = None
    created_by: str | None = None
    supplier_name: str | None = None
    # Matches vehicle number, driver or supplier (case-insensitive)
    search: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    limit: int = Field(50, ge=1, le=200)
    offset: int = Field(0, ge=0)

    @field_validator("date_from", "date_to")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)


# ── History event ────────────────────────────────────────────

class BookingHistoryEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    booking_id: str
    event_type: str
    event: str | None = None
    from_status: str | None = None
    to_status: str | None = None
    event_data: dict | None = None
    actor_id: str
    actor_name: str | None = None
    recorded_at: datetime
