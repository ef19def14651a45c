"""Aggregate model imports for Alembic auto-detection."""

from yardbook.models.booking import (  # noqa: F401
    ApprovalStatus,
    BookingStatus,
    RejectionReason,
    VehicleBooking,
)
from yardbook.models.booking_history import BookingHistory  # noqa: F401
