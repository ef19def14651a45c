"""VehicleBooking — one vehicle's scheduled visit to the receiving yard.

A booking is created when a supplier's vehicle is announced and is moved
through the yard by the workflow engine only.  Nothing else writes the
status or stage timestamps.

Lifecycle:  booked → received → offloading → offloaded → exited
            booked | received → rejected
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean, DateTime, Enum as SAEnum, Integer, Numeric, String, Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from yardbook.database import Base


class BookingStatus(str, enum.Enum):
    BOOKED = "booked"
    RECEIVED = "received"
    OFFLOADING = "offloading"
    OFFLOADED = "offloaded"
    EXITED = "exited"
    REJECTED = "rejected"


class ApprovalStatus(str, enum.Enum):
    NONE = "none"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RejectionReason(str, enum.Enum):
    DOCUMENTATION_MISMATCH = "Documentation Mismatch"
    QUALITY_ISSUE = "Quality Issue"
    DAMAGED_GOODS = "Damaged Goods"
    OVERWEIGHT = "Overweight"
    OTHER = "Other"


def _values(enum_cls):
    return [member.value for member in enum_cls]


class VehicleBooking(Base):
    __tablename__ = "vehicle_bookings"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # ── Vehicle / cargo ──────────────────────────────────────
    vehicle_number: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    driver_name: Mapped[str | None] = mapped_column(String(100))
    supplier_name: Mapped[str | None] = mapped_column(String(255), index=True)
    box_count: Mapped[int] = mapped_column(Integer, nullable=False)
    weight_tons: Mapped[Decimal] = mapped_column(Numeric(10, 3), default=Decimal("0"))

    # ── Status ───────────────────────────────────────────────
    status: Mapped[BookingStatus] = mapped_column(
        SAEnum(BookingStatus, name="booking_status", values_callable=_values),
        default=BookingStatus.BOOKED,
        nullable=False,
        index=True,
    )

    # ── Approval overlay ─────────────────────────────────────
    approval_status: Mapped[ApprovalStatus] = mapped_column(
        SAEnum(ApprovalStatus, name="approval_status", values_callable=_values),
        default=ApprovalStatus.NONE,
        nullable=False,
        index=True,
    )
    approval_notes: Mapped[str | None] = mapped_column(Text)
    approval_decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approval_decided_by: Mapped[str | None] = mapped_column(String(36))

    # ── Reconciliation (set at offloading completion) ────────
    actual_box_count: Mapped[int | None] = mapped_column(Integer)
    box_count_diff: Mapped[int | None] = mapped_column(Integer)
    offloading_notes: Mapped[str | None] = mapped_column(Text)

    # ── Rejection ────────────────────────────────────────────
    rejection_reason: Mapped[RejectionReason | None] = mapped_column(
        SAEnum(RejectionReason, name="rejection_reason", values_callable=_values)
    )
    rejection_notes: Mapped[str | None] = mapped_column(Text)

    # ── Stage timestamps ─────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    entry_datetime: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    offloading_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    offloaded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    exited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # ── Metadata ─────────────────────────────────────────────
    created_by: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    created_by_name: Mapped[str | None] = mapped_column(String(200))
    # Optimistic lock token, compared on every UPDATE
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    history = relationship(
        "BookingHistory", back_populates="booking",
        order_by="BookingHistory.recorded_at",
    )

    def __repr__(self):
        return f"<VehicleBooking(vehicle='{self.vehicle_number}', status='{self.status}')>"
