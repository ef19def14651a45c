"""BookingHistory — immutable event log for a booking.

One row per persisted write: creation, edits, status transitions, approval
decisions and deletion.  Written in the same transaction as the booking
row, so the trail never disagrees with the booking it describes.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, JSON, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from yardbook.database import Base


class BookingHistory(Base):
    __tablename__ = "booking_history"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    booking_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("vehicle_bookings.id"), nullable=False, index=True
    )

    # created | updated | deleted | transition | approval
    event_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    # receive | reject | approve | ... (None for created / updated / deleted)
    event: Mapped[str | None] = mapped_column(String(50))
    from_status: Mapped[str | None] = mapped_column(String(30))
    to_status: Mapped[str | None] = mapped_column(String(30))

    # Flexible payload, structure depends on event:
    #   reject:              {"rejection_reason": "Other", "rejection_notes": "..."}
    #   complete_offloading: {"actual_box_count": 92, "box_count_diff": -8}
    #   updated:             {"box_count": {"old": 100, "new": 120}}
    event_data: Mapped[dict | None] = mapped_column(JSON)

    actor_id: Mapped[str] = mapped_column(String(36), nullable=False)
    actor_name: Mapped[str | None] = mapped_column(String(200))
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )

    booking = relationship("VehicleBooking", back_populates="history")
