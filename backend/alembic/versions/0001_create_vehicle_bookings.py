"""Create vehicle_bookings and booking_history tables.

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa

booking_status = sa.Enum(
    "booked", "received", "offloading", "offloaded", "exited", "rejected",
    name="booking_status",
)
approval_status = sa.Enum("none", "pending", "approved", "rejected", name="approval_status")
rejection_reason = sa.Enum(
    "Documentation Mismatch", "Quality Issue", "Damaged Goods", "Overweight", "Other",
    name="rejection_reason",
)


def upgrade() -> None:
    op.create_table(
        "vehicle_bookings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("vehicle_number", sa.String(30), nullable=False),
        sa.Column("driver_name", sa.String(100)),
        sa.Column("supplier_name", sa.String(255)),
        sa.Column("box_count", sa.Integer(), nullable=False),
        sa.Column("weight_tons", sa.Numeric(10, 3), server_default="0"),
        sa.Column("status", booking_status, nullable=False, server_default="booked"),
        sa.Column("approval_status", approval_status, nullable=False, server_default="none"),
        sa.Column("approval_notes", sa.Text()),
        sa.Column("approval_decided_at", sa.DateTime(timezone=True)),
        sa.Column("approval_decided_by", sa.String(36)),
        sa.Column("actual_box_count", sa.Integer()),
        sa.Column("box_count_diff", sa.Integer()),
        sa.Column("offloading_notes", sa.Text()),
        sa.Column("rejection_reason", rejection_reason),
        sa.Column("rejection_notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("entry_datetime", sa.DateTime(timezone=True)),
        sa.Column("received_at", sa.DateTime(timezone=True)),
        sa.Column("offloading_started_at", sa.DateTime(timezone=True)),
        sa.Column("offloaded_at", sa.DateTime(timezone=True)),
        sa.Column("exited_at", sa.DateTime(timezone=True)),
        sa.Column("rejected_at", sa.DateTime(timezone=True)),
        sa.Column("created_by", sa.String(36), nullable=False),
        sa.Column("created_by_name", sa.String(200)),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_deleted", sa.Boolean(), server_default=sa.false()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_vehicle_bookings_vehicle_number", "vehicle_bookings", ["vehicle_number"])
    op.create_index("ix_vehicle_bookings_supplier_name", "vehicle_bookings", ["supplier_name"])
    op.create_index("ix_vehicle_bookings_status", "vehicle_bookings", ["status"])
    op.create_index("ix_vehicle_bookings_approval_status", "vehicle_bookings", ["approval_status"])
    op.create_index("ix_vehicle_bookings_created_at", "vehicle_bookings", ["created_at"])
    op.create_index("ix_vehicle_bookings_created_by", "vehicle_bookings", ["created_by"])

    op.create_table(
        "booking_history",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("booking_id", sa.String(36), sa.ForeignKey("vehicle_bookings.id"), nullable=False),
        sa.Column("event_type", sa.String(30), nullable=False),
        sa.Column("event", sa.String(50)),
        sa.Column("from_status", sa.String(30)),
        sa.Column("to_status", sa.String(30)),
        sa.Column("event_data", sa.JSON()),
        sa.Column("actor_id", sa.String(36), nullable=False),
        sa.Column("actor_name", sa.String(200)),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_booking_history_booking_id", "booking_history", ["booking_id"])
    op.create_index("ix_booking_history_event_type", "booking_history", ["event_type"])
    op.create_index("ix_booking_history_recorded_at", "booking_history", ["recorded_at"])


def downgrade() -> None:
    op.drop_table("booking_history")
    op.drop_table("vehicle_bookings")
    rejection_reason.drop(op.get_bind(), checkfirst=True)
    approval_status.drop(op.get_bind(), checkfirst=True)
    booking_status.drop(op.get_bind(), checkfirst=True)
