"""Booking router — yard check-in workflow.

Endpoints:
    POST   /api/bookings/                          Create a booking
    GET    /api/bookings/                          List bookings (with filters)
    POST   /api/bookings/bulk/{action}             Apply one action to many bookings
    GET    /api/bookings/{booking_id}              Single booking
    GET    /api/bookings/{booking_id}/history      Change history
    GET    /api/bookings/{booking_id}/transitions  Legal next steps with labels
    PATCH  /api/bookings/{booking_id}              Edit (booked only)
    DELETE /api/bookings/{booking_id}              Soft delete (booked only)
    POST   /api/bookings/{booking_id}/<action>     Status / approval transitions

Routes stay thin: all authorization and state checks happen in the
workflow engine, and its errors are rendered by the exception handlers.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query, status

from yardbook.auth.deps import get_current_actor
from yardbook.auth.permissions import Actor
from yardbook.config import settings
from yardbook.middleware.exceptions import ValidationFailed
from yardbook.models.booking import ApprovalStatus, BookingStatus
from yardbook.schemas.booking import (
    ApproveRequest,
    BookingCreate,
    BookingFilter,
    BookingHistoryEntry,
    BookingOut,
    BookingPage,
    BookingUpdate,
    BulkActionRequest,
    BulkActionResult,
    CompleteOffloadingRequest,
    RejectApprovalRequest,
    RejectRequest,
)
from yardbook.services.permission_projector import BookingAction
from yardbook.services.state_machine import describe_transitions
from yardbook.services.workflow import BookingWorkflow, get_workflow

router = APIRouter()


# ── Create / list ────────────────────────────────────────────

@router.post("/", response_model=BookingOut, status_code=status.HTTP_201_CREATED)
async def create_booking(
    body: BookingCreate,
    workflow: BookingWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_current_actor),
):
    """Book a vehicle in.  Roles configured for approval start pending."""
    return await workflow.create_booking(body, actor)


@router.get("/", response_model=BookingPage)
async def list_bookings(
    status_filter: BookingStatus | None = Query(None, alias="status"),
    approval_status: ApprovalStatus | None = Query(None),
    created_by: str | None = Query(None),
    supplier_name: str | None = Query(None),
    search: str | None = Query(None, description="Vehicle number, driver or supplier"),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    limit: int = Query(settings.list_default_limit, ge=1, le=200),
    offset: int = Query(0, ge=0),
    workflow: BookingWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_current_actor),
):
    filters = BookingFilter(
        status=status_filter,
        approval_status=approval_status,
        created_by=created_by,
        supplier_name=supplier_name,
        search=search,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    items, total = await workflow.list_bookings(filters, actor)
    return BookingPage(items=items, total=total, limit=limit, offset=offset)


# ── Bulk actions ─────────────────────────────────────────────
# Declared before /{booking_id}/... so "bulk" is never taken for an id.

@router.post("/bulk/{action}", response_model=BulkActionResult)
async def bulk_action(
    action: str,
    body: BulkActionRequest,
    workflow: BookingWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_current_actor),
):
    """Apply one action to each selected booking; failures are reported per id."""
    try:
        booking_action = BookingAction(action.replace("-", "_"))
    except ValueError:
        raise ValidationFailed({"action": f"Unknown action '{action}'"}) from None

    return await workflow.bulk_apply(
        body.booking_ids,
        booking_action,
        actor,
        rejection_reason=body.rejection_reason,
        rejection_notes=body.rejection_notes,
        notes=body.notes,
    )


# ── Single booking ───────────────────────────────────────────

@router.get("/{booking_id}", response_model=BookingOut)
async def get_booking(
    booking_id: str,
    workflow: BookingWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_current_actor),
):
    return await workflow.get_booking(booking_id, actor)


@router.get("/{booking_id}/history", response_model=list[BookingHistoryEntry])
async def get_booking_history(
    booking_id: str,
    workflow: BookingWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_current_actor),
):
    return await workflow.history(booking_id, actor)


@router.get("/{booking_id}/transitions")
async def get_booking_transitions(
    booking_id: str,
    workflow: BookingWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_current_actor),
):
    """Legal next status transitions, ignoring the caller's permissions."""
    booking = await workflow.get_booking(booking_id, actor)
    return describe_transitions(booking.status)


@router.patch("/{booking_id}", response_model=BookingOut)
async def update_booking(
    booking_id: str,
    body: BookingUpdate,
    workflow: BookingWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_current_actor),
):
    return await workflow.update_booking(booking_id, body, actor)


@router.delete("/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_booking(
    booking_id: str,
    workflow: BookingWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_current_actor),
):
    await workflow.delete_booking(booking_id, actor)


# ── Status transitions ───────────────────────────────────────

@router.post("/{booking_id}/receive", response_model=BookingOut)
async def receive_booking(
    booking_id: str,
    workflow: BookingWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_current_actor),
):
    return await workflow.receive(booking_id, actor)


@router.post("/{booking_id}/reject", response_model=BookingOut)
async def reject_booking(
    booking_id: str,
    body: RejectRequest,
    workflow: BookingWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_current_actor),
):
    return await workflow.reject(booking_id, actor, body.rejection_reason, body.rejection_notes)


@router.post("/{booking_id}/start-offloading", response_model=BookingOut)
async def start_offloading(
    booking_id: str,
    workflow: BookingWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_current_actor),
):
    return await workflow.start_offloading(booking_id, actor)


@router.post("/{booking_id}/complete-offloading", response_model=BookingOut)
async def complete_offloading(
    booking_id: str,
    body: CompleteOffloadingRequest,
    workflow: BookingWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_current_actor),
):
    return await workflow.complete_offloading(booking_id, actor, body.actual_box_count, body.notes)


@router.post("/{booking_id}/unreceive", response_model=BookingOut)
async def unreceive_booking(
    booking_id: str,
    workflow: BookingWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_current_actor),
):
    return await workflow.unreceive(booking_id, actor)


@router.post("/{booking_id}/exit", response_model=BookingOut)
async def exit_booking(
    booking_id: str,
    workflow: BookingWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_current_actor),
):
    return await workflow.exit(booking_id, actor)


# ── Approval ─────────────────────────────────────────────────

@router.post("/{booking_id}/approve", response_model=BookingOut)
async def approve_booking(
    booking_id: str,
    body: ApproveRequest | None = None,
    workflow: BookingWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_current_actor),
):
    return await workflow.approve(booking_id, actor, body.notes if body else None)


@router.post("/{booking_id}/reject-approval", response_model=BookingOut)
async def reject_booking_approval(
    booking_id: str,
    body: RejectApprovalRequest,
    workflow: BookingWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_current_actor),
):
    return await workflow.reject_approval(booking_id, actor, body.notes)
