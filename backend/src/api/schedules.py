"""
Schedule API endpoints.

Staff create schedules, pause and resume token issuing, and cancel a schedule
(which cancels its appointments and refunds them to patient wallets).
Bookings against a schedule are issued here as well.
"""

import logging
from datetime import date, time
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.responses import (
    AppointmentListResponse, AppointmentResponse, ScheduleResponse,
    appointment_to_response, schedule_to_response
)
from auth.dependencies import (
    UserContext, ensure_clinic_access, ensure_patient_access, get_current_user, require_staff
)
from core.constants import MAX_NOTES_LENGTH, MAX_STRING_LENGTH
from core.database import get_db
from models import TransactionType
from services.refund_service import RefundService
from services.schedule_service import ScheduleService
from services.token_allocation_service import TokenAllocationService

logger = logging.getLogger(__name__)

router = APIRouter()


# Request/Response Models
class ScheduleCreateRequest(BaseModel):
    """Request model for creating a schedule."""
    doctor_id: int
    clinic_id: int
    date: date
    start_time: time
    end_time: time
    max_tokens: int = Field(0, ge=0, description="0 means unlimited")


class ScheduleCancelRequest(BaseModel):
    """Request model for cancelling a schedule."""
    cancel_reason: str = Field(..., min_length=1, max_length=MAX_NOTES_LENGTH)
    refund_type: TransactionType = Field(
        TransactionType.REFUND_SCHEDULE_CANCEL,
        description="'refund_schedule_cancel', 'refund_doctor_absent' or 'partial_refund'"
    )


class SkippedAppointmentResponse(BaseModel):
    appointment_id: int
    reason: str


class ScheduleCancelResponse(BaseModel):
    """Response model for a schedule cancellation with refunds."""
    schedule: ScheduleResponse
    refunded_appointments: int
    refunded_appointment_ids: List[int]
    total_refund_amount: Decimal
    skipped: List[SkippedAppointmentResponse]
    interrupted: bool


class BookingRequest(BaseModel):
    """Request model for a registered patient's booking."""
    patient_id: int
    consultation_fee: Optional[Decimal] = Field(None, ge=0)
    is_paid: bool = False


class WalkInRequest(BaseModel):
    """Request model for adding a walk-in guest at the desk."""
    guest_name: str = Field(..., min_length=1, max_length=MAX_STRING_LENGTH)
    guest_phone: Optional[str] = Field(None, max_length=50)
    consultation_fee: Optional[Decimal] = Field(None, ge=0)
    is_paid: bool = False


# Endpoints
@router.post("", response_model=ScheduleResponse, status_code=status.HTTP_201_CREATED)
async def create_schedule(
    request: ScheduleCreateRequest,
    current_user: UserContext = Depends(require_staff),
    db: Session = Depends(get_db)
):
    """Create a schedule for a doctor at the caller's clinic."""
    ensure_clinic_access(current_user, request.clinic_id)

    schedule = ScheduleService.create_schedule(
        db,
        doctor_id=request.doctor_id,
        clinic_id=request.clinic_id,
        schedule_date=request.date,
        start_time=request.start_time,
        end_time=request.end_time,
        max_tokens=request.max_tokens,
    )
    return schedule_to_response(schedule)


@router.get("/{schedule_id}", response_model=ScheduleResponse)
async def get_schedule(
    schedule_id: int,
    current_user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    schedule = ScheduleService.get_schedule(db, schedule_id)
    return schedule_to_response(schedule)


@router.post("/{schedule_id}/pause", response_model=ScheduleResponse)
async def pause_schedule(
    schedule_id: int,
    current_user: UserContext = Depends(require_staff),
    db: Session = Depends(get_db)
):
    schedule = ScheduleService.get_schedule(db, schedule_id)
    ensure_clinic_access(current_user, schedule.clinic_id)
    return schedule_to_response(ScheduleService.pause_schedule(db, schedule_id))


@router.post("/{schedule_id}/resume", response_model=ScheduleResponse)
async def resume_schedule(
    schedule_id: int,
    current_user: UserContext = Depends(require_staff),
    db: Session = Depends(get_db)
):
    schedule = ScheduleService.get_schedule(db, schedule_id)
    ensure_clinic_access(current_user, schedule.clinic_id)
    return schedule_to_response(ScheduleService.resume_schedule(db, schedule_id))


@router.post("/{schedule_id}/cancel", response_model=ScheduleCancelResponse)
async def cancel_schedule(
    schedule_id: int,
    request: ScheduleCancelRequest,
    current_user: UserContext = Depends(require_staff),
    db: Session = Depends(get_db)
):
    """
    Cancel a schedule and refund its appointments.

    Re-running the call is safe: refunded appointments are skipped and
    refunds left over from an interrupted run are completed.
    """
    schedule = ScheduleService.get_schedule(db, schedule_id)
    ensure_clinic_access(current_user, schedule.clinic_id)

    if not request.refund_type.is_refund:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid refund type: {request.refund_type.value}"
        )

    result = RefundService.cancel_schedule_with_refunds(
        db,
        schedule_id,
        request.cancel_reason,
        refund_type=request.refund_type,
        processed_by=current_user.user_id,
    )
    schedule = ScheduleService.get_schedule(db, schedule_id)

    return ScheduleCancelResponse(
        schedule=schedule_to_response(schedule),
        refunded_appointments=result.refunded_appointments,
        refunded_appointment_ids=result.refunded_appointment_ids,
        total_refund_amount=result.total_refund_amount,
        skipped=[
            SkippedAppointmentResponse(appointment_id=s.appointment_id, reason=s.reason)
            for s in result.skipped
        ],
        interrupted=result.interrupted,
    )


@router.get("/{schedule_id}/appointments", response_model=AppointmentListResponse)
async def list_schedule_appointments(
    schedule_id: int,
    include_cancelled: bool = True,
    current_user: UserContext = Depends(require_staff),
    db: Session = Depends(get_db)
):
    schedule = ScheduleService.get_schedule(db, schedule_id)
    ensure_clinic_access(current_user, schedule.clinic_id)

    appointments = ScheduleService.list_schedule_appointments(
        db, schedule_id, include_cancelled=include_cancelled
    )
    return AppointmentListResponse(
        appointments=[appointment_to_response(a) for a in appointments]
    )


@router.post(
    "/{schedule_id}/appointments",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def book_appointment(
    schedule_id: int,
    request: BookingRequest,
    current_user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Book the next token for a registered patient.

    Staff may book for any patient at their clinic; patients only for themselves.
    """
    schedule = ScheduleService.get_schedule(db, schedule_id)
    if current_user.is_patient():
        ensure_patient_access(current_user, request.patient_id)
    else:
        ensure_clinic_access(current_user, schedule.clinic_id)

    appointment = TokenAllocationService.allocate(
        db,
        schedule_id,
        patient_id=request.patient_id,
        consultation_fee=request.consultation_fee,
        is_paid=request.is_paid,
    )
    return appointment_to_response(appointment)


@router.post(
    "/{schedule_id}/walk-ins",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_walk_in(
    schedule_id: int,
    request: WalkInRequest,
    current_user: UserContext = Depends(require_staff),
    db: Session = Depends(get_db)
):
    """Add a walk-in guest to the queue."""
    schedule = ScheduleService.get_schedule(db, schedule_id)
    ensure_clinic_access(current_user, schedule.clinic_id)

    appointment = TokenAllocationService.allocate_walk_in(
        db,
        schedule_id,
        guest_name=request.guest_name,
        guest_phone=request.guest_phone,
        consultation_fee=request.consultation_fee,
        is_paid=request.is_paid,
    )
    return appointment_to_response(appointment)
