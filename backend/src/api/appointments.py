"""
Appointment API endpoints.

Status changes at the doctor's desk, single refunds, wallet payment of a
booking, and the staff refund-management queue.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.responses import (
    AppointmentResponse, WalletTransactionResponse,
    appointment_to_response, transaction_to_response
)
from auth.dependencies import (
    UserContext, ensure_clinic_access, ensure_patient_access, get_current_user, require_staff
)
from core.constants import MAX_NOTES_LENGTH
from core.database import get_db
from models import AppointmentStatus, TransactionType
from services.appointment_status_service import AppointmentStatusService
from services.errors import AlreadyRefundedError
from services.refund_service import RefundService, refund_amount_for
from services.wallet_service import WalletService

logger = logging.getLogger(__name__)

router = APIRouter()


# Request/Response Models
class StatusUpdateRequest(BaseModel):
    """Request model for changing an appointment's status."""
    status: AppointmentStatus
    notes: Optional[str] = Field(None, max_length=MAX_NOTES_LENGTH)


class RefundRequest(BaseModel):
    """Request model for refunding a cancelled appointment."""
    reason: str = Field("Appointment cancelled", min_length=1, max_length=MAX_NOTES_LENGTH)
    refund_type: TransactionType = TransactionType.REFUND_APPOINTMENT_CANCEL


class RefundResponse(BaseModel):
    """Response model for a refund."""
    appointment: AppointmentResponse
    transaction: WalletTransactionResponse


class PaymentResponse(BaseModel):
    appointment: AppointmentResponse
    transaction: WalletTransactionResponse
    balance: Decimal


class PendingRefundResponse(BaseModel):
    appointment_id: int
    schedule_id: int
    patient_id: int
    token_number: int
    refund_amount: Decimal
    cancelled_at: datetime


# Endpoints
@router.patch("/appointments/{appointment_id}/status", response_model=AppointmentResponse)
async def update_appointment_status(
    appointment_id: int,
    request: StatusUpdateRequest,
    current_user: UserContext = Depends(require_staff),
    db: Session = Depends(get_db)
):
    """
    Move an appointment along its lifecycle.

    Allowed: scheduled → start/cancel/no_show, start → hold/pause/completed/cancel,
    hold/pause → start/cancel. Completed, cancel and no_show are final.
    """
    appointment = AppointmentStatusService.get_appointment(db, appointment_id)
    ensure_clinic_access(current_user, appointment.clinic_id)

    appointment = AppointmentStatusService.transition(
        db, appointment_id, request.status, notes=request.notes
    )
    return appointment_to_response(appointment)


@router.post("/appointments/{appointment_id}/refund", response_model=RefundResponse)
async def refund_appointment(
    appointment_id: int,
    request: RefundRequest,
    current_user: UserContext = Depends(require_staff),
    db: Session = Depends(get_db)
):
    """Credit a cancelled appointment's fee to the patient's wallet. Refunds at most once."""
    appointment = AppointmentStatusService.get_appointment(db, appointment_id)
    ensure_clinic_access(current_user, appointment.clinic_id)

    if not request.refund_type.is_refund:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid refund type: {request.refund_type.value}"
        )

    try:
        transaction = RefundService.refund_appointment(
            db,
            appointment_id,
            reason=request.reason,
            transaction_type=request.refund_type,
            processed_by=current_user.user_id,
        )
    except AlreadyRefundedError:
        logger.info(f"Duplicate refund request for appointment {appointment_id} by user {current_user.user_id}")
        raise

    appointment = AppointmentStatusService.get_appointment(db, appointment_id)
    return RefundResponse(
        appointment=appointment_to_response(appointment),
        transaction=transaction_to_response(transaction),
    )


@router.post("/appointments/{appointment_id}/pay-with-wallet", response_model=PaymentResponse)
async def pay_with_wallet(
    appointment_id: int,
    current_user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Pay an unpaid booking from the patient's wallet balance."""
    appointment = AppointmentStatusService.get_appointment(db, appointment_id)
    if current_user.is_patient():
        if appointment.patient_id is None:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Patient access denied")
        ensure_patient_access(current_user, appointment.patient_id)
    else:
        ensure_clinic_access(current_user, appointment.clinic_id)

    transaction = WalletService.pay_for_appointment(
        db, appointment_id, processed_by=current_user.user_id
    )
    appointment = AppointmentStatusService.get_appointment(db, appointment_id)
    return PaymentResponse(
        appointment=appointment_to_response(appointment),
        transaction=transaction_to_response(transaction),
        balance=transaction.new_balance,
    )


@router.get("/refunds/pending", response_model=List[PendingRefundResponse])
async def list_pending_refunds(
    clinic_id: Optional[int] = Query(None, description="Defaults to the caller's clinic"),
    schedule_id: Optional[int] = Query(None),
    current_user: UserContext = Depends(require_staff),
    db: Session = Depends(get_db)
):
    """Cancelled appointments that are owed a refund and have not received it."""
    if clinic_id is None and not current_user.is_system_admin():
        clinic_id = current_user.clinic_id
    if clinic_id is not None:
        ensure_clinic_access(current_user, clinic_id)

    appointments = RefundService.list_pending_refunds(db, clinic_id=clinic_id, schedule_id=schedule_id)
    return [
        PendingRefundResponse(
            appointment_id=a.id,
            schedule_id=a.schedule_id,
            patient_id=a.patient_id,
            token_number=a.token_number,
            refund_amount=refund_amount_for(a),
            cancelled_at=a.updated_at,
        )
        for a in appointments
    ]
