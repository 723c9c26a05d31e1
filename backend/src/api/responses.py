"""
Shared response models for API endpoints.

This module contains Pydantic response models that are shared across
multiple API endpoints to ensure consistency and reduce duplication,
together with the helpers that build them from ORM objects.
"""

from datetime import date, datetime, time
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel

from models import Appointment, Schedule, Wallet, WalletTransaction


class ScheduleResponse(BaseModel):
    """Response model for a schedule."""
    id: int
    doctor_id: int
    clinic_id: int
    date: date
    start_time: time
    end_time: time
    max_tokens: int
    status: str
    is_active: bool
    cancel_reason: Optional[str] = None
    tokens_issued: int
    created_at: datetime


class AppointmentResponse(BaseModel):
    """Response model for an appointment (token)."""
    id: int
    schedule_id: int
    doctor_id: int
    clinic_id: int
    patient_id: Optional[int] = None  # null for walk-ins
    guest_name: Optional[str] = None
    guest_phone: Optional[str] = None
    token_number: int
    status: str
    status_notes: Optional[str] = None
    consultation_fee: Decimal
    is_paid: bool
    is_walk_in: bool
    has_been_refunded: bool
    refund_amount: Optional[Decimal] = None
    refunded_at: Optional[datetime] = None
    is_eligible_for_refund: bool
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    created_at: datetime


class AppointmentListResponse(BaseModel):
    """Response model for listing appointments."""
    appointments: List[AppointmentResponse]


class WalletResponse(BaseModel):
    """Response model for a wallet."""
    id: int
    patient_id: int
    balance: Decimal
    total_earned: Decimal
    total_spent: Decimal
    is_active: bool
    updated_at: datetime


class WalletTransactionResponse(BaseModel):
    """Response model for one wallet ledger entry."""
    id: int
    wallet_id: int
    transaction_type: str
    amount: Decimal
    is_credit: bool
    previous_balance: Decimal
    new_balance: Decimal
    status: str
    description: str
    related_appointment_id: Optional[int] = None
    related_schedule_id: Optional[int] = None
    processed_by: Optional[int] = None
    created_at: datetime


class WalletTransactionListResponse(BaseModel):
    transactions: List[WalletTransactionResponse]
    limit: int
    offset: int


def schedule_to_response(schedule: Schedule) -> ScheduleResponse:
    return ScheduleResponse(
        id=schedule.id,
        doctor_id=schedule.doctor_id,
        clinic_id=schedule.clinic_id,
        date=schedule.date,
        start_time=schedule.start_time,
        end_time=schedule.end_time,
        max_tokens=schedule.max_tokens,
        status=schedule.status.value,
        is_active=schedule.is_active,
        cancel_reason=schedule.cancel_reason,
        tokens_issued=schedule.last_token_number,
        created_at=schedule.created_at,
    )


def appointment_to_response(appointment: Appointment) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        schedule_id=appointment.schedule_id,
        doctor_id=appointment.doctor_id,
        clinic_id=appointment.clinic_id,
        patient_id=appointment.patient_id,
        guest_name=appointment.guest_name,
        guest_phone=appointment.guest_phone,
        token_number=appointment.token_number,
        status=appointment.status.value,
        status_notes=appointment.status_notes,
        consultation_fee=appointment.consultation_fee,
        is_paid=appointment.is_paid,
        is_walk_in=appointment.is_walk_in,
        has_been_refunded=appointment.has_been_refunded,
        refund_amount=appointment.refund_amount,
        refunded_at=appointment.refunded_at,
        is_eligible_for_refund=appointment.is_eligible_for_refund,
        actual_start_time=appointment.actual_start_time,
        actual_end_time=appointment.actual_end_time,
        created_at=appointment.created_at,
    )


def wallet_to_response(wallet: Wallet) -> WalletResponse:
    return WalletResponse(
        id=wallet.id,
        patient_id=wallet.patient_id,
        balance=wallet.balance,
        total_earned=wallet.total_earned,
        total_spent=wallet.total_spent,
        is_active=wallet.is_active,
        updated_at=wallet.updated_at,
    )


def transaction_to_response(transaction: WalletTransaction) -> WalletTransactionResponse:
    return WalletTransactionResponse(
        id=transaction.id,
        wallet_id=transaction.wallet_id,
        transaction_type=transaction.transaction_type.value,
        amount=transaction.amount,
        is_credit=transaction.is_credit,
        previous_balance=transaction.previous_balance,
        new_balance=transaction.new_balance,
        status=transaction.status.value,
        description=transaction.description,
        related_appointment_id=transaction.related_appointment_id,
        related_schedule_id=transaction.related_schedule_id,
        processed_by=transaction.processed_by,
        created_at=transaction.created_at,
    )
