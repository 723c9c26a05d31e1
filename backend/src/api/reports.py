"""
Report API endpoints for the export collaborator.
"""

from datetime import date, datetime, time
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from auth.dependencies import UserContext, ensure_clinic_access, require_staff
from core.database import get_db
from services.report_service import ReportService
from utils.datetime_utils import parse_date_string

router = APIRouter()


class AppointmentReportRowResponse(BaseModel):
    appointment_id: int
    schedule_id: int
    date: date
    start_time: time
    end_time: time
    doctor_id: int
    clinic_id: int
    token_number: int
    patient_id: Optional[int] = None
    guest_name: Optional[str] = None
    is_walk_in: bool
    status: str
    consultation_fee: Decimal
    is_paid: bool
    has_been_refunded: bool
    refund_amount: Optional[Decimal] = None
    schedule_status: str
    cancel_reason: Optional[str] = None
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None


class AppointmentReportResponse(BaseModel):
    start_date: date
    end_date: date
    rows: List[AppointmentReportRowResponse]


@router.get("/appointments", response_model=AppointmentReportResponse)
async def appointment_report(
    start_date: str = Query(..., description="YYYY-MM-DD"),
    end_date: str = Query(..., description="YYYY-MM-DD"),
    clinic_id: Optional[int] = Query(None, description="Defaults to the caller's clinic"),
    doctor_id: Optional[int] = Query(None),
    schedule_id: Optional[int] = Query(None),
    current_user: UserContext = Depends(require_staff),
    db: Session = Depends(get_db)
):
    """Appointments with their schedule, ordered by date, schedule and token."""
    if clinic_id is None and not current_user.is_system_admin():
        clinic_id = current_user.clinic_id
    if clinic_id is not None:
        ensure_clinic_access(current_user, clinic_id)

    start = parse_date_string(start_date)
    end = parse_date_string(end_date)

    rows = ReportService.list_appointments(
        db,
        start_date=start,
        end_date=end,
        clinic_id=clinic_id,
        doctor_id=doctor_id,
        schedule_id=schedule_id,
    )
    return AppointmentReportResponse(
        start_date=start,
        end_date=end,
        rows=[AppointmentReportRowResponse(**row.__dict__) for row in rows],
    )
