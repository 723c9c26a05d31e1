"""
Appointment report reader for the export collaborator.

Returns flat rows of appointments joined with their schedule, in a stable
order (date, schedule, token). Read only.
"""

from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from models.appointment import Appointment
from models.schedule import Schedule


@dataclass
class AppointmentReportRow:
    appointment_id: int
    schedule_id: int
    date: date
    start_time: time
    end_time: time
    doctor_id: int
    clinic_id: int
    token_number: int
    patient_id: Optional[int]
    guest_name: Optional[str]
    is_walk_in: bool
    status: str
    consultation_fee: Decimal
    is_paid: bool
    has_been_refunded: bool
    refund_amount: Optional[Decimal]
    schedule_status: str
    cancel_reason: Optional[str]
    actual_start_time: Optional[datetime]
    actual_end_time: Optional[datetime]


class ReportService:

    @staticmethod
    def list_appointments(
        db: Session,
        start_date: date,
        end_date: date,
        clinic_id: Optional[int] = None,
        doctor_id: Optional[int] = None,
        schedule_id: Optional[int] = None
    ) -> List[AppointmentReportRow]:
        """
        List appointments whose schedule falls within [start_date, end_date].

        Raises:
            ValueError: If start_date is after end_date
        """
        if start_date > end_date:
            raise ValueError("start_date must be on or before end_date")

        query = db.query(Appointment, Schedule).join(
            Schedule, Appointment.schedule_id == Schedule.id
        ).filter(
            Schedule.date >= start_date,
            Schedule.date <= end_date,
        )
        if clinic_id is not None:
            query = query.filter(Schedule.clinic_id == clinic_id)
        if doctor_id is not None:
            query = query.filter(Schedule.doctor_id == doctor_id)
        if schedule_id is not None:
            query = query.filter(Schedule.id == schedule_id)

        rows = query.order_by(
            Schedule.date, Schedule.start_time, Schedule.id, Appointment.token_number
        ).all()

        return [
            AppointmentReportRow(
                appointment_id=appointment.id,
                schedule_id=schedule.id,
                date=schedule.date,
                start_time=schedule.start_time,
                end_time=schedule.end_time,
                doctor_id=schedule.doctor_id,
                clinic_id=schedule.clinic_id,
                token_number=appointment.token_number,
                patient_id=appointment.patient_id,
                guest_name=appointment.guest_name,
                is_walk_in=appointment.is_walk_in,
                status=appointment.status.value,
                consultation_fee=appointment.consultation_fee,
                is_paid=appointment.is_paid,
                has_been_refunded=appointment.has_been_refunded,
                refund_amount=appointment.refund_amount,
                schedule_status=schedule.status.value,
                cancel_reason=schedule.cancel_reason,
                actual_start_time=appointment.actual_start_time,
                actual_end_time=appointment.actual_end_time,
            )
            for appointment, schedule in rows
        ]
