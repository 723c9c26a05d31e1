"""
Service for managing schedules.

Staff create schedules and pause/resume them. Cancellation is terminal and is
handled by the refund service, because cancelling a schedule also cancels
and refunds its appointments.
"""

import logging
from datetime import date, time
from typing import List, Optional

from sqlalchemy.orm import Session

from models.appointment import Appointment, AppointmentStatus
from models.schedule import Schedule, ScheduleStatus
from services.errors import ScheduleClosedError, ScheduleNotFoundError

logger = logging.getLogger(__name__)


class ScheduleService:
    """Service for schedule lifecycle operations."""

    @staticmethod
    def create_schedule(
        db: Session,
        doctor_id: int,
        clinic_id: int,
        schedule_date: date,
        start_time: time,
        end_time: time,
        max_tokens: int = 0
    ) -> Schedule:
        """
        Create an active schedule with an empty token sequence.

        Args:
            db: Database session
            doctor_id: Doctor running the session
            clinic_id: Clinic hosting the session
            schedule_date: Session date (clinic-local)
            start_time: Start of the consultation window
            end_time: End of the consultation window
            max_tokens: Token capacity, 0 for unlimited

        Raises:
            ValueError: If the window or capacity is invalid
        """
        if end_time <= start_time:
            raise ValueError("Schedule end time must be after start time")
        if max_tokens < 0:
            raise ValueError("max_tokens cannot be negative")

        schedule = Schedule(
            doctor_id=doctor_id,
            clinic_id=clinic_id,
            date=schedule_date,
            start_time=start_time,
            end_time=end_time,
            max_tokens=max_tokens,
            status=ScheduleStatus.ACTIVE,
            last_token_number=0,
        )
        db.add(schedule)
        db.commit()
        db.refresh(schedule)

        logger.info(
            f"Created schedule {schedule.id} for doctor {doctor_id} at clinic {clinic_id} "
            f"on {schedule_date} (max_tokens={max_tokens})"
        )
        return schedule

    @staticmethod
    def get_schedule(db: Session, schedule_id: int) -> Schedule:
        schedule = db.query(Schedule).filter(Schedule.id == schedule_id).first()
        if not schedule:
            raise ScheduleNotFoundError(f"Schedule {schedule_id} not found")
        return schedule

    @staticmethod
    def pause_schedule(db: Session, schedule_id: int) -> Schedule:
        """Stop issuing tokens on an active schedule. Pausing twice is a no-op."""
        schedule = db.query(Schedule).filter(Schedule.id == schedule_id).with_for_update().first()
        if not schedule:
            db.rollback()
            raise ScheduleNotFoundError(f"Schedule {schedule_id} not found")

        if schedule.is_cancelled:
            db.rollback()
            raise ScheduleClosedError(f"Schedule {schedule_id} is cancelled and cannot be paused")

        if schedule.status == ScheduleStatus.ACTIVE:
            schedule.status = ScheduleStatus.PAUSED
            db.commit()
            logger.info(f"Paused schedule {schedule_id}")
        else:
            db.rollback()
        return schedule

    @staticmethod
    def resume_schedule(db: Session, schedule_id: int) -> Schedule:
        """Re-open a paused schedule. A cancelled schedule is terminal."""
        schedule = db.query(Schedule).filter(Schedule.id == schedule_id).with_for_update().first()
        if not schedule:
            db.rollback()
            raise ScheduleNotFoundError(f"Schedule {schedule_id} not found")

        if schedule.is_cancelled or schedule.cancel_reason is not None:
            db.rollback()
            raise ScheduleClosedError(f"Schedule {schedule_id} is cancelled and cannot be resumed")

        if schedule.status == ScheduleStatus.PAUSED:
            schedule.status = ScheduleStatus.ACTIVE
            db.commit()
            logger.info(f"Resumed schedule {schedule_id}")
        else:
            db.rollback()
        return schedule

    @staticmethod
    def list_schedule_appointments(
        db: Session,
        schedule_id: int,
        include_cancelled: bool = True
    ) -> List[Appointment]:
        """List a schedule's appointments in token order."""
        ScheduleService.get_schedule(db, schedule_id)

        query = db.query(Appointment).filter(Appointment.schedule_id == schedule_id)
        if not include_cancelled:
            query = query.filter(Appointment.status != AppointmentStatus.CANCEL)
        return query.order_by(Appointment.token_number).all()

    @staticmethod
    def list_schedules(
        db: Session,
        clinic_id: Optional[int] = None,
        doctor_id: Optional[int] = None,
        schedule_date: Optional[date] = None
    ) -> List[Schedule]:
        query = db.query(Schedule)
        if clinic_id is not None:
            query = query.filter(Schedule.clinic_id == clinic_id)
        if doctor_id is not None:
            query = query.filter(Schedule.doctor_id == doctor_id)
        if schedule_date is not None:
            query = query.filter(Schedule.date == schedule_date)
        return query.order_by(Schedule.date, Schedule.start_time, Schedule.id).all()
