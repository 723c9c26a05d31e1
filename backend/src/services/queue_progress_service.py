"""
Read-only queue progress projection.

Answers "which token is at the doctor's desk and how many people are ahead
of me" from the appointments of today's schedules. Nothing here writes.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import List, Optional

from sqlalchemy.orm import Session

from models.appointment import Appointment, AppointmentStatus, TERMINAL_STATUSES
from models.schedule import Schedule
from utils.datetime_utils import clinic_today

logger = logging.getLogger(__name__)

# A paused or held token is still the one at the desk
CURRENT_TOKEN_PRIORITY = (
    AppointmentStatus.START,
    AppointmentStatus.PAUSE,
    AppointmentStatus.HOLD,
)

NOT_AHEAD_STATUSES = frozenset({
    AppointmentStatus.CANCEL,
    AppointmentStatus.NO_SHOW,
    AppointmentStatus.COMPLETED,
})

STATUS_NOT_STARTED = "not_started"
STATUS_NO_APPOINTMENTS = "no_appointments"


@dataclass
class QueueProgress:
    doctor_id: int
    clinic_id: int
    on_date: date
    schedule_id: Optional[int]
    current_token: int
    status: str
    tokens_ahead: int = 0
    walk_in_patients: int = 0
    patient_token: Optional[int] = None


def _pick_schedule_id(appointments: List[Appointment]) -> int:
    """Schedule of the token at the desk, else the earliest schedule with a live token."""
    for status in CURRENT_TOKEN_PRIORITY:
        for appointment in appointments:
            if appointment.status == status:
                return appointment.schedule_id

    # appointments arrive ordered by schedule start time
    for appointment in appointments:
        if appointment.status not in TERMINAL_STATUSES:
            return appointment.schedule_id
    return appointments[0].schedule_id


class QueueProgressService:

    @staticmethod
    def progress(
        db: Session,
        doctor_id: int,
        clinic_id: int,
        patient_token: Optional[int] = None,
        schedule_id: Optional[int] = None,
        on_date: Optional[date] = None
    ) -> QueueProgress:
        """
        Current token and queue position for a doctor at a clinic.

        Args:
            db: Database session
            doctor_id: Doctor whose queue is read
            clinic_id: Clinic of the queue
            patient_token: Caller's token, to count the tokens ahead of it
            schedule_id: Restrict to one schedule when several run that day
            on_date: Day to read, defaults to today in clinic time

        Returns:
            QueueProgress projection
        """
        on_date = on_date or clinic_today()

        query = db.query(Appointment).join(
            Schedule, Appointment.schedule_id == Schedule.id
        ).filter(
            Schedule.date == on_date,
            Schedule.doctor_id == doctor_id,
            Schedule.clinic_id == clinic_id,
        )
        if schedule_id is not None:
            query = query.filter(Schedule.id == schedule_id)
        appointments = query.order_by(
            Schedule.start_time, Schedule.id, Appointment.token_number
        ).all()

        if not appointments:
            return QueueProgress(
                doctor_id=doctor_id,
                clinic_id=clinic_id,
                on_date=on_date,
                schedule_id=schedule_id,
                current_token=0,
                status=STATUS_NO_APPOINTMENTS,
                patient_token=patient_token,
            )

        scoped_schedule_id = schedule_id if schedule_id is not None else _pick_schedule_id(appointments)
        scoped = [a for a in appointments if a.schedule_id == scoped_schedule_id]

        current_token = 0
        status = STATUS_NOT_STARTED
        for candidate_status in CURRENT_TOKEN_PRIORITY:
            candidates = [a for a in scoped if a.status == candidate_status]
            if candidates:
                current_token = min(a.token_number for a in candidates)
                status = candidate_status.value
                break
        else:
            completed = [a for a in scoped if a.status == AppointmentStatus.COMPLETED]
            if completed:
                current_token = max(a.token_number for a in completed)
                status = AppointmentStatus.COMPLETED.value

        tokens_ahead = 0
        walk_in_patients = 0
        if patient_token is not None:
            ahead = [
                a for a in scoped
                if current_token < a.token_number < patient_token
                and a.status not in NOT_AHEAD_STATUSES
            ]
            tokens_ahead = len(ahead)
            walk_in_patients = sum(1 for a in ahead if a.is_walk_in)

        return QueueProgress(
            doctor_id=doctor_id,
            clinic_id=clinic_id,
            on_date=on_date,
            schedule_id=scoped_schedule_id,
            current_token=current_token,
            status=status,
            tokens_ahead=tokens_ahead,
            walk_in_patients=walk_in_patients,
            patient_token=patient_token,
        )
