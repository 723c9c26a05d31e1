"""
Token allocation for schedules.

Token numbers come from the schedule's ``last_token_number`` column, which is
incremented while the schedule row is locked, in the same transaction that
inserts the appointment. Lock acquisition order therefore decides token
order, and a rolled back booking never leaves a gap.
"""

import logging
import time
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from core.config import DEFAULT_CONSULTATION_FEE, MAX_CONCURRENCY_RETRIES
from core.constants import CONCURRENCY_RETRY_BACKOFF_SECONDS
from models.appointment import Appointment, AppointmentStatus
from models.schedule import Schedule, ScheduleStatus
from services.errors import (
    BookingError, ConcurrencyConflictError, DuplicateBookingError,
    ScheduleClosedError, ScheduleNotFoundError
)

logger = logging.getLogger(__name__)


def normalize_fee(consultation_fee: Optional[Decimal]) -> Decimal:
    """Return the fee rounded to cents, falling back to the configured default."""
    if consultation_fee is None:
        return DEFAULT_CONSULTATION_FEE.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    fee = Decimal(str(consultation_fee)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    if fee < 0:
        raise ValueError("Consultation fee cannot be negative")
    return fee


class TokenAllocationService:
    """Issues sequential tokens against a schedule."""

    @staticmethod
    def allocate(
        db: Session,
        schedule_id: int,
        patient_id: Optional[int] = None,
        guest_name: Optional[str] = None,
        consultation_fee: Optional[Decimal] = None,
        is_paid: bool = False,
        guest_phone: Optional[str] = None
    ) -> Appointment:
        """
        Issue the next token on a schedule.

        A registered booking passes ``patient_id``; a walk-in passes only
        ``guest_name`` and is routed to ``allocate_walk_in``.

        Args:
            db: Database session
            schedule_id: Schedule to book against
            patient_id: Registered patient, or None for a walk-in
            guest_name: Walk-in guest name
            consultation_fee: Fee confirmed by the payment collaborator
            is_paid: Whether payment was confirmed
            guest_phone: Walk-in guest phone

        Returns:
            The committed appointment carrying its token number

        Raises:
            ScheduleNotFoundError: Schedule does not exist
            ScheduleClosedError: Schedule is paused, cancelled or full
            DuplicateBookingError: Patient already holds a live token on the schedule
            ConcurrencyConflictError: Lock contention persisted past the retry limit
        """
        if patient_id is None:
            if not guest_name:
                raise ValueError("Either patient_id or guest_name is required")
            return TokenAllocationService.allocate_walk_in(
                db,
                schedule_id,
                guest_name=guest_name,
                guest_phone=guest_phone,
                consultation_fee=consultation_fee,
                is_paid=is_paid,
            )

        return TokenAllocationService._allocate_with_retry(
            db,
            schedule_id,
            patient_id=patient_id,
            guest_name=None,
            guest_phone=None,
            consultation_fee=normalize_fee(consultation_fee),
            is_paid=is_paid,
            is_walk_in=False,
        )

    @staticmethod
    def allocate_walk_in(
        db: Session,
        schedule_id: int,
        guest_name: str,
        guest_phone: Optional[str] = None,
        consultation_fee: Optional[Decimal] = None,
        is_paid: bool = False
    ) -> Appointment:
        """Issue the next token to a walk-in guest (no patient record, no wallet)."""
        guest_name = (guest_name or "").strip()
        if not guest_name:
            raise ValueError("Walk-in guest name is required")

        return TokenAllocationService._allocate_with_retry(
            db,
            schedule_id,
            patient_id=None,
            guest_name=guest_name,
            guest_phone=guest_phone,
            consultation_fee=normalize_fee(consultation_fee),
            is_paid=is_paid,
            is_walk_in=True,
        )

    @staticmethod
    def _allocate_with_retry(
        db: Session,
        schedule_id: int,
        patient_id: Optional[int],
        guest_name: Optional[str],
        guest_phone: Optional[str],
        consultation_fee: Decimal,
        is_paid: bool,
        is_walk_in: bool
    ) -> Appointment:
        for attempt in range(1, MAX_CONCURRENCY_RETRIES + 1):
            try:
                appointment = TokenAllocationService._allocate_once(
                    db,
                    schedule_id,
                    patient_id=patient_id,
                    guest_name=guest_name,
                    guest_phone=guest_phone,
                    consultation_fee=consultation_fee,
                    is_paid=is_paid,
                    is_walk_in=is_walk_in,
                )
                db.commit()
            except BookingError:
                db.rollback()
                raise
            except (IntegrityError, OperationalError) as e:
                # Lock timeout or token collision - the whole unit is re-run
                db.rollback()
                logger.warning(
                    f"Token allocation conflict on schedule {schedule_id} "
                    f"(attempt {attempt}/{MAX_CONCURRENCY_RETRIES}): {e}"
                )
                if attempt == MAX_CONCURRENCY_RETRIES:
                    raise ConcurrencyConflictError(
                        f"Could not allocate a token on schedule {schedule_id}, please retry"
                    ) from e
                time.sleep(CONCURRENCY_RETRY_BACKOFF_SECONDS * attempt)
                continue

            logger.info(
                f"Allocated token {appointment.token_number} on schedule {schedule_id} "
                f"(appointment {appointment.id}, walk_in={is_walk_in})"
            )
            return appointment

        # Unreachable: the loop either returns or raises
        raise ConcurrencyConflictError(f"Could not allocate a token on schedule {schedule_id}, please retry")

    @staticmethod
    def _allocate_once(
        db: Session,
        schedule_id: int,
        patient_id: Optional[int],
        guest_name: Optional[str],
        guest_phone: Optional[str],
        consultation_fee: Decimal,
        is_paid: bool,
        is_walk_in: bool
    ) -> Appointment:
        # Lock the schedule row; held until commit/rollback
        schedule = db.query(Schedule).filter(
            Schedule.id == schedule_id
        ).with_for_update().populate_existing().first()

        if not schedule:
            raise ScheduleNotFoundError(f"Schedule {schedule_id} not found")

        if schedule.status != ScheduleStatus.ACTIVE or schedule.cancel_reason is not None:
            raise ScheduleClosedError(
                f"Schedule {schedule_id} is {schedule.status.value} and not accepting bookings"
            )

        if schedule.is_full:
            raise ScheduleClosedError(
                f"Schedule {schedule_id} is full ({schedule.max_tokens} tokens issued)"
            )

        if patient_id is not None:
            existing = db.query(Appointment).filter(
                Appointment.schedule_id == schedule_id,
                Appointment.patient_id == patient_id,
                Appointment.status != AppointmentStatus.CANCEL,
            ).first()
            if existing:
                raise DuplicateBookingError(
                    f"Patient {patient_id} already holds token {existing.token_number} on schedule {schedule_id}",
                    existing_appointment_id=existing.id,
                )

        next_token = schedule.last_token_number + 1
        schedule.last_token_number = next_token

        appointment = Appointment(
            schedule_id=schedule.id,
            doctor_id=schedule.doctor_id,
            clinic_id=schedule.clinic_id,
            patient_id=patient_id,
            guest_name=guest_name,
            guest_phone=guest_phone,
            token_number=next_token,
            status=AppointmentStatus.SCHEDULED,
            consultation_fee=consultation_fee,
            is_paid=is_paid,
            is_walk_in=is_walk_in,
            has_been_refunded=False,
            is_eligible_for_refund=False,
        )
        db.add(appointment)
        db.flush()
        return appointment
