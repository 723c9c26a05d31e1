"""
Appointment status state machine.

Status changes are conditional writes guarded on the status that was read
(``WHERE status = :observed``). A write that matches no row means another
request changed the appointment first; the change is re-validated against
the fresh status and retried a bounded number of times.
"""

import logging
import time
from typing import Dict, FrozenSet, Optional, Union

from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from core.config import MAX_CONCURRENCY_RETRIES
from core.constants import CONCURRENCY_RETRY_BACKOFF_SECONDS
from models.appointment import Appointment, AppointmentStatus, TERMINAL_STATUSES
from services.errors import (
    AppointmentNotFoundError, ConcurrencyConflictError, InvalidTransitionError
)
from services.event_service import EventService
from utils.datetime_utils import clinic_now

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset({
        AppointmentStatus.START,
        AppointmentStatus.CANCEL,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.START: frozenset({
        AppointmentStatus.HOLD,
        AppointmentStatus.PAUSE,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCEL,
    }),
    AppointmentStatus.HOLD: frozenset({
        AppointmentStatus.START,
        AppointmentStatus.CANCEL,
    }),
    AppointmentStatus.PAUSE: frozenset({
        AppointmentStatus.START,
        AppointmentStatus.CANCEL,
    }),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCEL: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}


def is_transition_allowed(current: AppointmentStatus, new_status: AppointmentStatus) -> bool:
    return new_status in ALLOWED_TRANSITIONS.get(current, frozenset())


def compute_refund_eligibility(appointment: Appointment, previous_status: AppointmentStatus) -> bool:
    """
    Whether cancelling this appointment from ``previous_status`` owes the patient a refund.

    Walk-ins have no wallet, unpaid bookings have nothing to give back and
    delivered services are not refunded.
    """
    return (
        not appointment.is_walk_in
        and appointment.patient_id is not None
        and bool(appointment.is_paid)
        and not appointment.has_been_refunded
        and previous_status != AppointmentStatus.COMPLETED
    )


def validate_transition(appointment: Appointment, new_status: AppointmentStatus) -> None:
    """
    Raise InvalidTransitionError if the appointment cannot move to ``new_status``.
    """
    current = appointment.status
    if current in TERMINAL_STATUSES:
        raise InvalidTransitionError(
            f"Appointment {appointment.id} is already {current.value}",
            appointment_id=appointment.id,
        )

    if new_status == AppointmentStatus.NO_SHOW and appointment.is_walk_in:
        raise InvalidTransitionError(
            f"Walk-in appointment {appointment.id} cannot be marked as no-show",
            appointment_id=appointment.id,
        )

    if not is_transition_allowed(current, new_status):
        raise InvalidTransitionError(
            f"Cannot change appointment {appointment.id} from {current.value} to {new_status.value}",
            appointment_id=appointment.id,
        )


class AppointmentStatusService:
    """Applies status transitions and their side effects."""

    @staticmethod
    def transition(
        db: Session,
        appointment_id: int,
        new_status: Union[AppointmentStatus, str],
        notes: Optional[str] = None
    ) -> Appointment:
        """
        Move an appointment to a new status.

        Stamps ``actual_start_time`` on the first start and ``actual_end_time``
        on completion. Cancelling computes ``is_eligible_for_refund``; the
        refund itself is issued by the refund service.

        Args:
            db: Database session
            appointment_id: Appointment to change
            new_status: Target status
            notes: Optional staff note stored with the change

        Returns:
            The updated appointment

        Raises:
            AppointmentNotFoundError: Appointment does not exist
            InvalidTransitionError: Target not reachable from the current status
            ConcurrencyConflictError: Concurrent writers kept winning past the retry limit
        """
        try:
            new_status = AppointmentStatus(new_status)
        except ValueError:
            raise InvalidTransitionError(f"Unknown appointment status: {new_status}", appointment_id=appointment_id)

        for attempt in range(1, MAX_CONCURRENCY_RETRIES + 1):
            appointment = db.query(Appointment).filter(
                Appointment.id == appointment_id
            ).populate_existing().first()

            if not appointment:
                db.rollback()
                raise AppointmentNotFoundError(f"Appointment {appointment_id} not found", appointment_id=appointment_id)

            observed = appointment.status
            try:
                validate_transition(appointment, new_status)
            except InvalidTransitionError:
                db.rollback()
                raise

            now = clinic_now()
            values = {
                "status": new_status,
                "updated_at": now,
            }
            # Keep the previous staff note unless a new one is given
            if notes is not None:
                values["status_notes"] = notes
            if new_status == AppointmentStatus.START and appointment.actual_start_time is None:
                values["actual_start_time"] = now
            if new_status == AppointmentStatus.COMPLETED:
                values["actual_end_time"] = now
            if new_status == AppointmentStatus.CANCEL:
                values["is_eligible_for_refund"] = compute_refund_eligibility(appointment, observed)
            if new_status == AppointmentStatus.NO_SHOW:
                values["is_eligible_for_refund"] = False

            try:
                result = db.execute(
                    update(Appointment)
                    .where(Appointment.id == appointment_id, Appointment.status == observed)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
            except OperationalError as e:
                # Lock timeout - another transaction is modifying this appointment
                db.rollback()
                logger.warning(f"Lock timeout changing appointment {appointment_id} status: {e}")
                result = None

            if result is not None and result.rowcount == 1:
                db.commit()
                db.refresh(appointment)
                logger.info(
                    f"Appointment {appointment_id} (token {appointment.token_number}) "
                    f"{observed.value} -> {new_status.value}"
                )
                try:
                    EventService.status_changed(
                        appointment_id=appointment.id,
                        previous_status=observed,
                        new_status=new_status,
                        schedule_id=appointment.schedule_id,
                        token_number=appointment.token_number,
                        patient_id=appointment.patient_id,
                        notes=notes,
                        is_eligible_for_refund=appointment.is_eligible_for_refund,
                    )
                except Exception as e:
                    # Log but don't fail - the transition is already committed
                    logger.exception(f"Failed to publish status change for appointment {appointment_id}: {e}")
                return appointment

            if result is not None:
                db.rollback()
                logger.warning(
                    f"Appointment {appointment_id} changed concurrently while moving to {new_status.value} "
                    f"(attempt {attempt}/{MAX_CONCURRENCY_RETRIES})"
                )
            if attempt < MAX_CONCURRENCY_RETRIES:
                time.sleep(CONCURRENCY_RETRY_BACKOFF_SECONDS * attempt)

        raise ConcurrencyConflictError(
            f"Appointment {appointment_id} is being modified by another operation, please retry",
            appointment_id=appointment_id,
        )

    @staticmethod
    def mark_no_show(db: Session, appointment_id: int, notes: Optional[str] = None) -> Appointment:
        """Mark a registered patient who never arrived. Never refund-eligible."""
        return AppointmentStatusService.transition(
            db, appointment_id, AppointmentStatus.NO_SHOW, notes=notes
        )

    @staticmethod
    def get_appointment(db: Session, appointment_id: int) -> Appointment:
        appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if not appointment:
            raise AppointmentNotFoundError(f"Appointment {appointment_id} not found", appointment_id=appointment_id)
        return appointment
