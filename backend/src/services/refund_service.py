"""
Refund engine.

A refund is one database transaction: a conditional update flips the
appointment's ``has_been_refunded`` guard from false to true, then the
patient's wallet row is locked and credited with an appended ledger row.
If the guard update matches no row the appointment was already refunded (or
never eligible) and the wallet is not touched. Concurrent calls for the same
appointment therefore credit it exactly once.

Schedule cancellation cancels every live appointment and refunds each one
through the same single-refund path. Appointments are processed one at a
time so a failure or interruption leaves every finished refund intact.
"""

import logging
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from core.config import DEFAULT_CONSULTATION_FEE
from models.appointment import Appointment, AppointmentStatus
from models.schedule import Schedule, ScheduleStatus
from models.wallet_transaction import TransactionType, WalletTransaction
from services.appointment_status_service import AppointmentStatusService
from services.errors import (
    AlreadyRefundedError, AppointmentNotFoundError, BookingError, ConcurrencyConflictError,
    RefundNotEligibleError, ScheduleNotFoundError
)
from services.event_service import EventService
from services.wallet_service import WalletService, to_money
from utils.datetime_utils import clinic_now

logger = logging.getLogger(__name__)


SKIP_WALK_IN = "walk-in — no wallet"
SKIP_NOT_PAID = "not paid — nothing to refund"
SKIP_COMPLETED = "completed — service delivered"
SKIP_NO_SHOW = "no-show — not refundable"
SKIP_ALREADY_REFUNDED = "already refunded"
SKIP_NOT_ELIGIBLE = "not eligible for refund"
SKIP_INTERRUPTED = "interrupted — not processed"


@dataclass
class SkippedAppointment:
    appointment_id: int
    reason: str


@dataclass
class BulkRefundResult:
    """Outcome of a schedule-wide cancellation."""
    schedule_id: int
    refunded_appointment_ids: List[int] = field(default_factory=list)
    cancelled_appointment_ids: List[int] = field(default_factory=list)
    total_refund_amount: Decimal = Decimal("0.00")
    skipped: List[SkippedAppointment] = field(default_factory=list)
    interrupted: bool = False

    @property
    def refunded_appointments(self) -> int:
        return len(self.refunded_appointment_ids)

    def skip(self, appointment_id: int, reason: str) -> None:
        self.skipped.append(SkippedAppointment(appointment_id=appointment_id, reason=reason))


def refund_amount_for(appointment: Appointment) -> Decimal:
    """The consultation fee, or the default fee when none was recorded."""
    if appointment.consultation_fee is None or to_money(appointment.consultation_fee) <= 0:
        return to_money(DEFAULT_CONSULTATION_FEE)
    return to_money(appointment.consultation_fee)


class RefundService:
    """Service for single and schedule-wide refunds."""

    @staticmethod
    def refund_appointment(
        db: Session,
        appointment_id: int,
        reason: str,
        transaction_type: TransactionType = TransactionType.REFUND_APPOINTMENT_CANCEL,
        processed_by: Optional[int] = None,
        related_schedule_id: Optional[int] = None
    ) -> WalletTransaction:
        """
        Credit a cancelled appointment's fee back to the patient's wallet, exactly once.

        Args:
            db: Database session
            appointment_id: Appointment to refund
            reason: Shown in the wallet history
            transaction_type: One of the refund transaction types
            processed_by: Staff user triggering the refund
            related_schedule_id: Schedule whose cancellation caused the refund

        Returns:
            The credit WalletTransaction

        Raises:
            AppointmentNotFoundError: Appointment does not exist
            AlreadyRefundedError: The appointment was refunded before (no wallet change)
            RefundNotEligibleError: Walk-in, completed, no-show or otherwise not eligible
            WalletMissingError: Patient has no wallet
            WalletInactiveError: Patient's wallet is inactive
        """
        if not transaction_type.is_refund:
            raise ValueError(f"{transaction_type.value} is not a refund transaction type")

        try:
            appointment = db.query(Appointment).filter(
                Appointment.id == appointment_id
            ).populate_existing().first()
            if not appointment:
                raise AppointmentNotFoundError(f"Appointment {appointment_id} not found", appointment_id=appointment_id)

            amount = refund_amount_for(appointment)
            now = clinic_now()

            # Idempotence guard: only one caller can flip has_been_refunded
            result = db.execute(
                update(Appointment)
                .where(
                    Appointment.id == appointment_id,
                    Appointment.has_been_refunded == False,
                    Appointment.is_eligible_for_refund == True,
                    Appointment.is_paid == True,
                    Appointment.patient_id.isnot(None),
                )
                .values(
                    has_been_refunded=True,
                    refund_amount=amount,
                    refunded_at=now,
                    is_eligible_for_refund=False,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                RefundService._raise_not_refundable(db, appointment_id)

            try:
                wallet = WalletService.lock_wallet(db, appointment.patient_id)
            except OperationalError as e:
                # Lock timeout - the wallet is held by another transaction
                logger.warning(f"Lock timeout on wallet of patient {appointment.patient_id}: {e}")
                raise ConcurrencyConflictError(
                    f"Wallet of patient {appointment.patient_id} is busy, please retry refunding "
                    f"appointment {appointment_id}",
                    appointment_id=appointment_id,
                ) from e
            transaction = WalletService._apply(
                db,
                wallet,
                amount=amount,
                is_credit=True,
                transaction_type=transaction_type,
                description=f"Refund for token {appointment.token_number}: {reason}",
                related_appointment_id=appointment.id,
                related_schedule_id=related_schedule_id or appointment.schedule_id,
                processed_by=processed_by,
            )
            db.commit()
        except AlreadyRefundedError as e:
            db.rollback()
            logger.warning(f"Refund skipped: {e.message}")
            raise
        except IntegrityError as e:
            # A refund credit already references this appointment
            db.rollback()
            logger.warning(f"Refund for appointment {appointment_id} rejected by ledger constraint: {e}")
            raise AlreadyRefundedError(
                f"Appointment {appointment_id} has already been refunded", appointment_id=appointment_id
            ) from e
        except Exception:
            db.rollback()
            raise

        db.refresh(appointment)
        logger.info(
            f"Refunded {amount} for appointment {appointment_id} to wallet {transaction.wallet_id} "
            f"({transaction_type.value}), balance now {transaction.new_balance}"
        )

        try:
            EventService.refund_issued(
                appointment_id=appointment.id,
                patient_id=appointment.patient_id,
                amount=amount,
                wallet_transaction_id=transaction.id,
                new_balance=transaction.new_balance,
                reason=reason,
            )
        except Exception as e:
            # Log but don't fail - the refund is already committed
            logger.exception(f"Failed to publish refund for appointment {appointment_id}: {e}")

        return transaction

    @staticmethod
    def _raise_not_refundable(db: Session, appointment_id: int) -> None:
        """Classify why the refund guard matched no row and raise accordingly."""
        appointment = db.query(Appointment).filter(
            Appointment.id == appointment_id
        ).populate_existing().first()

        if not appointment:
            raise AppointmentNotFoundError(f"Appointment {appointment_id} not found", appointment_id=appointment_id)
        if appointment.has_been_refunded:
            raise AlreadyRefundedError(
                f"Appointment {appointment_id} has already been refunded", appointment_id=appointment_id
            )
        if appointment.is_walk_in or appointment.patient_id is None:
            raise RefundNotEligibleError(
                f"Walk-in appointment {appointment_id} has no wallet to refund", appointment_id=appointment_id
            )
        if appointment.is_completed:
            raise RefundNotEligibleError(
                f"Appointment {appointment_id} was completed and cannot be refunded", appointment_id=appointment_id
            )
        if appointment.status == AppointmentStatus.NO_SHOW:
            raise RefundNotEligibleError(
                f"Appointment {appointment_id} was a no-show and cannot be refunded", appointment_id=appointment_id
            )
        if not appointment.is_paid:
            raise RefundNotEligibleError(
                f"Appointment {appointment_id} was never paid and has nothing to refund",
                appointment_id=appointment_id,
            )
        raise RefundNotEligibleError(
            f"Appointment {appointment_id} is not eligible for a refund", appointment_id=appointment_id
        )

    @staticmethod
    def cancel_schedule_with_refunds(
        db: Session,
        schedule_id: int,
        cancel_reason: str,
        refund_type: TransactionType = TransactionType.REFUND_SCHEDULE_CANCEL,
        processed_by: Optional[int] = None,
        stop_event: Optional[threading.Event] = None
    ) -> BulkRefundResult:
        """
        Cancel a schedule, cancel its live appointments and refund each eligible one.

        Safe to re-run: the first cancel reason is kept, already refunded
        appointments are skipped, and eligible appointments left unrefunded
        by an earlier interrupted run are refunded now.

        Args:
            db: Database session
            schedule_id: Schedule to cancel
            cancel_reason: Reason recorded on the schedule and in refund descriptions
            refund_type: Refund transaction type for the credits
            processed_by: Staff user triggering the cancellation
            stop_event: When set, remaining appointments are left unprocessed

        Returns:
            BulkRefundResult with refunded count, total and skipped appointments

        Raises:
            ScheduleNotFoundError: Schedule does not exist
        """
        if not cancel_reason or not cancel_reason.strip():
            raise ValueError("Cancel reason is required")
        if not refund_type.is_refund:
            raise ValueError(f"{refund_type.value} is not a refund transaction type")
        cancel_reason = cancel_reason.strip()

        try:
            schedule = db.query(Schedule).filter(
                Schedule.id == schedule_id
            ).with_for_update().populate_existing().first()
            if not schedule:
                raise ScheduleNotFoundError(f"Schedule {schedule_id} not found")

            if schedule.cancel_reason is None:
                schedule.cancel_reason = cancel_reason
                schedule.status = ScheduleStatus.CANCELLED
                logger.info(f"Cancelled schedule {schedule_id}: {cancel_reason}")
            else:
                logger.info(f"Schedule {schedule_id} already cancelled ({schedule.cancel_reason}), resuming refunds")
            db.commit()
        except Exception:
            db.rollback()
            raise

        appointment_ids = [
            row.id for row in db.query(Appointment.id).filter(
                Appointment.schedule_id == schedule_id
            ).order_by(Appointment.token_number).all()
        ]

        result = BulkRefundResult(schedule_id=schedule_id)
        for index, appointment_id in enumerate(appointment_ids):
            if stop_event is not None and stop_event.is_set():
                for remaining_id in appointment_ids[index:]:
                    result.skip(remaining_id, SKIP_INTERRUPTED)
                result.interrupted = True
                logger.warning(
                    f"Schedule {schedule_id} refund run interrupted with "
                    f"{len(appointment_ids) - index} appointment(s) unprocessed"
                )
                break

            RefundService._cancel_and_refund(
                db, appointment_id, schedule_id, cancel_reason, refund_type, processed_by, result
            )

        logger.info(
            f"Schedule {schedule_id} cancellation: {result.refunded_appointments} refunded "
            f"({result.total_refund_amount}), {len(result.skipped)} skipped"
        )
        return result

    @staticmethod
    def _cancel_and_refund(
        db: Session,
        appointment_id: int,
        schedule_id: int,
        cancel_reason: str,
        refund_type: TransactionType,
        processed_by: Optional[int],
        result: BulkRefundResult
    ) -> None:
        appointment = db.query(Appointment).filter(
            Appointment.id == appointment_id
        ).populate_existing().first()
        if not appointment:
            return

        if not appointment.is_terminal:
            try:
                appointment = AppointmentStatusService.transition(
                    db, appointment_id, AppointmentStatus.CANCEL, notes=f"Schedule cancelled: {cancel_reason}"
                )
                result.cancelled_appointment_ids.append(appointment_id)
            except BookingError as e:
                # Changed concurrently; classify by the fresh status below
                logger.warning(f"Could not cancel appointment {appointment_id}: {e.message}")
                appointment = db.query(Appointment).filter(
                    Appointment.id == appointment_id
                ).populate_existing().first()
                if not appointment.is_terminal:
                    result.skip(appointment_id, e.message)
                    return

        if appointment.is_walk_in:
            result.skip(appointment_id, SKIP_WALK_IN)
            return
        if appointment.is_completed:
            result.skip(appointment_id, SKIP_COMPLETED)
            return
        if appointment.status == AppointmentStatus.NO_SHOW:
            result.skip(appointment_id, SKIP_NO_SHOW)
            return
        if appointment.has_been_refunded:
            result.skip(appointment_id, SKIP_ALREADY_REFUNDED)
            return
        if not appointment.is_paid:
            result.skip(appointment_id, SKIP_NOT_PAID)
            return
        if not appointment.is_eligible_for_refund:
            result.skip(appointment_id, SKIP_NOT_ELIGIBLE)
            return

        try:
            transaction = RefundService.refund_appointment(
                db,
                appointment_id,
                reason=cancel_reason,
                transaction_type=refund_type,
                processed_by=processed_by,
                related_schedule_id=schedule_id,
            )
        except AlreadyRefundedError:
            result.skip(appointment_id, SKIP_ALREADY_REFUNDED)
            return
        except BookingError as e:
            logger.warning(f"Refund for appointment {appointment_id} skipped: {e.message}")
            result.skip(appointment_id, e.message)
            return
        except Exception as e:
            # Log but don't fail - the remaining appointments still get refunded
            logger.exception(f"Unexpected error refunding appointment {appointment_id}: {e}")
            result.skip(appointment_id, f"refund failed: {e}")
            return

        result.refunded_appointment_ids.append(appointment_id)
        result.total_refund_amount = to_money(result.total_refund_amount + transaction.amount)

    @staticmethod
    def close_session_with_refunds(
        db: Session,
        schedule_id: int,
        reason: str,
        processed_by: Optional[int] = None,
        stop_event: Optional[threading.Event] = None
    ) -> BulkRefundResult:
        """Doctor left mid-session: cancel what is left and refund it as partial refunds."""
        return RefundService.cancel_schedule_with_refunds(
            db,
            schedule_id,
            reason,
            refund_type=TransactionType.PARTIAL_REFUND,
            processed_by=processed_by,
            stop_event=stop_event,
        )

    @staticmethod
    def list_pending_refunds(
        db: Session,
        clinic_id: Optional[int] = None,
        schedule_id: Optional[int] = None
    ) -> List[Appointment]:
        """Cancelled, eligible and not yet refunded appointments (the refund queue)."""
        query = db.query(Appointment).filter(
            Appointment.status == AppointmentStatus.CANCEL,
            Appointment.is_eligible_for_refund == True,
            Appointment.has_been_refunded == False,
        )
        if clinic_id is not None:
            query = query.filter(Appointment.clinic_id == clinic_id)
        if schedule_id is not None:
            query = query.filter(Appointment.schedule_id == schedule_id)
        return query.order_by(Appointment.schedule_id, Appointment.token_number).all()
