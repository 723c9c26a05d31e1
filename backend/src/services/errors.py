"""
Domain errors raised by the booking, refund and wallet services.

Every error derives from ``BookingError`` (itself a ``ValueError``) and
carries the HTTP status and machine-readable code the API layer responds
with. Services roll back their own unit of work before raising.
"""

from typing import Optional

from fastapi import status


class BookingError(ValueError):
    """Base class for expected, per-operation failures."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "booking_error"

    def __init__(self, message: str, appointment_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.appointment_id = appointment_id


class ScheduleNotFoundError(BookingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "schedule_not_found"


class AppointmentNotFoundError(BookingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "appointment_not_found"


class ScheduleClosedError(BookingError):
    """Allocation attempted on an inactive, cancelled or full schedule."""
    status_code = status.HTTP_409_CONFLICT
    code = "schedule_closed"


class DuplicateBookingError(BookingError):
    """Patient already holds a live appointment on the schedule."""
    status_code = status.HTTP_409_CONFLICT
    code = "duplicate_booking"

    def __init__(self, message: str, existing_appointment_id: Optional[int] = None):
        super().__init__(message, appointment_id=existing_appointment_id)
        self.existing_appointment_id = existing_appointment_id


class InvalidTransitionError(BookingError):
    """Requested status change is not reachable from the current status."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_transition"


class AlreadyRefundedError(BookingError):
    """Refund attempted on an appointment that was already credited."""
    status_code = status.HTTP_409_CONFLICT
    code = "already_refunded"


class RefundNotEligibleError(BookingError):
    """Appointment does not qualify for a refund (walk-in, completed, no-show)."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = "refund_not_eligible"


class WalletMissingError(BookingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "wallet_missing"


class WalletInactiveError(BookingError):
    status_code = status.HTTP_409_CONFLICT
    code = "wallet_inactive"


class InsufficientBalanceError(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "insufficient_balance"


class ConcurrencyConflictError(BookingError):
    """Row-lock contention persisted past the bounded retry limit."""
    status_code = status.HTTP_409_CONFLICT
    code = "concurrency_conflict"


class LedgerInconsistencyError(BookingError):
    """Replaying a wallet's transactions does not reproduce its balance."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "ledger_inconsistent"
