# Package initialization
# Import all models to ensure relationships are properly established
from .schedule import Schedule, ScheduleStatus
from .appointment import Appointment, AppointmentStatus, TERMINAL_STATUSES
from .wallet import Wallet
from .wallet_transaction import (
    WalletTransaction, TransactionType, TransactionStatus, LedgerImmutableError,
    CREDIT_TRANSACTION_TYPES, REFUND_TRANSACTION_TYPES,
)

__all__ = [
    "Schedule",
    "ScheduleStatus",
    "Appointment",
    "AppointmentStatus",
    "TERMINAL_STATUSES",
    "Wallet",
    "WalletTransaction",
    "TransactionType",
    "TransactionStatus",
    "LedgerImmutableError",
    "CREDIT_TRANSACTION_TYPES",
    "REFUND_TRANSACTION_TYPES",
]
