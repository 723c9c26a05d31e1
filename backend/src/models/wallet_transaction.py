"""
WalletTransaction model: the append-only wallet ledger.

Each row records one credit or debit together with the balance before and
after it. Rows are never modified after insert; corrections are new rows.
"""

import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean, CheckConstraint, Enum, ForeignKey, Index, Integer, Numeric,
    String, TIMESTAMP, UniqueConstraint, event
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import MAX_NOTES_LENGTH, MONEY_PRECISION, MONEY_SCALE
from core.database import Base


class TransactionType(str, enum.Enum):
    """Kinds of ledger entries."""
    APPOINTMENT_PAYMENT = "appointment_payment"
    ADMIN_DEBIT = "admin_debit"
    REFUND_APPOINTMENT_CANCEL = "refund_appointment_cancel"
    REFUND_SCHEDULE_CANCEL = "refund_schedule_cancel"
    REFUND_DOCTOR_ABSENT = "refund_doctor_absent"
    PARTIAL_REFUND = "partial_refund"
    ADMIN_CREDIT = "admin_credit"
    WALLET_TOPUP = "wallet_topup"

    @property
    def is_credit(self) -> bool:
        return self in CREDIT_TRANSACTION_TYPES

    @property
    def is_refund(self) -> bool:
        return self in REFUND_TRANSACTION_TYPES


REFUND_TRANSACTION_TYPES = frozenset({
    TransactionType.REFUND_APPOINTMENT_CANCEL,
    TransactionType.REFUND_SCHEDULE_CANCEL,
    TransactionType.REFUND_DOCTOR_ABSENT,
    TransactionType.PARTIAL_REFUND,
})

CREDIT_TRANSACTION_TYPES = REFUND_TRANSACTION_TYPES | {
    TransactionType.ADMIN_CREDIT,
    TransactionType.WALLET_TOPUP,
}


class TransactionStatus(str, enum.Enum):
    """Ledger rows are only written once the balance change is applied."""
    COMPLETED = "completed"


class LedgerImmutableError(RuntimeError):
    """Raised when code attempts to modify or delete a ledger row."""


class WalletTransaction(Base):
    """
    WalletTransaction entity: one immutable ledger entry.

    ``amount`` is always positive; ``is_credit`` gives the direction.
    ``new_balance`` is the wallet balance immediately after this entry.
    """

    __tablename__ = "wallet_transactions"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier, increasing in commit order per wallet."""

    wallet_id: Mapped[int] = mapped_column(ForeignKey("wallets.id", ondelete="RESTRICT"), nullable=False)
    """Wallet this entry belongs to."""

    transaction_type: Mapped[TransactionType] = mapped_column(
        Enum(
            TransactionType,
            native_enum=False,
            length=40,
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
    )
    """Kind of entry (refund, payment, admin adjustment, top-up)."""

    amount: Mapped[Decimal] = mapped_column(Numeric(MONEY_PRECISION, MONEY_SCALE), nullable=False)
    """Absolute amount moved."""

    is_credit: Mapped[bool] = mapped_column(Boolean, nullable=False)
    """True when money was added to the wallet."""

    previous_balance: Mapped[Decimal] = mapped_column(Numeric(MONEY_PRECISION, MONEY_SCALE), nullable=False)
    """Wallet balance before this entry."""

    new_balance: Mapped[Decimal] = mapped_column(Numeric(MONEY_PRECISION, MONEY_SCALE), nullable=False)
    """Wallet balance after this entry."""

    status: Mapped[TransactionStatus] = mapped_column(
        Enum(
            TransactionStatus,
            native_enum=False,
            length=20,
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
        default=TransactionStatus.COMPLETED,
    )
    """Processing status of the entry."""

    description: Mapped[str] = mapped_column(String(MAX_NOTES_LENGTH), nullable=False)
    """Human readable description shown in the patient's wallet history."""

    related_appointment_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("appointments.id", ondelete="RESTRICT"), nullable=True
    )
    """Appointment paid for or refunded by this entry."""

    related_schedule_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("schedules.id", ondelete="RESTRICT"), nullable=True
    )
    """Schedule whose cancellation caused this entry, if any."""

    processed_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Staff user who triggered the entry, when staff-initiated."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the entry was committed."""

    # Relationships
    wallet = relationship("Wallet")
    """Relationship to the owning Wallet."""

    @property
    def signed_amount(self) -> Decimal:
        """Amount with its effect on the balance (negative for debits)."""
        return self.amount if self.is_credit else -self.amount

    __table_args__ = (
        # At most one credit (refund) per appointment; NULL appointment ids never collide
        UniqueConstraint('related_appointment_id', 'is_credit', name='uq_wallet_transactions_appointment_direction'),
        CheckConstraint("amount > 0", name="ck_wallet_transactions_amount_positive"),
        CheckConstraint("new_balance >= 0", name="ck_wallet_transactions_new_balance_non_negative"),
        Index('idx_wallet_transactions_wallet_created', 'wallet_id', 'created_at', 'id'),
        Index('idx_wallet_transactions_appointment', 'related_appointment_id'),
    )


@event.listens_for(WalletTransaction, "before_update")
def _reject_ledger_update(mapper, connection, target):  # type: ignore
    raise LedgerImmutableError(f"Wallet transaction {target.id} is immutable and cannot be modified")


@event.listens_for(WalletTransaction, "before_delete")
def _reject_ledger_delete(mapper, connection, target):  # type: ignore
    raise LedgerImmutableError(f"Wallet transaction {target.id} is immutable and cannot be deleted")
