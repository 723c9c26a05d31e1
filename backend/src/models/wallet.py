"""
Wallet model representing a patient's internal balance.

The wallet holds money owed back to a patient (refunds, admin credits) and
pays for bookings. Its columns are a cache of the transaction log: every
change to them is made together with an appended WalletTransaction.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Integer, Numeric, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import MONEY_PRECISION, MONEY_SCALE
from core.database import Base


class Wallet(Base):
    """
    Wallet entity, one per patient.

    Invariant: ``balance == total_earned - total_spent`` and ``balance >= 0``.
    """

    __tablename__ = "wallets"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the wallet."""

    patient_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    """Owning patient (owned by the patient management collaborator)."""

    balance: Mapped[Decimal] = mapped_column(Numeric(MONEY_PRECISION, MONEY_SCALE), nullable=False, default=Decimal("0.00"))
    """Current spendable balance."""

    total_earned: Mapped[Decimal] = mapped_column(Numeric(MONEY_PRECISION, MONEY_SCALE), nullable=False, default=Decimal("0.00"))
    """Sum of all credits ever applied."""

    total_spent: Mapped[Decimal] = mapped_column(Numeric(MONEY_PRECISION, MONEY_SCALE), nullable=False, default=Decimal("0.00"))
    """Sum of all debits ever applied."""

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    """Inactive wallets accept neither credits nor debits."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the wallet was opened."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp of the last balance change."""

    # Relationships
    transactions = relationship(
        "WalletTransaction",
        order_by="WalletTransaction.id",
        viewonly=True,
    )
    """Ledger entries for this wallet in commit order (read only)."""

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
        # Tolerance keeps the check valid on SQLite, which stores NUMERIC as REAL
        CheckConstraint(
            "ABS(balance - (total_earned - total_spent)) < 0.005",
            name="ck_wallets_balance_matches_totals",
        ),
    )
