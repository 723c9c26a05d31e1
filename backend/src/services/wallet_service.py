"""
Wallet ledger service.

Every balance change locks the wallet row, applies the change to the cached
balance/total columns and appends a WalletTransaction carrying the balance
before and after, all in one database transaction. Transactions are never
modified afterwards; replaying a wallet's transactions in ``(created_at, id)``
order reproduces its balance.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.config import DEFAULT_CONSULTATION_FEE, WALLET_INITIAL_BALANCE
from core.constants import (
    DEFAULT_TRANSACTION_PAGE_SIZE, MAX_TRANSACTION_PAGE_SIZE, WALLET_SUMMARY_RECENT_TRANSACTIONS
)
from models.appointment import Appointment, TERMINAL_STATUSES
from models.wallet import Wallet
from models.wallet_transaction import (
    REFUND_TRANSACTION_TYPES, TransactionStatus, TransactionType, WalletTransaction
)
from services.errors import (
    AppointmentNotFoundError, BookingError, InsufficientBalanceError,
    LedgerInconsistencyError, WalletInactiveError, WalletMissingError
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Convert a number to a Decimal rounded to cents."""
    if isinstance(value, Decimal):
        return value.quantize(CENT, rounding=ROUND_HALF_UP)
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class WalletSummary:
    """Wallet with its recent history and aggregate statistics."""
    wallet: Wallet
    recent_transactions: List[WalletTransaction] = field(default_factory=list)
    total_transactions: int = 0
    total_refunds: Decimal = Decimal("0.00")
    total_payments: Decimal = Decimal("0.00")


class WalletService:
    """Service for wallet balance and ledger operations."""

    @staticmethod
    def create_wallet(
        db: Session,
        patient_id: int,
        initial_balance: Optional[Decimal] = None
    ) -> Wallet:
        """
        Open a wallet for a patient.

        Opening a wallet that already exists returns the existing one. A
        positive opening balance is recorded as a ``wallet_topup`` credit so
        the ledger replays to the balance.

        Args:
            db: Database session
            patient_id: Patient owning the wallet
            initial_balance: Opening balance, defaults to WALLET_INITIAL_BALANCE

        Returns:
            The patient's wallet
        """
        existing = db.query(Wallet).filter(Wallet.patient_id == patient_id).first()
        if existing:
            return existing

        opening = to_money(WALLET_INITIAL_BALANCE if initial_balance is None else initial_balance)
        if opening < 0:
            raise ValueError("Initial wallet balance cannot be negative")

        wallet = Wallet(
            patient_id=patient_id,
            balance=Decimal("0.00"),
            total_earned=Decimal("0.00"),
            total_spent=Decimal("0.00"),
            is_active=True,
        )
        try:
            db.add(wallet)
            db.flush()
            if opening > 0:
                WalletService._apply(
                    db,
                    wallet,
                    amount=opening,
                    is_credit=True,
                    transaction_type=TransactionType.WALLET_TOPUP,
                    description="Opening balance",
                )
            db.commit()
        except IntegrityError:
            # Another request opened the wallet first
            db.rollback()
            existing = db.query(Wallet).filter(Wallet.patient_id == patient_id).first()
            if existing:
                return existing
            raise

        logger.info(f"Created wallet {wallet.id} for patient {patient_id} (opening balance {opening})")
        return wallet

    @staticmethod
    def get_wallet(db: Session, patient_id: int) -> Wallet:
        wallet = db.query(Wallet).filter(Wallet.patient_id == patient_id).first()
        if not wallet:
            raise WalletMissingError(f"Patient {patient_id} has no wallet")
        return wallet

    @staticmethod
    def lock_wallet(db: Session, patient_id: int) -> Wallet:
        """Load and row-lock a patient's wallet for the rest of the transaction."""
        wallet = db.query(Wallet).filter(
            Wallet.patient_id == patient_id
        ).with_for_update().populate_existing().first()
        if not wallet:
            raise WalletMissingError(f"Patient {patient_id} has no wallet")
        return wallet

    @staticmethod
    def _apply(
        db: Session,
        wallet: Wallet,
        amount: Decimal,
        is_credit: bool,
        transaction_type: TransactionType,
        description: str,
        related_appointment_id: Optional[int] = None,
        related_schedule_id: Optional[int] = None,
        processed_by: Optional[int] = None
    ) -> WalletTransaction:
        """
        Apply one balance change to a locked wallet and append its ledger row.

        Does not commit; the caller owns the transaction.
        """
        if not wallet.is_active:
            raise WalletInactiveError(f"Wallet of patient {wallet.patient_id} is inactive")

        amount = to_money(amount)
        if amount <= 0:
            raise ValueError("Transaction amount must be positive")
        if transaction_type.is_credit != is_credit:
            raise ValueError(f"Transaction type {transaction_type.value} does not match direction")

        previous_balance = to_money(wallet.balance)
        if is_credit:
            new_balance = previous_balance + amount
            wallet.total_earned = to_money(wallet.total_earned) + amount
        else:
            if amount > previous_balance:
                raise InsufficientBalanceError(
                    f"Insufficient wallet balance: available {previous_balance}, required {amount}"
                )
            new_balance = previous_balance - amount
            wallet.total_spent = to_money(wallet.total_spent) + amount
        wallet.balance = new_balance

        transaction = WalletTransaction(
            wallet_id=wallet.id,
            transaction_type=transaction_type,
            amount=amount,
            is_credit=is_credit,
            previous_balance=previous_balance,
            new_balance=new_balance,
            status=TransactionStatus.COMPLETED,
            description=description,
            related_appointment_id=related_appointment_id,
            related_schedule_id=related_schedule_id,
            processed_by=processed_by,
        )
        db.add(transaction)
        db.flush()
        return transaction

    @staticmethod
    def _commit_change(
        db: Session,
        patient_id: int,
        amount: Decimal,
        is_credit: bool,
        transaction_type: TransactionType,
        description: str,
        related_appointment_id: Optional[int] = None,
        related_schedule_id: Optional[int] = None,
        processed_by: Optional[int] = None
    ) -> WalletTransaction:
        try:
            wallet = WalletService.lock_wallet(db, patient_id)
            transaction = WalletService._apply(
                db,
                wallet,
                amount=amount,
                is_credit=is_credit,
                transaction_type=transaction_type,
                description=description,
                related_appointment_id=related_appointment_id,
                related_schedule_id=related_schedule_id,
                processed_by=processed_by,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        direction = "Credited" if is_credit else "Debited"
        logger.info(
            f"{direction} {transaction.amount} ({transaction_type.value}) on wallet {transaction.wallet_id}, "
            f"balance {transaction.previous_balance} -> {transaction.new_balance}"
        )
        return transaction

    @staticmethod
    def credit(
        db: Session,
        patient_id: int,
        amount: Decimal,
        transaction_type: TransactionType = TransactionType.ADMIN_CREDIT,
        description: str = "Wallet credit",
        related_appointment_id: Optional[int] = None,
        related_schedule_id: Optional[int] = None,
        processed_by: Optional[int] = None
    ) -> WalletTransaction:
        """Add money to a wallet. Refuses an inactive wallet."""
        return WalletService._commit_change(
            db, patient_id, amount, True, transaction_type, description,
            related_appointment_id, related_schedule_id, processed_by,
        )

    @staticmethod
    def debit(
        db: Session,
        patient_id: int,
        amount: Decimal,
        transaction_type: TransactionType = TransactionType.ADMIN_DEBIT,
        description: str = "Wallet debit",
        related_appointment_id: Optional[int] = None,
        related_schedule_id: Optional[int] = None,
        processed_by: Optional[int] = None
    ) -> WalletTransaction:
        """Take money from a wallet. The balance may not go negative."""
        return WalletService._commit_change(
            db, patient_id, amount, False, transaction_type, description,
            related_appointment_id, related_schedule_id, processed_by,
        )

    @staticmethod
    def pay_for_appointment(
        db: Session,
        appointment_id: int,
        processed_by: Optional[int] = None
    ) -> WalletTransaction:
        """
        Pay an unpaid registered appointment from the patient's wallet.

        Debits the consultation fee and marks the appointment paid in the
        same transaction.

        Raises:
            AppointmentNotFoundError: Appointment does not exist
            BookingError: Walk-in, already paid, or no longer payable
            WalletMissingError, WalletInactiveError, InsufficientBalanceError
        """
        try:
            appointment = db.query(Appointment).filter(
                Appointment.id == appointment_id
            ).with_for_update().populate_existing().first()
            if not appointment:
                raise AppointmentNotFoundError(f"Appointment {appointment_id} not found", appointment_id=appointment_id)
            if appointment.is_walk_in or appointment.patient_id is None:
                raise BookingError("Walk-in appointments cannot be paid from a wallet", appointment_id=appointment_id)
            if appointment.is_paid:
                raise BookingError(f"Appointment {appointment_id} is already paid", appointment_id=appointment_id)
            if appointment.status in TERMINAL_STATUSES:
                raise BookingError(
                    f"Appointment {appointment_id} is {appointment.status.value} and cannot be paid",
                    appointment_id=appointment_id,
                )

            amount = to_money(appointment.consultation_fee or DEFAULT_CONSULTATION_FEE)
            wallet = WalletService.lock_wallet(db, appointment.patient_id)
            transaction = WalletService._apply(
                db,
                wallet,
                amount=amount,
                is_credit=False,
                transaction_type=TransactionType.APPOINTMENT_PAYMENT,
                description=f"Payment for token {appointment.token_number} (appointment {appointment.id})",
                related_appointment_id=appointment.id,
                related_schedule_id=appointment.schedule_id,
                processed_by=processed_by,
            )
            appointment.is_paid = True
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(f"Appointment {appointment_id} paid {amount} from wallet {wallet.id}")
        return transaction

    @staticmethod
    def admin_adjustment(
        db: Session,
        patient_id: int,
        amount: Decimal,
        is_credit: bool,
        reason: str,
        admin_id: int
    ) -> WalletTransaction:
        """Manual credit or debit by an administrator."""
        if not reason or not reason.strip():
            raise ValueError("Adjustment reason is required")

        transaction_type = TransactionType.ADMIN_CREDIT if is_credit else TransactionType.ADMIN_DEBIT
        transaction = WalletService._commit_change(
            db,
            patient_id,
            amount,
            is_credit,
            transaction_type,
            f"Admin adjustment: {reason.strip()}",
            processed_by=admin_id,
        )
        logger.info(f"Admin {admin_id} adjusted wallet of patient {patient_id}: {reason.strip()}")
        return transaction

    @staticmethod
    def set_wallet_active(db: Session, patient_id: int, is_active: bool) -> Wallet:
        try:
            wallet = WalletService.lock_wallet(db, patient_id)
            wallet.is_active = is_active
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(f"Wallet of patient {patient_id} {'activated' if is_active else 'deactivated'}")
        return wallet

    @staticmethod
    def list_transactions(
        db: Session,
        patient_id: int,
        limit: int = DEFAULT_TRANSACTION_PAGE_SIZE,
        offset: int = 0
    ) -> List[WalletTransaction]:
        """List a wallet's transactions, newest first."""
        wallet = WalletService.get_wallet(db, patient_id)
        limit = max(1, min(limit, MAX_TRANSACTION_PAGE_SIZE))
        offset = max(0, offset)

        return db.query(WalletTransaction).filter(
            WalletTransaction.wallet_id == wallet.id
        ).order_by(
            WalletTransaction.created_at.desc(),
            WalletTransaction.id.desc(),
        ).offset(offset).limit(limit).all()

    @staticmethod
    def get_wallet_summary(db: Session, patient_id: int) -> WalletSummary:
        wallet = WalletService.get_wallet(db, patient_id)
        recent = WalletService.list_transactions(db, patient_id, limit=WALLET_SUMMARY_RECENT_TRANSACTIONS)

        refund_types = list(REFUND_TRANSACTION_TYPES)
        total_count, total_refunds, total_payments = db.query(
            func.count(WalletTransaction.id),
            func.coalesce(func.sum(case(
                (WalletTransaction.transaction_type.in_(refund_types), WalletTransaction.amount),
                else_=0,
            )), 0),
            func.coalesce(func.sum(case(
                (WalletTransaction.transaction_type == TransactionType.APPOINTMENT_PAYMENT, WalletTransaction.amount),
                else_=0,
            )), 0),
        ).filter(WalletTransaction.wallet_id == wallet.id).one()

        return WalletSummary(
            wallet=wallet,
            recent_transactions=recent,
            total_transactions=total_count or 0,
            total_refunds=to_money(total_refunds or 0),
            total_payments=to_money(total_payments or 0),
        )

    @staticmethod
    def verify_ledger(db: Session, wallet_id: int) -> Decimal:
        """
        Replay a wallet's transactions and check them against its balance.

        Returns:
            The verified balance

        Raises:
            WalletMissingError: Wallet does not exist
            LedgerInconsistencyError: Names the first transaction that breaks the running total
        """
        wallet = db.query(Wallet).filter(Wallet.id == wallet_id).populate_existing().first()
        if not wallet:
            raise WalletMissingError(f"Wallet {wallet_id} not found")

        transactions = db.query(WalletTransaction).filter(
            WalletTransaction.wallet_id == wallet_id
        ).order_by(WalletTransaction.created_at, WalletTransaction.id).all()

        running = Decimal("0.00")
        earned = Decimal("0.00")
        spent = Decimal("0.00")
        for transaction in transactions:
            amount = to_money(transaction.amount)
            if to_money(transaction.previous_balance) != running:
                raise LedgerInconsistencyError(
                    f"Wallet {wallet_id} transaction {transaction.id}: previous balance "
                    f"{to_money(transaction.previous_balance)} does not match running total {running}"
                )
            if transaction.is_credit:
                running += amount
                earned += amount
            else:
                running -= amount
                spent += amount
            if to_money(transaction.new_balance) != running:
                raise LedgerInconsistencyError(
                    f"Wallet {wallet_id} transaction {transaction.id}: new balance "
                    f"{to_money(transaction.new_balance)} does not match running total {running}"
                )

        if (to_money(wallet.balance) != running
                or to_money(wallet.total_earned) != earned
                or to_money(wallet.total_spent) != spent):
            raise LedgerInconsistencyError(
                f"Wallet {wallet_id} balance {to_money(wallet.balance)} "
                f"(earned {to_money(wallet.total_earned)}, spent {to_money(wallet.total_spent)}) "
                f"does not match ledger replay {running} (earned {earned}, spent {spent})"
            )

        return running
