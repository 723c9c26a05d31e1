"""
Integration tests for the wallet ledger.

Every balance change appends exactly one immutable transaction, and replaying
a wallet's transactions reproduces its balance.
"""

import pytest
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from models import (
    Appointment, AppointmentStatus, LedgerImmutableError, TransactionType, Wallet
)
from services.appointment_status_service import AppointmentStatusService
from services.errors import (
    BookingError, InsufficientBalanceError, LedgerInconsistencyError,
    WalletInactiveError, WalletMissingError
)
from services.refund_service import RefundService
from services.wallet_service import WalletService, to_money
from tests.conftest import (
    add_walk_in, book_patient, create_schedule, create_wallet, wallet_transactions
)


class TestCreateWallet:

    def test_create_empty_wallet(self, db_session):
        wallet = create_wallet(db_session, patient_id=1)

        assert wallet.balance == Decimal("0.00")
        assert wallet.total_earned == Decimal("0.00")
        assert wallet.total_spent == Decimal("0.00")
        assert wallet.is_active is True
        assert wallet_transactions(db_session, wallet.id) == []

    def test_opening_balance_is_recorded_as_topup(self, db_session):
        wallet = create_wallet(db_session, patient_id=1, balance=Decimal("75.00"))

        [topup] = wallet_transactions(db_session, wallet.id)
        assert topup.transaction_type == TransactionType.WALLET_TOPUP
        assert topup.amount == Decimal("75.00")
        assert topup.previous_balance == Decimal("0.00")
        assert topup.new_balance == Decimal("75.00")
        assert topup.description == "Opening balance"
        assert wallet.balance == Decimal("75.00")

    def test_create_is_idempotent(self, db_session):
        first = create_wallet(db_session, patient_id=1, balance=Decimal("10.00"))
        second = create_wallet(db_session, patient_id=1, balance=Decimal("999.00"))

        assert second.id == first.id
        assert second.balance == Decimal("10.00")
        assert len(wallet_transactions(db_session, first.id)) == 1

    def test_negative_opening_balance_rejected(self, db_session):
        with pytest.raises(ValueError):
            create_wallet(db_session, patient_id=1, balance=Decimal("-5.00"))

    def test_get_missing_wallet(self, db_session):
        with pytest.raises(WalletMissingError) as exc_info:
            WalletService.get_wallet(db_session, 404)
        assert exc_info.value.status_code == 404


class TestCreditDebit:

    def test_credit_and_debit_update_totals(self, db_session):
        wallet = create_wallet(db_session, patient_id=1)

        credit = WalletService.credit(db_session, 1, Decimal("100.00"), description="Goodwill")
        debit = WalletService.debit(db_session, 1, Decimal("40.25"), description="Correction")

        assert credit.is_credit is True
        assert credit.transaction_type == TransactionType.ADMIN_CREDIT
        assert debit.is_credit is False
        assert debit.transaction_type == TransactionType.ADMIN_DEBIT
        assert debit.previous_balance == Decimal("100.00")
        assert debit.new_balance == Decimal("59.75")
        assert debit.signed_amount == Decimal("-40.25")

        fresh = db_session.query(Wallet).filter(Wallet.id == wallet.id).populate_existing().one()
        assert fresh.balance == Decimal("59.75")
        assert fresh.total_earned == Decimal("100.00")
        assert fresh.total_spent == Decimal("40.25")

    def test_debit_cannot_overdraw(self, db_session):
        wallet = create_wallet(db_session, patient_id=1, balance=Decimal("20.00"))

        with pytest.raises(InsufficientBalanceError):
            WalletService.debit(db_session, 1, Decimal("20.01"))

        fresh = db_session.query(Wallet).filter(Wallet.id == wallet.id).populate_existing().one()
        assert fresh.balance == Decimal("20.00")
        assert len(wallet_transactions(db_session, wallet.id)) == 1

    def test_debit_to_exactly_zero(self, db_session):
        create_wallet(db_session, patient_id=1, balance=Decimal("20.00"))

        transaction = WalletService.debit(db_session, 1, Decimal("20.00"))

        assert transaction.new_balance == Decimal("0.00")

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1.00"), Decimal("0.004")])
    def test_non_positive_amount_rejected(self, db_session, amount):
        create_wallet(db_session, patient_id=1)

        with pytest.raises(ValueError):
            WalletService.credit(db_session, 1, amount)

    def test_type_must_match_direction(self, db_session):
        create_wallet(db_session, patient_id=1, balance=Decimal("10.00"))

        with pytest.raises(ValueError):
            WalletService.debit(db_session, 1, Decimal("5.00"), transaction_type=TransactionType.ADMIN_CREDIT)

    def test_inactive_wallet_refuses_changes(self, db_session):
        create_wallet(db_session, patient_id=1, balance=Decimal("10.00"))
        WalletService.set_wallet_active(db_session, 1, False)

        with pytest.raises(WalletInactiveError):
            WalletService.credit(db_session, 1, Decimal("5.00"))
        with pytest.raises(WalletInactiveError):
            WalletService.debit(db_session, 1, Decimal("5.00"))

        reactivated = WalletService.set_wallet_active(db_session, 1, True)
        assert reactivated.is_active is True
        assert WalletService.credit(db_session, 1, Decimal("5.00")).new_balance == Decimal("15.00")

    def test_missing_wallet(self, db_session):
        with pytest.raises(WalletMissingError):
            WalletService.credit(db_session, 404, Decimal("5.00"))

    def test_to_money_rounds_half_up(self):
        assert to_money(Decimal("1.005")) == Decimal("1.01")
        assert to_money(2) == Decimal("2.00")
        assert to_money("3.1") == Decimal("3.10")


class TestAdminAdjustment:

    def test_admin_credit(self, db_session):
        create_wallet(db_session, patient_id=1)

        transaction = WalletService.admin_adjustment(
            db_session, 1, Decimal("50.00"), is_credit=True, reason="Billing error", admin_id=3
        )

        assert transaction.transaction_type == TransactionType.ADMIN_CREDIT
        assert transaction.description == "Admin adjustment: Billing error"
        assert transaction.processed_by == 3

    def test_admin_debit(self, db_session):
        create_wallet(db_session, patient_id=1, balance=Decimal("50.00"))

        transaction = WalletService.admin_adjustment(
            db_session, 1, Decimal("30.00"), is_credit=False, reason="Duplicate credit", admin_id=3
        )

        assert transaction.transaction_type == TransactionType.ADMIN_DEBIT
        assert transaction.new_balance == Decimal("20.00")

    def test_reason_required(self, db_session):
        create_wallet(db_session, patient_id=1)

        with pytest.raises(ValueError):
            WalletService.admin_adjustment(db_session, 1, Decimal("5.00"), is_credit=True, reason=" ", admin_id=3)


class TestPayForAppointment:

    def test_pay_unpaid_booking(self, db_session):
        create_wallet(db_session, patient_id=1, balance=Decimal("500.00"))
        schedule = create_schedule(db_session)
        appointment = book_patient(db_session, schedule, patient_id=1, fee=Decimal("300.00"), is_paid=False)

        transaction = WalletService.pay_for_appointment(db_session, appointment.id, processed_by=8)

        assert transaction.transaction_type == TransactionType.APPOINTMENT_PAYMENT
        assert transaction.amount == Decimal("300.00")
        assert transaction.new_balance == Decimal("200.00")
        assert transaction.related_appointment_id == appointment.id
        fresh = db_session.query(Appointment).filter(Appointment.id == appointment.id).populate_existing().one()
        assert fresh.is_paid is True

    def test_paid_then_refunded_booking(self, db_session):
        """Payment and refund of the same appointment both land in the ledger."""
        wallet = create_wallet(db_session, patient_id=1, balance=Decimal("300.00"))
        schedule = create_schedule(db_session)
        appointment = book_patient(db_session, schedule, patient_id=1, fee=Decimal("300.00"), is_paid=False)
        WalletService.pay_for_appointment(db_session, appointment.id)
        AppointmentStatusService.transition(db_session, appointment.id, AppointmentStatus.CANCEL)
        RefundService.refund_appointment(db_session, appointment.id, reason="Cancelled")

        assert WalletService.verify_ledger(db_session, wallet.id) == Decimal("300.00")
        assert [t.transaction_type for t in wallet_transactions(db_session, wallet.id)] == [
            TransactionType.WALLET_TOPUP,
            TransactionType.APPOINTMENT_PAYMENT,
            TransactionType.REFUND_APPOINTMENT_CANCEL,
        ]

    def test_insufficient_balance_leaves_booking_unpaid(self, db_session):
        create_wallet(db_session, patient_id=1, balance=Decimal("10.00"))
        schedule = create_schedule(db_session)
        appointment = book_patient(db_session, schedule, patient_id=1, is_paid=False)

        with pytest.raises(InsufficientBalanceError):
            WalletService.pay_for_appointment(db_session, appointment.id)

        fresh = db_session.query(Appointment).filter(Appointment.id == appointment.id).populate_existing().one()
        assert fresh.is_paid is False

    def test_cannot_pay_twice(self, db_session):
        create_wallet(db_session, patient_id=1, balance=Decimal("1000.00"))
        schedule = create_schedule(db_session)
        appointment = book_patient(db_session, schedule, patient_id=1, is_paid=True)

        with pytest.raises(BookingError) as exc_info:
            WalletService.pay_for_appointment(db_session, appointment.id)
        assert "already paid" in exc_info.value.message

    def test_cannot_pay_for_walk_in(self, db_session):
        schedule = create_schedule(db_session)
        walk_in = add_walk_in(db_session, schedule)

        with pytest.raises(BookingError):
            WalletService.pay_for_appointment(db_session, walk_in.id)

    def test_cannot_pay_for_cancelled_booking(self, db_session):
        create_wallet(db_session, patient_id=1, balance=Decimal("1000.00"))
        schedule = create_schedule(db_session)
        appointment = book_patient(db_session, schedule, patient_id=1, is_paid=False)
        AppointmentStatusService.transition(db_session, appointment.id, AppointmentStatus.CANCEL)

        with pytest.raises(BookingError):
            WalletService.pay_for_appointment(db_session, appointment.id)


class TestLedgerIntegrity:

    def test_transactions_are_immutable(self, db_session):
        wallet = create_wallet(db_session, patient_id=1, balance=Decimal("10.00"))
        [transaction] = wallet_transactions(db_session, wallet.id)

        transaction.amount = Decimal("999.00")
        with pytest.raises(LedgerImmutableError):
            db_session.flush()
        db_session.rollback()

        [transaction] = wallet_transactions(db_session, wallet.id)
        db_session.delete(transaction)
        with pytest.raises(LedgerImmutableError):
            db_session.flush()
        db_session.rollback()

        assert WalletService.verify_ledger(db_session, wallet.id) == Decimal("10.00")

    def test_verify_ledger_after_many_changes(self, db_session):
        wallet = create_wallet(db_session, patient_id=1, balance=Decimal("5.00"))
        WalletService.credit(db_session, 1, Decimal("12.50"))
        WalletService.debit(db_session, 1, Decimal("7.25"))
        WalletService.credit(db_session, 1, Decimal("0.75"))

        assert WalletService.verify_ledger(db_session, wallet.id) == Decimal("11.00")

        history = wallet_transactions(db_session, wallet.id)
        for previous, current in zip(history, history[1:]):
            assert current.previous_balance == previous.new_balance

    def test_verify_ledger_detects_tampering(self, db_session):
        """A balance changed behind the ledger's back is reported."""
        wallet = create_wallet(db_session, patient_id=1, balance=Decimal("10.00"))
        db_session.execute(
            update(Wallet).where(Wallet.id == wallet.id).values(
                balance=Decimal("15.00"), total_earned=Decimal("15.00")
            )
        )

        with pytest.raises(LedgerInconsistencyError) as exc_info:
            WalletService.verify_ledger(db_session, wallet.id)
        assert exc_info.value.status_code == 500

    def test_verify_unknown_wallet(self, db_session):
        with pytest.raises(WalletMissingError):
            WalletService.verify_ledger(db_session, 424242)

    def test_one_refund_credit_per_appointment(self, db_session):
        """The ledger refuses a second credit referencing the same appointment."""
        wallet = create_wallet(db_session, patient_id=1)
        schedule = create_schedule(db_session)
        appointment = book_patient(db_session, schedule, patient_id=1)
        WalletService.credit(
            db_session, 1, Decimal("1.00"), transaction_type=TransactionType.REFUND_APPOINTMENT_CANCEL,
            related_appointment_id=appointment.id,
        )

        with pytest.raises(IntegrityError):
            WalletService.credit(
                db_session, 1, Decimal("1.00"), transaction_type=TransactionType.REFUND_APPOINTMENT_CANCEL,
                related_appointment_id=appointment.id,
            )
        assert len(wallet_transactions(db_session, wallet.id)) == 1


class TestHistoryAndSummary:

    def test_list_transactions_newest_first_with_paging(self, db_session):
        create_wallet(db_session, patient_id=1)
        amounts = [Decimal("1.00"), Decimal("2.00"), Decimal("3.00"), Decimal("4.00")]
        for amount in amounts:
            WalletService.credit(db_session, 1, amount)

        page_one = WalletService.list_transactions(db_session, 1, limit=2)
        page_two = WalletService.list_transactions(db_session, 1, limit=2, offset=2)

        assert [t.amount for t in page_one] == [Decimal("4.00"), Decimal("3.00")]
        assert [t.amount for t in page_two] == [Decimal("2.00"), Decimal("1.00")]

    def test_summary_totals(self, db_session):
        create_wallet(db_session, patient_id=1, balance=Decimal("500.00"))
        schedule = create_schedule(db_session)
        paid = book_patient(db_session, schedule, patient_id=1, fee=Decimal("200.00"), is_paid=False)
        WalletService.pay_for_appointment(db_session, paid.id)
        AppointmentStatusService.transition(db_session, paid.id, AppointmentStatus.CANCEL)
        RefundService.refund_appointment(db_session, paid.id, reason="Cancelled")

        summary = WalletService.get_wallet_summary(db_session, 1)

        assert summary.wallet.balance == Decimal("500.00")
        assert summary.total_transactions == 3
        assert summary.total_refunds == Decimal("200.00")
        assert summary.total_payments == Decimal("200.00")
        assert len(summary.recent_transactions) == 3
        assert summary.recent_transactions[0].transaction_type == TransactionType.REFUND_APPOINTMENT_CANCEL
