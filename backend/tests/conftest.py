"""
Test configuration and shared fixtures for the Clinic Queue test suite.

Uses SQLite by default (PostgreSQL via TEST_DATABASE_URL) with
transaction-based isolation. Each test gets a clean database state via
automatic transaction rollback.
"""

import os
import tempfile

# Point the application at a throwaway database before core modules are imported
os.environ.setdefault("CLINIC_QUEUE_TEST_DIR", tempfile.mkdtemp(prefix="clinic_queue_test_"))
_TEST_DIR = os.environ["CLINIC_QUEUE_TEST_DIR"]
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TEST_DIR, 'app.db')}")

import pytest
from datetime import date, time
from decimal import Decimal
from pathlib import Path
from typing import Generator, List, Optional

from sqlalchemy import text
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from core.database import Base, build_engine
from alembic.config import Config
from alembic import command

# Import all models to ensure they're registered with SQLAlchemy before any relationships are resolved
from models.schedule import Schedule
from models.appointment import Appointment
from models.wallet import Wallet
from models.wallet_transaction import WalletTransaction
from services.event_service import AppointmentEvent, event_dispatcher
from services.schedule_service import ScheduleService
from services.token_allocation_service import TokenAllocationService
from services.wallet_service import WalletService
from utils.datetime_utils import clinic_today


# Test database URL
TEST_DATABASE_URL = os.getenv(
    "TEST_DATABASE_URL",
    f"sqlite:///{os.path.join(_TEST_DIR, 'test.db')}"
)

ALEMBIC_INI_PATH = Path(__file__).resolve().parent.parent / "alembic.ini"


@pytest.fixture(scope="session")
def db_engine():
    """
    Create a database engine for the test session.

    This engine is shared across all tests for performance.
    Uses NullPool to avoid connection pool issues with transactions.
    """
    engine = build_engine(TEST_DATABASE_URL, poolclass=NullPool)

    yield engine

    engine.dispose()


@pytest.fixture(scope="session", autouse=True)
def setup_test_database(db_engine):
    """
    Setup test database schema using Alembic migrations.

    This runs once at the start of the test session and ensures
    the test database has the correct schema from migrations.
    """
    alembic_cfg = Config(str(ALEMBIC_INI_PATH))
    alembic_cfg.set_main_option("sqlalchemy.url", TEST_DATABASE_URL)
    alembic_cfg.attributes["configure_logger"] = False

    # Drop all tables to start fresh (including alembic_version if it exists)
    Base.metadata.drop_all(bind=db_engine)
    with db_engine.begin() as conn:
        conn.execute(text("DROP TABLE IF EXISTS alembic_version"))

    command.upgrade(alembic_cfg, "head")

    yield

    # Cleanup: drop all tables after test session
    Base.metadata.drop_all(bind=db_engine)
    with db_engine.begin() as conn:
        conn.execute(text("DROP TABLE IF EXISTS alembic_version"))


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """
    Provide a database session for a test with automatic rollback.

    1. Start a transaction on a dedicated connection
    2. Bind a session that turns every commit into a savepoint release
    3. Run the test
    4. Roll back the outer transaction (undoes all test changes)

    Application code can call commit() and rollback() freely; both only
    act on the current savepoint.
    """
    connection = db_engine.connect()
    transaction = connection.begin()

    session = Session(
        bind=connection,
        join_transaction_mode="create_savepoint",
        autoflush=False,
        expire_on_commit=False,
    )

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def captured_events() -> Generator[List[AppointmentEvent], None, None]:
    """Collect events published by the core during a test."""
    events: List[AppointmentEvent] = []
    event_dispatcher.subscribe(events.append)

    yield events

    event_dispatcher.unsubscribe(events.append)


# Helper functions for building test data through the services
def create_schedule(
    db_session: Session,
    doctor_id: int = 1,
    clinic_id: int = 1,
    max_tokens: int = 0,
    schedule_date: Optional[date] = None,
    start_time: time = time(9, 0),
    end_time: time = time(13, 0)
) -> Schedule:
    """Create an active schedule (defaults to today, unlimited tokens)."""
    return ScheduleService.create_schedule(
        db_session,
        doctor_id=doctor_id,
        clinic_id=clinic_id,
        schedule_date=schedule_date or clinic_today(),
        start_time=start_time,
        end_time=end_time,
        max_tokens=max_tokens,
    )


def create_wallet(db_session: Session, patient_id: int, balance: Decimal = Decimal("0.00")) -> Wallet:
    """Open a wallet with the given opening balance."""
    return WalletService.create_wallet(db_session, patient_id, initial_balance=balance)


def book_patient(
    db_session: Session,
    schedule: Schedule,
    patient_id: int,
    fee: Decimal = Decimal("300.00"),
    is_paid: bool = True
) -> Appointment:
    """Book a registered, paid appointment on the schedule."""
    return TokenAllocationService.allocate(
        db_session,
        schedule.id,
        patient_id=patient_id,
        consultation_fee=fee,
        is_paid=is_paid,
    )


def add_walk_in(
    db_session: Session,
    schedule: Schedule,
    guest_name: str = "Walk-in Guest",
    fee: Decimal = Decimal("300.00")
) -> Appointment:
    return TokenAllocationService.allocate_walk_in(
        db_session,
        schedule.id,
        guest_name=guest_name,
        consultation_fee=fee,
        is_paid=True,
    )


def wallet_transactions(db_session: Session, wallet_id: int) -> List[WalletTransaction]:
    return db_session.query(WalletTransaction).filter(
        WalletTransaction.wallet_id == wallet_id
    ).order_by(WalletTransaction.id).all()
