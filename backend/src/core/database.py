# pyright: reportMissingTypeStubs=false
"""
Database configuration and session management.

This module sets up SQLAlchemy database connection, session management,
and provides dependency injection for database sessions in FastAPI routes.

PostgreSQL is the production database. SQLite is supported for local
development and the test suite; for SQLite every transaction is opened with
``BEGIN IMMEDIATE`` so writers are serialised by the database lock the same
way row locks serialise them on PostgreSQL.
"""

import logging
from contextlib import contextmanager
from typing import Any, Generator

from fastapi import HTTPException
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from core.config import DATABASE_URL
from core.constants import DB_POOL_RECYCLE_SECONDS, SQLITE_BUSY_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


def configure_sqlite_engine(engine: Engine) -> Engine:
    """
    Make pysqlite transactions explicit.

    pysqlite defers BEGIN until the first DML statement and mishandles
    SAVEPOINT. Taking over transaction control lets SQLAlchemy emit
    ``BEGIN IMMEDIATE`` (write lock acquired up front) and nested savepoints.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # type: ignore
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):  # type: ignore
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_engine(database_url: str, **kwargs: Any) -> Engine:
    """
    Create an engine for the given URL with the application's settings.

    Shared by the application, Alembic and the test suite so all of them
    get identical transaction semantics.
    """
    if database_url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", SQLITE_BUSY_TIMEOUT_SECONDS)
        engine = create_engine(
            database_url,
            connect_args=connect_args,
            echo=False,
            future=True,
            **kwargs,
        )
        return configure_sqlite_engine(engine)

    kwargs.setdefault("pool_pre_ping", True)  # Verify connections before use
    kwargs.setdefault("pool_recycle", DB_POOL_RECYCLE_SECONDS)
    return create_engine(
        database_url,
        echo=False,          # Disable SQL logging
        future=True,         # Use SQLAlchemy 2.0 style
        **kwargs,
    )


# Create SQLAlchemy engine with optimized settings
engine = build_engine(DATABASE_URL)

# Create configured SessionLocal class
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,  # Don't expire objects after commit
)

# Create Base class for declarative models
class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


# SQLAlchemy event listeners to automatically set created_at and updated_at in clinic time
@event.listens_for(Base, "before_insert", propagate=True)  # type: ignore
def receive_before_insert(mapper, connection, target):  # type: ignore
    """Set created_at and updated_at on insert using clinic timezone."""
    # Import here to avoid circular import
    from utils.datetime_utils import clinic_now
    now = clinic_now()
    # Only set timestamps that are mapped columns (exist in mapper.columns)
    for column_name in ("created_at", "updated_at"):
        if hasattr(mapper, "columns") and column_name in mapper.columns:  # type: ignore
            if getattr(target, column_name, None) is None:  # type: ignore
                setattr(target, column_name, now)  # type: ignore


@event.listens_for(Base, "before_update", propagate=True)  # type: ignore
def receive_before_update(mapper, connection, target):  # type: ignore
    """Set updated_at on update using clinic timezone."""
    # Import here to avoid circular import
    from utils.datetime_utils import clinic_now
    if hasattr(mapper, "columns") and "updated_at" in mapper.columns:  # type: ignore
        setattr(target, "updated_at", clinic_now())  # type: ignore


def get_db() -> Generator[Session, None, None]:
    """
    Request-scoped session for FastAPI endpoints.

    Services commit their own unit of work; anything left open when the
    request fails is rolled back, and the session is always closed.

    Example:
        ```python
        @router.get("/{schedule_id}")
        async def get_schedule(schedule_id: int, db: Session = Depends(get_db)):
            return ScheduleService.get_schedule(db, schedule_id)
        ```
    """
    db = SessionLocal()
    try:
        yield db
    except SQLAlchemyError as e:
        logger.exception(f"Database error: {e}")
        db.rollback()
        raise
    except (HTTPException, ValueError):
        # Access denials and domain errors are expected outcomes, not failures
        db.rollback()
        raise
    except Exception as e:
        logger.exception(f"Request failed with an open session: {e}")
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """
    Session for work outside a request (bulk refund runs, maintenance scripts).

    Commits on exit, rolls back and re-raises on error.

    Example:
        ```python
        with get_db_context() as db:
            schedule = db.query(Schedule).filter(Schedule.id == schedule_id).first()
        ```
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception as e:
        db.rollback()
        logger.exception(f"Database transaction failed: {e}")
        raise
    finally:
        db.close()


def create_tables() -> None:
    """
    Create the schedule, appointment and wallet tables directly.

    For a throwaway local SQLite database only; real databases are managed
    with the Alembic migrations.
    """
    import models  # noqa: F401  (registers every table on Base.metadata)
    try:
        Base.metadata.create_all(bind=engine)
        logger.info(f"Created tables: {', '.join(sorted(Base.metadata.tables))}")
    except SQLAlchemyError as e:
        logger.exception(f"Could not create tables: {e}")
        raise
