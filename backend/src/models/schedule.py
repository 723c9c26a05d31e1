"""
Schedule model representing a doctor's consultation session at a clinic.

A schedule is a bounded time window for one doctor at one clinic on one date.
Tokens (appointments) are issued against a schedule in strictly increasing
order until the schedule is full, paused, or cancelled.
"""

import enum
from datetime import date as date_type, datetime, time
from typing import Optional

from sqlalchemy import (
    CheckConstraint, Date, Enum, Index, Integer, String, Time, TIMESTAMP
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import MAX_NOTES_LENGTH
from core.database import Base


class ScheduleStatus(str, enum.Enum):
    """Lifecycle of a schedule. ``cancelled`` is terminal."""
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class Schedule(Base):
    """
    Schedule entity representing one doctor/clinic/date session with a token capacity.

    Schedules are created and mutated by staff. They are never physically
    deleted once appointments exist; cancellation is a terminal status that
    also records ``cancel_reason``.
    """

    __tablename__ = "schedules"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the schedule."""

    doctor_id: Mapped[int] = mapped_column(Integer, nullable=False)
    """Doctor running the session (owned by the doctor management collaborator)."""

    clinic_id: Mapped[int] = mapped_column(Integer, nullable=False)
    """Clinic hosting the session (owned by the clinic management collaborator)."""

    date: Mapped[date_type] = mapped_column(Date, nullable=False)
    """Calendar date of the session, in clinic-local time."""

    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    """Start of the consultation window."""

    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    """End of the consultation window."""

    max_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    """Token capacity. 0 means unlimited."""

    status: Mapped[ScheduleStatus] = mapped_column(
        Enum(
            ScheduleStatus,
            native_enum=False,
            length=20,
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
        default=ScheduleStatus.ACTIVE,
    )
    """Current lifecycle status: 'active', 'paused' or 'cancelled'."""

    cancel_reason: Mapped[Optional[str]] = mapped_column(String(MAX_NOTES_LENGTH), nullable=True)
    """Reason given by staff when the schedule was cancelled. Set once, never cleared."""

    last_token_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    """
    Per-schedule token sequence.

    Holds the last token number issued. Only the token allocator writes it,
    while holding the schedule row lock, in the same transaction that inserts
    the appointment carrying the new number.
    """

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the schedule was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the schedule was last modified."""

    # Relationships
    appointments = relationship(
        "Appointment",
        back_populates="schedule",
        order_by="Appointment.token_number",
    )
    """Appointments (tokens) booked against this schedule, in token order."""

    @property
    def is_active(self) -> bool:
        """Whether new tokens may currently be allocated (capacity aside)."""
        return self.status == ScheduleStatus.ACTIVE and self.cancel_reason is None

    @property
    def is_cancelled(self) -> bool:
        """Whether the schedule reached its terminal cancelled state."""
        return self.status == ScheduleStatus.CANCELLED

    @property
    def is_full(self) -> bool:
        """Whether the token capacity has been used up."""
        return self.max_tokens > 0 and self.last_token_number >= self.max_tokens

    __table_args__ = (
        CheckConstraint("max_tokens >= 0", name="ck_schedules_max_tokens_non_negative"),
        CheckConstraint(
            "cancel_reason IS NULL OR status = 'cancelled'",
            name="ck_schedules_cancel_reason_terminal",
        ),
        Index('idx_schedules_doctor_clinic_date', 'doctor_id', 'clinic_id', 'date'),
        Index('idx_schedules_date', 'date'),
    )
