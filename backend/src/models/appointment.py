"""
Appointment model representing a token issued against a schedule.

Each appointment holds one queue position (its token number) within a
schedule, for either a registered patient or a walk-in guest. The status
column is the single source of truth for where the token is in its
lifecycle; display flags are derived from it.
"""

import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean, CheckConstraint, Enum, ForeignKey, Index, Integer, Numeric,
    String, TIMESTAMP, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import MAX_NOTES_LENGTH, MAX_STRING_LENGTH, MONEY_PRECISION, MONEY_SCALE
from core.database import Base


class AppointmentStatus(str, enum.Enum):
    """Token lifecycle states."""
    SCHEDULED = "scheduled"
    START = "start"
    HOLD = "hold"
    PAUSE = "pause"
    COMPLETED = "completed"
    CANCEL = "cancel"
    NO_SHOW = "no_show"


TERMINAL_STATUSES = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCEL,
    AppointmentStatus.NO_SHOW,
})


class Appointment(Base):
    """
    Appointment entity: one token in a schedule's queue.

    Core-owned fields (token_number, has_been_refunded, refund_amount,
    is_eligible_for_refund) are written only by the token allocator, the
    status service and the refund service.
    """

    __tablename__ = "appointments"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the appointment."""

    schedule_id: Mapped[int] = mapped_column(ForeignKey("schedules.id", ondelete="RESTRICT"), nullable=False)
    """Schedule this token was issued against."""

    doctor_id: Mapped[int] = mapped_column(Integer, nullable=False)
    """Doctor of the schedule, denormalised for queue queries."""

    clinic_id: Mapped[int] = mapped_column(Integer, nullable=False)
    """Clinic of the schedule, denormalised for queue queries."""

    patient_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Registered patient. NULL for walk-ins (guests have no wallet)."""

    guest_name: Mapped[Optional[str]] = mapped_column(String(MAX_STRING_LENGTH), nullable=True)
    """Name of the walk-in guest."""

    guest_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    """Optional phone number of the walk-in guest."""

    token_number: Mapped[int] = mapped_column(Integer, nullable=False)
    """Queue position within the schedule. Unique per schedule, never reused."""

    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(
            AppointmentStatus,
            native_enum=False,
            length=20,
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
        default=AppointmentStatus.SCHEDULED,
    )
    """Current lifecycle status."""

    status_notes: Mapped[Optional[str]] = mapped_column(String(MAX_NOTES_LENGTH), nullable=True)
    """Free-text note attached by staff on the latest status change."""

    consultation_fee: Mapped[Decimal] = mapped_column(Numeric(MONEY_PRECISION, MONEY_SCALE), nullable=False)
    """Fee confirmed by the payment collaborator at booking time."""

    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    """Whether the payment collaborator confirmed payment."""

    is_walk_in: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    """True for guest tokens added at the desk (patient_id is NULL)."""

    has_been_refunded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    """Idempotence guard: flipped false → true exactly once, together with the refund credit."""

    refund_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(MONEY_PRECISION, MONEY_SCALE), nullable=True)
    """Amount credited to the patient's wallet, once refunded."""

    refunded_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    """When the refund was committed."""

    is_eligible_for_refund: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    """Computed on cancellation; cleared when the refund is issued."""

    actual_start_time: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    """When the consultation first started."""

    actual_end_time: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    """When the consultation was completed."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the token was issued."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the appointment was last modified."""

    # Relationships
    schedule = relationship("Schedule", back_populates="appointments")
    """Relationship to the Schedule this token belongs to."""

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_completed(self) -> bool:
        return self.status == AppointmentStatus.COMPLETED

    @property
    def display_name(self) -> str:
        """Guest name for walk-ins, a patient reference otherwise."""
        if self.is_walk_in:
            return self.guest_name or "Walk-in"
        return f"Patient #{self.patient_id}"

    __table_args__ = (
        UniqueConstraint('schedule_id', 'token_number', name='uq_appointments_schedule_token'),
        CheckConstraint(
            "(patient_id IS NULL AND is_walk_in) OR (patient_id IS NOT NULL AND NOT is_walk_in)",
            name="ck_appointments_walk_in_has_no_patient",
        ),
        CheckConstraint(
            "NOT has_been_refunded OR (refund_amount IS NOT NULL AND NOT is_eligible_for_refund)",
            name="ck_appointments_refund_guard",
        ),
        CheckConstraint("token_number > 0", name="ck_appointments_token_positive"),
        Index('idx_appointments_schedule_status', 'schedule_id', 'status'),
        Index('idx_appointments_doctor_clinic', 'doctor_id', 'clinic_id'),
        Index('idx_appointments_patient', 'patient_id'),
        # Refund management queue lookups
        Index('idx_appointments_refund_pending', 'is_eligible_for_refund', 'has_been_refunded'),
    )
