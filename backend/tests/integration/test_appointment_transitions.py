"""
Integration tests for appointment status transitions and their side effects.
"""

import pytest

from models import Appointment, AppointmentStatus
from services.appointment_status_service import AppointmentStatusService
from services.errors import AppointmentNotFoundError, InvalidTransitionError
from services.event_service import AppointmentEventType, event_dispatcher
from tests.conftest import add_walk_in, book_patient, create_schedule


def reload(db_session, appointment_id: int) -> Appointment:
    return db_session.query(Appointment).filter(
        Appointment.id == appointment_id
    ).populate_existing().one()


class TestTransitions:
    """Test the doctor's desk flow."""

    def test_full_consultation_flow(self, db_session):
        schedule = create_schedule(db_session)
        appointment = book_patient(db_session, schedule, patient_id=1)

        started = AppointmentStatusService.transition(db_session, appointment.id, AppointmentStatus.START)
        first_start = started.actual_start_time
        assert started.status == AppointmentStatus.START
        assert first_start is not None
        assert started.actual_end_time is None

        AppointmentStatusService.transition(db_session, appointment.id, AppointmentStatus.HOLD, notes="Lab report")
        resumed = AppointmentStatusService.transition(db_session, appointment.id, AppointmentStatus.START)
        # Only the first start is stamped
        assert resumed.actual_start_time == first_start

        AppointmentStatusService.transition(db_session, appointment.id, AppointmentStatus.PAUSE)
        AppointmentStatusService.transition(db_session, appointment.id, AppointmentStatus.START)
        completed = AppointmentStatusService.transition(db_session, appointment.id, AppointmentStatus.COMPLETED)

        assert completed.status == AppointmentStatus.COMPLETED
        assert completed.actual_end_time is not None
        assert completed.is_eligible_for_refund is False

    def test_status_accepts_string_values(self, db_session):
        schedule = create_schedule(db_session)
        appointment = book_patient(db_session, schedule, patient_id=1)

        updated = AppointmentStatusService.transition(db_session, appointment.id, "start")

        assert updated.status == AppointmentStatus.START

    def test_unknown_status_rejected(self, db_session):
        schedule = create_schedule(db_session)
        appointment = book_patient(db_session, schedule, patient_id=1)

        with pytest.raises(InvalidTransitionError):
            AppointmentStatusService.transition(db_session, appointment.id, "teleported")

    def test_notes_are_stored(self, db_session):
        schedule = create_schedule(db_session)
        appointment = book_patient(db_session, schedule, patient_id=1)

        AppointmentStatusService.transition(
            db_session, appointment.id, AppointmentStatus.CANCEL, notes="Patient called to cancel"
        )

        assert reload(db_session, appointment.id).status_notes == "Patient called to cancel"

    def test_notes_survive_change_without_notes(self, db_session):
        schedule = create_schedule(db_session)
        appointment = book_patient(db_session, schedule, patient_id=1)

        AppointmentStatusService.transition(db_session, appointment.id, AppointmentStatus.START, notes="Room 2")
        AppointmentStatusService.transition(db_session, appointment.id, AppointmentStatus.HOLD)
        assert reload(db_session, appointment.id).status_notes == "Room 2"

        AppointmentStatusService.transition(db_session, appointment.id, AppointmentStatus.START, notes="Room 3")
        assert reload(db_session, appointment.id).status_notes == "Room 3"

    def test_unknown_appointment(self, db_session):
        with pytest.raises(AppointmentNotFoundError):
            AppointmentStatusService.transition(db_session, 987654, AppointmentStatus.START)


class TestInvalidTransitions:
    """Test that unreachable changes are rejected and leave no trace."""

    def test_completed_cannot_be_cancelled(self, db_session):
        schedule = create_schedule(db_session)
        appointment = book_patient(db_session, schedule, patient_id=1)
        AppointmentStatusService.transition(db_session, appointment.id, AppointmentStatus.START)
        AppointmentStatusService.transition(db_session, appointment.id, AppointmentStatus.COMPLETED)

        with pytest.raises(InvalidTransitionError):
            AppointmentStatusService.transition(db_session, appointment.id, AppointmentStatus.CANCEL)

        fresh = reload(db_session, appointment.id)
        assert fresh.status == AppointmentStatus.COMPLETED
        assert fresh.is_eligible_for_refund is False

    def test_scheduled_cannot_complete(self, db_session):
        schedule = create_schedule(db_session)
        appointment = book_patient(db_session, schedule, patient_id=1)

        with pytest.raises(InvalidTransitionError):
            AppointmentStatusService.transition(db_session, appointment.id, AppointmentStatus.COMPLETED)

        assert reload(db_session, appointment.id).status == AppointmentStatus.SCHEDULED

    def test_cancelled_is_final(self, db_session):
        schedule = create_schedule(db_session)
        appointment = book_patient(db_session, schedule, patient_id=1)
        AppointmentStatusService.transition(db_session, appointment.id, AppointmentStatus.CANCEL)

        with pytest.raises(InvalidTransitionError):
            AppointmentStatusService.transition(db_session, appointment.id, AppointmentStatus.START)

    def test_walk_in_cannot_be_no_show(self, db_session):
        schedule = create_schedule(db_session)
        walk_in = add_walk_in(db_session, schedule)

        with pytest.raises(InvalidTransitionError):
            AppointmentStatusService.mark_no_show(db_session, walk_in.id)

        assert reload(db_session, walk_in.id).status == AppointmentStatus.SCHEDULED


class TestRefundEligibilityOnCancel:
    """Test the eligibility flag computed when cancelling."""

    def test_cancel_registered_booking_is_eligible(self, db_session):
        schedule = create_schedule(db_session)
        appointment = book_patient(db_session, schedule, patient_id=1)

        cancelled = AppointmentStatusService.transition(db_session, appointment.id, AppointmentStatus.CANCEL)

        assert cancelled.is_eligible_for_refund is True
        assert cancelled.has_been_refunded is False

    def test_cancel_in_progress_booking_is_eligible(self, db_session):
        schedule = create_schedule(db_session)
        appointment = book_patient(db_session, schedule, patient_id=1)
        AppointmentStatusService.transition(db_session, appointment.id, AppointmentStatus.START)
        AppointmentStatusService.transition(db_session, appointment.id, AppointmentStatus.HOLD)

        cancelled = AppointmentStatusService.transition(db_session, appointment.id, AppointmentStatus.CANCEL)

        assert cancelled.is_eligible_for_refund is True

    def test_cancel_walk_in_is_not_eligible(self, db_session):
        schedule = create_schedule(db_session)
        walk_in = add_walk_in(db_session, schedule)

        cancelled = AppointmentStatusService.transition(db_session, walk_in.id, AppointmentStatus.CANCEL)

        assert cancelled.is_eligible_for_refund is False

    def test_no_show_is_not_eligible(self, db_session):
        schedule = create_schedule(db_session)
        appointment = book_patient(db_session, schedule, patient_id=1)

        no_show = AppointmentStatusService.mark_no_show(db_session, appointment.id, notes="Did not arrive")

        assert no_show.status == AppointmentStatus.NO_SHOW
        assert no_show.is_eligible_for_refund is False


class TestStatusEvents:
    """Test that committed changes are published."""

    def test_status_change_publishes_event(self, db_session, captured_events):
        schedule = create_schedule(db_session)
        appointment = book_patient(db_session, schedule, patient_id=1)

        AppointmentStatusService.transition(db_session, appointment.id, AppointmentStatus.CANCEL, notes="Sick")

        events = [e for e in captured_events if e.appointment_id == appointment.id]
        assert len(events) == 1
        assert events[0].type == AppointmentEventType.STATUS_CHANGED
        assert events[0].payload["previous_status"] == "scheduled"
        assert events[0].payload["new_status"] == "cancel"
        assert events[0].payload["is_eligible_for_refund"] is True
        assert events[0].payload["notes"] == "Sick"

    def test_rejected_change_publishes_nothing(self, db_session, captured_events):
        schedule = create_schedule(db_session)
        appointment = book_patient(db_session, schedule, patient_id=1)

        with pytest.raises(InvalidTransitionError):
            AppointmentStatusService.transition(db_session, appointment.id, AppointmentStatus.COMPLETED)

        assert captured_events == []

    def test_failing_subscriber_does_not_undo_change(self, db_session):
        def broken(event):
            raise RuntimeError("notification outage")

        schedule = create_schedule(db_session)
        appointment = book_patient(db_session, schedule, patient_id=1)

        event_dispatcher.subscribe(broken)
        try:
            updated = AppointmentStatusService.transition(db_session, appointment.id, AppointmentStatus.START)
        finally:
            event_dispatcher.unsubscribe(broken)

        assert updated.status == AppointmentStatus.START
        assert reload(db_session, appointment.id).status == AppointmentStatus.START
