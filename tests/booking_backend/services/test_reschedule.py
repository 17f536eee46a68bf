from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from booking_backend.errors import AppointmentError, BookingLockedError, SlotConflictError
from booking_backend.models.appointment import Appointment
from booking_backend.services.reschedule import (
    WARNING_OLD_NOT_CANCELLED,
    cancel_appointment,
    reschedule_appointment,
)

NOW = datetime(2026, 1, 5, 7, 0, tzinfo=timezone.utc)
START = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
END = datetime(2026, 1, 5, 9, 45, tzinfo=timezone.utc)


@pytest.fixture
def appointment(db, entitled_company) -> Appointment:
    booked = Appointment(
        company_id=entitled_company.id,
        start_at=START,
        end_at=END,
        status='confirmed',
        source='widget',
        title='Checkup',
        contact_email='ada@example.com',
        meta={'page': 'home'},
    )
    db.add(booked)
    db.commit()
    db.refresh(booked)
    return booked


def test_reschedule_links_old_and_new_appointments(db, entitled_company, appointment: Appointment) -> None:
    new_start = START + timedelta(days=1)

    result = reschedule_appointment(db, entitled_company.id, appointment.id, new_start, now=NOW)

    old = db.query(Appointment).filter(Appointment.id == result.old_id).one()
    new = db.query(Appointment).filter(Appointment.id == result.new_id).one()
    assert result.warning is None
    assert old.status == 'cancelled'
    assert old.rescheduled_to_id == new.id
    assert old.cancelled_at is not None
    assert new.status == 'confirmed'
    assert new.rescheduled_from_id == old.id
    assert new.start_at.replace(tzinfo=timezone.utc) == new_start
    assert new.end_at.replace(tzinfo=timezone.utc) == new_start + timedelta(minutes=45)
    assert new.title == 'Checkup'
    assert new.contact_email == 'ada@example.com'


def test_reschedule_may_overlap_its_own_previous_interval(db, entitled_company, appointment: Appointment) -> None:
    result = reschedule_appointment(
        db,
        entitled_company.id,
        appointment.id,
        START + timedelta(minutes=15),
        END + timedelta(minutes=15),
        now=NOW,
    )

    assert result.warning is None


def test_reschedule_into_booked_time_is_rejected(db, entitled_company, appointment: Appointment) -> None:
    other_start = START + timedelta(hours=2)
    db.add(Appointment(company_id=entitled_company.id, start_at=other_start, end_at=other_start + timedelta(minutes=30)))
    db.commit()

    with pytest.raises(SlotConflictError):
        reschedule_appointment(db, entitled_company.id, appointment.id, other_start, now=NOW)

    assert db.query(Appointment).count() == 2


def test_reschedule_of_unknown_appointment_is_not_found(db, entitled_company) -> None:
    with pytest.raises(AppointmentError) as exception_info:
        reschedule_appointment(db, entitled_company.id, 404, START, END, now=NOW)

    assert exception_info.value.code == 'appointment_not_found'
    assert exception_info.value.status_code == 404


def test_reschedule_of_cancelled_appointment_is_rejected(db, entitled_company, appointment: Appointment) -> None:
    cancel_appointment(db, entitled_company.id, appointment.id, now=NOW)

    with pytest.raises(AppointmentError) as exception_info:
        reschedule_appointment(db, entitled_company.id, appointment.id, START + timedelta(days=1), now=NOW)

    assert exception_info.value.code == 'already_cancelled'


def test_reschedule_requires_entitlement(db, company) -> None:
    with pytest.raises(BookingLockedError):
        reschedule_appointment(db, company.id, 1, START, END, now=NOW)


def test_reschedule_reports_partial_failure_as_warning(
    db,
    entitled_company,
    appointment: Appointment,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def failing_retire(*args, **kwargs):
        raise OperationalError('UPDATE', {}, Exception('connection lost'))

    monkeypatch.setattr('booking_backend.services.reschedule._retire_appointment', failing_retire)

    result = reschedule_appointment(db, entitled_company.id, appointment.id, START + timedelta(days=1), now=NOW)

    assert result.warning == WARNING_OLD_NOT_CANCELLED
    assert result.old_id == appointment.id
    assert result.new_id != appointment.id
    statuses = {row.id: row.status for row in db.query(Appointment).all()}
    assert statuses == {result.old_id: 'confirmed', result.new_id: 'confirmed'}


def test_cancel_marks_appointment_and_rejects_repeat(db, entitled_company, appointment: Appointment) -> None:
    cancelled = cancel_appointment(db, entitled_company.id, appointment.id, now=NOW)

    assert cancelled.status == 'cancelled'
    assert cancelled.cancelled_at is not None

    with pytest.raises(AppointmentError) as exception_info:
        cancel_appointment(db, entitled_company.id, appointment.id, now=NOW)
    assert exception_info.value.code == 'already_cancelled'


def test_cancel_is_scoped_to_the_tenant(db, entitled_company, appointment: Appointment) -> None:
    with pytest.raises(AppointmentError) as exception_info:
        cancel_appointment(db, entitled_company.id + 1, appointment.id, now=NOW)

    assert exception_info.value.code == 'appointment_not_found'
