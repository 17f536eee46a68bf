from datetime import datetime

from sqlalchemy.orm import Session

from booking_backend.core.clock import as_utc
from booking_backend.errors import InvalidRequestError, SlotConflictError
from booking_backend.models.appointment import APPOINTMENT_STATUS_CANCELLED, Appointment
from booking_backend.models.hold import AppointmentHold


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open overlap test; intervals that only touch do not overlap."""
    return a_start < b_end and b_start < a_end


def validate_interval(start: datetime, end: datetime) -> tuple[datetime, datetime]:
    if start is None or end is None:
        raise InvalidRequestError('invalid_payload', 'Start and end are required.')

    start_utc = as_utc(start)
    end_utc = as_utc(end)
    if not end_utc > start_utc:
        raise InvalidRequestError('invalid_time', 'End must be after start.')

    return start_utc, end_utc


def find_conflict(
    db: Session,
    company_id: int,
    start: datetime,
    end: datetime,
    now: datetime,
    exclude_hold_token: str | None = None,
    exclude_appointment_id: int | None = None,
) -> str | None:
    appointments_query = db.query(Appointment.start_at, Appointment.end_at).filter(
        Appointment.company_id == company_id,
        Appointment.status != APPOINTMENT_STATUS_CANCELLED,
        Appointment.start_at < end,
        Appointment.end_at > start,
    )
    if exclude_appointment_id is not None:
        appointments_query = appointments_query.filter(Appointment.id != exclude_appointment_id)

    for appointment_start, appointment_end in appointments_query.all():
        if intervals_overlap(start, end, as_utc(appointment_start), as_utc(appointment_end)):
            return 'slot_taken'

    holds_query = db.query(AppointmentHold.start_at, AppointmentHold.end_at).filter(
        AppointmentHold.company_id == company_id,
        AppointmentHold.expires_at > now,
        AppointmentHold.start_at < end,
        AppointmentHold.end_at > start,
    )
    if exclude_hold_token is not None:
        holds_query = holds_query.filter(AppointmentHold.hold_token != exclude_hold_token)

    for hold_start, hold_end in holds_query.all():
        if intervals_overlap(start, end, as_utc(hold_start), as_utc(hold_end)):
            return 'slot_held'

    return None


def ensure_slot_free(
    db: Session,
    company_id: int,
    start: datetime,
    end: datetime,
    now: datetime,
    exclude_hold_token: str | None = None,
    exclude_appointment_id: int | None = None,
) -> None:
    conflict = find_conflict(
        db,
        company_id,
        start,
        end,
        now,
        exclude_hold_token=exclude_hold_token,
        exclude_appointment_id=exclude_appointment_id,
    )
    if conflict:
        raise SlotConflictError(conflict)
