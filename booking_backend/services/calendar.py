"""Admin-side calendar reads and configuration writes."""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable

from sqlalchemy.orm import Session

from booking_backend.core.clock import as_utc, load_timezone, utc_now
from booking_backend.errors import InvalidRequestError
from booking_backend.models.appointment import APPOINTMENT_STATUS_CANCELLED, APPOINTMENT_STATUSES, Appointment
from booking_backend.models.availability import AvailabilityException, AvailabilityRule, CalendarSettings

STATUS_FILTER_UPCOMING = 'upcoming'
STATUS_FILTER_ALL = 'all'


@dataclass(frozen=True)
class AppointmentPage:
    appointments: list[Appointment]
    count: int


@dataclass(frozen=True)
class RuleInput:
    weekday: int
    start_time: time
    end_time: time
    is_active: bool = True


def list_appointments(
    db: Session,
    company_id: int,
    status: str = STATUS_FILTER_UPCOMING,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = 100,
    offset: int = 0,
    now: datetime | None = None,
) -> AppointmentPage:
    now = as_utc(now or utc_now())
    status = (status or STATUS_FILTER_UPCOMING).strip().lower()

    query = db.query(Appointment).filter(Appointment.company_id == company_id)

    if status in APPOINTMENT_STATUSES:
        query = query.filter(Appointment.status == status)
    elif status == STATUS_FILTER_UPCOMING:
        query = query.filter(
            Appointment.status != APPOINTMENT_STATUS_CANCELLED,
            Appointment.start_at >= now,
        )
    elif status != STATUS_FILTER_ALL:
        raise InvalidRequestError('invalid_status', f'Unknown status filter: {status}')

    # Date filters are whole UTC days.
    if date_from is not None:
        query = query.filter(Appointment.start_at >= datetime.combine(date_from, time.min, tzinfo=timezone.utc))
    if date_to is not None:
        query = query.filter(
            Appointment.start_at < datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=timezone.utc)
        )

    count = query.count()
    appointments = query.order_by(Appointment.start_at.asc(), Appointment.id.asc()).offset(offset).limit(limit).all()
    return AppointmentPage(appointments=appointments, count=count)


def save_calendar_settings(
    db: Session,
    company_id: int,
    timezone_name: str,
    slot_duration_minutes: int,
    buffer_before_minutes: int,
    buffer_after_minutes: int,
    min_notice_minutes: int,
    max_days_ahead: int,
) -> CalendarSettings:
    # Reject an unknown zone here so no request ever reads one.
    load_timezone(timezone_name)

    settings = db.query(CalendarSettings).filter(CalendarSettings.company_id == company_id).first()
    if settings is None:
        settings = CalendarSettings(company_id=company_id)
        db.add(settings)

    settings.timezone = timezone_name.strip()
    settings.slot_duration_minutes = slot_duration_minutes
    settings.buffer_before_minutes = buffer_before_minutes
    settings.buffer_after_minutes = buffer_after_minutes
    settings.min_notice_minutes = min_notice_minutes
    settings.max_days_ahead = max_days_ahead
    db.commit()
    db.refresh(settings)
    return settings


def replace_rules(db: Session, company_id: int, rules: Iterable[RuleInput]) -> list[AvailabilityRule]:
    rules = list(rules)
    for rule in rules:
        if not rule.end_time > rule.start_time:
            raise InvalidRequestError('invalid_time', 'Rule end time must be after its start time.')

    db.query(AvailabilityRule).filter(AvailabilityRule.company_id == company_id).delete(synchronize_session=False)
    rows = [
        AvailabilityRule(
            company_id=company_id,
            weekday=rule.weekday,
            start_time=rule.start_time,
            end_time=rule.end_time,
            is_active=rule.is_active,
        )
        for rule in rules
    ]
    db.add_all(rows)
    db.commit()

    return db.query(AvailabilityRule).filter(AvailabilityRule.company_id == company_id).order_by(
        AvailabilityRule.weekday.asc(),
        AvailabilityRule.start_time.asc(),
    ).all()


def save_exception(
    db: Session,
    company_id: int,
    day: date,
    is_closed: bool,
    start_time: time | None = None,
    end_time: time | None = None,
) -> AvailabilityException:
    if not is_closed:
        if start_time is None or end_time is None:
            raise InvalidRequestError('invalid_payload', 'Open exceptions need a start and end time.')
        if not end_time > start_time:
            raise InvalidRequestError('invalid_time', 'Exception end time must be after its start time.')

    exception = db.query(AvailabilityException).filter(
        AvailabilityException.company_id == company_id,
        AvailabilityException.day == day,
    ).first()
    if exception is None:
        exception = AvailabilityException(company_id=company_id, day=day)
        db.add(exception)

    exception.is_closed = is_closed
    exception.start_time = None if is_closed else start_time
    exception.end_time = None if is_closed else end_time
    db.commit()
    db.refresh(exception)
    return exception


def delete_exception(db: Session, company_id: int, day: date) -> bool:
    deleted = db.query(AvailabilityException).filter(
        AvailabilityException.company_id == company_id,
        AvailabilityException.day == day,
    ).delete(synchronize_session=False)
    db.commit()
    return deleted > 0
