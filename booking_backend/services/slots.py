"""Free slot generation.

Candidates are walked day by day in the tenant timezone, window by window, and
filtered against the notice period, the booking horizon and every busy source.
``generate_slots`` is a plain generator: it keeps no state between calls, so
callers can simply call it again with fresh inputs.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from itertools import islice
from typing import Iterable, Iterator, Mapping

from sqlalchemy.orm import Session

from booking_backend.core.clock import as_utc, load_timezone, local_parts, to_utc, utc_now
from booking_backend.errors import InvalidRequestError
from booking_backend.models.appointment import APPOINTMENT_STATUS_CANCELLED, Appointment
from booking_backend.models.availability import AvailabilityException, AvailabilityRule
from booking_backend.models.hold import AppointmentHold
from booking_backend.services.conflicts import intervals_overlap
from booking_backend.services.external_busy import ExternalBusyAggregator, ExternalBusyResult
from booking_backend.services.rules import (
    CalendarConfig,
    load_calendar_config,
    load_exceptions,
    load_rules,
    resolve_day_windows,
)

logger = logging.getLogger(__name__)

DEFAULT_STEP_MINUTES = 15
DEFAULT_SLOT_LIMIT = 12


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime


@dataclass(frozen=True)
class BusyInterval:
    start: datetime
    end: datetime


@dataclass
class AvailabilityResult:
    slots: list[Slot]
    timezone: str
    duration_minutes: int
    step_minutes: int
    warning: bool = False
    sources: list[str] = field(default_factory=list)


def expand_busy(start: datetime, end: datetime, calendar: CalendarConfig) -> BusyInterval:
    return BusyInterval(
        start=as_utc(start) - timedelta(minutes=calendar.buffer_before_minutes),
        end=as_utc(end) + timedelta(minutes=calendar.buffer_after_minutes),
    )


def _validate_generation_params(duration_minutes: int, step_minutes: int, limit: int) -> None:
    if duration_minutes <= 0:
        raise InvalidRequestError('invalid_duration', 'Duration must be a positive number of minutes.')
    if step_minutes <= 0:
        raise InvalidRequestError('invalid_step', 'Step must be a positive number of minutes.')
    if limit < 1:
        raise InvalidRequestError('invalid_limit', 'Limit must be at least 1.')


def _iter_candidates(
    calendar: CalendarConfig,
    rules: list[AvailabilityRule],
    exceptions: Mapping[date, AvailabilityException],
    busy: list[BusyInterval],
    now: datetime,
    duration: timedelta,
    step: timedelta,
) -> Iterator[Slot]:
    zone = load_timezone(calendar.timezone)
    earliest_start = now + timedelta(minutes=calendar.min_notice_minutes)
    latest_end = now + timedelta(days=calendar.max_days_ahead)
    first_day = local_parts(now, zone).date

    for day_offset in range(calendar.max_days_ahead + 1):
        local_day = first_day + timedelta(days=day_offset)
        day_slots: set[Slot] = set()

        for window in resolve_day_windows(local_day, rules, exceptions):
            window_start = to_utc(local_day, window.start, zone)
            window_end = to_utc(local_day, window.end, zone)
            latest_start = window_end - duration

            candidate = window_start
            while candidate <= latest_start:
                slot_end = candidate + duration
                if (
                    candidate >= earliest_start
                    and slot_end <= latest_end
                    and not any(intervals_overlap(candidate, slot_end, block.start, block.end) for block in busy)
                ):
                    day_slots.add(Slot(start=candidate, end=slot_end))
                candidate += step

        # Overlapping rules on one weekday must not produce duplicates or out-of-order slots.
        yield from sorted(day_slots, key=lambda slot: slot.start)


def generate_slots(
    calendar: CalendarConfig,
    rules: Iterable[AvailabilityRule],
    exceptions: Mapping[date, AvailabilityException],
    busy: Iterable[BusyInterval],
    now: datetime,
    duration_minutes: int | None = None,
    step_minutes: int = DEFAULT_STEP_MINUTES,
    limit: int = DEFAULT_SLOT_LIMIT,
) -> Iterator[Slot]:
    duration_minutes = calendar.slot_duration_minutes if duration_minutes is None else duration_minutes
    _validate_generation_params(duration_minutes, step_minutes, limit)

    candidates = _iter_candidates(
        calendar,
        list(rules),
        exceptions,
        list(busy),
        as_utc(now),
        timedelta(minutes=duration_minutes),
        timedelta(minutes=step_minutes),
    )
    return islice(candidates, limit)


def load_busy_intervals(
    db: Session,
    company_id: int,
    calendar: CalendarConfig,
    range_start: datetime,
    range_end: datetime,
    now: datetime,
) -> list[BusyInterval]:
    # Widen the query by a day so buffered neighbours just outside the range still count.
    query_start = range_start - timedelta(days=1)
    query_end = range_end + timedelta(days=1)

    appointments = db.query(Appointment.start_at, Appointment.end_at).filter(
        Appointment.company_id == company_id,
        Appointment.status != APPOINTMENT_STATUS_CANCELLED,
        Appointment.start_at < query_end,
        Appointment.end_at > query_start,
    ).all()

    holds = db.query(AppointmentHold.start_at, AppointmentHold.end_at).filter(
        AppointmentHold.company_id == company_id,
        AppointmentHold.expires_at > now,
        AppointmentHold.start_at < query_end,
        AppointmentHold.end_at > query_start,
    ).all()

    return [expand_busy(start, end, calendar) for start, end in [*appointments, *holds]]


def get_availability(
    db: Session,
    company_id: int,
    duration_minutes: int | None = None,
    step_minutes: int = DEFAULT_STEP_MINUTES,
    limit: int = DEFAULT_SLOT_LIMIT,
    now: datetime | None = None,
    busy_aggregator: ExternalBusyAggregator | None = None,
) -> AvailabilityResult:
    now = as_utc(now or utc_now())
    calendar = load_calendar_config(db, company_id)
    duration = calendar.slot_duration_minutes if duration_minutes is None else duration_minutes
    _validate_generation_params(duration, step_minutes, limit)

    zone = load_timezone(calendar.timezone)
    range_start = now + timedelta(minutes=calendar.min_notice_minutes)
    range_end = now + timedelta(days=calendar.max_days_ahead)
    first_day = local_parts(now, zone).date
    last_day = first_day + timedelta(days=calendar.max_days_ahead)

    rules = load_rules(db, company_id)
    exceptions = load_exceptions(db, company_id, first_day, last_day)
    busy = load_busy_intervals(db, company_id, calendar, range_start, range_end, now)

    external: ExternalBusyResult
    if range_start < range_end:
        aggregator = busy_aggregator or ExternalBusyAggregator(db)
        external = aggregator.collect(company_id, range_start, range_end)
    else:
        external = ExternalBusyResult()
    busy.extend(BusyInterval(start=block.start, end=block.end) for block in external.blocks)

    slots = list(
        generate_slots(
            calendar,
            rules,
            exceptions,
            busy,
            now,
            duration_minutes=duration,
            step_minutes=step_minutes,
            limit=limit,
        )
    )
    if external.warning:
        logger.info('Availability for company %s computed without some external busy data', company_id)

    return AvailabilityResult(
        slots=slots,
        timezone=calendar.timezone,
        duration_minutes=duration,
        step_minutes=step_minutes,
        warning=external.warning,
        sources=list(external.sources),
    )
