"""Resolve a tenant's weekly rules and date exceptions into concrete windows."""

from dataclasses import dataclass
from datetime import date, time
from typing import Iterable, Mapping

from sqlalchemy.orm import Session

from booking_backend.core import config
from booking_backend.core.clock import local_weekday
from booking_backend.models.availability import AvailabilityException, AvailabilityRule, CalendarSettings

SLOT_DURATION_BOUNDS = (5, 480)
BUFFER_BOUNDS = (0, 240)
MIN_NOTICE_BOUNDS = (0, 30 * 24 * 60)
MAX_DAYS_AHEAD_BOUNDS = (1, 365)

DEFAULT_SLOT_DURATION_MINUTES = 30
DEFAULT_MIN_NOTICE_MINUTES = 60
DEFAULT_MAX_DAYS_AHEAD = 30


@dataclass(frozen=True)
class Window:
    start: time
    end: time


@dataclass(frozen=True)
class CalendarConfig:
    timezone: str
    slot_duration_minutes: int = DEFAULT_SLOT_DURATION_MINUTES
    buffer_before_minutes: int = 0
    buffer_after_minutes: int = 0
    min_notice_minutes: int = DEFAULT_MIN_NOTICE_MINUTES
    max_days_ahead: int = DEFAULT_MAX_DAYS_AHEAD


def clamp_int(value, bounds: tuple[int, int], fallback: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return fallback
    lower, upper = bounds
    return max(lower, min(upper, number))


def calendar_config_from_settings(settings: CalendarSettings | None) -> CalendarConfig:
    if settings is None:
        return CalendarConfig(timezone=config.DEFAULT_TIMEZONE)

    return CalendarConfig(
        timezone=(settings.timezone or config.DEFAULT_TIMEZONE).strip(),
        slot_duration_minutes=clamp_int(
            settings.slot_duration_minutes, SLOT_DURATION_BOUNDS, DEFAULT_SLOT_DURATION_MINUTES
        ),
        buffer_before_minutes=clamp_int(settings.buffer_before_minutes, BUFFER_BOUNDS, 0),
        buffer_after_minutes=clamp_int(settings.buffer_after_minutes, BUFFER_BOUNDS, 0),
        min_notice_minutes=clamp_int(settings.min_notice_minutes, MIN_NOTICE_BOUNDS, DEFAULT_MIN_NOTICE_MINUTES),
        max_days_ahead=clamp_int(settings.max_days_ahead, MAX_DAYS_AHEAD_BOUNDS, DEFAULT_MAX_DAYS_AHEAD),
    )


def resolve_day_windows(
    local_date: date,
    rules: Iterable[AvailabilityRule],
    exceptions: Mapping[date, AvailabilityException],
) -> list[Window]:
    """Open windows for one tenant-local date.

    An exception for the date replaces every weekly rule: closed means no
    windows, open means exactly its own window. Without an exception each
    active rule on the weekday is an independent window (split shifts).
    """
    exception = exceptions.get(local_date)
    if exception is not None:
        if exception.is_closed or exception.start_time is None or exception.end_time is None:
            return []
        candidates = [Window(exception.start_time, exception.end_time)]
    else:
        weekday = local_weekday(local_date)
        candidates = [
            Window(rule.start_time, rule.end_time)
            for rule in rules
            if rule.is_active and rule.weekday == weekday
        ]

    windows = [window for window in candidates if window.end > window.start]
    windows.sort(key=lambda window: (window.start, window.end))
    return windows


def load_calendar_config(db: Session, company_id: int) -> CalendarConfig:
    settings = db.query(CalendarSettings).filter(CalendarSettings.company_id == company_id).first()
    return calendar_config_from_settings(settings)


def load_rules(db: Session, company_id: int) -> list[AvailabilityRule]:
    return db.query(AvailabilityRule).filter(
        AvailabilityRule.company_id == company_id,
        AvailabilityRule.is_active.is_(True),
    ).order_by(AvailabilityRule.weekday.asc(), AvailabilityRule.start_time.asc()).all()


def load_exceptions(db: Session, company_id: int, first_day: date, last_day: date) -> dict[date, AvailabilityException]:
    exceptions = db.query(AvailabilityException).filter(
        AvailabilityException.company_id == company_id,
        AvailabilityException.day >= first_day,
        AvailabilityException.day <= last_day,
    ).all()
    return {exception.day: exception for exception in exceptions}
