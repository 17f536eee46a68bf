"""Conversions between tenant-local wall time and UTC instants."""

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class InvalidTimezoneError(ValueError):
    """Raised for a timezone identifier the tz database does not know."""


@dataclass(frozen=True)
class LocalParts:
    year: int
    month: int
    day: int
    hour: int
    minute: int
    weekday: int  # 0 = Sunday ... 6 = Saturday

    @property
    def date(self) -> date:
        return date(self.year, self.month, self.day)


@lru_cache(maxsize=128)
def load_timezone(name: str) -> ZoneInfo:
    normalized = (name or '').strip()
    if not normalized:
        raise InvalidTimezoneError('Timezone identifier is required.')
    try:
        return ZoneInfo(normalized)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidTimezoneError(f'Unknown timezone: {normalized}') from exc


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_weekday(day: date) -> int:
    return day.isoweekday() % 7


def to_utc(local_date: date, local_time: time, tz: ZoneInfo | str) -> datetime:
    """Anchor a wall-clock time in ``tz`` to a UTC instant.

    Times inside a DST gap or overlap resolve with ``fold=0``, i.e. with the
    offset that was in force before the transition.
    """
    zone = load_timezone(tz) if isinstance(tz, str) else tz
    wall = datetime.combine(local_date, local_time.replace(tzinfo=None, fold=0), tzinfo=zone)
    return wall.astimezone(timezone.utc)


def local_parts(instant: datetime, tz: ZoneInfo | str) -> LocalParts:
    zone = load_timezone(tz) if isinstance(tz, str) else tz
    local = as_utc(instant).astimezone(zone)
    return LocalParts(
        year=local.year,
        month=local.month,
        day=local.day,
        hour=local.hour,
        minute=local.minute,
        weekday=local_weekday(local.date()),
    )
