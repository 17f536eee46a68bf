from datetime import date, datetime, time, timedelta, timezone

import pytest

from booking_backend.errors import InvalidRequestError
from booking_backend.models.appointment import Appointment
from booking_backend.models.availability import AvailabilityException, AvailabilityRule, CalendarSettings
from booking_backend.models.hold import AppointmentHold
from booking_backend.services.external_busy import BusyBlock, ExternalBusyResult
from booking_backend.services.rules import CalendarConfig
from booking_backend.services.slots import BusyInterval, generate_slots, get_availability

WINTER_NOW = datetime(2026, 1, 5, 7, 0, tzinfo=timezone.utc)  # Monday 08:00 Berlin
SUMMER_NOW = datetime(2026, 7, 6, 6, 0, tzinfo=timezone.utc)  # Monday 08:00 Berlin


class StubAggregator:
    def __init__(self, result: ExternalBusyResult):
        self.result = result
        self.calls = []

    def collect(self, company_id, range_start, range_end):
        self.calls.append((company_id, range_start, range_end))
        return self.result


def monday_rule(start: time = time(9, 0), end: time = time(12, 0)) -> AvailabilityRule:
    return AvailabilityRule(company_id=1, weekday=1, start_time=start, end_time=end, is_active=True)


def berlin(**overrides) -> CalendarConfig:
    values = {'timezone': 'Europe/Berlin', 'slot_duration_minutes': 30, 'min_notice_minutes': 60, 'max_days_ahead': 7}
    values.update(overrides)
    return CalendarConfig(**values)


@pytest.mark.parametrize(
    ('now', 'first_start'),
    [
        (WINTER_NOW, datetime(2026, 1, 5, 8, 0, tzinfo=timezone.utc)),
        (SUMMER_NOW, datetime(2026, 7, 6, 7, 0, tzinfo=timezone.utc)),
    ],
)
def test_first_slot_follows_tenant_offset_across_dst(now: datetime, first_start: datetime) -> None:
    slots = list(generate_slots(berlin(), [monday_rule()], {}, [], now, step_minutes=30, limit=3))

    assert slots[0].start == first_start
    assert slots[0].end == first_start + timedelta(minutes=30)
    assert [slot.start for slot in slots] == [first_start + timedelta(minutes=30 * index) for index in range(3)]


def test_slots_respect_notice_and_fit_inside_window() -> None:
    slots = list(generate_slots(berlin(), [monday_rule()], {}, [], WINTER_NOW, step_minutes=15, limit=50))

    day_slots = [slot for slot in slots if slot.start.date() == date(2026, 1, 5)]
    assert day_slots[0].start == datetime(2026, 1, 5, 8, 0, tzinfo=timezone.utc)
    assert day_slots[-1].end == datetime(2026, 1, 5, 11, 0, tzinfo=timezone.utc)
    assert all(slot.start >= WINTER_NOW + timedelta(minutes=60) for slot in slots)


def test_closed_exception_removes_the_whole_day() -> None:
    exceptions = {date(2026, 1, 5): AvailabilityException(company_id=1, day=date(2026, 1, 5), is_closed=True)}

    slots = list(generate_slots(berlin(max_days_ahead=14), [monday_rule()], exceptions, [], WINTER_NOW, limit=5))

    assert slots
    assert all(slot.start.date() == date(2026, 1, 12) for slot in slots)


def test_busy_intervals_exclude_overlapping_candidates_only() -> None:
    busy = [BusyInterval(datetime(2026, 1, 5, 8, 30, tzinfo=timezone.utc), datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc))]

    slots = list(generate_slots(berlin(), [monday_rule()], {}, busy, WINTER_NOW, step_minutes=30, limit=3))

    assert [slot.start.hour * 60 + slot.start.minute for slot in slots] == [8 * 60, 9 * 60, 9 * 60 + 30]


def test_overlapping_rules_do_not_duplicate_slots() -> None:
    rules = [monday_rule(time(9, 0), time(11, 0)), monday_rule(time(10, 0), time(12, 0))]

    slots = list(generate_slots(berlin(), rules, {}, [], WINTER_NOW, step_minutes=30, limit=50))
    monday = [slot.start for slot in slots if slot.start.date() == date(2026, 1, 5)]

    assert monday == sorted(set(monday))
    assert len(monday) == 6


def test_duration_longer_than_every_window_yields_nothing() -> None:
    slots = list(generate_slots(berlin(), [monday_rule()], {}, [], WINTER_NOW, duration_minutes=240, limit=5))

    assert slots == []


def test_limit_caps_the_result() -> None:
    slots = list(generate_slots(berlin(), [monday_rule()], {}, [], WINTER_NOW, step_minutes=5, limit=4))

    assert len(slots) == 4


def test_horizon_excludes_days_beyond_max_days_ahead() -> None:
    slots = list(generate_slots(berlin(max_days_ahead=1), [monday_rule()], {}, [], WINTER_NOW, limit=50))

    assert slots
    assert all(slot.end <= WINTER_NOW + timedelta(days=1) for slot in slots)


@pytest.mark.parametrize(
    ('kwargs', 'code'),
    [
        ({'duration_minutes': 0}, 'invalid_duration'),
        ({'duration_minutes': -5}, 'invalid_duration'),
        ({'step_minutes': 0}, 'invalid_step'),
        ({'limit': 0}, 'invalid_limit'),
    ],
)
def test_generate_slots_rejects_bad_parameters(kwargs: dict, code: str) -> None:
    with pytest.raises(InvalidRequestError) as exception_info:
        generate_slots(berlin(), [monday_rule()], {}, [], WINTER_NOW, **kwargs)

    assert exception_info.value.code == code


def test_get_availability_rejects_zero_duration_instead_of_using_default(db, company) -> None:
    db.add(CalendarSettings(company_id=company.id, timezone='UTC', slot_duration_minutes=30))
    db.commit()
    aggregator = StubAggregator(ExternalBusyResult())

    with pytest.raises(InvalidRequestError) as exception_info:
        get_availability(db, company.id, duration_minutes=0, now=WINTER_NOW, busy_aggregator=aggregator)

    assert exception_info.value.code == 'invalid_duration'
    assert aggregator.calls == []


def test_get_availability_applies_buffers_around_appointments_and_holds(db, company) -> None:
    db.add(
        CalendarSettings(
            company_id=company.id,
            timezone='Europe/Berlin',
            slot_duration_minutes=30,
            buffer_before_minutes=15,
            buffer_after_minutes=15,
            min_notice_minutes=60,
            max_days_ahead=1,
        )
    )
    db.add(AvailabilityRule(company_id=company.id, weekday=1, start_time=time(9, 0), end_time=time(12, 0)))
    db.add(
        Appointment(
            company_id=company.id,
            start_at=datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc),
            end_at=datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc),
            status='confirmed',
        )
    )
    db.add(
        AppointmentHold(
            company_id=company.id,
            hold_token='a' * 48,
            start_at=datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc),
            end_at=datetime(2026, 1, 5, 10, 30, tzinfo=timezone.utc),
            expires_at=WINTER_NOW + timedelta(minutes=10),
        )
    )
    db.commit()

    result = get_availability(
        db,
        company.id,
        step_minutes=30,
        limit=50,
        now=WINTER_NOW,
        busy_aggregator=StubAggregator(ExternalBusyResult()),
    )

    starts = [slot.start.strftime('%H:%M') for slot in result.slots]
    assert result.timezone == 'Europe/Berlin'
    assert starts == ['08:00']
    assert result.warning is False


def test_get_availability_ignores_expired_holds_and_cancelled_appointments(db, company) -> None:
    db.add(CalendarSettings(company_id=company.id, timezone='UTC', min_notice_minutes=0, max_days_ahead=1))
    db.add(AvailabilityRule(company_id=company.id, weekday=1, start_time=time(9, 0), end_time=time(10, 0)))
    db.add(
        Appointment(
            company_id=company.id,
            start_at=datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc),
            end_at=datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc),
            status='cancelled',
        )
    )
    db.add(
        AppointmentHold(
            company_id=company.id,
            hold_token='b' * 48,
            start_at=datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc),
            end_at=datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc),
            expires_at=WINTER_NOW - timedelta(minutes=1),
        )
    )
    db.commit()

    result = get_availability(
        db,
        company.id,
        duration_minutes=30,
        step_minutes=30,
        now=WINTER_NOW,
        busy_aggregator=StubAggregator(ExternalBusyResult()),
    )

    assert [slot.start.strftime('%H:%M') for slot in result.slots] == ['09:00', '09:30']


def test_get_availability_keeps_slots_when_external_busy_warns(db, company) -> None:
    db.add(CalendarSettings(company_id=company.id, timezone='UTC', min_notice_minutes=0, max_days_ahead=1))
    db.add(AvailabilityRule(company_id=company.id, weekday=1, start_time=time(9, 0), end_time=time(10, 0)))
    db.commit()
    external = ExternalBusyResult(
        blocks=[BusyBlock(datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc), datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc))],
        warning=True,
        sources=['google_calendar'],
    )

    result = get_availability(
        db,
        company.id,
        duration_minutes=30,
        step_minutes=30,
        now=WINTER_NOW,
        busy_aggregator=StubAggregator(external),
    )

    assert [slot.start.strftime('%H:%M') for slot in result.slots] == ['09:30']
    assert result.warning is True
    assert result.sources == ['google_calendar']
