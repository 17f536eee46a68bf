from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.auth.dependencies import get_admin_claims, require_company_admin
from booking_backend.core.clock import InvalidTimezoneError, as_utc, load_timezone
from booking_backend.database import get_db
from booking_backend.errors import BookingError, as_http_exception, database_unavailable
from booking_backend.services import calendar as calendar_service
from booking_backend.services.entitlement import get_booking_entitlement
from booking_backend.services.ics import render_ics
from booking_backend.services.reschedule import cancel_appointment, reschedule_appointment
from booking_backend.services.rules import (
    BUFFER_BOUNDS,
    DEFAULT_MAX_DAYS_AHEAD,
    DEFAULT_MIN_NOTICE_MINUTES,
    DEFAULT_SLOT_DURATION_MINUTES,
    MAX_DAYS_AHEAD_BOUNDS,
    MIN_NOTICE_BOUNDS,
    SLOT_DURATION_BOUNDS,
)

router = APIRouter(tags=['calendar'])


class CalendarAppointmentResponse(BaseModel):
    id: int
    start_at: datetime
    end_at: datetime
    status: str
    source: str | None = None
    title: str | None = None
    description: str | None = None
    contact_name: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    lead_id: int | None = None
    conversation_id: str | None = None
    rescheduled_from_id: int | None = None
    rescheduled_to_id: int | None = None
    cancelled_at: datetime | None = None

    @field_validator('start_at', 'end_at', 'cancelled_at', mode='after')
    @classmethod
    def ensure_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None

    class Config:
        from_attributes = True


class AppointmentListResponse(BaseModel):
    appointments: list[CalendarAppointmentResponse]
    count: int


class RescheduleRequest(BaseModel):
    start_at: datetime
    end_at: datetime | None = None


class RescheduleResponse(BaseModel):
    old_id: int
    new_id: int
    warning: str | None = None


class CalendarSettingsRequest(BaseModel):
    timezone: str
    slot_duration_minutes: int = Field(
        default=DEFAULT_SLOT_DURATION_MINUTES, ge=SLOT_DURATION_BOUNDS[0], le=SLOT_DURATION_BOUNDS[1]
    )
    buffer_before_minutes: int = Field(default=0, ge=BUFFER_BOUNDS[0], le=BUFFER_BOUNDS[1])
    buffer_after_minutes: int = Field(default=0, ge=BUFFER_BOUNDS[0], le=BUFFER_BOUNDS[1])
    min_notice_minutes: int = Field(
        default=DEFAULT_MIN_NOTICE_MINUTES, ge=MIN_NOTICE_BOUNDS[0], le=MIN_NOTICE_BOUNDS[1]
    )
    max_days_ahead: int = Field(
        default=DEFAULT_MAX_DAYS_AHEAD, ge=MAX_DAYS_AHEAD_BOUNDS[0], le=MAX_DAYS_AHEAD_BOUNDS[1]
    )

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        normalized = value.strip()
        try:
            load_timezone(normalized)
        except InvalidTimezoneError as exc:
            raise ValueError(str(exc)) from exc
        return normalized


class CalendarSettingsResponse(BaseModel):
    company_id: int
    timezone: str
    slot_duration_minutes: int
    buffer_before_minutes: int
    buffer_after_minutes: int
    min_notice_minutes: int
    max_days_ahead: int

    class Config:
        from_attributes = True


class RuleRequest(BaseModel):
    weekday: int = Field(ge=0, le=6)
    start_time: time
    end_time: time
    is_active: bool = True


class ReplaceRulesRequest(BaseModel):
    rules: list[RuleRequest]


class RuleResponse(BaseModel):
    id: int
    weekday: int
    start_time: time
    end_time: time
    is_active: bool

    class Config:
        from_attributes = True


class ExceptionRequest(BaseModel):
    is_closed: bool = False
    start_time: time | None = None
    end_time: time | None = None


class ExceptionResponse(BaseModel):
    id: int
    day: date
    is_closed: bool
    start_time: time | None = None
    end_time: time | None = None

    class Config:
        from_attributes = True


class BookingEntitlementResponse(BaseModel):
    plan_key: str | None = None
    status: str | None = None
    current_period_end: datetime | None = None
    trial_active: bool
    can_view: bool
    can_hold: bool
    can_book: bool
    reason: str | None = None


@router.get('/calendar', response_model=AppointmentListResponse)
def list_calendar(
    company_id: int,
    status_filter: str = Query(default=calendar_service.STATUS_FILTER_UPCOMING, alias='status'),
    date_from: date | None = Query(default=None, alias='from'),
    date_to: date | None = Query(default=None, alias='to'),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    claims: dict = Depends(get_admin_claims),
    db: Session = Depends(get_db),
):
    require_company_admin(company_id, claims)

    try:
        page = calendar_service.list_appointments(
            db,
            company_id,
            status=status_filter,
            date_from=date_from,
            date_to=date_to,
            limit=limit,
            offset=offset,
        )
    except BookingError as exc:
        raise as_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return AppointmentListResponse(
        appointments=[CalendarAppointmentResponse.model_validate(item) for item in page.appointments],
        count=page.count,
    )


@router.get('/calendar/ics')
def export_calendar_ics(
    company_id: int,
    status_filter: str = Query(default=calendar_service.STATUS_FILTER_UPCOMING, alias='status'),
    claims: dict = Depends(get_admin_claims),
    db: Session = Depends(get_db),
):
    require_company_admin(company_id, claims)

    try:
        page = calendar_service.list_appointments(db, company_id, status=status_filter, limit=1000)
    except BookingError as exc:
        raise as_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return Response(
        content=render_ics(page.appointments),
        media_type='text/calendar; charset=utf-8',
        headers={'Content-Disposition': f'attachment; filename="company-{company_id}-appointments.ics"'},
    )


@router.post('/calendar/{appointment_id}/cancel', response_model=CalendarAppointmentResponse)
def cancel_calendar_appointment(
    company_id: int,
    appointment_id: int,
    claims: dict = Depends(get_admin_claims),
    db: Session = Depends(get_db),
):
    require_company_admin(company_id, claims)

    try:
        return cancel_appointment(db, company_id, appointment_id)
    except BookingError as exc:
        raise as_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/calendar/{appointment_id}/reschedule', response_model=RescheduleResponse)
def reschedule_calendar_appointment(
    company_id: int,
    appointment_id: int,
    data: RescheduleRequest,
    claims: dict = Depends(get_admin_claims),
    db: Session = Depends(get_db),
):
    require_company_admin(company_id, claims)

    try:
        result = reschedule_appointment(db, company_id, appointment_id, data.start_at, data.end_at)
    except BookingError as exc:
        raise as_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    return RescheduleResponse(old_id=result.old_id, new_id=result.new_id, warning=result.warning)


@router.put('/calendar/settings', response_model=CalendarSettingsResponse)
def update_calendar_settings(
    company_id: int,
    data: CalendarSettingsRequest,
    claims: dict = Depends(get_admin_claims),
    db: Session = Depends(get_db),
):
    require_company_admin(company_id, claims)

    try:
        return calendar_service.save_calendar_settings(
            db,
            company_id,
            timezone_name=data.timezone,
            slot_duration_minutes=data.slot_duration_minutes,
            buffer_before_minutes=data.buffer_before_minutes,
            buffer_after_minutes=data.buffer_after_minutes,
            min_notice_minutes=data.min_notice_minutes,
            max_days_ahead=data.max_days_ahead,
        )
    except InvalidTimezoneError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={'error': 'invalid_timezone', 'message': str(exc)},
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.put('/calendar/rules', response_model=list[RuleResponse])
def replace_calendar_rules(
    company_id: int,
    data: ReplaceRulesRequest,
    claims: dict = Depends(get_admin_claims),
    db: Session = Depends(get_db),
):
    require_company_admin(company_id, claims)

    rules = [
        calendar_service.RuleInput(
            weekday=rule.weekday,
            start_time=rule.start_time,
            end_time=rule.end_time,
            is_active=rule.is_active,
        )
        for rule in data.rules
    ]
    try:
        return calendar_service.replace_rules(db, company_id, rules)
    except BookingError as exc:
        raise as_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.put('/calendar/exceptions/{day}', response_model=ExceptionResponse)
def save_calendar_exception(
    company_id: int,
    day: date,
    data: ExceptionRequest,
    claims: dict = Depends(get_admin_claims),
    db: Session = Depends(get_db),
):
    require_company_admin(company_id, claims)

    try:
        return calendar_service.save_exception(
            db,
            company_id,
            day,
            is_closed=data.is_closed,
            start_time=data.start_time,
            end_time=data.end_time,
        )
    except BookingError as exc:
        raise as_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.delete('/calendar/exceptions/{day}', status_code=status.HTTP_204_NO_CONTENT)
def delete_calendar_exception(
    company_id: int,
    day: date,
    claims: dict = Depends(get_admin_claims),
    db: Session = Depends(get_db),
):
    require_company_admin(company_id, claims)

    try:
        deleted = calendar_service.delete_exception(db, company_id, day)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={'error': 'not_found', 'message': 'Exception not found.'},
        )


@router.get('/booking-entitlement', response_model=BookingEntitlementResponse)
def read_booking_entitlement(
    company_id: int,
    claims: dict = Depends(get_admin_claims),
    db: Session = Depends(get_db),
):
    require_company_admin(company_id, claims)

    entitlement = get_booking_entitlement(db, company_id)
    return BookingEntitlementResponse(
        plan_key=entitlement.plan_key,
        status=entitlement.status,
        current_period_end=entitlement.current_period_end,
        trial_active=entitlement.trial_active,
        can_view=entitlement.can_view,
        can_hold=entitlement.can_hold,
        can_book=entitlement.can_book,
        reason=entitlement.reason,
    )
