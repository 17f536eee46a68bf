from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.auth.dependencies import get_widget_company_id, resolve_public_company
from booking_backend.core.clock import as_utc
from booking_backend.database import get_db
from booking_backend.errors import BookingError, as_http_exception, database_unavailable
from booking_backend.models.company import Company
from booking_backend.services.booking import SOURCE_PUBLIC_BOOKING, SOURCE_WIDGET, commit_hold
from booking_backend.services.entitlement import get_booking_entitlement
from booking_backend.services.holds import ContactDetails, create_hold

router = APIRouter(tags=['booking'])

MAX_TEXT_LENGTH = 2000


def _optional_text(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    if not normalized:
        return None
    if len(normalized) > MAX_TEXT_LENGTH:
        raise ValueError(f'Must be {MAX_TEXT_LENGTH} characters or fewer.')
    return normalized


class ContactFields(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None

    @field_validator('name', 'phone')
    @classmethod
    def normalize_text(cls, value: str | None) -> str | None:
        return _optional_text(value)

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value: str | None) -> str | None:
        normalized = _optional_text(value)
        return normalized.lower() if normalized else None

    def contact(self) -> ContactDetails:
        return ContactDetails(name=self.name, email=self.email, phone=self.phone)


class CreateHoldRequest(ContactFields):
    start_at: datetime
    end_at: datetime
    conversation_id: str | None = None
    lead_id: int | None = None
    meta: dict[str, Any] | None = None

    @field_validator('conversation_id')
    @classmethod
    def normalize_conversation_id(cls, value: str | None) -> str | None:
        return _optional_text(value)


class HoldResponse(BaseModel):
    hold_token: str
    start_at: datetime
    end_at: datetime
    expires_at: datetime

    @field_validator('start_at', 'end_at', 'expires_at', mode='after')
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    class Config:
        from_attributes = True


class BookRequest(ContactFields):
    hold_token: str
    conversation_id: str | None = None
    lead_id: int | None = None
    title: str | None = None
    description: str | None = None
    meta: dict[str, Any] | None = None

    @field_validator('hold_token')
    @classmethod
    def normalize_hold_token(cls, value: str) -> str:
        return value.strip()

    @field_validator('conversation_id', 'title', 'description')
    @classmethod
    def normalize_optional_text(cls, value: str | None) -> str | None:
        return _optional_text(value)


class AppointmentResponse(BaseModel):
    id: int
    start_at: datetime
    end_at: datetime
    status: str
    source: str | None = None
    lead_id: int | None = None
    title: str | None = None
    contact_name: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None

    @field_validator('start_at', 'end_at', mode='after')
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    class Config:
        from_attributes = True


class PublicCompany(BaseModel):
    company_id: int
    company_name: str | None = None
    public_booking_key: str


class PublicEntitlement(BaseModel):
    plan_key: str | None = None
    status: str | None = None
    trial_active: bool
    trial_ends_at: datetime | None = None
    can_view: bool
    can_hold: bool
    can_book: bool
    reason: str | None = None


class PublicCompanyResponse(BaseModel):
    company: PublicCompany
    entitlement: PublicEntitlement


def _hold(db: Session, company_id: int, data: CreateHoldRequest, trusted: bool):
    try:
        return create_hold(
            db,
            company_id,
            data.start_at,
            data.end_at,
            conversation_id=data.conversation_id if trusted else None,
            lead_id=data.lead_id if trusted else None,
            contact=data.contact(),
            meta=data.meta,
        )
    except BookingError as exc:
        raise as_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


def _book(db: Session, company_id: int, data: BookRequest, source: str, trusted: bool):
    try:
        return commit_hold(
            db,
            company_id,
            data.hold_token,
            contact=data.contact(),
            source=source,
            conversation_id=data.conversation_id if trusted else None,
            lead_id=data.lead_id if trusted else None,
            title=data.title,
            description=data.description,
            meta=data.meta,
        )
    except BookingError as exc:
        raise as_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/widget/hold', response_model=HoldResponse, status_code=status.HTTP_201_CREATED)
def widget_hold(
    data: CreateHoldRequest,
    company_id: int = Depends(get_widget_company_id),
    db: Session = Depends(get_db),
):
    return _hold(db, company_id, data, trusted=True)


@router.post('/widget/book', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def widget_book(
    data: BookRequest,
    company_id: int = Depends(get_widget_company_id),
    db: Session = Depends(get_db),
):
    return _book(db, company_id, data, SOURCE_WIDGET, trusted=True)


# Public pages are anonymous: conversation and lead ids from the body are ignored.
@router.post('/book/{public_key}/hold', response_model=HoldResponse, status_code=status.HTTP_201_CREATED)
def public_hold(
    data: CreateHoldRequest,
    company_id: int = Depends(resolve_public_company),
    db: Session = Depends(get_db),
):
    return _hold(db, company_id, data, trusted=False)


@router.post('/book/{public_key}/book', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def public_book(
    data: BookRequest,
    company_id: int = Depends(resolve_public_company),
    db: Session = Depends(get_db),
):
    return _book(db, company_id, data, SOURCE_PUBLIC_BOOKING, trusted=False)


# Lets the public page show a locked state before any hold is attempted.
@router.get('/book/{public_key}/company', response_model=PublicCompanyResponse)
def public_company(
    company_id: int = Depends(resolve_public_company),
    db: Session = Depends(get_db),
):
    try:
        company = db.query(Company).filter(Company.id == company_id).first()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    entitlement = get_booking_entitlement(db, company_id)
    return PublicCompanyResponse(
        company=PublicCompany(
            company_id=company.id,
            company_name=company.name,
            public_booking_key=company.public_booking_key,
        ),
        entitlement=PublicEntitlement(
            plan_key=entitlement.plan_key,
            status=entitlement.status,
            trial_active=entitlement.trial_active,
            trial_ends_at=entitlement.current_period_end,
            can_view=entitlement.can_view,
            can_hold=entitlement.can_hold,
            can_book=entitlement.can_book,
            reason=entitlement.reason,
        ),
    )
