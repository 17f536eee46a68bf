import logging
import re
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.core.clock import utc_now
from booking_backend.models.lead import CompanyLead

logger = logging.getLogger(__name__)

LEAD_CHANNEL_BOOKING = 'booking'
LEAD_STATUS_NEW = 'new'

_WHITESPACE = re.compile(r'\s+')


def normalize_email(email: str | None) -> str | None:
    if not email:
        return None
    normalized = email.strip().lower()
    return normalized or None


def normalize_phone(phone: str | None) -> str | None:
    if not phone:
        return None
    normalized = _WHITESPACE.sub('', phone).strip()
    return normalized or None


def get_company_lead(db: Session, company_id: int, lead_id: int | None) -> CompanyLead | None:
    if lead_id is None:
        return None
    return db.query(CompanyLead).filter(
        CompanyLead.id == lead_id,
        CompanyLead.company_id == company_id,
    ).first()


def find_or_create_lead(
    db: Session,
    company_id: int,
    conversation_id: str | None = None,
    email: str | None = None,
    phone: str | None = None,
    name: str | None = None,
    source: str = 'booking',
    now: datetime | None = None,
) -> CompanyLead:
    """Resolve the lead a booking belongs to: conversation, then email, then phone, else a new lead."""
    normalized_email = normalize_email(email)
    normalized_phone = normalize_phone(phone)
    conversation_id = (conversation_id or '').strip() or None

    if conversation_id:
        lead = db.query(CompanyLead).filter(
            CompanyLead.company_id == company_id,
            CompanyLead.conversation_id == conversation_id,
        ).order_by(CompanyLead.id.desc()).first()
        if lead:
            return lead

    if normalized_email:
        lead = db.query(CompanyLead).filter(
            CompanyLead.company_id == company_id,
            CompanyLead.email == normalized_email,
        ).order_by(CompanyLead.created_at.desc(), CompanyLead.id.desc()).first()
        if lead:
            return lead

    if normalized_phone:
        lead = db.query(CompanyLead).filter(
            CompanyLead.company_id == company_id,
            CompanyLead.phone == normalized_phone,
        ).order_by(CompanyLead.created_at.desc(), CompanyLead.id.desc()).first()
        if lead:
            return lead

    now = now or utc_now()
    lead = CompanyLead(
        company_id=company_id,
        conversation_id=conversation_id,
        name=(name or '').strip() or None,
        email=normalized_email,
        phone=normalized_phone,
        source=source,
        channel=LEAD_CHANNEL_BOOKING,
        status=LEAD_STATUS_NEW,
        booking_count=0,
        last_touch_at=now,
    )
    db.add(lead)
    db.commit()
    db.refresh(lead)
    return lead


def record_booking_signal(db: Session, lead_id: int, now: datetime | None = None) -> None:
    """Bump the lead's booking counters. Best-effort: a failure here never undoes a booking."""
    now = now or utc_now()
    try:
        updated = db.query(CompanyLead).filter(CompanyLead.id == lead_id).update(
            {
                CompanyLead.booking_count: CompanyLead.booking_count + 1,
                CompanyLead.last_booked_at: now,
                CompanyLead.last_touch_at: now,
            },
            synchronize_session=False,
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.warning('Could not record booking signal for lead %s', lead_id, exc_info=True)
        return

    if not updated:
        logger.warning('Booking signal skipped: lead %s not found', lead_id)
