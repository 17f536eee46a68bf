"""Turn a valid hold into a confirmed appointment."""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.core.clock import as_utc, utc_now
from booking_backend.errors import AppointmentError, BookingError, HoldError, InvalidRequestError
from booking_backend.models.appointment import APPOINTMENT_STATUS_CONFIRMED, Appointment
from booking_backend.services.conflicts import ensure_slot_free
from booking_backend.services.entitlement import require_booking_entitlement
from booking_backend.services.holds import ContactDetails, consume_hold, get_hold
from booking_backend.services.leads import (
    find_or_create_lead,
    get_company_lead,
    normalize_email,
    normalize_phone,
    record_booking_signal,
)

logger = logging.getLogger(__name__)

SOURCE_WIDGET = 'widget'
SOURCE_PUBLIC_BOOKING = 'public_booking'
SOURCE_ADMIN = 'admin'


def _hold_was_consumed(db: Session, company_id: int, hold_token: str) -> bool:
    return db.query(Appointment.id).filter(
        Appointment.company_id == company_id,
        Appointment.hold_token == hold_token,
    ).first() is not None


def commit_hold(
    db: Session,
    company_id: int,
    hold_token: str,
    contact: ContactDetails | None = None,
    source: str = SOURCE_WIDGET,
    conversation_id: str | None = None,
    lead_id: int | None = None,
    title: str | None = None,
    description: str | None = None,
    meta: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> Appointment:
    """Book the interval reserved by ``hold_token``.

    Order matters: the hold is validated, the lead resolved and the conflict
    check repeated before the hold is consumed; the appointment row is only
    written once the conditional delete reports exactly one affected row.
    A conflict found before consumption leaves the hold in place so the
    caller may retry or let it lapse.
    """
    hold_token = (hold_token or '').strip()
    if not hold_token:
        raise InvalidRequestError('invalid_payload', 'A hold token is required.')

    now = as_utc(now or utc_now())
    require_booking_entitlement(db, company_id, action='book', now=now)

    hold = get_hold(db, company_id, hold_token)
    if hold is None:
        if _hold_was_consumed(db, company_id, hold_token):
            raise HoldError('hold_already_used')
        raise HoldError('hold_not_found')
    expires_at = as_utc(hold.expires_at)
    if expires_at <= now:
        raise HoldError('hold_expired')

    start = as_utc(hold.start_at)
    end = as_utc(hold.end_at)
    if not end > start:
        raise BookingError('hold_invalid_time', 'Reservation has an invalid time range.', 500)

    hold_contact = ContactDetails(name=hold.contact_name, email=hold.contact_email, phone=hold.contact_phone)
    contact = (contact or ContactDetails()).merged_with(hold_contact)
    contact_email = normalize_email(contact.email)
    contact_phone = normalize_phone(contact.phone)
    contact_name = (contact.name or '').strip() or None
    conversation_id = (conversation_id or '').strip() or hold.conversation_id
    hold_meta = dict(hold.meta or {})

    lead = get_company_lead(db, company_id, lead_id or hold.lead_id)
    if lead is None:
        lead = find_or_create_lead(
            db,
            company_id,
            conversation_id=conversation_id,
            email=contact_email,
            phone=contact_phone,
            name=contact_name,
            source=source,
            now=now,
        )
    resolved_lead_id = lead.id

    ensure_slot_free(db, company_id, start, end, now, exclude_hold_token=hold_token)

    if not consume_hold(db, company_id, hold_token, now):
        # Lost the delete: either a rival commit took the hold or it lapsed and was swept.
        if expires_at <= utc_now() and not _hold_was_consumed(db, company_id, hold_token):
            raise HoldError('hold_expired')
        raise HoldError('hold_already_used')

    appointment = Appointment(
        company_id=company_id,
        lead_id=resolved_lead_id,
        conversation_id=conversation_id,
        start_at=start,
        end_at=end,
        status=APPOINTMENT_STATUS_CONFIRMED,
        source=source,
        title=(title or '').strip() or None,
        description=(description or '').strip() or None,
        contact_name=contact_name,
        contact_email=contact_email,
        contact_phone=contact_phone,
        hold_token=hold_token,
        meta={**(meta or {}), 'hold_meta': hold_meta},
    )

    try:
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        # The hold is already gone; the slot is simply released for its holder.
        logger.error(
            'Hold %s for company %s was consumed but the appointment insert failed',
            hold_token[:8],
            company_id,
            exc_info=True,
        )
        raise AppointmentError('appointment_create_failed') from exc

    logger.info('Booked appointment %s for company %s via %s', appointment.id, company_id, source)
    record_booking_signal(db, resolved_lead_id, now=now)
    return appointment
