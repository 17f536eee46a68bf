"""Soft reservations of a slot while the visitor enters their details.

A hold is a best-effort claim: the conflict check here is not serialized
against concurrent callers. The booking step re-checks and consumes the hold
with a single conditional delete, which is what actually prevents double
booking. Expired holds are ignored everywhere by comparing ``expires_at``
with the current time, so nothing has to delete them for correctness.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from booking_backend.core.clock import as_utc, utc_now
from booking_backend.models.hold import AppointmentHold
from booking_backend.services.conflicts import ensure_slot_free, validate_interval
from booking_backend.services.entitlement import require_booking_entitlement

logger = logging.getLogger(__name__)

HOLD_TTL_MINUTES = 10
HOLD_TOKEN_BYTES = 24


@dataclass(frozen=True)
class ContactDetails:
    name: str | None = None
    email: str | None = None
    phone: str | None = None

    def merged_with(self, fallback: 'ContactDetails') -> 'ContactDetails':
        return ContactDetails(
            name=self.name or fallback.name,
            email=self.email or fallback.email,
            phone=self.phone or fallback.phone,
        )


def generate_hold_token() -> str:
    return secrets.token_hex(HOLD_TOKEN_BYTES)


def create_hold(
    db: Session,
    company_id: int,
    start: datetime,
    end: datetime,
    conversation_id: str | None = None,
    lead_id: int | None = None,
    contact: ContactDetails | None = None,
    meta: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> AppointmentHold:
    start, end = validate_interval(start, end)
    now = as_utc(now or utc_now())

    require_booking_entitlement(db, company_id, action='hold', now=now)
    ensure_slot_free(db, company_id, start, end, now)

    contact = contact or ContactDetails()
    hold = AppointmentHold(
        company_id=company_id,
        hold_token=generate_hold_token(),
        start_at=start,
        end_at=end,
        expires_at=now + timedelta(minutes=HOLD_TTL_MINUTES),
        conversation_id=(conversation_id or '').strip() or None,
        lead_id=lead_id,
        contact_name=contact.name,
        contact_email=contact.email,
        contact_phone=contact.phone,
        meta=dict(meta or {}),
    )
    db.add(hold)
    db.commit()
    db.refresh(hold)

    logger.info('Created hold %s for company %s (%s - %s)', hold.id, company_id, start.isoformat(), end.isoformat())
    return hold


def get_hold(db: Session, company_id: int, hold_token: str) -> AppointmentHold | None:
    return db.query(AppointmentHold).filter(
        AppointmentHold.company_id == company_id,
        AppointmentHold.hold_token == hold_token,
    ).first()


def consume_hold(db: Session, company_id: int, hold_token: str, now: datetime) -> bool:
    """Atomically delete an unexpired hold; False when another caller got there first."""
    deleted = db.query(AppointmentHold).filter(
        AppointmentHold.company_id == company_id,
        AppointmentHold.hold_token == hold_token,
        AppointmentHold.expires_at > now,
    ).delete(synchronize_session=False)
    db.commit()
    return deleted == 1


def sweep_expired_holds(db: Session, now: datetime | None = None) -> int:
    now = as_utc(now or utc_now())
    deleted = db.query(AppointmentHold).filter(
        AppointmentHold.expires_at <= now,
    ).delete(synchronize_session=False)
    db.commit()

    if deleted:
        logger.info('Swept %s expired holds', deleted)
    return deleted
