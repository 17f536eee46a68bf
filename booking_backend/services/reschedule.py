"""Moving and cancelling appointments.

Appointments are never edited in place for a time change: rescheduling books
a new row, then retires the old one. The retirement may fail after the new
row is committed; that is reported as a warning, since the new booking is
already real and must not be rolled back.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.core.clock import as_utc, utc_now
from booking_backend.errors import AppointmentError
from booking_backend.models.appointment import (
    APPOINTMENT_STATUS_CANCELLED,
    APPOINTMENT_STATUS_CONFIRMED,
    Appointment,
)
from booking_backend.services.conflicts import ensure_slot_free, validate_interval
from booking_backend.services.entitlement import require_booking_entitlement

logger = logging.getLogger(__name__)

WARNING_OLD_NOT_CANCELLED = 'old_appointment_not_cancelled'


@dataclass(frozen=True)
class RescheduleResult:
    old_id: int
    new_id: int
    warning: str | None = None


def get_appointment(db: Session, company_id: int, appointment_id: int) -> Appointment:
    appointment = db.query(Appointment).filter(
        Appointment.company_id == company_id,
        Appointment.id == appointment_id,
    ).first()
    if appointment is None:
        raise AppointmentError('appointment_not_found')
    return appointment


def _retire_appointment(db: Session, appointment_id: int, replacement_id: int, now: datetime) -> None:
    db.query(Appointment).filter(Appointment.id == appointment_id).update(
        {
            Appointment.status: APPOINTMENT_STATUS_CANCELLED,
            Appointment.rescheduled_to_id: replacement_id,
            Appointment.cancelled_at: now,
            Appointment.updated_at: now,
        },
        synchronize_session=False,
    )
    db.commit()


def reschedule_appointment(
    db: Session,
    company_id: int,
    appointment_id: int,
    new_start: datetime,
    new_end: datetime | None = None,
    now: datetime | None = None,
) -> RescheduleResult:
    now = as_utc(now or utc_now())
    require_booking_entitlement(db, company_id, action='book', now=now)

    existing = get_appointment(db, company_id, appointment_id)
    if existing.status == APPOINTMENT_STATUS_CANCELLED:
        raise AppointmentError('already_cancelled')

    if new_end is None and new_start is not None:
        new_end = as_utc(new_start) + (as_utc(existing.end_at) - as_utc(existing.start_at))
    start, end = validate_interval(new_start, new_end)

    ensure_slot_free(db, company_id, start, end, now, exclude_appointment_id=existing.id)

    replacement = Appointment(
        company_id=company_id,
        lead_id=existing.lead_id,
        conversation_id=existing.conversation_id,
        start_at=start,
        end_at=end,
        status=APPOINTMENT_STATUS_CONFIRMED,
        source=existing.source,
        title=existing.title,
        description=existing.description,
        contact_name=existing.contact_name,
        contact_email=existing.contact_email,
        contact_phone=existing.contact_phone,
        rescheduled_from_id=existing.id,
        meta=dict(existing.meta or {}),
    )
    db.add(replacement)
    db.commit()
    db.refresh(replacement)

    old_id = appointment_id
    new_id = replacement.id

    try:
        _retire_appointment(db, old_id, new_id, now)
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            'Appointment %s was rescheduled to %s but could not be cancelled',
            old_id,
            new_id,
        )
        return RescheduleResult(old_id=old_id, new_id=new_id, warning=WARNING_OLD_NOT_CANCELLED)

    logger.info('Rescheduled appointment %s to %s for company %s', old_id, new_id, company_id)
    return RescheduleResult(old_id=old_id, new_id=new_id)


def cancel_appointment(
    db: Session,
    company_id: int,
    appointment_id: int,
    now: datetime | None = None,
) -> Appointment:
    now = as_utc(now or utc_now())
    appointment = get_appointment(db, company_id, appointment_id)
    if appointment.status == APPOINTMENT_STATUS_CANCELLED:
        raise AppointmentError('already_cancelled')

    appointment.status = APPOINTMENT_STATUS_CANCELLED
    appointment.cancelled_at = now
    appointment.updated_at = now
    db.commit()
    db.refresh(appointment)

    logger.info('Cancelled appointment %s for company %s', appointment_id, company_id)
    return appointment
