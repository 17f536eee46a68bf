"""Booking entitlement derived from billing status and plan capabilities.

The same evaluation gates the widget, the public booking page and the admin
calendar, so a tenant is never allowed to book through one door and refused
at another.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.core.clock import as_utc, utc_now
from booking_backend.errors import BookingLockedError
from booking_backend.models.billing import BillingPlan, CompanyBilling

logger = logging.getLogger(__name__)

BILLING_STATUS_ACTIVE = 'active'
BILLING_STATUS_TRIALING = 'trialing'
BOOKING_CAPABILITY = 'booking'

REASON_NO_PLAN = 'Booking is available on the Pro plan. (Or during the 14-day trial.)'
REASON_TRIAL_ENDED = 'Your trial has ended. Upgrade to the Pro plan to keep accepting bookings.'
REASON_PLAN_LACKS_BOOKING = 'Your current plan does not include online booking.'
REASON_LOOKUP_FAILED = 'Billing lookup failed.'


@dataclass(frozen=True)
class BookingEntitlement:
    company_id: int
    plan_key: str | None
    status: str | None
    current_period_end: datetime | None
    trial_active: bool
    can_hold: bool
    can_book: bool
    can_view: bool = True
    reason: str | None = None

    @property
    def is_trialing(self) -> bool:
        return self.status == BILLING_STATUS_TRIALING


def _plan_grants_booking(plan: BillingPlan | None) -> bool:
    if plan is None or not plan.is_active:
        return False
    return bool((plan.entitlements or {}).get(BOOKING_CAPABILITY))


def get_booking_entitlement(db: Session, company_id: int, now: datetime | None = None) -> BookingEntitlement:
    now = as_utc(now or utc_now())

    try:
        billing = db.query(CompanyBilling).filter(CompanyBilling.company_id == company_id).first()
        plan = None
        if billing is not None and billing.plan_key:
            plan = db.query(BillingPlan).filter(BillingPlan.plan_key == billing.plan_key).first()
    except SQLAlchemyError:
        # Fail closed for booking actions.
        logger.exception('Billing lookup failed for company %s', company_id)
        return BookingEntitlement(
            company_id=company_id,
            plan_key=None,
            status=None,
            current_period_end=None,
            trial_active=False,
            can_hold=False,
            can_book=False,
            reason=REASON_LOOKUP_FAILED,
        )

    plan_key = billing.plan_key if billing is not None else None
    status = (billing.status or '').strip().lower() if billing is not None and billing.status else None
    period_end = as_utc(billing.current_period_end) if billing is not None and billing.current_period_end else None

    trial_active = status == BILLING_STATUS_TRIALING and period_end is not None and period_end > now
    status_ok = status == BILLING_STATUS_ACTIVE or trial_active
    plan_ok = _plan_grants_booking(plan)
    allowed = status_ok and plan_ok

    reason = None
    if not allowed:
        if status == BILLING_STATUS_TRIALING and not trial_active:
            reason = REASON_TRIAL_ENDED
        elif not status_ok:
            reason = REASON_NO_PLAN
        else:
            reason = REASON_PLAN_LACKS_BOOKING

    return BookingEntitlement(
        company_id=company_id,
        plan_key=plan_key,
        status=status,
        current_period_end=period_end,
        trial_active=trial_active,
        can_hold=allowed,
        can_book=allowed,
        reason=reason,
    )


def require_booking_entitlement(
    db: Session,
    company_id: int,
    action: str = 'book',
    now: datetime | None = None,
) -> BookingEntitlement:
    entitlement = get_booking_entitlement(db, company_id, now=now)
    permitted = entitlement.can_hold if action == 'hold' else entitlement.can_book
    if not permitted:
        raise BookingLockedError(
            entitlement.reason or REASON_NO_PLAN,
            plan_key=entitlement.plan_key,
            billing_status=entitlement.status,
            trial_ends_at=entitlement.current_period_end,
        )
    return entitlement
