import os
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite://')

from booking_backend.database import Base  # noqa: E402
from booking_backend.models import appointment, availability, billing, company, hold, integration, lead  # noqa: E402,F401
from booking_backend.models.billing import BillingPlan, CompanyBilling  # noqa: E402
from booking_backend.models.company import Company  # noqa: E402

NOW = datetime(2026, 1, 5, 7, 0, tzinfo=timezone.utc)


@pytest.fixture
def db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def company(db):
    tenant = Company(id=1, name='Acme Dental', public_booking_key='acme')
    db.add(tenant)
    db.commit()
    return tenant


@pytest.fixture
def booking_plan(db):
    plan = BillingPlan(plan_key='pro', is_active=True, entitlements={'booking': True})
    db.add(plan)
    db.commit()
    return plan


@pytest.fixture
def entitled_company(db, company, booking_plan):
    db.add(CompanyBilling(company_id=company.id, status='active', plan_key=booking_plan.plan_key))
    db.commit()
    return company
