"""Billing model definitions (written by the billing webhooks, read here)."""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String
from booking_backend.database import Base


class CompanyBilling(Base):
    __tablename__ = "company_billing"

    company_id = Column(Integer, ForeignKey("companies.id"), primary_key=True)
    status = Column(String)  # active/trialing/past_due/canceled/...
    plan_key = Column(String)
    current_period_end = Column(DateTime(timezone=True))


class BillingPlan(Base):
    __tablename__ = "billing_plans"

    plan_key = Column(String, primary_key=True)
    is_active = Column(Boolean, default=True, nullable=False)
    entitlements = Column(JSON, default=dict)
