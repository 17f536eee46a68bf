"""Availability model definitions."""

from sqlalchemy import Boolean, Column, Date, ForeignKey, Integer, String, Time, UniqueConstraint
from booking_backend.database import Base


class AvailabilityRule(Base):
    """Recurring weekly opening window (weekday 0 = Sunday, in the tenant timezone)."""
    __tablename__ = "company_availability_rules"

    id = Column(Integer, primary_key=True)
    company_id = Column(Integer, ForeignKey("companies.id"), index=True, nullable=False)
    weekday = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class AvailabilityException(Base):
    """Date-specific override of the weekly rules."""
    __tablename__ = "company_availability_exceptions"
    __table_args__ = (UniqueConstraint("company_id", "day", name="uq_availability_exception_day"),)

    id = Column(Integer, primary_key=True)
    company_id = Column(Integer, ForeignKey("companies.id"), index=True, nullable=False)
    day = Column(Date, nullable=False)
    is_closed = Column(Boolean, default=False, nullable=False)
    start_time = Column(Time)
    end_time = Column(Time)


class CalendarSettings(Base):
    """Per-tenant booking configuration."""
    __tablename__ = "company_calendar_settings"

    company_id = Column(Integer, ForeignKey("companies.id"), primary_key=True)
    timezone = Column(String, default="UTC", nullable=False)
    slot_duration_minutes = Column(Integer, default=30)
    buffer_before_minutes = Column(Integer, default=0)
    buffer_after_minutes = Column(Integer, default=0)
    min_notice_minutes = Column(Integer, default=60)
    max_days_ahead = Column(Integer, default=30)
