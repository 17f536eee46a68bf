"""Appointment model definitions."""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, func
from booking_backend.database import Base

APPOINTMENT_STATUS_CONFIRMED = "confirmed"
APPOINTMENT_STATUS_PENDING = "pending"
APPOINTMENT_STATUS_CANCELLED = "cancelled"
APPOINTMENT_STATUSES = (
    APPOINTMENT_STATUS_CONFIRMED,
    APPOINTMENT_STATUS_PENDING,
    APPOINTMENT_STATUS_CANCELLED,
)


class Appointment(Base):
    """Represents a booked appointment. Time changes always create a new row."""
    __tablename__ = "company_appointments"

    id = Column(Integer, primary_key=True)
    company_id = Column(Integer, ForeignKey("companies.id"), index=True, nullable=False)
    lead_id = Column(Integer, ForeignKey("company_leads.id"))
    conversation_id = Column(String)

    start_at = Column(DateTime(timezone=True), nullable=False)
    end_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String, default=APPOINTMENT_STATUS_CONFIRMED, nullable=False)
    source = Column(String)

    title = Column(String)
    description = Column(String)
    contact_name = Column(String)
    contact_email = Column(String)
    contact_phone = Column(String)

    hold_token = Column(String, unique=True)
    rescheduled_from_id = Column(Integer, ForeignKey("company_appointments.id"))
    rescheduled_to_id = Column(Integer, ForeignKey("company_appointments.id"))
    cancelled_at = Column(DateTime(timezone=True))

    meta = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
