"""Appointment hold model definitions."""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, func
from booking_backend.database import Base


class AppointmentHold(Base):
    """Short-lived, single-use reservation of an interval."""
    __tablename__ = "company_appointment_holds"

    id = Column(Integer, primary_key=True)
    company_id = Column(Integer, ForeignKey("companies.id"), index=True, nullable=False)
    hold_token = Column(String, unique=True, nullable=False)

    start_at = Column(DateTime(timezone=True), nullable=False)
    end_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    conversation_id = Column(String)
    lead_id = Column(Integer, ForeignKey("company_leads.id"))
    contact_name = Column(String)
    contact_email = Column(String)
    contact_phone = Column(String)

    meta = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
