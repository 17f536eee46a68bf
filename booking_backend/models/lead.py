"""Company lead model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, func
from booking_backend.database import Base


class CompanyLead(Base):
    """Identity-resolved contact a booking is linked to."""
    __tablename__ = "company_leads"

    id = Column(Integer, primary_key=True)
    company_id = Column(Integer, ForeignKey("companies.id"), index=True, nullable=False)
    conversation_id = Column(String, index=True)
    name = Column(String)
    email = Column(String)
    phone = Column(String)
    source = Column(String)
    channel = Column(String)
    status = Column(String, default="new")
    booking_count = Column(Integer, default=0, nullable=False)
    last_touch_at = Column(DateTime(timezone=True))
    last_booked_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
