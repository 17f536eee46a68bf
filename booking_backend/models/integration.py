"""Calendar integration model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, func
from booking_backend.database import Base


class CompanyIntegration(Base):
    """OAuth-connected third-party account of a tenant."""
    __tablename__ = "company_integrations"

    id = Column(Integer, primary_key=True)
    company_id = Column(Integer, ForeignKey("companies.id"), index=True, nullable=False)
    provider = Column(String, nullable=False)
    status = Column(String, default="connected")
    access_token = Column(String)
    refresh_token = Column(String)
    token_expires_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
