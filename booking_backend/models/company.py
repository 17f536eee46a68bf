"""Company model definitions."""

from sqlalchemy import Column, Integer, String
from booking_backend.database import Base


class Company(Base):
    """Represents a tenant. Managed elsewhere; read here to resolve public booking pages."""
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True)
    name = Column(String)
    public_booking_key = Column(String, unique=True, index=True)
