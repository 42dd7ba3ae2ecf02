from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean, JSON
from datetime import datetime
from .database import Base


class BusinessRule(Base):
    """
    Persisted rule catalog entry.

    scope / category / kind / service_type are stored as VARCHAR so new values
    don't require a migration. See backend.pricing.rules for valid values.
    """
    __tablename__ = "business_rules"

    id = Column(String(36), primary_key=True)  # UUID, referenced by client selections
    name = Column(String, nullable=False)
    service_type = Column(String(20), primary_key=True)  # same id may exist per service type
    value = Column(Float, nullable=False)  # signed; percentage or euros
    is_percentage = Column(Boolean, default=True)
    scope = Column(String(20), default="GLOBAL")
    category = Column(String(20), default="SURCHARGE")
    kind = Column(String(20), default="CONSTRAINT")
    condition_json = Column(JSON, nullable=True)  # predicate document, null = always
    priority = Column(Integer, default=100)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
