from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, String

from backoffice.core.database import Base, utcnow


class BusinessOwner(Base):
    __tablename__ = "business_owner"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    email = Column(String, nullable=False, unique=True, index=True)
    account_type = Column(String, nullable=False, default="business")
    business_name = Column(String, nullable=True)
    business_type = Column(String, nullable=True)
    admin_pin_hash = Column(String, nullable=True)
    email_verified = Column(Boolean, nullable=False, default=False)
    phone_verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
