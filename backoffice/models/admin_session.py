from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String

from backoffice.core.database import Base, utcnow


class AdminSession(Base):
    __tablename__ = "admin_sessions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    business_owner_id = Column(String(36), ForeignKey("business_owner.id"), nullable=False, index=True)
    session_token = Column(String(64), nullable=False, unique=True, index=True)
    required_for = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    expires_at = Column(DateTime, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
