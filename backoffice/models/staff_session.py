from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, String

from backoffice.core.database import Base, utcnow


class StaffSession(Base):
    __tablename__ = "staff_sessions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    # Plain column: session rows outlive a deleted staff member as history.
    staff_id = Column(String(36), nullable=False, index=True)
    business_id = Column(String(36), nullable=False, index=True)
    session_token = Column(String(64), nullable=False, unique=True, index=True)
    signed_in_by = Column(String(36), nullable=True)
    signed_in_at = Column(DateTime, nullable=False, default=utcnow)
    signed_out_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
