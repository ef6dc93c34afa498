from sqlalchemy import Column, DateTime, Integer, String, Text

from backoffice.core.database import Base, utcnow


class SecurityAuditLog(Base):
    __tablename__ = "security_audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    business_id = Column(String(36), nullable=True, index=True)
    event_type = Column(String, nullable=False, index=True)
    severity = Column(String, nullable=False)
    user_id = Column(String(36), nullable=True)
    staff_id = Column(String(36), nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    details_json = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
