from sqlalchemy import Column, DateTime, Integer, String, Text

from backoffice.core.database import Base, utcnow


class StaffActivityLog(Base):
    __tablename__ = "staff_activity_logs"

    id = Column(Integer, primary_key=True, index=True)
    business_id = Column(String(36), nullable=False, index=True)
    staff_id = Column(String(36), nullable=True, index=True)
    action = Column(String, nullable=False, index=True)
    performed_by = Column(String(36), nullable=True)
    details_json = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
