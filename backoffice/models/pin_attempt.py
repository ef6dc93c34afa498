from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from backoffice.core.database import Base, utcnow


class PinAttempt(Base):
    __tablename__ = "pin_attempts"
    __table_args__ = (UniqueConstraint("key", name="uq_pin_attempts_key"),)

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String, nullable=False, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow)
