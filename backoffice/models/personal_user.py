from uuid import uuid4

from sqlalchemy import Column, DateTime, String

from backoffice.core.database import Base, utcnow


class PersonalUser(Base):
    __tablename__ = "personal_users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    email = Column(String, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow)
