from uuid import uuid4

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String, UniqueConstraint

from backoffice.core.database import Base, utcnow


class Staff(Base):
    __tablename__ = "staff"
    __table_args__ = (
        UniqueConstraint("business_id", "email", name="uq_staff_business_email"),
        UniqueConstraint("business_id", "phone_number", name="uq_staff_business_phone"),
        UniqueConstraint("business_id", "username", name="uq_staff_business_username"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    business_id = Column(String(36), ForeignKey("business_owner.id"), nullable=False, index=True)

    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    username = Column(String, nullable=True)
    phone_number = Column(String, nullable=True)
    pin_hash = Column(String, nullable=False)
    role = Column(String, nullable=False)
    permissions = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
