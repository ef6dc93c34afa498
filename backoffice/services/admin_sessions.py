from __future__ import annotations

from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from backoffice.core.config import ADMIN_SESSION_MAX_AGE_SECONDS
from backoffice.core.database import utcnow
from backoffice.models.admin_session import AdminSession
from backoffice.services.pins import generate_session_token


def create_admin_session(
    db: Session,
    owner_id: str,
    *,
    required_for: str,
    max_age_seconds: int = ADMIN_SESSION_MAX_AGE_SECONDS,
) -> AdminSession:
    now = utcnow()
    session = AdminSession(
        business_owner_id=owner_id,
        session_token=generate_session_token(),
        required_for=required_for,
        created_at=now,
        expires_at=now + timedelta(seconds=max_age_seconds),
        is_active=True,
    )
    db.add(session)
    db.flush()
    return session


def validate_admin_session(
    db: Session,
    token: Optional[str],
    *,
    owner_id: Optional[str] = None,
    required_for: Optional[str] = None,
) -> Optional[AdminSession]:
    if not token:
        return None
    query = db.query(AdminSession).filter(
        AdminSession.session_token == token,
        AdminSession.is_active.is_(True),
        AdminSession.expires_at > utcnow(),
    )
    if owner_id is not None:
        query = query.filter(AdminSession.business_owner_id == owner_id)
    if required_for is not None:
        query = query.filter(AdminSession.required_for == required_for)
    return query.first()


def invalidate_admin_sessions(db: Session, owner_id: str) -> int:
    sessions = (
        db.query(AdminSession)
        .filter(AdminSession.business_owner_id == owner_id, AdminSession.is_active.is_(True))
        .all()
    )
    for session in sessions:
        session.is_active = False
    db.flush()
    return len(sessions)
