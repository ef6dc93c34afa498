from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from backoffice.core.config import STAFF_SESSION_MAX_AGE_SECONDS
from backoffice.core.database import utcnow
from backoffice.core.errors import NotFound
from backoffice.models.staff import Staff
from backoffice.models.staff_session import StaffSession
from backoffice.services.pins import generate_session_token

logger = logging.getLogger(__name__)


def serialize_session(session: StaffSession) -> dict:
    return {
        "id": session.id,
        "staff_id": session.staff_id,
        "business_id": session.business_id,
        "signed_in_by": session.signed_in_by,
        "signed_in_at": session.signed_in_at,
        "signed_out_at": session.signed_out_at,
        "expires_at": session.expires_at,
        "is_active": bool(session.is_active),
    }


@dataclass
class BulkTerminationResult:
    terminated: list[StaffSession] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.terminated)


class StaffSessionManager:
    """Issue, look up and terminate staff sessions.

    A session moves from active to terminated exactly once. Every lookup and
    termination is scoped to a business id; a session of another business
    behaves as if it did not exist.
    """

    def __init__(self, db: Session, *, max_age_seconds: int = STAFF_SESSION_MAX_AGE_SECONDS) -> None:
        self.db = db
        self.max_age = timedelta(seconds=max_age_seconds)

    def create_session(self, staff_id: str, business_id: str, signed_in_by: Optional[str]) -> StaffSession:
        staff = (
            self.db.query(Staff)
            .filter(Staff.id == staff_id, Staff.business_id == business_id, Staff.is_active.is_(True))
            .first()
        )
        if staff is None:
            raise NotFound("staff-not-found")

        now = utcnow()
        session = StaffSession(
            staff_id=staff.id,
            business_id=business_id,
            session_token=generate_session_token(),
            signed_in_by=signed_in_by,
            signed_in_at=now,
            expires_at=now + self.max_age,
            is_active=True,
        )
        self.db.add(session)
        self.db.flush()
        return session

    def get_session(self, session_id: str, business_id: str) -> StaffSession:
        session = (
            self.db.query(StaffSession)
            .filter(StaffSession.id == session_id, StaffSession.business_id == business_id)
            .first()
        )
        if session is None:
            raise NotFound("session-not-found")
        return session

    def _mark_terminated(self, session: StaffSession) -> bool:
        if not session.is_active:
            return False
        session.is_active = False
        session.signed_out_at = utcnow()
        return True

    def terminate_session(self, session_id: str, business_id: str) -> StaffSession:
        """Terminate one session. A session that already ended is returned unchanged."""
        session = self.get_session(session_id, business_id)
        self._mark_terminated(session)
        self.db.flush()
        return session

    def bulk_terminate(self, session_ids: Iterable[str], business_id: str) -> BulkTerminationResult:
        """Best effort per item: missing, foreign or already ended sessions are skipped."""
        result = BulkTerminationResult()
        for session_id in dict.fromkeys(session_ids):
            try:
                session = self.get_session(session_id, business_id)
            except NotFound:
                result.skipped.append(session_id)
                continue
            if self._mark_terminated(session):
                result.terminated.append(session)
            else:
                result.skipped.append(session_id)
        self.db.flush()
        return result

    def terminate_staff_sessions(self, staff_id: str, business_id: str) -> list[StaffSession]:
        sessions = self.get_active_sessions_for_staff(business_id, staff_id)
        for session in sessions:
            self._mark_terminated(session)
        self.db.flush()
        return sessions

    def get_active_sessions(self, business_id: str) -> list[StaffSession]:
        return (
            self.db.query(StaffSession)
            .filter(StaffSession.business_id == business_id, StaffSession.is_active.is_(True))
            .order_by(StaffSession.signed_in_at.desc())
            .all()
        )

    def get_active_sessions_for_staff(self, business_id: str, staff_id: str) -> list[StaffSession]:
        return (
            self.db.query(StaffSession)
            .filter(
                StaffSession.business_id == business_id,
                StaffSession.staff_id == staff_id,
                StaffSession.is_active.is_(True),
            )
            .order_by(StaffSession.signed_in_at.desc())
            .all()
        )

    def validate_session_token(self, token: Optional[str]) -> Optional[StaffSession]:
        """Active, unexpired session for the token. Expired rows are terminated on sight."""
        if not token:
            return None
        session = (
            self.db.query(StaffSession)
            .filter(StaffSession.session_token == token, StaffSession.is_active.is_(True))
            .first()
        )
        if session is None:
            return None
        if session.expires_at <= utcnow():
            self._mark_terminated(session)
            self.db.commit()
            logger.info("Expired staff session terminated on lookup session_id=%s", session.id)
            return None
        return session

    def reap_expired_sessions(self, business_id: Optional[str] = None) -> int:
        query = self.db.query(StaffSession).filter(
            StaffSession.is_active.is_(True),
            StaffSession.expires_at <= utcnow(),
        )
        if business_id:
            query = query.filter(StaffSession.business_id == business_id)
        expired = query.all()
        for session in expired:
            self._mark_terminated(session)
        self.db.commit()
        if expired:
            logger.info("Reaped expired staff sessions count=%s business_id=%s", len(expired), business_id)
        return len(expired)
