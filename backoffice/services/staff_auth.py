from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from backoffice.core.config import STAFF_SINGLE_SESSION
from backoffice.core.database import utcnow
from backoffice.core.errors import AuthenticationRequired, Conflict, NotFound, RateLimited, ValidationFailed
from backoffice.core.rate_limiter import (
    STAFF_PIN_POLICY,
    STAFF_SIGNIN_POLICY,
    PinRateLimiter,
    RateLimitDecision,
)
from backoffice.models.business_owner import BusinessOwner
from backoffice.models.staff import Staff
from backoffice.models.staff_session import StaffSession
from backoffice.services import security_audit
from backoffice.services.pins import verify_pin
from backoffice.services.staff_activity import StaffAction, log_staff_activity
from backoffice.services.staff_sessions import StaffSessionManager

logger = logging.getLogger(__name__)


@dataclass
class StaffSignInResult:
    session: StaffSession
    staff: Staff
    decision: RateLimitDecision


class StaffAuthService:
    """Staff sign-in flows.

    Every flow runs the same gates in the same order: admin PIN bootstrap,
    rate limit, credential verification, session creation, audit. A locked
    out identifier never reaches PIN verification.
    """

    def __init__(
        self,
        db: Session,
        *,
        pin_limiter: Optional[PinRateLimiter] = None,
        signin_limiter: Optional[PinRateLimiter] = None,
        sessions: Optional[StaffSessionManager] = None,
        single_session: bool = STAFF_SINGLE_SESSION,
    ) -> None:
        self.db = db
        self.pin_limiter = pin_limiter or PinRateLimiter(STAFF_PIN_POLICY)
        self.signin_limiter = signin_limiter or PinRateLimiter(STAFF_SIGNIN_POLICY)
        self.sessions = sessions or StaffSessionManager(db)
        self.single_session = single_session

    @staticmethod
    def _require_admin_pin(owner: Optional[BusinessOwner]) -> BusinessOwner:
        if owner is None:
            raise NotFound("business-not-found")
        if not owner.admin_pin_hash:
            raise Conflict("admin-pin-required")
        return owner

    def _open_session(self, staff: Staff, business_id: str, signed_in_by: Optional[str]) -> StaffSession:
        if self.single_session:
            previous = self.sessions.terminate_staff_sessions(staff.id, business_id)
            if previous:
                logger.info(
                    "Single-session policy ended previous sessions staff_id=%s count=%s",
                    staff.id,
                    len(previous),
                )
        return self.sessions.create_session(staff.id, business_id, signed_in_by)

    def sign_in_staff(self, owner: BusinessOwner, staff_id: str, pin: Optional[str]) -> StaffSignInResult:
        """Owner-initiated sign-in of one staff member on a shared device."""
        if not staff_id or not pin:
            raise ValidationFailed("missing-credentials", details=[{"field": "pin", "code": "required"}])
        owner = self._require_admin_pin(owner)
        identifier = f"{staff_id}-signin"

        decision = self.signin_limiter.check(identifier)
        if not decision.allowed:
            security_audit.log_staff_pin_lockout(
                owner.id,
                identifier=identifier,
                attempt_count=self.signin_limiter.policy.max_attempts,
                lockout_seconds=self.signin_limiter.policy.lockout_seconds,
                staff_id=staff_id,
            )
            raise RateLimited("rate-limited", minutes_remaining=decision.minutes_remaining)

        staff = (
            self.db.query(Staff)
            .filter(Staff.id == staff_id, Staff.business_id == owner.id, Staff.is_active.is_(True))
            .first()
        )
        if staff is None:
            raise NotFound("staff-not-found")

        if not verify_pin(pin, staff.pin_hash):
            after = self.signin_limiter.record_failure(identifier)
            security_audit.log_staff_pin_failure(
                owner.id,
                pin=pin,
                attempt_count=self.signin_limiter.policy.max_attempts - after.remaining_attempts,
                staff_id=staff.id,
            )
            raise AuthenticationRequired("invalid-pin", extra={"rate_limit": after.as_dict()})

        self.signin_limiter.clear(identifier)
        session = self._open_session(staff, owner.id, owner.id)
        self.db.commit()

        security_audit.log_staff_pin_success(owner.id, staff.id, session_id=session.id, signed_in_by=owner.id)
        log_staff_activity(
            business_id=owner.id,
            action=StaffAction.STAFF_SIGNED_IN,
            staff_id=staff.id,
            performed_by=owner.id,
            details={"session_id": session.id, "staff_name": staff.full_name},
        )
        return StaffSignInResult(session=session, staff=staff, decision=self.signin_limiter.check(identifier))

    def staff_login(
        self,
        business_id: Optional[str],
        *,
        pin: Optional[str],
        email: Optional[str] = None,
        username: Optional[str] = None,
    ) -> StaffSignInResult:
        """Staff self-login, scoped to the business chosen before the login form."""
        email = (email or "").strip().lower() or None
        username = (username or "").strip() or None
        if not pin or not (email or username):
            raise ValidationFailed("missing-credentials", details=[{"field": "pin", "code": "required"}])

        owner = None
        if business_id:
            owner = self.db.query(BusinessOwner).filter(BusinessOwner.id == business_id).first()
        owner = self._require_admin_pin(owner)
        identifier = f"{owner.id}-{pin[:2]}"

        decision = self.pin_limiter.check(identifier)
        if not decision.allowed:
            security_audit.log_staff_pin_lockout(
                owner.id,
                identifier=identifier,
                attempt_count=self.pin_limiter.policy.max_attempts,
                lockout_seconds=self.pin_limiter.policy.lockout_seconds,
            )
            raise RateLimited("rate-limited", minutes_remaining=decision.minutes_remaining)

        query = self.db.query(Staff).filter(Staff.business_id == owner.id, Staff.is_active.is_(True))
        if email:
            query = query.filter(func.lower(Staff.email) == email)
        else:
            query = query.filter(Staff.username == username)
        staff = query.first()

        if staff is None or not verify_pin(pin, staff.pin_hash):
            after = self.pin_limiter.record_failure(identifier)
            security_audit.log_staff_pin_failure(
                owner.id,
                pin=pin,
                attempt_count=self.pin_limiter.policy.max_attempts - after.remaining_attempts,
                staff_id=staff.id if staff else None,
            )
            raise AuthenticationRequired("invalid-credentials", extra={"rate_limit": after.as_dict()})

        self.pin_limiter.clear(identifier)
        staff.last_login_at = utcnow()
        session = self._open_session(staff, owner.id, None)
        self.db.commit()

        security_audit.log_staff_pin_success(owner.id, staff.id, session_id=session.id, signed_in_by=None)
        log_staff_activity(
            business_id=owner.id,
            action=StaffAction.STAFF_LOGIN,
            staff_id=staff.id,
            details={"session_id": session.id, "login_method": "email" if email else "username"},
        )
        return StaffSignInResult(session=session, staff=staff, decision=self.pin_limiter.check(identifier))

    def staff_logout(self, token: Optional[str]) -> Optional[StaffSession]:
        session = self.sessions.validate_session_token(token)
        if session is None:
            return None
        self.sessions.terminate_session(session.id, session.business_id)
        self.db.commit()

        log_staff_activity(
            business_id=session.business_id,
            action=StaffAction.STAFF_LOGOUT,
            staff_id=session.staff_id,
            details={"session_id": session.id},
        )
        return session
