from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from backoffice.core.config import ADMIN_SESSION_MAX_AGE_SECONDS
from backoffice.core.errors import AuthenticationRequired, Conflict, Outcome, RateLimited, ValidationFailed
from backoffice.core.rate_limiter import ADMIN_PIN_POLICY, PinRateLimiter
from backoffice.models.business_owner import BusinessOwner
from backoffice.services import security_audit
from backoffice.services.admin_sessions import create_admin_session, invalidate_admin_sessions
from backoffice.services.pins import PIN_MAX_LENGTH, PIN_MIN_LENGTH, hash_admin_pin, verify_admin_pin

logger = logging.getLogger(__name__)

ADMIN_PIN_SETUP = "admin_pin_setup"
ADMIN_PIN_UPDATE = "admin_pin_update"


def _admin_limiter(limiter: Optional[PinRateLimiter]) -> PinRateLimiter:
    return limiter or PinRateLimiter(ADMIN_PIN_POLICY)


def _validate_new_pin(pin: Optional[str], confirm: Optional[str], *, missing_code: str) -> None:
    errors = []
    if not pin or not confirm:
        raise ValidationFailed(missing_code, details=[{"field": "admin_pin", "code": "required"}])
    if pin != confirm:
        errors.append({"field": "confirm_pin", "code": "admin-pin-mismatch"})
    if not PIN_MIN_LENGTH <= len(pin) <= PIN_MAX_LENGTH:
        errors.append(
            {
                "field": "admin_pin",
                "code": "invalid-admin-pin-length",
                "min_length": PIN_MIN_LENGTH,
                "max_length": PIN_MAX_LENGTH,
            }
        )
    if errors:
        raise ValidationFailed(errors[0]["code"], details=errors)


def _verify_current_pin(
    owner: BusinessOwner,
    pin: str,
    *,
    required_for: str,
    limiter: PinRateLimiter,
    invalid_code: str,
) -> None:
    """Rate gate then verification for the owner's admin PIN."""
    decision = limiter.check(owner.id)
    if not decision.allowed:
        security_audit.log_admin_pin_lockout(
            owner.id,
            owner.id,
            attempt_count=limiter.policy.max_attempts,
            lockout_seconds=limiter.policy.lockout_seconds,
        )
        raise RateLimited("admin-pin-locked", minutes_remaining=decision.minutes_remaining)

    if not verify_admin_pin(pin, owner.admin_pin_hash):
        after = limiter.record_failure(owner.id)
        security_audit.log_admin_pin_failure(
            owner.id,
            owner.id,
            attempt_count=limiter.policy.max_attempts - after.remaining_attempts,
            required_for=required_for,
        )
        raise AuthenticationRequired(invalid_code, extra={"rate_limit": after.as_dict()})

    limiter.clear(owner.id)


def set_admin_pin(db: Session, owner: BusinessOwner, pin: Optional[str], confirm: Optional[str]) -> Outcome:
    """First-time admin PIN setup. Rotation goes through ``update_admin_pin``."""
    if owner.admin_pin_hash:
        raise Conflict("admin-pin-already-set")
    _validate_new_pin(pin, confirm, missing_code="missing-admin-pin")

    owner.admin_pin_hash = hash_admin_pin(pin)
    db.commit()

    security_audit.log_admin_pin_success(owner.id, owner.id, required_for=ADMIN_PIN_SETUP)
    logger.info("Admin PIN set owner_id=%s", owner.id)
    return Outcome("admin-pin-set")


def verify_owner_admin_pin(
    db: Session,
    owner: BusinessOwner,
    pin: Optional[str],
    *,
    required_for: str,
    limiter: Optional[PinRateLimiter] = None,
) -> Outcome:
    """Verify the admin PIN and grant a short-lived elevated session."""
    if not pin or not required_for:
        raise ValidationFailed("missing-admin-pin-data", details=[{"field": "admin_pin", "code": "required"}])
    if not owner.admin_pin_hash:
        raise Conflict("admin-pin-not-set")

    _verify_current_pin(
        owner,
        pin,
        required_for=required_for,
        limiter=_admin_limiter(limiter),
        invalid_code="invalid-admin-pin",
    )

    session = create_admin_session(db, owner.id, required_for=required_for)
    db.commit()

    security_audit.log_admin_pin_success(
        owner.id,
        owner.id,
        required_for=required_for,
        session_seconds=ADMIN_SESSION_MAX_AGE_SECONDS,
    )
    return Outcome(
        "admin-verified",
        {"session": session, "expires_at": session.expires_at, "required_for": required_for},
    )


def update_admin_pin(
    db: Session,
    owner: BusinessOwner,
    current_pin: Optional[str],
    new_pin: Optional[str],
    confirm_pin: Optional[str],
    *,
    limiter: Optional[PinRateLimiter] = None,
) -> Outcome:
    """Rotate the admin PIN. Every elevated session of the owner ends with it."""
    if not current_pin:
        raise ValidationFailed("missing-admin-pin-fields", details=[{"field": "current_pin", "code": "required"}])
    _validate_new_pin(new_pin, confirm_pin, missing_code="missing-admin-pin-fields")
    if not owner.admin_pin_hash:
        raise Conflict("admin-pin-not-set")

    _verify_current_pin(
        owner,
        current_pin,
        required_for=ADMIN_PIN_UPDATE,
        limiter=_admin_limiter(limiter),
        invalid_code="invalid-current-admin-pin",
    )

    owner.admin_pin_hash = hash_admin_pin(new_pin)
    invalidated = invalidate_admin_sessions(db, owner.id)
    db.commit()

    security_audit.log_admin_pin_success(owner.id, owner.id, required_for=ADMIN_PIN_UPDATE)
    logger.info("Admin PIN rotated owner_id=%s sessions_invalidated=%s", owner.id, invalidated)
    return Outcome("admin-pin-updated", {"sessions_invalidated": invalidated})
