from __future__ import annotations

import json
import logging
from collections import Counter
from datetime import timedelta
from enum import Enum
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from backoffice.core.database import utcnow
from backoffice.core.request_context import get_client_ip, get_user_agent
from backoffice.models.security_audit_log import SecurityAuditLog
from backoffice.services.event_bus import SECURITY_EVENT, event_bus
from backoffice.services.pins import pin_prefix

logger = logging.getLogger(__name__)


class SecurityEventType(str, Enum):
    STAFF_PIN_FAILURE = "staff_pin_failure"
    STAFF_PIN_SUCCESS = "staff_pin_success"
    STAFF_PIN_LOCKOUT = "staff_pin_lockout"
    ADMIN_PIN_FAILURE = "admin_pin_failure"
    ADMIN_PIN_SUCCESS = "admin_pin_success"
    ADMIN_PIN_LOCKOUT = "admin_pin_lockout"
    UNAUTHORIZED_ACCESS_ATTEMPT = "unauthorized_access_attempt"
    PERMISSION_VIOLATION = "permission_violation"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def log_security_event(
    *,
    business_id: Optional[str],
    event_type: SecurityEventType,
    severity: Severity,
    user_id: Optional[str] = None,
    staff_id: Optional[str] = None,
    details: Optional[Mapping[str, Any]] = None,
) -> None:
    """Hand one event to the audit channel. Never raises."""
    payload = {
        "business_id": business_id,
        "event_type": event_type.value,
        "severity": severity.value,
        "user_id": user_id,
        "staff_id": staff_id,
        "ip_address": get_client_ip(),
        "user_agent": get_user_agent(),
        "details": {**(details or {}), "timestamp": utcnow().isoformat()},
    }
    if severity is Severity.CRITICAL:
        logger.warning(
            "Critical security event type=%s business_id=%s",
            event_type.value,
            business_id,
            extra={"event_type": event_type.value, "severity": severity.value},
        )
    try:
        event_bus.emit(SECURITY_EVENT, payload)
    except Exception:
        logger.exception("Security audit emit failed type=%s", event_type.value)


def log_staff_pin_failure(
    business_id: str,
    *,
    pin: str,
    attempt_count: int,
    staff_id: Optional[str] = None,
) -> None:
    log_security_event(
        business_id=business_id,
        event_type=SecurityEventType.STAFF_PIN_FAILURE,
        severity=Severity.HIGH if attempt_count >= 3 else Severity.MEDIUM,
        staff_id=staff_id,
        details={"partial_pin": pin_prefix(pin), "attempt_count": attempt_count},
    )


def log_staff_pin_success(
    business_id: str,
    staff_id: str,
    *,
    session_id: str,
    signed_in_by: Optional[str],
) -> None:
    log_security_event(
        business_id=business_id,
        event_type=SecurityEventType.STAFF_PIN_SUCCESS,
        severity=Severity.LOW,
        staff_id=staff_id,
        details={
            "session_id": session_id,
            "signed_in_by": signed_in_by,
            "login_method": "pin_authentication",
        },
    )


def log_staff_pin_lockout(
    business_id: str,
    *,
    identifier: str,
    attempt_count: int,
    lockout_seconds: int,
    staff_id: Optional[str] = None,
) -> None:
    log_security_event(
        business_id=business_id,
        event_type=SecurityEventType.STAFF_PIN_LOCKOUT,
        severity=Severity.HIGH,
        staff_id=staff_id,
        details={
            "identifier": identifier,
            "failed_attempts": attempt_count,
            "lockout_duration_minutes": round(lockout_seconds / 60),
        },
    )


def log_admin_pin_failure(
    business_id: str,
    owner_id: str,
    *,
    attempt_count: int,
    required_for: Optional[str] = None,
) -> None:
    log_security_event(
        business_id=business_id,
        event_type=SecurityEventType.ADMIN_PIN_FAILURE,
        severity=Severity.CRITICAL if attempt_count >= 5 else Severity.HIGH,
        user_id=owner_id,
        details={"attempt_count": attempt_count, "required_for": required_for},
    )


def log_admin_pin_success(
    business_id: str,
    owner_id: str,
    *,
    required_for: str,
    session_seconds: int = 0,
) -> None:
    log_security_event(
        business_id=business_id,
        event_type=SecurityEventType.ADMIN_PIN_SUCCESS,
        severity=Severity.MEDIUM,
        user_id=owner_id,
        details={
            "required_for": required_for,
            "session_duration_minutes": round(session_seconds / 60),
            "elevated_access_granted": bool(session_seconds),
        },
    )


def log_admin_pin_lockout(
    business_id: str,
    owner_id: str,
    *,
    attempt_count: int,
    lockout_seconds: int,
) -> None:
    log_security_event(
        business_id=business_id,
        event_type=SecurityEventType.ADMIN_PIN_LOCKOUT,
        severity=Severity.CRITICAL,
        user_id=owner_id,
        details={
            "failed_attempts": attempt_count,
            "lockout_duration_minutes": round(lockout_seconds / 60),
            "admin_access_locked": True,
        },
    )


def log_unauthorized_access(
    business_id: Optional[str],
    *,
    attempted_resource: str,
    user_id: Optional[str] = None,
    staff_id: Optional[str] = None,
    required_permission: Optional[str] = None,
) -> None:
    log_security_event(
        business_id=business_id,
        event_type=SecurityEventType.UNAUTHORIZED_ACCESS_ATTEMPT,
        severity=Severity.HIGH,
        user_id=user_id,
        staff_id=staff_id,
        details={
            "attempted_resource": attempted_resource,
            "required_permission": required_permission,
            "access_denied": True,
        },
    )


def log_permission_violation(
    business_id: str,
    *,
    attempted_action: str,
    required_permissions: list[str],
    current_permissions: list[str],
    staff_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> None:
    log_security_event(
        business_id=business_id,
        event_type=SecurityEventType.PERMISSION_VIOLATION,
        severity=Severity.MEDIUM,
        user_id=user_id,
        staff_id=staff_id,
        details={
            "attempted_action": attempted_action,
            "required_permissions": required_permissions,
            "current_permissions": current_permissions,
            "permission_gap": [perm for perm in required_permissions if perm not in current_permissions],
        },
    )


def serialize_security_event(entry: SecurityAuditLog) -> dict[str, Any]:
    return {
        "id": entry.id,
        "business_id": entry.business_id,
        "event_type": entry.event_type,
        "severity": entry.severity,
        "user_id": entry.user_id,
        "staff_id": entry.staff_id,
        "ip_address": entry.ip_address,
        "user_agent": entry.user_agent,
        "details": json.loads(entry.details_json) if entry.details_json else {},
        "created_at": entry.created_at,
    }


def get_recent_security_events(
    db: Session,
    business_id: str,
    *,
    limit: int = 50,
    severity: Optional[str] = None,
) -> list[SecurityAuditLog]:
    query = db.query(SecurityAuditLog).filter(SecurityAuditLog.business_id == business_id)
    if severity:
        query = query.filter(SecurityAuditLog.severity == severity)
    return (
        query.order_by(SecurityAuditLog.created_at.desc(), SecurityAuditLog.id.desc())
        .limit(limit)
        .all()
    )


def get_security_metrics(db: Session, business_id: str, *, hours: int = 24) -> dict[str, Any]:
    since = utcnow() - timedelta(hours=hours)
    events = (
        db.query(SecurityAuditLog)
        .filter(SecurityAuditLog.business_id == business_id, SecurityAuditLog.created_at >= since)
        .order_by(SecurityAuditLog.created_at.desc(), SecurityAuditLog.id.desc())
        .all()
    )
    serialized = [serialize_security_event(event) for event in events]

    multiple_failed_attempts = sum(
        1
        for event in serialized
        if ("failure" in event["event_type"] or "lockout" in event["event_type"])
        and (event["details"].get("attempt_count") or 0) >= 3
    )
    return {
        "total_events": len(serialized),
        "events_by_type": dict(Counter(event["event_type"] for event in serialized)),
        "events_by_severity": dict(Counter(event["severity"] for event in serialized)),
        "recent_events": serialized[:10],
        "suspicious_patterns": {
            "multiple_failed_attempts": multiple_failed_attempts,
            "rate_limit_violations": sum(1 for event in serialized if "lockout" in event["event_type"]),
        },
    }
