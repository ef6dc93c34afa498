"""Persistence of audit events.

Each handler writes through its own short-lived session, so a failing write
never touches the transaction of the operation that emitted the event.
"""

from __future__ import annotations

import json

from sqlalchemy.orm import Session

from backoffice.core.database import SessionLocal
from backoffice.models.security_audit_log import SecurityAuditLog
from backoffice.models.staff_activity_log import StaffActivityLog
from backoffice.services.event_bus import SECURITY_EVENT, STAFF_ACTIVITY_EVENT, event_bus


def _with_session(handler):
    def wrapper(payload: dict) -> None:
        db: Session = SessionLocal()
        try:
            handler(db, payload)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    wrapper.__name__ = handler.__name__
    return wrapper


def _dump(details) -> str | None:
    return json.dumps(details, default=str, sort_keys=True) if details else None


@_with_session
def persist_security_event(db: Session, payload: dict) -> None:
    db.add(
        SecurityAuditLog(
            business_id=payload.get("business_id"),
            event_type=payload["event_type"],
            severity=payload["severity"],
            user_id=payload.get("user_id"),
            staff_id=payload.get("staff_id"),
            ip_address=payload.get("ip_address"),
            user_agent=payload.get("user_agent"),
            details_json=_dump(payload.get("details")),
        )
    )


@_with_session
def persist_staff_activity(db: Session, payload: dict) -> None:
    db.add(
        StaffActivityLog(
            business_id=payload["business_id"],
            staff_id=payload.get("staff_id"),
            action=payload["action"],
            performed_by=payload.get("performed_by"),
            details_json=_dump(payload.get("details")),
        )
    )


event_bus.subscribe(SECURITY_EVENT, persist_security_event)
event_bus.subscribe(STAFF_ACTIVITY_EVENT, persist_staff_activity)
