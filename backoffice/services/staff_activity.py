from __future__ import annotations

import json
import logging
from collections import Counter
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from backoffice.models.staff import Staff
from backoffice.models.staff_activity_log import StaffActivityLog
from backoffice.models.staff_session import StaffSession
from backoffice.services.event_bus import STAFF_ACTIVITY_EVENT, event_bus

logger = logging.getLogger(__name__)


class StaffAction(str, Enum):
    STAFF_CREATED = "staff_created"
    STAFF_UPDATED = "staff_updated"
    ROLE_CHANGED = "role_changed"
    STAFF_DEACTIVATED = "staff_deactivated"
    STAFF_ACTIVATED = "staff_activated"
    STAFF_DELETED = "staff_deleted"
    PIN_RESET = "pin_reset"
    PIN_RETRIEVED = "pin_retrieved"
    PIN_CHANGED = "pin_changed"
    STAFF_LOGIN = "staff_login"
    STAFF_LOGOUT = "staff_logout"
    STAFF_SIGNED_IN = "staff_signed_in"
    STAFF_SIGNED_OUT = "staff_signed_out"
    STAFF_BULK_SIGNED_OUT = "staff_bulk_signed_out"
    BULK_STAFF_SIGNOUT = "bulk_staff_signout"
    STAFF_SIGNOUT_ALL = "staff_signout_all"
    SESSION_TERMINATED_DUE_TO_UPDATE = "session_terminated_due_to_update"
    SESSION_TERMINATED_DUE_TO_DELETION = "session_terminated_due_to_deletion"


def log_staff_activity(
    *,
    business_id: str,
    action: StaffAction,
    staff_id: Optional[str] = None,
    performed_by: Optional[str] = None,
    details: Optional[Mapping[str, Any]] = None,
) -> None:
    """Hand one activity entry to the audit channel. Never raises.

    Callers emit only after the mutation the entry describes has committed.
    """
    payload = {
        "business_id": business_id,
        "staff_id": staff_id,
        "action": action.value,
        "performed_by": performed_by,
        "details": dict(details or {}),
    }
    try:
        event_bus.emit(STAFF_ACTIVITY_EVENT, payload)
    except Exception:
        logger.exception("Staff activity emit failed action=%s", action.value)


def serialize_activity(entry: StaffActivityLog) -> dict[str, Any]:
    return {
        "id": entry.id,
        "business_id": entry.business_id,
        "staff_id": entry.staff_id,
        "action": entry.action,
        "performed_by": entry.performed_by,
        "details": json.loads(entry.details_json) if entry.details_json else {},
        "created_at": entry.created_at,
    }


def get_staff_activity_logs(
    db: Session,
    business_id: str,
    staff_id: str,
    *,
    limit: int = 50,
    offset: int = 0,
) -> list[StaffActivityLog]:
    return (
        db.query(StaffActivityLog)
        .filter(StaffActivityLog.business_id == business_id, StaffActivityLog.staff_id == staff_id)
        .order_by(StaffActivityLog.created_at.desc(), StaffActivityLog.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def get_business_activity_logs(
    db: Session,
    business_id: str,
    *,
    action: Optional[str] = None,
    staff_id: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = 100,
    offset: int = 0,
) -> list[StaffActivityLog]:
    query = db.query(StaffActivityLog).filter(StaffActivityLog.business_id == business_id)
    if action:
        query = query.filter(StaffActivityLog.action == action)
    if staff_id:
        query = query.filter(StaffActivityLog.staff_id == staff_id)
    if since:
        query = query.filter(StaffActivityLog.created_at >= since)
    if until:
        query = query.filter(StaffActivityLog.created_at <= until)
    return (
        query.order_by(StaffActivityLog.created_at.desc(), StaffActivityLog.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def get_staff_activity_summary(
    db: Session,
    business_id: str,
    *,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
) -> list[dict[str, Any]]:
    """Per active staff member: session count and duration, action counts, last activity."""
    staff_members = (
        db.query(Staff)
        .filter(Staff.business_id == business_id, Staff.is_active.is_(True))
        .order_by(Staff.first_name.asc(), Staff.last_name.asc())
        .all()
    )

    summaries = []
    for member in staff_members:
        sessions_query = db.query(StaffSession).filter(
            StaffSession.business_id == business_id,
            StaffSession.staff_id == member.id,
        )
        activity_query = db.query(StaffActivityLog).filter(
            StaffActivityLog.business_id == business_id,
            StaffActivityLog.staff_id == member.id,
        )
        if since:
            sessions_query = sessions_query.filter(StaffSession.signed_in_at >= since)
            activity_query = activity_query.filter(StaffActivityLog.created_at >= since)
        if until:
            sessions_query = sessions_query.filter(StaffSession.signed_in_at <= until)
            activity_query = activity_query.filter(StaffActivityLog.created_at <= until)

        sessions = sessions_query.all()
        activities = activity_query.all()

        total_minutes = sum(
            (session.signed_out_at - session.signed_in_at).total_seconds() / 60
            for session in sessions
            if session.signed_out_at is not None
        )
        action_counts = Counter(activity.action for activity in activities)
        last_activity = max((activity.created_at for activity in activities), default=None)

        summaries.append(
            {
                "staff_id": member.id,
                "staff_name": member.full_name,
                "role": member.role,
                "total_sessions": len(sessions),
                "total_session_duration_minutes": round(total_minutes),
                "average_session_duration_minutes": round(total_minutes / len(sessions)) if sessions else 0,
                "total_actions": len(activities),
                "last_activity_at": last_activity,
                "most_common_actions": [
                    {"action": action, "count": count} for action, count in action_counts.most_common(5)
                ],
            }
        )
    return summaries
