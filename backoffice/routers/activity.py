from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from backoffice.core.database import get_db
from backoffice.deps import get_current_business_owner
from backoffice.models.business_owner import BusinessOwner
from backoffice.services.permissions import get_all_permissions, get_permission_groups
from backoffice.services.security_audit import (
    get_recent_security_events,
    get_security_metrics,
    serialize_security_event,
)
from backoffice.services.staff_activity import (
    get_business_activity_logs,
    get_staff_activity_logs,
    get_staff_activity_summary,
    serialize_activity,
)
from backoffice.services.staff_management import get_staff
from backoffice.services.staff_roles import get_all_roles, get_recommended_roles

router = APIRouter(prefix="/api/business-owner", tags=["activity"])


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        cleaned = value.replace("Z", "+00:00")
        parsed = datetime.fromisoformat(cleaned)
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc)
        return parsed.replace(tzinfo=None)
    except ValueError:
        return None


@router.get("/activity")
def list_activity(
    action: Optional[str] = None,
    staff_id: Optional[str] = None,
    from_date: Optional[str] = Query(None, alias="from"),
    to_date: Optional[str] = Query(None, alias="to"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    owner: BusinessOwner = Depends(get_current_business_owner),
    db: Session = Depends(get_db),
):
    entries = get_business_activity_logs(
        db,
        owner.id,
        action=action,
        staff_id=staff_id,
        since=_parse_datetime(from_date),
        until=_parse_datetime(to_date),
        limit=limit,
        offset=offset,
    )
    return [serialize_activity(entry) for entry in entries]


@router.get("/activity/summary")
def activity_summary(
    from_date: Optional[str] = Query(None, alias="from"),
    to_date: Optional[str] = Query(None, alias="to"),
    owner: BusinessOwner = Depends(get_current_business_owner),
    db: Session = Depends(get_db),
):
    return get_staff_activity_summary(
        db,
        owner.id,
        since=_parse_datetime(from_date),
        until=_parse_datetime(to_date),
    )


@router.get("/staff/{staff_id}/activity")
def list_staff_activity(
    staff_id: str,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    owner: BusinessOwner = Depends(get_current_business_owner),
    db: Session = Depends(get_db),
):
    staff = get_staff(db, owner, staff_id)
    entries = get_staff_activity_logs(db, owner.id, staff.id, limit=limit, offset=offset)
    return [serialize_activity(entry) for entry in entries]


@router.get("/security/events")
def list_security_events(
    severity: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    owner: BusinessOwner = Depends(get_current_business_owner),
    db: Session = Depends(get_db),
):
    events = get_recent_security_events(db, owner.id, limit=limit, severity=severity)
    return [serialize_security_event(event) for event in events]


@router.get("/security/metrics")
def security_metrics(
    hours: int = Query(24, ge=1, le=24 * 30),
    owner: BusinessOwner = Depends(get_current_business_owner),
    db: Session = Depends(get_db),
):
    return get_security_metrics(db, owner.id, hours=hours)


@router.get("/roles")
def list_roles(owner: BusinessOwner = Depends(get_current_business_owner)):
    return {
        "roles": get_all_roles(),
        "recommended": get_recommended_roles(owner.business_type),
        "permissions": get_all_permissions(),
        "permission_groups": get_permission_groups(),
    }
