from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from backoffice.core.database import get_db
from backoffice.core.errors import AuthenticationRequired, NotFound, ValidationFailed
from backoffice.deps import get_current_staff, get_current_staff_session, require_staff_permissions
from backoffice.models.business_owner import BusinessOwner
from backoffice.models.staff import Staff
from backoffice.models.staff_session import StaffSession
from backoffice.services.cookies import (
    STAFF_BUSINESS_COOKIE,
    STAFF_SESSION_COOKIE,
    clear_business_scope_cookie,
    clear_staff_session_cookie,
    decode_business_scope,
    set_business_scope_cookie,
    set_staff_session_cookie,
)
from backoffice.services.permissions import Permission
from backoffice.services.staff_auth import StaffAuthService
from backoffice.services.staff_management import serialize_staff
from backoffice.services.staff_sessions import serialize_session

router = APIRouter(prefix="/api/staff-auth", tags=["staff-auth"])
logger = logging.getLogger(__name__)


class BusinessSelect(BaseModel):
    business_id: str = Field(..., min_length=1)


class StaffLoginPayload(BaseModel):
    email: Optional[EmailStr] = None
    username: Optional[str] = None
    pin: str = Field(..., min_length=1)


@router.post("/business")
def select_business(
    payload: BusinessSelect,
    response: Response,
    db: Session = Depends(get_db),
):
    """Scope the following staff login to one business."""
    owner = db.query(BusinessOwner).filter(BusinessOwner.id == payload.business_id).first()
    if owner is None:
        raise NotFound("business-not-found")
    set_business_scope_cookie(response, owner.id)
    return {
        "success": "business-selected",
        "business_id": owner.id,
        "business_name": owner.business_name,
        "staff_login_enabled": bool(owner.admin_pin_hash),
    }


@router.post("/login")
def staff_login(
    payload: StaffLoginPayload,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    business_id = decode_business_scope(request.cookies.get(STAFF_BUSINESS_COOKIE))
    if business_id is None:
        raise AuthenticationRequired("business-not-selected")
    if not payload.email and not payload.username:
        raise ValidationFailed("missing-credentials", details=[{"field": "email", "code": "identifier-required"}])

    result = StaffAuthService(db).staff_login(
        business_id,
        pin=payload.pin,
        email=payload.email,
        username=payload.username,
    )
    set_staff_session_cookie(response, result.session.session_token)
    request.state.staff_session = result.session
    logger.info("Staff login business_id=%s staff_id=%s", business_id, result.staff.id)
    return {
        "success": "staff-logged-in",
        "staff": serialize_staff(result.staff),
        "session": serialize_session(result.session),
    }


@router.post("/logout")
def staff_logout(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    StaffAuthService(db).staff_logout(request.cookies.get(STAFF_SESSION_COOKIE))
    clear_staff_session_cookie(response)
    clear_business_scope_cookie(response)
    return {"success": "staff-logged-out"}


@router.get("/me")
def read_current_staff(
    session: StaffSession = Depends(get_current_staff_session),
    staff: Staff = Depends(get_current_staff),
):
    return {"staff": serialize_staff(staff), "session": serialize_session(session)}


@router.get("/team")
def read_team(
    staff: Staff = Depends(require_staff_permissions([Permission.STAFF_READ])),
    db: Session = Depends(get_db),
):
    team = (
        db.query(Staff)
        .filter(Staff.business_id == staff.business_id, Staff.is_active.is_(True))
        .order_by(Staff.first_name.asc(), Staff.last_name.asc())
        .all()
    )
    return [
        {
            "id": member.id,
            "full_name": member.full_name,
            "role": member.role,
        }
        for member in team
    ]
