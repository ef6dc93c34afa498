from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backoffice.core.database import get_db
from backoffice.deps import get_current_business_owner
from backoffice.models.business_owner import BusinessOwner
from backoffice.services.admin_pin import set_admin_pin, update_admin_pin, verify_owner_admin_pin
from backoffice.services.admin_sessions import validate_admin_session
from backoffice.services.cookies import (
    ADMIN_SESSION_COOKIE,
    clear_admin_session_cookie,
    set_admin_session_cookie,
)

router = APIRouter(prefix="/api/business-owner", tags=["admin-pin"])


class AdminPinSet(BaseModel):
    admin_pin: Optional[str] = None
    confirm_pin: Optional[str] = None


class AdminPinUpdate(BaseModel):
    current_pin: Optional[str] = None
    new_pin: Optional[str] = None
    confirm_pin: Optional[str] = None


class AdminPinVerify(BaseModel):
    admin_pin: Optional[str] = None
    required_for: str = Field(..., min_length=1)


@router.post("/admin-pin")
def create_admin_pin(
    payload: AdminPinSet,
    owner: BusinessOwner = Depends(get_current_business_owner),
    db: Session = Depends(get_db),
):
    return set_admin_pin(db, owner, payload.admin_pin, payload.confirm_pin).as_dict()


@router.put("/admin-pin")
def change_admin_pin(
    payload: AdminPinUpdate,
    response: Response,
    owner: BusinessOwner = Depends(get_current_business_owner),
    db: Session = Depends(get_db),
):
    outcome = update_admin_pin(db, owner, payload.current_pin, payload.new_pin, payload.confirm_pin)
    clear_admin_session_cookie(response)
    return outcome.as_dict()


@router.post("/admin-pin/verify")
def verify_admin_pin(
    payload: AdminPinVerify,
    response: Response,
    owner: BusinessOwner = Depends(get_current_business_owner),
    db: Session = Depends(get_db),
):
    outcome = verify_owner_admin_pin(db, owner, payload.admin_pin, required_for=payload.required_for)
    session = outcome.data["session"]
    set_admin_session_cookie(response, session.session_token)
    return {
        "success": outcome.code,
        "required_for": outcome.data["required_for"],
        "expires_at": outcome.data["expires_at"],
    }


@router.get("/admin-session")
def read_admin_session(
    request: Request,
    required_for: Optional[str] = None,
    owner: BusinessOwner = Depends(get_current_business_owner),
    db: Session = Depends(get_db),
):
    session = validate_admin_session(
        db,
        request.cookies.get(ADMIN_SESSION_COOKIE),
        owner_id=owner.id,
        required_for=required_for,
    )
    if session is None:
        return {"active": False, "admin_pin_set": bool(owner.admin_pin_hash)}
    return {
        "active": True,
        "admin_pin_set": True,
        "required_for": session.required_for,
        "expires_at": session.expires_at,
    }
