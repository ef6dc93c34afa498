from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from backoffice.core.database import get_db
from backoffice.deps import get_current_business_owner, require_admin_session
from backoffice.models.business_owner import BusinessOwner
from backoffice.services import staff_management
from backoffice.services.cookies import set_staff_session_cookie
from backoffice.services.staff_auth import StaffAuthService
from backoffice.services.staff_management import serialize_staff
from backoffice.services.staff_sessions import StaffSessionManager, serialize_session

router = APIRouter(prefix="/api/staff", tags=["staff"])

PIN_RETRIEVAL = "pin_retrieval"


class StaffCreate(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    role: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None
    username: Optional[str] = None
    phone_number: Optional[str] = None
    pin: Optional[str] = None
    custom_permissions: List[str] = Field(default_factory=list)


class StaffUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1)
    last_name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    username: Optional[str] = None
    phone_number: Optional[str] = None
    role: Optional[str] = None
    custom_permissions: Optional[List[str]] = None
    is_active: Optional[bool] = None


class RoleChange(BaseModel):
    role: str = Field(..., min_length=1)
    custom_permissions: Optional[List[str]] = None


class PinChange(BaseModel):
    pin: str = Field(..., min_length=1)


class StaffSignIn(BaseModel):
    pin: str = Field(..., min_length=1)


class BulkSignOut(BaseModel):
    session_ids: List[str] = Field(default_factory=list)


def _render(outcome) -> dict:
    payload = outcome.as_dict()
    if "staff" in payload:
        payload["staff"] = serialize_staff(payload["staff"])
    return payload


@router.get("")
def list_staff(
    role: Optional[str] = None,
    include_inactive: bool = True,
    owner: BusinessOwner = Depends(get_current_business_owner),
    db: Session = Depends(get_db),
):
    staff = staff_management.list_staff(db, owner, role=role, include_inactive=include_inactive)
    return [serialize_staff(entry) for entry in staff]


@router.post("", status_code=status.HTTP_201_CREATED)
def create_staff(
    payload: StaffCreate,
    owner: BusinessOwner = Depends(get_current_business_owner),
    db: Session = Depends(get_db),
):
    return _render(staff_management.create_staff(db, owner, payload.model_dump()))


@router.get("/sessions/active")
def list_active_sessions(
    owner: BusinessOwner = Depends(get_current_business_owner),
    db: Session = Depends(get_db),
):
    return [serialize_session(session) for session in StaffSessionManager(db).get_active_sessions(owner.id)]


@router.post("/sessions/bulk-sign-out")
def bulk_sign_out(
    payload: BulkSignOut,
    owner: BusinessOwner = Depends(get_current_business_owner),
    db: Session = Depends(get_db),
):
    return staff_management.bulk_sign_out(db, owner, payload.session_ids).as_dict()


@router.post("/sessions/{session_id}/sign-out")
def sign_out_session(
    session_id: str,
    owner: BusinessOwner = Depends(get_current_business_owner),
    db: Session = Depends(get_db),
):
    return staff_management.sign_out_session(db, owner, session_id).as_dict()


@router.get("/{staff_id}")
def get_staff(
    staff_id: str,
    owner: BusinessOwner = Depends(get_current_business_owner),
    db: Session = Depends(get_db),
):
    staff = staff_management.get_staff(db, owner, staff_id)
    sessions = StaffSessionManager(db).get_active_sessions_for_staff(owner.id, staff.id)
    return {**serialize_staff(staff), "active_sessions": [serialize_session(session) for session in sessions]}


@router.patch("/{staff_id}")
def update_staff(
    staff_id: str,
    payload: StaffUpdate,
    owner: BusinessOwner = Depends(get_current_business_owner),
    db: Session = Depends(get_db),
):
    updates = payload.model_dump(exclude_unset=True)
    return _render(staff_management.update_staff(db, owner, staff_id, updates))


@router.put("/{staff_id}/role")
def change_role(
    staff_id: str,
    payload: RoleChange,
    owner: BusinessOwner = Depends(get_current_business_owner),
    db: Session = Depends(get_db),
):
    outcome = staff_management.change_staff_role(db, owner, staff_id, payload.role, payload.custom_permissions)
    return _render(outcome)


@router.post("/{staff_id}/deactivate")
def deactivate_staff(
    staff_id: str,
    owner: BusinessOwner = Depends(get_current_business_owner),
    db: Session = Depends(get_db),
):
    return _render(staff_management.deactivate_staff(db, owner, staff_id))


@router.post("/{staff_id}/activate")
def activate_staff(
    staff_id: str,
    owner: BusinessOwner = Depends(get_current_business_owner),
    db: Session = Depends(get_db),
):
    return _render(staff_management.activate_staff(db, owner, staff_id))


@router.delete("/{staff_id}")
def delete_staff(
    staff_id: str,
    owner: BusinessOwner = Depends(get_current_business_owner),
    db: Session = Depends(get_db),
):
    return staff_management.delete_staff(db, owner, staff_id).as_dict()


@router.post("/{staff_id}/pin/reset")
def reset_pin(
    staff_id: str,
    owner: BusinessOwner = Depends(get_current_business_owner),
    db: Session = Depends(get_db),
):
    return staff_management.reset_staff_pin(db, owner, staff_id).as_dict()


@router.post("/{staff_id}/pin/retrieve")
def retrieve_pin(
    staff_id: str,
    owner: BusinessOwner = Depends(get_current_business_owner),
    _admin_session=Depends(require_admin_session(PIN_RETRIEVAL)),
    db: Session = Depends(get_db),
):
    return staff_management.retrieve_staff_pin(db, owner, staff_id).as_dict()


@router.put("/{staff_id}/pin")
def change_pin(
    staff_id: str,
    payload: PinChange,
    owner: BusinessOwner = Depends(get_current_business_owner),
    db: Session = Depends(get_db),
):
    return staff_management.change_staff_pin(db, owner, staff_id, payload.pin).as_dict()


@router.post("/{staff_id}/sign-in")
def sign_in_staff(
    staff_id: str,
    payload: StaffSignIn,
    response: Response,
    owner: BusinessOwner = Depends(get_current_business_owner),
    db: Session = Depends(get_db),
):
    result = StaffAuthService(db).sign_in_staff(owner, staff_id, payload.pin)
    set_staff_session_cookie(response, result.session.session_token)
    return {
        "success": "staff-signed-in",
        "staff": serialize_staff(result.staff),
        "session": serialize_session(result.session),
        "rate_limit": result.decision.as_dict(),
    }


@router.post("/{staff_id}/sign-out-all")
def sign_out_all(
    staff_id: str,
    owner: BusinessOwner = Depends(get_current_business_owner),
    db: Session = Depends(get_db),
):
    return staff_management.sign_out_all_for_staff(db, owner, staff_id).as_dict()

