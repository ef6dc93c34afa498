from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backoffice.core.errors import Conflict, NotFound, Outcome, ValidationFailed
from backoffice.models.business_owner import BusinessOwner
from backoffice.models.staff import Staff
from backoffice.models.staff_session import StaffSession
from backoffice.services.pins import generate_secure_pin, hash_pin, is_valid_pin_format
from backoffice.services.staff_activity import StaffAction, log_staff_activity
from backoffice.services.staff_roles import (
    assign_role_permissions,
    check_role_requirements,
    detect_staff_changes,
    require_valid_role,
    validate_staff_creation_data,
    validate_staff_update_data,
)
from backoffice.services.staff_sessions import StaffSessionManager

logger = logging.getLogger(__name__)

# Constraint name (PostgreSQL) or column reference (SQLite) -> conflict code
_UNIQUE_CONFLICTS = (
    (("uq_staff_business_email", "staff.email"), "email-already-exists"),
    (("uq_staff_business_phone", "staff.phone_number"), "phone-already-exists"),
    (("uq_staff_business_username", "staff.username"), "username-already-exists"),
)

_UPDATABLE_FIELDS = ("first_name", "last_name", "email", "username", "phone_number")


def _conflict_from_integrity_error(exc: IntegrityError) -> Conflict:
    message = str(getattr(exc, "orig", exc))
    for markers, code in _UNIQUE_CONFLICTS:
        if any(marker in message for marker in markers):
            return Conflict(code)
    return Conflict("staff-already-exists")


def _commit_staff(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        conflict = _conflict_from_integrity_error(exc)
        logger.info("Staff write rejected code=%s", conflict.code)
        raise conflict from exc


def _clean(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


def _clean_email(value: Optional[str]) -> Optional[str]:
    value = _clean(value)
    return value.lower() if value else None


def serialize_staff(staff: Staff) -> dict[str, Any]:
    return {
        "id": staff.id,
        "business_id": staff.business_id,
        "first_name": staff.first_name,
        "last_name": staff.last_name,
        "full_name": staff.full_name,
        "email": staff.email,
        "username": staff.username,
        "phone_number": staff.phone_number,
        "role": staff.role,
        "permissions": list(staff.permissions or []),
        "is_active": bool(staff.is_active),
        "last_login_at": staff.last_login_at,
        "created_at": staff.created_at,
        "updated_at": staff.updated_at,
    }


def get_staff(db: Session, owner: BusinessOwner, staff_id: str) -> Staff:
    """Staff member of the owner's business. Foreign staff are reported as missing."""
    staff = db.query(Staff).filter(Staff.id == staff_id, Staff.business_id == owner.id).first()
    if staff is None:
        raise NotFound("staff-not-found")
    return staff


def list_staff(
    db: Session,
    owner: BusinessOwner,
    *,
    role: Optional[str] = None,
    include_inactive: bool = True,
) -> list[Staff]:
    query = db.query(Staff).filter(Staff.business_id == owner.id)
    if role:
        query = query.filter(Staff.role == require_valid_role(role).value)
    if not include_inactive:
        query = query.filter(Staff.is_active.is_(True))
    return query.order_by(Staff.first_name.asc(), Staff.last_name.asc()).all()


def _log_terminations(
    owner: BusinessOwner,
    staff_id: str,
    sessions: Iterable[StaffSession],
    *,
    action: StaffAction,
    reason: str,
    old_role: Optional[str] = None,
    new_role: Optional[str] = None,
) -> None:
    for session in sessions:
        details: dict[str, Any] = {"reason": reason, "session_id": session.id}
        if old_role is not None:
            details["old_role"] = old_role
            details["new_role"] = new_role
        log_staff_activity(
            business_id=owner.id,
            action=action,
            staff_id=staff_id,
            performed_by=owner.id,
            details=details,
        )


def create_staff(db: Session, owner: BusinessOwner, data: Mapping[str, Any]) -> Outcome:
    """Create a staff member. The plaintext PIN is returned once and never stored."""
    data = dict(data)
    if not data.get("pin"):
        data["pin"] = generate_secure_pin()
    errors, warnings = validate_staff_creation_data(data)
    if errors:
        raise ValidationFailed("validation-failed", details=errors)

    assignment = assign_role_permissions(data["role"], data.get("custom_permissions"))
    warnings.extend(assignment.warnings)
    warnings.extend(check_role_requirements(db, assignment.role, owner.id))

    pin = data["pin"].strip()
    staff = Staff(
        business_id=owner.id,
        first_name=data["first_name"].strip(),
        last_name=data["last_name"].strip(),
        email=_clean_email(data.get("email")),
        username=_clean(data.get("username")),
        phone_number=_clean(data.get("phone_number")),
        pin_hash=hash_pin(pin),
        role=assignment.role.value,
        permissions=assignment.permissions,
        is_active=True,
    )
    db.add(staff)
    _commit_staff(db)
    db.refresh(staff)

    log_staff_activity(
        business_id=owner.id,
        action=StaffAction.STAFF_CREATED,
        staff_id=staff.id,
        performed_by=owner.id,
        details={
            "staff_name": staff.full_name,
            "role": staff.role,
            "permissions": staff.permissions,
            "warnings": warnings,
        },
    )
    logger.info("Staff created business_id=%s staff_id=%s role=%s", owner.id, staff.id, staff.role)
    return Outcome(
        "staff-created",
        {"staff": staff, "pin": pin, "role": staff.role, "warnings": warnings},
    )


def update_staff(db: Session, owner: BusinessOwner, staff_id: str, updates: Mapping[str, Any]) -> Outcome:
    """Apply a partial update. Role change or deactivation ends every active session."""
    staff = get_staff(db, owner, staff_id)
    updates = dict(updates)
    errors = validate_staff_update_data(staff, updates)
    if errors:
        raise ValidationFailed("validation-failed", details=errors)

    old_role = staff.role
    old_permissions = list(staff.permissions or [])
    old_active = bool(staff.is_active)

    changed_fields: list[str] = []
    for field_name in _UPDATABLE_FIELDS:
        if field_name not in updates:
            continue
        value = _clean_email(updates[field_name]) if field_name == "email" else _clean(updates[field_name])
        if getattr(staff, field_name) != value:
            setattr(staff, field_name, value)
            changed_fields.append(field_name)

    new_role = old_role
    if updates.get("role") is not None:
        new_role = require_valid_role(updates["role"]).value
    warnings: list[dict[str, Any]] = []
    if new_role != old_role or "custom_permissions" in updates:
        assignment = assign_role_permissions(new_role, updates.get("custom_permissions") or [])
        warnings.extend(assignment.warnings)
        staff.role = assignment.role.value
        staff.permissions = assignment.permissions
    if new_role != old_role:
        with db.no_autoflush:
            warnings.extend(check_role_requirements(db, new_role, owner.id, exclude_staff_id=staff.id))

    if updates.get("is_active") is not None:
        staff.is_active = bool(updates["is_active"])

    changes = detect_staff_changes(
        old_role=old_role,
        new_role=staff.role,
        old_permissions=old_permissions,
        new_permissions=staff.permissions,
        old_active=old_active,
        new_active=bool(staff.is_active),
    )
    terminated: list[StaffSession] = []
    if changes.terminate_sessions:
        terminated = StaffSessionManager(db).terminate_staff_sessions(staff.id, owner.id)
    _commit_staff(db)

    _log_terminations(
        owner,
        staff.id,
        terminated,
        action=StaffAction.SESSION_TERMINATED_DUE_TO_UPDATE,
        reason=changes.termination_reason or "",
        old_role=old_role,
        new_role=staff.role,
    )
    log_staff_activity(
        business_id=owner.id,
        action=StaffAction.STAFF_UPDATED,
        staff_id=staff.id,
        performed_by=owner.id,
        details={
            "changed_fields": changed_fields,
            "role_changed": changes.role_changed,
            "permissions_changed": changes.permissions_changed,
            "status_changed": changes.status_changed,
            "old_role": old_role,
            "new_role": staff.role,
            "sessions_terminated": len(terminated),
        },
    )
    return Outcome(
        "staff-updated",
        {"staff": staff, "sessions_terminated": len(terminated), "warnings": warnings},
    )


def change_staff_role(
    db: Session,
    owner: BusinessOwner,
    staff_id: str,
    new_role: str,
    custom_permissions: Optional[Iterable[str]] = None,
) -> Outcome:
    """Move a staff member to another role.

    Permissions are reset to the new role's defaults plus any grants supplied
    with this call; previous custom grants are not carried over.
    """
    staff = get_staff(db, owner, staff_id)
    role = require_valid_role(new_role)
    if role.value == staff.role:
        raise Conflict("role-unchanged")

    old_role = staff.role
    warnings = check_role_requirements(db, role, owner.id, exclude_staff_id=staff.id)
    assignment = assign_role_permissions(role, custom_permissions)
    warnings.extend(assignment.warnings)

    staff.role = assignment.role.value
    staff.permissions = assignment.permissions
    terminated = StaffSessionManager(db).terminate_staff_sessions(staff.id, owner.id)
    _commit_staff(db)

    _log_terminations(
        owner,
        staff.id,
        terminated,
        action=StaffAction.SESSION_TERMINATED_DUE_TO_UPDATE,
        reason="role_changed",
        old_role=old_role,
        new_role=staff.role,
    )
    log_staff_activity(
        business_id=owner.id,
        action=StaffAction.ROLE_CHANGED,
        staff_id=staff.id,
        performed_by=owner.id,
        details={
            "old_role": old_role,
            "new_role": staff.role,
            "permissions": staff.permissions,
            "sessions_terminated": len(terminated),
        },
    )
    logger.info(
        "Staff role changed staff_id=%s old_role=%s new_role=%s sessions_terminated=%s",
        staff.id,
        old_role,
        staff.role,
        len(terminated),
    )
    return Outcome(
        "role-changed",
        {
            "staff": staff,
            "old_role": old_role,
            "new_role": staff.role,
            "sessions_terminated": len(terminated),
            "warnings": warnings,
        },
    )


def deactivate_staff(db: Session, owner: BusinessOwner, staff_id: str) -> Outcome:
    staff = get_staff(db, owner, staff_id)
    if not staff.is_active:
        raise Conflict("staff-already-inactive")

    staff.is_active = False
    terminated = StaffSessionManager(db).terminate_staff_sessions(staff.id, owner.id)
    _commit_staff(db)

    _log_terminations(
        owner,
        staff.id,
        terminated,
        action=StaffAction.SESSION_TERMINATED_DUE_TO_UPDATE,
        reason="staff_deactivated",
    )
    log_staff_activity(
        business_id=owner.id,
        action=StaffAction.STAFF_DEACTIVATED,
        staff_id=staff.id,
        performed_by=owner.id,
        details={"sessions_terminated": len(terminated)},
    )
    return Outcome("staff-deactivated", {"staff": staff, "sessions_terminated": len(terminated)})


def activate_staff(db: Session, owner: BusinessOwner, staff_id: str) -> Outcome:
    staff = get_staff(db, owner, staff_id)
    if staff.is_active:
        raise Conflict("staff-already-active")

    staff.is_active = True
    _commit_staff(db)

    log_staff_activity(
        business_id=owner.id,
        action=StaffAction.STAFF_ACTIVATED,
        staff_id=staff.id,
        performed_by=owner.id,
    )
    return Outcome("staff-activated", {"staff": staff})


def delete_staff(db: Session, owner: BusinessOwner, staff_id: str) -> Outcome:
    """Remove a staff member. Their sessions are ended first and kept as history."""
    staff = get_staff(db, owner, staff_id)
    staff_name = staff.full_name
    role = staff.role

    terminated = StaffSessionManager(db).terminate_staff_sessions(staff.id, owner.id)
    db.delete(staff)
    db.commit()

    _log_terminations(
        owner,
        staff_id,
        terminated,
        action=StaffAction.SESSION_TERMINATED_DUE_TO_DELETION,
        reason="staff_deleted",
    )
    log_staff_activity(
        business_id=owner.id,
        action=StaffAction.STAFF_DELETED,
        staff_id=staff_id,
        performed_by=owner.id,
        details={"staff_name": staff_name, "role": role, "sessions_terminated": len(terminated)},
    )
    logger.info("Staff deleted staff_id=%s sessions_terminated=%s", staff_id, len(terminated))
    return Outcome("staff-deleted", {"staff_id": staff_id, "sessions_terminated": len(terminated)})


def reset_staff_pin(db: Session, owner: BusinessOwner, staff_id: str) -> Outcome:
    staff = get_staff(db, owner, staff_id)
    pin = generate_secure_pin()
    staff.pin_hash = hash_pin(pin)
    db.commit()

    log_staff_activity(
        business_id=owner.id,
        action=StaffAction.PIN_RESET,
        staff_id=staff.id,
        performed_by=owner.id,
        details={"staff_name": staff.full_name},
    )
    return Outcome("pin-reset", {"staff_id": staff.id, "pin": pin})


def retrieve_staff_pin(db: Session, owner: BusinessOwner, staff_id: str) -> Outcome:
    """Issue a fresh PIN for an active staff member.

    Stored PINs are one-way hashes, so "retrieval" replaces the PIN. The
    caller must hold an elevated admin session.
    """
    staff = get_staff(db, owner, staff_id)
    if not staff.is_active:
        raise Conflict("staff-inactive")

    pin = generate_secure_pin()
    staff.pin_hash = hash_pin(pin)
    db.commit()

    log_staff_activity(
        business_id=owner.id,
        action=StaffAction.PIN_RETRIEVED,
        staff_id=staff.id,
        performed_by=owner.id,
        details={"staff_name": staff.full_name},
    )
    return Outcome("pin-retrieved", {"staff_id": staff.id, "pin": pin})


def change_staff_pin(db: Session, owner: BusinessOwner, staff_id: str, new_pin: Optional[str]) -> Outcome:
    staff = get_staff(db, owner, staff_id)
    if not is_valid_pin_format(new_pin):
        raise ValidationFailed("invalid-pin-format", details=[{"field": "pin", "code": "invalid-pin-format"}])

    staff.pin_hash = hash_pin(new_pin)
    db.commit()

    log_staff_activity(
        business_id=owner.id,
        action=StaffAction.PIN_CHANGED,
        staff_id=staff.id,
        performed_by=owner.id,
        details={"staff_name": staff.full_name},
    )
    return Outcome("pin-changed", {"staff_id": staff.id})


def sign_out_session(db: Session, owner: BusinessOwner, session_id: str) -> Outcome:
    """Sign out one session. Signing out an ended session is a no-op success."""
    manager = StaffSessionManager(db)
    was_active = bool(manager.get_session(session_id, owner.id).is_active)
    session = manager.terminate_session(session_id, owner.id)
    db.commit()

    if was_active:
        log_staff_activity(
            business_id=owner.id,
            action=StaffAction.STAFF_SIGNED_OUT,
            staff_id=session.staff_id,
            performed_by=owner.id,
            details={"session_id": session.id},
        )
    return Outcome("staff-signed-out", {"session_id": session.id, "already_signed_out": not was_active})


def bulk_sign_out(db: Session, owner: BusinessOwner, session_ids: Iterable[str]) -> Outcome:
    session_ids = list(session_ids or [])
    if not session_ids:
        raise ValidationFailed("no-sessions-selected", details=[{"field": "session_ids", "code": "required"}])

    result = StaffSessionManager(db).bulk_terminate(session_ids, owner.id)
    db.commit()

    for session in result.terminated:
        log_staff_activity(
            business_id=owner.id,
            action=StaffAction.STAFF_BULK_SIGNED_OUT,
            staff_id=session.staff_id,
            performed_by=owner.id,
            details={"session_id": session.id},
        )
    log_staff_activity(
        business_id=owner.id,
        action=StaffAction.BULK_STAFF_SIGNOUT,
        performed_by=owner.id,
        details={"requested": len(session_ids), "terminated": result.count, "skipped": result.skipped},
    )
    return Outcome("bulk-signout", {"count": result.count, "skipped": result.skipped})


def sign_out_all_for_staff(db: Session, owner: BusinessOwner, staff_id: str) -> Outcome:
    staff = get_staff(db, owner, staff_id)
    terminated = StaffSessionManager(db).terminate_staff_sessions(staff.id, owner.id)
    db.commit()

    log_staff_activity(
        business_id=owner.id,
        action=StaffAction.STAFF_SIGNOUT_ALL,
        staff_id=staff.id,
        performed_by=owner.id,
        details={"sessions_terminated": len(terminated)},
    )
    return Outcome("staff-signed-out-all", {"staff_id": staff.id, "count": len(terminated)})
