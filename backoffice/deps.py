# backoffice/deps.py
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from backoffice.core.config import (
    AUTH_ACCESS_TOKEN_COOKIE,
    AUTH_JWT_ALGORITHM,
    AUTH_JWT_AUDIENCE,
    AUTH_JWT_SECRET,
)
from backoffice.core.database import get_db
from backoffice.core.errors import AuthenticationRequired, AuthorizationDenied
from backoffice.models.admin_session import AdminSession
from backoffice.models.business_owner import BusinessOwner
from backoffice.models.staff import Staff
from backoffice.models.staff_session import StaffSession
from backoffice.services.admin_sessions import validate_admin_session
from backoffice.services.cookies import ADMIN_SESSION_COOKIE, STAFF_SESSION_COOKIE
from backoffice.services.identity import require_business_owner
from backoffice.services.permissions import has_all_permissions, has_any_permission
from backoffice.services.security_audit import log_permission_violation
from backoffice.services.staff_sessions import StaffSessionManager

bearer_scheme = HTTPBearer(auto_error=False)

logger = logging.getLogger(__name__)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Verify an owner access token issued by the hosted auth provider."""
    if not AUTH_JWT_SECRET:
        raise RuntimeError("AUTH_JWT_SECRET is not configured.")
    options = {"verify_aud": AUTH_JWT_AUDIENCE is not None}
    return jwt.decode(
        token,
        AUTH_JWT_SECRET,
        algorithms=[AUTH_JWT_ALGORITHM],
        audience=AUTH_JWT_AUDIENCE,
        options=options,
    )


def _extract_user_id(payload: Dict[str, Any]) -> Optional[str]:
    """User id from the ``sub`` claim, falling back to ``user_id``."""
    raw = payload.get("sub")
    if raw is None:
        raw = payload.get("user_id")
    if raw is None:
        return None
    raw = str(raw).strip()
    return raw or None


def get_current_user_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    token = credentials.credentials if credentials else request.cookies.get(AUTH_ACCESS_TOKEN_COOKIE)
    if not token:
        raise AuthenticationRequired()
    try:
        payload = decode_access_token(token)
    except JWTError as exc:
        raise AuthenticationRequired("invalid-token") from exc

    user_id = _extract_user_id(payload)
    if user_id is None:
        raise AuthenticationRequired("invalid-token")
    return user_id


def get_current_business_owner(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> BusinessOwner:
    owner = require_business_owner(db, user_id, resource=f"{request.method} {request.url.path}")
    request.state.business_owner = owner
    return owner


def get_current_staff_session(
    request: Request,
    db: Session = Depends(get_db),
) -> StaffSession:
    token = request.cookies.get(STAFF_SESSION_COOKIE)
    if not token:
        raise AuthenticationRequired()
    session = StaffSessionManager(db).validate_session_token(token)
    if session is None:
        raise AuthenticationRequired("invalid-session")
    request.state.staff_session = session
    return session


def get_current_staff(
    session: StaffSession = Depends(get_current_staff_session),
    db: Session = Depends(get_db),
) -> Staff:
    staff = (
        db.query(Staff)
        .filter(
            Staff.id == session.staff_id,
            Staff.business_id == session.business_id,
            Staff.is_active.is_(True),
        )
        .first()
    )
    if staff is None:
        raise AuthenticationRequired("invalid-session")
    return staff


def require_staff_permissions(permissions: Iterable[str], *, require_all: bool = True):
    required = [getattr(permission, "value", permission) for permission in permissions]

    def _dependency(request: Request, staff: Staff = Depends(get_current_staff)) -> Staff:
        granted = list(staff.permissions or [])
        allowed = has_all_permissions(granted, required) if require_all else has_any_permission(granted, required)
        if not allowed:
            logger.warning(
                "Access denied (insufficient_permissions): staff_id=%s role=%s endpoint=%s",
                staff.id,
                staff.role,
                f"{request.method} {request.url.path}",
            )
            log_permission_violation(
                staff.business_id,
                attempted_action=f"{request.method} {request.url.path}",
                required_permissions=required,
                current_permissions=granted,
                staff_id=staff.id,
            )
            raise AuthorizationDenied("insufficient-permissions")
        return staff

    return _dependency


def require_admin_session(required_for: Optional[str] = None):
    """Elevated owner session granted by a recent admin PIN verification."""

    def _dependency(
        request: Request,
        owner: BusinessOwner = Depends(get_current_business_owner),
        db: Session = Depends(get_db),
    ) -> AdminSession:
        token = request.cookies.get(ADMIN_SESSION_COOKIE)
        session = validate_admin_session(db, token, owner_id=owner.id, required_for=required_for)
        if session is None:
            raise AuthorizationDenied("admin-pin-verification-required")
        return session

    return _dependency
