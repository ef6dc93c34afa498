from __future__ import annotations

from typing import Any, Optional

from fastapi import Response
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from backoffice.core.config import (
    ADMIN_SESSION_MAX_AGE_SECONDS,
    COOKIE_DOMAIN,
    COOKIE_SAMESITE,
    COOKIE_SECURE,
    STAFF_BUSINESS_COOKIE_MAX_AGE_SECONDS,
    STAFF_BUSINESS_COOKIE_SECRET,
    STAFF_SESSION_MAX_AGE_SECONDS,
)

STAFF_SESSION_COOKIE = "staff_session_token"
ADMIN_SESSION_COOKIE = "admin_session_token"
STAFF_BUSINESS_COOKIE = "staff_business_id"
STAFF_BUSINESS_SALT = "staff-business"


def _serializer() -> URLSafeTimedSerializer:
    if not STAFF_BUSINESS_COOKIE_SECRET:
        raise RuntimeError("STAFF_BUSINESS_COOKIE_SECRET is not configured.")
    return URLSafeTimedSerializer(STAFF_BUSINESS_COOKIE_SECRET, salt=STAFF_BUSINESS_SALT)


def encode_business_scope(business_id: str) -> str:
    return _serializer().dumps({"business_id": str(business_id)})


def decode_business_scope(token: Optional[str]) -> Optional[str]:
    """Business id carried by the login-scope cookie, or None if tampered or stale."""
    if not token:
        return None
    try:
        payload = _serializer().loads(token, max_age=STAFF_BUSINESS_COOKIE_MAX_AGE_SECONDS)
    except (BadSignature, SignatureExpired, ValueError):
        return None
    business_id = payload.get("business_id") if isinstance(payload, dict) else None
    return str(business_id) if business_id else None


def build_cookie_options() -> dict[str, Any]:
    samesite = COOKIE_SAMESITE
    # Browsers reject SameSite=None without Secure.
    if samesite == "none" and not COOKIE_SECURE:
        samesite = "lax"
    return {
        "domain": COOKIE_DOMAIN,
        "httponly": True,
        "samesite": samesite,
        "path": "/",
        "secure": COOKIE_SECURE,
    }


def set_staff_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=STAFF_SESSION_COOKIE,
        value=token,
        max_age=STAFF_SESSION_MAX_AGE_SECONDS,
        **build_cookie_options(),
    )


def clear_staff_session_cookie(response: Response) -> None:
    response.delete_cookie(key=STAFF_SESSION_COOKIE, **build_cookie_options())


def set_admin_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=ADMIN_SESSION_COOKIE,
        value=token,
        max_age=ADMIN_SESSION_MAX_AGE_SECONDS,
        **build_cookie_options(),
    )


def clear_admin_session_cookie(response: Response) -> None:
    response.delete_cookie(key=ADMIN_SESSION_COOKIE, **build_cookie_options())


def set_business_scope_cookie(response: Response, business_id: str) -> None:
    response.set_cookie(
        key=STAFF_BUSINESS_COOKIE,
        value=encode_business_scope(business_id),
        max_age=STAFF_BUSINESS_COOKIE_MAX_AGE_SECONDS,
        **build_cookie_options(),
    )


def clear_business_scope_cookie(response: Response) -> None:
    response.delete_cookie(key=STAFF_BUSINESS_COOKIE, **build_cookie_options())
