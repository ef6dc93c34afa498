from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from backoffice.core.config import AUTH_ACCESS_TOKEN_COOKIE
from backoffice.core.database import get_db
from backoffice.core.errors import AuthorizationDenied
from backoffice.deps import get_current_user_id
from backoffice.services.cookies import build_cookie_options
from backoffice.services.identity import resolve_oauth_login, validate_user_profile

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = logging.getLogger(__name__)


class OAuthCallbackPayload(BaseModel):
    email: EmailStr
    metadata: Dict[str, Any] = Field(default_factory=dict)


@router.post("/oauth/callback")
def oauth_callback(
    payload: OAuthCallbackPayload,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Resolve an identity returning from the auth provider.

    Personal accounts are signed out here: the auth cookie is cleared on the
    denial response.
    """
    try:
        outcome = resolve_oauth_login(db, user_id=user_id, email=payload.email, metadata=payload.metadata)
    except AuthorizationDenied as exc:
        logger.info("OAuth login denied user_id=%s code=%s", user_id, exc.code)
        response = JSONResponse(status_code=exc.status_code, content=exc.as_dict())
        response.delete_cookie(key=AUTH_ACCESS_TOKEN_COOKIE, **build_cookie_options())
        return response
    return outcome.as_dict()


@router.get("/profile")
def read_profile(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    profile = validate_user_profile(db, user_id)
    owner = profile.business_owner
    return {
        "user_id": user_id,
        "is_business_owner": profile.is_business_owner,
        "has_business_profile": profile.has_business_profile,
        "is_personal_user": profile.is_personal_user,
        "business": (
            {
                "id": owner.id,
                "email": owner.email,
                "business_name": owner.business_name,
                "business_type": owner.business_type,
                "admin_pin_set": bool(owner.admin_pin_hash),
            }
            if owner is not None
            else None
        ),
    }
