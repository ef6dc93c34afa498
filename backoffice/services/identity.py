from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from backoffice.core.config import SITE_URL
from backoffice.core.errors import AuthenticationRequired, AuthorizationDenied, Outcome
from backoffice.models.business_owner import BusinessOwner
from backoffice.models.personal_user import PersonalUser
from backoffice.services.security_audit import log_unauthorized_access

logger = logging.getLogger(__name__)

BUSINESS_ACCOUNT_TYPE = "business"


@dataclass
class UserProfile:
    is_business_owner: bool
    has_business_profile: bool
    is_personal_user: bool
    business_owner: Optional[BusinessOwner] = None
    personal_user: Optional[PersonalUser] = None


def validate_business_owner(db: Session, user_id: Optional[str]) -> Optional[BusinessOwner]:
    """Business owner for the identity, or None for any other account kind."""
    if not user_id:
        return None
    owner = db.query(BusinessOwner).filter(BusinessOwner.id == str(user_id)).first()
    if owner is None or owner.account_type != BUSINESS_ACCOUNT_TYPE:
        return None
    return owner


def validate_user_profile(db: Session, user_id: Optional[str]) -> UserProfile:
    if not user_id:
        return UserProfile(is_business_owner=False, has_business_profile=False, is_personal_user=False)

    owner_row = db.query(BusinessOwner).filter(BusinessOwner.id == str(user_id)).first()
    personal = db.query(PersonalUser).filter(PersonalUser.id == str(user_id)).first()
    is_business_owner = owner_row is not None and owner_row.account_type == BUSINESS_ACCOUNT_TYPE
    if is_business_owner and personal is not None:
        logger.warning("Identity has both business and personal profiles user_id=%s", user_id)
    return UserProfile(
        is_business_owner=is_business_owner,
        has_business_profile=owner_row is not None,
        is_personal_user=personal is not None,
        business_owner=owner_row if is_business_owner else None,
        personal_user=personal,
    )


def require_business_owner(
    db: Session,
    user_id: Optional[str],
    *,
    resource: str = "business-dashboard",
) -> BusinessOwner:
    """Gate for every privileged operation. There is no degraded fallback."""
    if not user_id:
        raise AuthenticationRequired()
    owner = validate_business_owner(db, user_id)
    if owner is None:
        log_unauthorized_access(None, attempted_resource=resource, user_id=str(user_id))
        raise AuthorizationDenied("unauthorized-access")
    return owner


def owns_business(owner: BusinessOwner, business_id: Optional[str]) -> bool:
    return business_id is not None and str(owner.id) == str(business_id)


def resolve_oauth_login(
    db: Session,
    *,
    user_id: str,
    email: str,
    metadata: Optional[Mapping[str, Any]] = None,
) -> Outcome:
    """Decide where an identity returning from the auth provider may go.

    Personal accounts are denied (the caller signs them out); unknown
    identities get a business owner profile.
    """
    profile = validate_user_profile(db, user_id)
    if profile.is_business_owner:
        return Outcome("oauth-business-login", {"owner_id": user_id, "redirect_url": f"{SITE_URL}/dashboard"})

    if profile.is_personal_user or profile.has_business_profile:
        log_unauthorized_access(None, attempted_resource="business-dashboard", user_id=str(user_id))
        raise AuthorizationDenied("account-not-authorized")

    metadata = metadata or {}
    owner = BusinessOwner(
        id=str(user_id),
        email=email.strip().lower(),
        account_type=BUSINESS_ACCOUNT_TYPE,
        business_name=metadata.get("business_name"),
        business_type=metadata.get("business_type"),
        email_verified=bool(metadata.get("email_verified", False)),
    )
    db.add(owner)
    db.commit()
    logger.info("Business owner created from OAuth login owner_id=%s", owner.id)
    return Outcome(
        "oauth-business-created",
        {"owner_id": owner.id, "redirect_url": f"{SITE_URL}/dashboard"},
    )
