from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from backoffice.core.errors import ValidationFailed
from backoffice.models.business_owner import BusinessOwner
from backoffice.models.staff import Staff
from backoffice.services.permissions import (
    StaffRole,
    get_permissions_for_role,
    is_valid_role,
    normalize_permissions,
    permissions_equal,
    validate_permissions,
)
from backoffice.services.pins import PIN_MAX_LENGTH, PIN_MIN_LENGTH, is_valid_pin_format

logger = logging.getLogger(__name__)

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{0,15}$")
_PHONE_SEPARATORS = re.compile(r"[\s\-()]")

ROLE_HEADCOUNT_LIMITS: dict[StaffRole, int] = {
    StaffRole.RECEPTION: 10,
    StaffRole.KITCHEN: 15,
    StaffRole.BAR: 8,
    StaffRole.ACCOUNTANT: 3,
    StaffRole.STOREKEEPER: 3,
    StaffRole.WAITER: 20,
}

RECOMMENDED_ROLES: dict[str, tuple[StaffRole, ...]] = {
    "restaurant": (
        StaffRole.RECEPTION,
        StaffRole.WAITER,
        StaffRole.KITCHEN,
        StaffRole.BAR,
        StaffRole.STOREKEEPER,
        StaffRole.ACCOUNTANT,
    ),
    "cafe": (StaffRole.RECEPTION, StaffRole.WAITER, StaffRole.KITCHEN, StaffRole.ACCOUNTANT),
    "bar": (StaffRole.RECEPTION, StaffRole.WAITER, StaffRole.BAR, StaffRole.ACCOUNTANT),
    "fast-food": (StaffRole.RECEPTION, StaffRole.KITCHEN, StaffRole.ACCOUNTANT),
    "default": (StaffRole.RECEPTION, StaffRole.KITCHEN, StaffRole.ACCOUNTANT),
}

# (business_type, role) pairs that are allowed but flagged
INCOMPATIBLE_ROLES: set[tuple[str, StaffRole]] = {("cafe", StaffRole.BAR)}

ROLE_INFO: dict[StaffRole, dict[str, str]] = {
    StaffRole.RECEPTION: {
        "name": "Reception Staff",
        "description": "Front of house: orders, table seating, customers and payments",
    },
    StaffRole.KITCHEN: {
        "name": "Kitchen Staff",
        "description": "Food preparation, kitchen order status and kitchen stock",
    },
    StaffRole.BAR: {
        "name": "Bar Staff",
        "description": "Beverage preparation, drink order status and bar restock requests",
    },
    StaffRole.ACCOUNTANT: {
        "name": "Accountant",
        "description": "Financial reports, transaction history and refunds",
    },
    StaffRole.STOREKEEPER: {
        "name": "Storekeeper",
        "description": "Stock levels, low-stock alerts and restock requests",
    },
    StaffRole.WAITER: {
        "name": "Waiter",
        "description": "Table service: taking orders, serving tables and taking payment",
    },
}


@dataclass
class RoleAssignment:
    role: StaffRole
    permissions: list[str]
    warnings: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class StaffChangeSet:
    role_changed: bool = False
    permissions_changed: bool = False
    status_changed: bool = False
    old_role: Optional[str] = None
    new_role: Optional[str] = None
    termination_reason: Optional[str] = None

    @property
    def terminate_sessions(self) -> bool:
        return self.termination_reason is not None

    @property
    def has_changes(self) -> bool:
        return self.role_changed or self.permissions_changed or self.status_changed


def require_valid_role(role: Optional[str]) -> StaffRole:
    if not is_valid_role(role):
        raise ValidationFailed("invalid-role", details=[{"field": "role", "value": role}])
    return StaffRole(getattr(role, "value", role))


def compute_permissions(role: StaffRole | str, custom_grants: Optional[Iterable[str]] = None) -> list[str]:
    """Role defaults plus custom grants, deduplicated and sorted.

    Raises ``ValidationFailed("invalid-permissions")`` listing every unknown grant.
    """
    role = require_valid_role(role)
    grants = list(custom_grants or [])
    invalid = validate_permissions(grants)
    if invalid:
        raise ValidationFailed("invalid-permissions", details=invalid)
    return normalize_permissions([*get_permissions_for_role(role), *grants])


def assign_role_permissions(role: StaffRole | str, custom_grants: Optional[Iterable[str]] = None) -> RoleAssignment:
    grants = list(custom_grants or [])
    permissions = compute_permissions(role, grants)
    role = StaffRole(getattr(role, "value", role))

    defaults = set(get_permissions_for_role(role))
    extra = sorted({grant for grant in grants if grant not in defaults})
    warnings: list[dict[str, Any]] = []
    if extra:
        warnings.append({"code": "permissions-outside-role", "role": role.value, "permissions": extra})
    return RoleAssignment(role=role, permissions=permissions, warnings=warnings)


def validate_staff_creation_data(data: dict[str, Any]) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Collect every validation error and warning for a new staff payload."""
    errors: list[dict[str, Any]] = []
    warnings: list[dict[str, Any]] = []

    if not (data.get("first_name") or "").strip():
        errors.append({"field": "first_name", "code": "required"})
    if not (data.get("last_name") or "").strip():
        errors.append({"field": "last_name", "code": "required"})

    role = data.get("role")
    if not role:
        errors.append({"field": "role", "code": "required"})
    elif not is_valid_role(role):
        errors.append({"field": "role", "code": "invalid-role", "value": role})

    pin = (data.get("pin") or "").strip()
    if not pin:
        errors.append({"field": "pin", "code": "required"})
    elif len(pin) < PIN_MIN_LENGTH:
        errors.append({"field": "pin", "code": "too-short", "min_length": PIN_MIN_LENGTH})
    elif len(pin) > PIN_MAX_LENGTH:
        errors.append({"field": "pin", "code": "too-long", "max_length": PIN_MAX_LENGTH})
    elif not is_valid_pin_format(pin):
        errors.append({"field": "pin", "code": "invalid-pin-format"})

    email = (data.get("email") or "").strip()
    username = (data.get("username") or "").strip()
    phone = (data.get("phone_number") or "").strip()
    if not (email or username or phone):
        errors.append({"field": "email", "code": "identifier-required"})
    if email and not _EMAIL_PATTERN.match(email):
        errors.append({"field": "email", "code": "invalid-email"})
    if phone and not _PHONE_PATTERN.match(_PHONE_SEPARATORS.sub("", phone)):
        warnings.append({"field": "phone_number", "code": "phone-format-suspect"})

    custom = data.get("custom_permissions") or []
    invalid = validate_permissions(custom)
    if invalid:
        errors.append({"field": "custom_permissions", "code": "invalid-permissions", "values": invalid})

    return errors, warnings


def validate_staff_update_data(staff: Staff, updates: dict[str, Any]) -> list[dict[str, Any]]:
    """Collect every validation error for a partial update of ``staff``.

    Fields absent from ``updates`` keep their current value, so the
    identifier check looks at the merged result.
    """
    errors: list[dict[str, Any]] = []

    for field_name in ("first_name", "last_name"):
        if field_name in updates and not (updates[field_name] or "").strip():
            errors.append({"field": field_name, "code": "required"})

    role = updates.get("role")
    if role is not None and not is_valid_role(role):
        errors.append({"field": "role", "code": "invalid-role", "value": role})

    def merged(field_name: str) -> str:
        value = updates[field_name] if field_name in updates else getattr(staff, field_name)
        return (value or "").strip()

    email = merged("email")
    if not (email or merged("username") or merged("phone_number")):
        errors.append({"field": "email", "code": "identifier-required"})
    if "email" in updates and email and not _EMAIL_PATTERN.match(email):
        errors.append({"field": "email", "code": "invalid-email"})

    invalid = validate_permissions(updates.get("custom_permissions") or [])
    if invalid:
        errors.append({"field": "custom_permissions", "code": "invalid-permissions", "values": invalid})

    return errors


def can_assign_role(role: StaffRole | str, business_type: Optional[str] = None) -> bool:
    if not is_valid_role(role):
        return False
    role = StaffRole(getattr(role, "value", role))
    if business_type and (business_type.strip().lower(), role) in INCOMPATIBLE_ROLES:
        return False
    return True


def get_recommended_roles(business_type: Optional[str]) -> list[str]:
    key = (business_type or "").strip().lower()
    roles = RECOMMENDED_ROLES.get(key, RECOMMENDED_ROLES["default"])
    return [role.value for role in roles]


def check_role_requirements(
    db: Session,
    role: StaffRole | str,
    business_id: str,
    *,
    exclude_staff_id: Optional[str] = None,
) -> list[dict[str, Any]]:
    """Soft business-policy checks. Only ever produces warnings."""
    role = require_valid_role(role)
    warnings: list[dict[str, Any]] = []

    owner = db.query(BusinessOwner).filter(BusinessOwner.id == business_id).first()
    if owner is None or not owner.business_type:
        warnings.append({"code": "business-type-unknown"})
    elif not can_assign_role(role, owner.business_type):
        warnings.append(
            {"code": "role-unsuitable-for-business", "role": role.value, "business_type": owner.business_type}
        )

    query = db.query(func.count(Staff.id)).filter(
        Staff.business_id == business_id,
        Staff.role == role.value,
        Staff.is_active.is_(True),
    )
    if exclude_staff_id:
        query = query.filter(Staff.id != exclude_staff_id)
    current = query.scalar() or 0
    limit = ROLE_HEADCOUNT_LIMITS[role]
    if current >= limit:
        warnings.append({"code": "role-headcount-reached", "role": role.value, "current": current, "limit": limit})
    return warnings


def get_role_info(role: StaffRole | str) -> dict[str, Any]:
    role = require_valid_role(role)
    return {
        "role": role.value,
        **ROLE_INFO[role],
        "permissions": get_permissions_for_role(role),
        "headcount_limit": ROLE_HEADCOUNT_LIMITS[role],
    }


def get_all_roles() -> list[dict[str, Any]]:
    return [get_role_info(role) for role in StaffRole]


def detect_staff_changes(
    *,
    old_role: str,
    new_role: str,
    old_permissions: Iterable[str],
    new_permissions: Iterable[str],
    old_active: bool,
    new_active: bool,
) -> StaffChangeSet:
    """Diff two staff states and decide whether active sessions must end.

    Role change or deactivation terminates sessions; a permission-only change
    or a reactivation does not.
    """
    changes = StaffChangeSet(
        role_changed=old_role != new_role,
        permissions_changed=not permissions_equal(old_permissions, new_permissions),
        status_changed=bool(old_active) != bool(new_active),
        old_role=old_role,
        new_role=new_role,
    )
    if changes.role_changed:
        changes.termination_reason = "role_changed"
    elif changes.status_changed and not new_active:
        changes.termination_reason = "staff_deactivated"
    return changes
