"""Closed vocabulary of staff roles and permissions."""

from __future__ import annotations

from enum import Enum
from typing import Iterable


class StaffRole(str, Enum):
    RECEPTION = "reception"
    KITCHEN = "kitchen"
    BAR = "bar"
    ACCOUNTANT = "accountant"
    STOREKEEPER = "storekeeper"
    WAITER = "waiter"


class Permission(str, Enum):
    ORDERS_CREATE = "orders:create"
    ORDERS_READ = "orders:read"
    ORDERS_UPDATE = "orders:update"
    ORDERS_UPDATE_STATUS = "orders:update_status"
    ORDERS_DELETE = "orders:delete"

    TABLES_READ = "tables:read"
    TABLES_UPDATE = "tables:update"
    TABLES_ASSIGN = "tables:assign"

    CUSTOMERS_READ = "customers:read"
    CUSTOMERS_UPDATE = "customers:update"
    CUSTOMERS_CREATE = "customers:create"

    PAYMENTS_PROCESS = "payments:process"
    PAYMENTS_READ = "payments:read"
    PAYMENTS_REFUND = "payments:refund"

    INVENTORY_READ = "inventory:read"
    INVENTORY_UPDATE = "inventory:update"
    INVENTORY_ALERTS = "inventory:alerts"
    INVENTORY_RESTOCK_REQUESTS = "inventory:restock_requests"

    REPORTS_READ = "reports:read"
    REPORTS_GENERATE = "reports:generate"

    TRANSACTIONS_READ = "transactions:read"
    TRANSACTIONS_UPDATE = "transactions:update"

    STAFF_READ = "staff:read"
    STAFF_CREATE = "staff:create"
    STAFF_UPDATE = "staff:update"
    STAFF_DELETE = "staff:delete"


P = Permission

ROLE_PERMISSIONS: dict[StaffRole, tuple[Permission, ...]] = {
    StaffRole.RECEPTION: (
        P.ORDERS_CREATE,
        P.ORDERS_READ,
        P.ORDERS_UPDATE,
        P.TABLES_READ,
        P.TABLES_UPDATE,
        P.TABLES_ASSIGN,
        P.CUSTOMERS_READ,
        P.CUSTOMERS_UPDATE,
        P.CUSTOMERS_CREATE,
        P.PAYMENTS_PROCESS,
    ),
    StaffRole.KITCHEN: (
        P.ORDERS_READ,
        P.ORDERS_UPDATE_STATUS,
        P.INVENTORY_READ,
        P.INVENTORY_UPDATE,
        P.INVENTORY_ALERTS,
    ),
    StaffRole.BAR: (
        P.ORDERS_READ,
        P.ORDERS_UPDATE_STATUS,
        P.INVENTORY_READ,
        P.INVENTORY_UPDATE,
        P.INVENTORY_RESTOCK_REQUESTS,
    ),
    StaffRole.ACCOUNTANT: (
        P.REPORTS_READ,
        P.REPORTS_GENERATE,
        P.TRANSACTIONS_READ,
        P.PAYMENTS_READ,
        P.PAYMENTS_REFUND,
    ),
    StaffRole.STOREKEEPER: (
        P.INVENTORY_READ,
        P.INVENTORY_UPDATE,
        P.INVENTORY_ALERTS,
        P.INVENTORY_RESTOCK_REQUESTS,
        P.REPORTS_READ,
    ),
    StaffRole.WAITER: (
        P.ORDERS_CREATE,
        P.ORDERS_READ,
        P.ORDERS_UPDATE,
        P.TABLES_READ,
        P.TABLES_UPDATE,
        P.CUSTOMERS_READ,
        P.PAYMENTS_PROCESS,
    ),
}

PERMISSION_GROUPS: dict[str, tuple[Permission, ...]] = {
    "orders": (P.ORDERS_CREATE, P.ORDERS_READ, P.ORDERS_UPDATE, P.ORDERS_UPDATE_STATUS, P.ORDERS_DELETE),
    "tables": (P.TABLES_READ, P.TABLES_UPDATE, P.TABLES_ASSIGN),
    "customers": (P.CUSTOMERS_READ, P.CUSTOMERS_UPDATE, P.CUSTOMERS_CREATE),
    "payments": (P.PAYMENTS_PROCESS, P.PAYMENTS_READ, P.PAYMENTS_REFUND),
    "inventory": (P.INVENTORY_READ, P.INVENTORY_UPDATE, P.INVENTORY_ALERTS, P.INVENTORY_RESTOCK_REQUESTS),
    "reports": (P.REPORTS_READ, P.REPORTS_GENERATE, P.TRANSACTIONS_READ, P.TRANSACTIONS_UPDATE),
    "staff": (P.STAFF_READ, P.STAFF_CREATE, P.STAFF_UPDATE, P.STAFF_DELETE),
}

# Every listed permission is required for the action.
ACTION_PERMISSIONS: dict[str, tuple[Permission, ...]] = {
    "create_order": (P.ORDERS_CREATE,),
    "view_orders": (P.ORDERS_READ,),
    "update_order": (P.ORDERS_UPDATE,),
    "update_order_status": (P.ORDERS_UPDATE_STATUS,),
    "manage_tables": (P.TABLES_READ, P.TABLES_UPDATE),
    "process_payment": (P.PAYMENTS_PROCESS,),
    "view_reports": (P.REPORTS_READ,),
    "generate_reports": (P.REPORTS_GENERATE,),
    "manage_inventory": (P.INVENTORY_READ, P.INVENTORY_UPDATE),
    "view_customers": (P.CUSTOMERS_READ,),
    "manage_customers": (P.CUSTOMERS_CREATE, P.CUSTOMERS_UPDATE),
    "view_staff": (P.STAFF_READ,),
}

_ROLE_VALUES = {role.value for role in StaffRole}
_PERMISSION_VALUES = {permission.value for permission in Permission}


def _value(item) -> str:
    return getattr(item, "value", item)


def _values(items: Iterable) -> list[str]:
    return [_value(item) for item in items]


def is_valid_role(role) -> bool:
    return _value(role) in _ROLE_VALUES


def is_valid_permission(permission) -> bool:
    return _value(permission) in _PERMISSION_VALUES


def parse_role(role: str) -> StaffRole:
    return StaffRole((_value(role) or "").strip().lower())


def get_all_permissions() -> list[str]:
    return [permission.value for permission in Permission]


def get_permissions_for_role(role: StaffRole | str) -> list[str]:
    if not is_valid_role(role):
        return []
    return [permission.value for permission in ROLE_PERMISSIONS[StaffRole(_value(role))]]


def validate_permissions(permissions: Iterable[str]) -> list[str]:
    """Every entry outside the vocabulary, in input order, without duplicates."""
    invalid: list[str] = []
    for permission in _values(permissions):
        if not is_valid_permission(permission) and permission not in invalid:
            invalid.append(permission)
    return invalid


def normalize_permissions(permissions: Iterable[str]) -> list[str]:
    return sorted(set(_values(permissions)))


def permissions_equal(left: Iterable[str], right: Iterable[str]) -> bool:
    # Stored permission arrays are not insertion-stable.
    return normalize_permissions(left) == normalize_permissions(right)


def has_permission(user_permissions: Iterable[str], required: str) -> bool:
    return _value(required) in set(_values(user_permissions))


def has_any_permission(user_permissions: Iterable[str], required: Iterable[str]) -> bool:
    granted = set(_values(user_permissions))
    return any(permission in granted for permission in _values(required))


def has_all_permissions(user_permissions: Iterable[str], required: Iterable[str]) -> bool:
    granted = set(_values(user_permissions))
    return all(permission in granted for permission in _values(required))


def get_common_permissions(roles: Iterable[StaffRole | str]) -> list[str]:
    roles = list(roles)
    if not roles:
        return []
    first = get_permissions_for_role(roles[0])
    return [
        permission
        for permission in first
        if all(permission in get_permissions_for_role(role) for role in roles[1:])
    ]


def get_unique_permissions(role: StaffRole | str, compare_roles: Iterable[StaffRole | str]) -> list[str]:
    others = {permission for other in compare_roles for permission in get_permissions_for_role(other)}
    return [permission for permission in get_permissions_for_role(role) if permission not in others]


def get_permission_groups() -> dict[str, list[str]]:
    return {group: _values(members) for group, members in PERMISSION_GROUPS.items()}


def can_perform_action(user_permissions: Iterable[str], action: str) -> bool:
    required = ACTION_PERMISSIONS.get(action)
    if not required:
        return False
    return has_all_permissions(user_permissions, required)
