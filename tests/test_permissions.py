from backoffice.services.permissions import (
    Permission,
    StaffRole,
    can_perform_action,
    get_all_permissions,
    get_common_permissions,
    get_permission_groups,
    get_permissions_for_role,
    get_unique_permissions,
    has_all_permissions,
    has_any_permission,
    has_permission,
    is_valid_permission,
    is_valid_role,
    normalize_permissions,
    permissions_equal,
    validate_permissions,
)


def test_role_set_is_closed():
    assert {role.value for role in StaffRole} == {
        "reception",
        "kitchen",
        "bar",
        "accountant",
        "storekeeper",
        "waiter",
    }
    assert is_valid_role("kitchen")
    assert is_valid_role(StaffRole.BAR)
    assert not is_valid_role("manager")
    assert not is_valid_role(None)


def test_every_role_default_is_in_the_vocabulary():
    vocabulary = set(get_all_permissions())
    for role in StaffRole:
        defaults = get_permissions_for_role(role)
        assert defaults
        assert set(defaults) <= vocabulary


def test_unknown_role_has_no_permissions():
    assert get_permissions_for_role("manager") == []


def test_validate_permissions_lists_every_invalid_entry_once():
    invalid = validate_permissions(["orders:read", "orders:fly", "root", "orders:fly", Permission.STAFF_READ])

    assert invalid == ["orders:fly", "root"]
    assert is_valid_permission(Permission.ORDERS_CREATE)
    assert not is_valid_permission("orders:fly")


def test_permission_equality_ignores_order_and_duplicates():
    assert permissions_equal(["b:read", "a:read"], ["a:read", "b:read", "a:read"])
    assert not permissions_equal(["a:read"], ["a:read", "b:read"])
    assert normalize_permissions([Permission.ORDERS_READ, "orders:create"]) == ["orders:create", "orders:read"]


def test_permission_checks_accept_enum_members_and_strings():
    granted = ["orders:read", "orders:create"]

    assert has_permission(granted, Permission.ORDERS_READ)
    assert not has_permission(granted, "staff:read")
    assert has_any_permission(granted, ["staff:read", Permission.ORDERS_CREATE])
    assert not has_any_permission(granted, ["staff:read"])
    assert has_all_permissions(granted, [Permission.ORDERS_READ, "orders:create"])
    assert not has_all_permissions(granted, ["orders:read", "staff:read"])


def test_common_and_unique_permissions():
    common = get_common_permissions(["kitchen", "bar"])
    unique = get_unique_permissions("kitchen", ["bar"])

    assert "orders:update_status" in common
    assert "inventory:alerts" not in common
    assert unique == ["inventory:alerts"]
    assert get_common_permissions([]) == []


def test_permission_groups_cover_staff_management():
    groups = get_permission_groups()

    assert groups["staff"] == ["staff:read", "staff:create", "staff:update", "staff:delete"]


def test_can_perform_action_requires_every_listed_permission():
    waiter = get_permissions_for_role("waiter")

    assert can_perform_action(waiter, "process_payment")
    assert not can_perform_action(waiter, "view_reports")
    assert not can_perform_action(waiter, "unknown_action")
    assert not can_perform_action(["tables:read"], "manage_tables")
