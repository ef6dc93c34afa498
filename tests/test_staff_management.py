import json

import pytest

from backoffice.core.errors import Conflict, NotFound, ValidationFailed
from backoffice.models.staff import Staff
from backoffice.models.staff_activity_log import StaffActivityLog
from backoffice.models.staff_session import StaffSession
from backoffice.services import staff_management
from backoffice.services.permissions import get_permissions_for_role
from backoffice.services.pins import is_valid_pin_format, verify_pin
from tests.fixtures_data import ALICE, BOB


def _actions(db):
    return [entry.action for entry in db.query(StaffActivityLog).order_by(StaffActivityLog.id.asc()).all()]


def _entries(db, action):
    return db.query(StaffActivityLog).filter(StaffActivityLog.action == action).all()


def test_create_staff_returns_plaintext_pin_once(db, owner):
    outcome = staff_management.create_staff(db, owner, ALICE)

    staff = outcome.data["staff"]
    assert outcome.code == "staff-created"
    assert outcome.data["pin"] == ALICE["pin"]
    assert outcome.data["warnings"] == []
    assert staff.pin_hash != ALICE["pin"]
    assert verify_pin(ALICE["pin"], staff.pin_hash)
    assert staff.permissions == sorted(get_permissions_for_role("reception"))
    assert _actions(db) == ["staff_created"]


def test_create_staff_generates_a_pin_when_missing(db, owner):
    outcome = staff_management.create_staff(db, owner, {**BOB, "pin": None})

    assert is_valid_pin_format(outcome.data["pin"])
    assert verify_pin(outcome.data["pin"], outcome.data["staff"].pin_hash)


def test_create_staff_reports_every_invalid_field(db, owner):
    with pytest.raises(ValidationFailed) as exc:
        staff_management.create_staff(
            db,
            owner,
            {"first_name": "", "last_name": "Souza", "role": "manager", "pin": "12ab", "email": "alice"},
        )

    assert exc.value.code == "validation-failed"
    assert {error["field"] for error in exc.value.details} == {"first_name", "role", "pin", "email"}
    assert db.query(Staff).count() == 0


@pytest.mark.parametrize(
    "duplicate, code",
    [
        ({"email": "ALICE@example.com"}, "email-already-exists"),
        ({"username": "alice"}, "username-already-exists"),
        ({"phone_number": "+5511999990000"}, "phone-already-exists"),
    ],
)
def test_duplicate_identifiers_conflict_within_a_business(db, owner, duplicate, code):
    staff_management.create_staff(
        db, owner, {**ALICE, "username": "alice", "phone_number": "+5511999990000"}
    )

    with pytest.raises(Conflict) as exc:
        staff_management.create_staff(
            db, owner, {"first_name": "Ana", "last_name": "Reis", "role": "waiter", "pin": "4321", **duplicate}
        )

    assert exc.value.code == code
    assert db.query(Staff).count() == 1


def test_same_email_is_allowed_in_another_business(db, owner, other_owner):
    staff_management.create_staff(db, owner, ALICE)
    staff_management.create_staff(db, other_owner, ALICE)

    assert db.query(Staff).count() == 2


def test_custom_grants_extend_role_defaults_with_a_warning(db, owner):
    outcome = staff_management.create_staff(db, owner, {**BOB, "custom_permissions": ["reports:read"]})

    permissions = set(outcome.data["staff"].permissions)
    assert permissions >= set(get_permissions_for_role("kitchen"))
    assert "reports:read" in permissions
    assert outcome.data["warnings"][0]["code"] == "permissions-outside-role"


def test_role_change_terminates_every_active_session(db, owner, make_staff, make_session):
    staff = make_staff(owner)
    sessions = [make_session(staff), make_session(staff)]

    outcome = staff_management.change_staff_role(db, owner, staff.id, "kitchen")

    assert outcome.code == "role-changed"
    assert outcome.data["old_role"] == "reception"
    assert outcome.data["sessions_terminated"] == 2
    assert staff.permissions == sorted(get_permissions_for_role("kitchen"))
    for session in sessions:
        db.refresh(session)
        assert not session.is_active

    terminations = _entries(db, "session_terminated_due_to_update")
    assert len(terminations) == 2
    assert {json.loads(entry.details_json)["reason"] for entry in terminations} == {"role_changed"}
    assert len(_entries(db, "role_changed")) == 1


def test_role_change_resets_previous_custom_grants(db, owner):
    staff = staff_management.create_staff(db, owner, {**ALICE, "custom_permissions": ["reports:read"]}).data["staff"]

    staff_management.change_staff_role(db, owner, staff.id, "waiter")

    assert staff.permissions == sorted(get_permissions_for_role("waiter"))


def test_role_change_to_same_role_is_rejected(db, owner, make_staff):
    staff = make_staff(owner, role="kitchen")

    with pytest.raises(Conflict) as exc:
        staff_management.change_staff_role(db, owner, staff.id, "kitchen")

    assert exc.value.code == "role-unchanged"


def test_permission_only_update_keeps_sessions(db, owner, make_staff, make_session):
    staff = make_staff(owner)
    session = make_session(staff)

    outcome = staff_management.update_staff(db, owner, staff.id, {"custom_permissions": ["reports:read"]})

    db.refresh(session)
    assert session.is_active
    assert outcome.data["sessions_terminated"] == 0
    assert "reports:read" in staff.permissions
    assert _entries(db, "session_terminated_due_to_update") == []


def test_update_changing_role_cascades(db, owner, make_staff, make_session):
    staff = make_staff(owner)
    session = make_session(staff)

    outcome = staff_management.update_staff(db, owner, staff.id, {"role": "bar", "first_name": "Alicia"})

    db.refresh(session)
    assert not session.is_active
    assert outcome.data["sessions_terminated"] == 1
    assert staff.first_name == "Alicia"
    [updated] = _entries(db, "staff_updated")
    details = json.loads(updated.details_json)
    assert details["changed_fields"] == ["first_name"]
    assert details["role_changed"] is True


def test_update_reports_every_invalid_field_before_changing_anything(db, owner, make_staff, make_session):
    staff = make_staff(owner, email="alice@example.com")
    session = make_session(staff)

    with pytest.raises(ValidationFailed) as exc:
        staff_management.update_staff(
            db,
            owner,
            staff.id,
            {
                "first_name": " ",
                "last_name": " ",
                "role": "chef",
                "email": "not-an-email",
                "custom_permissions": ["orders:teleport"],
            },
        )

    assert [(entry["field"], entry["code"]) for entry in exc.value.details] == [
        ("first_name", "required"),
        ("last_name", "required"),
        ("role", "invalid-role"),
        ("email", "invalid-email"),
        ("custom_permissions", "invalid-permissions"),
    ]
    db.refresh(staff)
    db.refresh(session)
    assert staff.first_name == "Alice"
    assert staff.email == "alice@example.com"
    assert session.is_active
    assert _entries(db, "staff_updated") == []


def test_update_keeps_at_least_one_identifier(db, owner, make_staff):
    staff = make_staff(owner, email="alice@example.com", username="alice")

    with pytest.raises(ValidationFailed) as exc:
        staff_management.update_staff(db, owner, staff.id, {"email": None, "username": " ", "phone_number": None})

    assert exc.value.details == [{"field": "email", "code": "identifier-required"}]
    db.refresh(staff)
    assert staff.email == "alice@example.com"

    outcome = staff_management.update_staff(db, owner, staff.id, {"email": None})

    assert outcome.code == "staff-updated"
    assert staff.email is None
    assert staff.username == "alice"


def test_deactivation_cascades_and_is_not_repeatable(db, owner, make_staff, make_session):
    staff = make_staff(owner)
    session = make_session(staff)

    outcome = staff_management.deactivate_staff(db, owner, staff.id)

    db.refresh(session)
    assert outcome.data["sessions_terminated"] == 1
    assert not session.is_active
    [entry] = _entries(db, "session_terminated_due_to_update")
    assert json.loads(entry.details_json)["reason"] == "staff_deactivated"
    with pytest.raises(Conflict):
        staff_management.deactivate_staff(db, owner, staff.id)

    assert staff_management.activate_staff(db, owner, staff.id).code == "staff-activated"
    with pytest.raises(Conflict):
        staff_management.activate_staff(db, owner, staff.id)


def test_deletion_ends_sessions_and_keeps_history(db, owner, make_staff, make_session):
    staff = make_staff(owner)
    staff_id = staff.id
    session_ids = [make_session(staff).id, make_session(staff).id]

    outcome = staff_management.delete_staff(db, owner, staff_id)

    assert outcome.as_dict() == {"success": "staff-deleted", "staff_id": staff_id, "sessions_terminated": 2}
    assert db.get(Staff, staff_id) is None
    remaining = db.query(StaffSession).filter(StaffSession.id.in_(session_ids)).all()
    assert len(remaining) == 2
    assert not any(session.is_active for session in remaining)
    assert _actions(db) == [
        "session_terminated_due_to_deletion",
        "session_terminated_due_to_deletion",
        "staff_deleted",
    ]
    assert all(entry.staff_id == staff_id for entry in db.query(StaffActivityLog).all())


def test_foreign_staff_is_invisible(db, owner, other_owner, make_staff, make_session):
    theirs = make_staff(other_owner)
    session = make_session(theirs)

    with pytest.raises(NotFound):
        staff_management.get_staff(db, owner, theirs.id)
    with pytest.raises(NotFound):
        staff_management.change_staff_role(db, owner, theirs.id, "kitchen")
    with pytest.raises(NotFound):
        staff_management.delete_staff(db, owner, theirs.id)

    db.refresh(session)
    assert session.is_active
    assert db.get(Staff, theirs.id).role == "reception"
    assert staff_management.list_staff(db, owner) == []


def test_list_staff_filters_role_and_status(db, owner, make_staff):
    make_staff(owner, first_name="Ana", role="kitchen", email="ana@example.com")
    make_staff(owner, first_name="Bruno", role="kitchen", active=False, email="bruno@example.com")
    make_staff(owner, first_name="Carla", role="bar", email="carla@example.com")

    kitchen = staff_management.list_staff(db, owner, role="kitchen", include_inactive=False)

    assert [staff.first_name for staff in kitchen] == ["Ana"]
    assert len(staff_management.list_staff(db, owner)) == 3


def test_sign_out_of_ended_session_is_a_quiet_success(db, owner, make_staff, make_session):
    session = make_session(make_staff(owner))

    first = staff_management.sign_out_session(db, owner, session.id)
    second = staff_management.sign_out_session(db, owner, session.id)

    assert first.data["already_signed_out"] is False
    assert second.data["already_signed_out"] is True
    assert len(_entries(db, "staff_signed_out")) == 1


def test_bulk_sign_out_skips_what_it_cannot_end(db, owner, other_owner, make_staff, make_session):
    mine = make_staff(owner)
    first = make_session(mine)
    second = make_session(mine)
    foreign = make_session(make_staff(other_owner))

    outcome = staff_management.bulk_sign_out(db, owner, [first.id, second.id, foreign.id])

    assert outcome.as_dict() == {"success": "bulk-signout", "count": 2, "skipped": [foreign.id]}
    assert len(_entries(db, "staff_bulk_signed_out")) == 2
    assert len(_entries(db, "bulk_staff_signout")) == 1
    with pytest.raises(ValidationFailed) as exc:
        staff_management.bulk_sign_out(db, owner, [])
    assert exc.value.code == "no-sessions-selected"


def test_sign_out_all_for_one_staff_member(db, owner, make_staff, make_session):
    staff = make_staff(owner)
    make_session(staff)
    make_session(staff)

    outcome = staff_management.sign_out_all_for_staff(db, owner, staff.id)

    assert outcome.data["count"] == 2
    assert db.query(StaffSession).filter(StaffSession.is_active.is_(True)).count() == 0


def test_pin_operations(db, owner, make_staff):
    staff = make_staff(owner)

    reset = staff_management.reset_staff_pin(db, owner, staff.id)
    assert verify_pin(reset.data["pin"], staff.pin_hash)

    staff_management.change_staff_pin(db, owner, staff.id, "2468")
    assert verify_pin("2468", staff.pin_hash)

    with pytest.raises(ValidationFailed) as exc:
        staff_management.change_staff_pin(db, owner, staff.id, "24a8")
    assert exc.value.code == "invalid-pin-format"

    staff_management.deactivate_staff(db, owner, staff.id)
    with pytest.raises(Conflict) as exc:
        staff_management.retrieve_staff_pin(db, owner, staff.id)
    assert exc.value.code == "staff-inactive"
