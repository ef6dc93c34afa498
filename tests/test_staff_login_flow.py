import json

import pytest

from backoffice.models.security_audit_log import SecurityAuditLog
from backoffice.models.staff_activity_log import StaffActivityLog
from backoffice.models.staff_session import StaffSession
from backoffice.routers.staff import router as staff_router
from backoffice.routers.staff_auth import router as staff_auth_router
from backoffice.services.cookies import STAFF_SESSION_COOKIE
from tests.fixtures_data import ALICE, BOB, WRONG_PIN, auth_headers


@pytest.fixture
def client(build_client):
    return build_client(staff_router, staff_auth_router)


@pytest.fixture
def alice(owner, make_staff):
    return make_staff(owner, pin=ALICE["pin"], email=ALICE["email"])


def _activity(db, action):
    return db.query(StaffActivityLog).filter(StaffActivityLog.action == action).all()


def _security(db, event_type):
    return db.query(SecurityAuditLog).filter(SecurityAuditLog.event_type == event_type).all()


def _select_business(client, business_id):
    response = client.post("/api/staff-auth/business", json={"business_id": business_id})
    assert response.status_code == 200
    return response


def test_self_login_issues_an_eight_hour_cookie(client, db, owner, alice, rate_limit_store):
    _select_business(client, owner.id)

    response = client.post("/api/staff-auth/login", json={"email": "Alice@Example.com", "pin": ALICE["pin"]})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] == "staff-logged-in"
    assert body["staff"]["id"] == alice.id
    cookie = response.headers["set-cookie"]
    assert f"{STAFF_SESSION_COOKIE}=" in cookie
    assert "Max-Age=28800" in cookie
    assert "HttpOnly" in cookie

    session = db.query(StaffSession).filter(StaffSession.id == body["session"]["id"]).one()
    assert session.is_active
    assert session.signed_in_by is None

    [entry] = _activity(db, "staff_login")
    details = json.loads(entry.details_json)
    assert details["session_id"] == session.id
    assert details["login_method"] == "email"
    assert rate_limit_store.get(f"staff-pin:{owner.id}-12") is None


def test_self_login_by_username(client, db, owner, make_staff):
    make_staff(owner, pin=BOB["pin"], first_name="Bob", username=BOB["username"], role=BOB["role"])
    _select_business(client, owner.id)

    response = client.post("/api/staff-auth/login", json={"username": "bob", "pin": BOB["pin"]})

    assert response.status_code == 200
    details = json.loads(_activity(db, "staff_login")[0].details_json)
    assert details["login_method"] == "username"


def test_login_requires_a_selected_business(client, alice):
    response = client.post("/api/staff-auth/login", json={"email": ALICE["email"], "pin": ALICE["pin"]})

    assert response.status_code == 401
    assert response.json()["error"] == "business-not-selected"


def test_unknown_staff_and_wrong_pin_look_the_same(client, db, owner, alice):
    _select_business(client, owner.id)

    unknown = client.post("/api/staff-auth/login", json={"email": "nobody@example.com", "pin": "1299"})
    wrong = client.post("/api/staff-auth/login", json={"email": ALICE["email"], "pin": WRONG_PIN})

    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json()["error"] == wrong.json()["error"] == "invalid-credentials"
    failures = _security(db, "staff_pin_failure")
    assert len(failures) == 2
    assert sorted(json.loads(entry.details_json)["partial_pin"] for entry in failures) == ["00**", "12**"]


def test_repeated_wrong_pins_lock_out_without_verifying(client, db, owner, alice, monkeypatch):
    url = f"/api/staff/{alice.id}/sign-in"
    headers = auth_headers(owner.id)

    responses = [client.post(url, json={"pin": WRONG_PIN}, headers=headers) for _ in range(3)]

    assert [response.status_code for response in responses] == [401, 401, 401]
    assert [response.json()["rate_limit"]["remaining_attempts"] for response in responses] == [2, 1, 0]
    assert responses[0].json()["rate_limit"]["allowed"] is True
    assert responses[2].json()["rate_limit"]["allowed"] is False

    calls = []

    def spy(*args, **kwargs):
        calls.append(args)
        return True

    monkeypatch.setattr("backoffice.services.staff_auth.verify_pin", spy)
    locked = client.post(url, json={"pin": ALICE["pin"]}, headers=headers)

    assert locked.status_code == 429
    assert locked.json() == {"error": "rate-limited", "minutes": 15}
    assert calls == []
    assert len(_security(db, "staff_pin_failure")) == 3
    assert len(_security(db, "staff_pin_lockout")) == 1
    assert db.query(StaffSession).count() == 0


def test_owner_signs_in_staff_on_shared_device(client, db, owner, alice):
    response = client.post(
        f"/api/staff/{alice.id}/sign-in",
        json={"pin": ALICE["pin"]},
        headers=auth_headers(owner.id),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] == "staff-signed-in"
    assert body["session"]["signed_in_by"] == owner.id
    assert body["rate_limit"]["remaining_attempts"] == 3
    assert len(_activity(db, "staff_signed_in")) == 1
    assert len(_security(db, "staff_pin_success")) == 1


def test_staff_login_is_disabled_until_admin_pin_is_set(client, make_owner, make_staff):
    bare = make_owner("owner-bare", admin_pin=None)
    staff = make_staff(bare, email="carla@example.com")

    sign_in = client.post(f"/api/staff/{staff.id}/sign-in", json={"pin": "1234"}, headers=auth_headers(bare.id))
    _select_business(client, bare.id)
    login = client.post("/api/staff-auth/login", json={"email": "carla@example.com", "pin": "1234"})

    assert sign_in.status_code == login.status_code == 409
    assert sign_in.json()["error"] == login.json()["error"] == "admin-pin-required"


def test_owner_cannot_sign_in_staff_of_another_business(client, owner, other_owner, make_staff):
    theirs = make_staff(other_owner)

    response = client.post(f"/api/staff/{theirs.id}/sign-in", json={"pin": "1234"}, headers=auth_headers(owner.id))

    assert response.status_code == 404
    assert response.json()["error"] == "staff-not-found"


def test_failed_audit_write_never_blocks_sign_in(client, db, owner, alice, monkeypatch):
    def broken_session():
        raise RuntimeError("audit store unavailable")

    monkeypatch.setattr("backoffice.services.audit_handlers.SessionLocal", broken_session)

    response = client.post(
        f"/api/staff/{alice.id}/sign-in",
        json={"pin": ALICE["pin"]},
        headers=auth_headers(owner.id),
    )

    assert response.status_code == 200
    session = db.query(StaffSession).filter(StaffSession.id == response.json()["session"]["id"]).one()
    assert session.is_active
    assert db.query(StaffActivityLog).count() == 0


def test_me_then_logout(client, db, owner, alice):
    _select_business(client, owner.id)
    login = client.post("/api/staff-auth/login", json={"email": ALICE["email"], "pin": ALICE["pin"]})
    session_id = login.json()["session"]["id"]

    me = client.get("/api/staff-auth/me")
    logout = client.post("/api/staff-auth/logout")

    assert me.status_code == 200
    assert me.json()["staff"]["id"] == alice.id
    assert logout.json() == {"success": "staff-logged-out"}
    cleared = " ".join(logout.headers.get_list("set-cookie"))
    assert "staff_session_token=" in cleared
    assert "staff_business_id=" in cleared
    assert "Max-Age=0" in cleared
    session = db.query(StaffSession).filter(StaffSession.id == session_id).one()
    db.refresh(session)
    assert not session.is_active
    assert len(_activity(db, "staff_logout")) == 1
    assert client.get("/api/staff-auth/me").status_code == 401


def test_single_session_policy_ends_previous_sessions(db, owner, alice, make_session):
    from backoffice.services.staff_auth import StaffAuthService

    previous = make_session(alice)

    result = StaffAuthService(db, single_session=True).sign_in_staff(owner, alice.id, ALICE["pin"])

    db.refresh(previous)
    assert not previous.is_active
    assert result.session.is_active
