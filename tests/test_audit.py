from datetime import datetime

from backoffice.models.security_audit_log import SecurityAuditLog
from backoffice.models.staff_activity_log import StaffActivityLog
from backoffice.routers.activity import _parse_datetime, router as activity_router
from backoffice.services import security_audit
from backoffice.services.event_bus import EventBus
from backoffice.services.staff_activity import StaffAction, get_staff_activity_summary, log_staff_activity
from backoffice.services.staff_management import create_staff, sign_out_session
from tests.fixtures_data import ALICE, auth_headers


def test_event_bus_isolates_failing_handlers():
    bus = EventBus()
    received = []

    def broken(payload):
        raise ValueError("boom")

    bus.subscribe("demo", broken)
    bus.subscribe("demo", received.append)
    bus.subscribe("demo", received.append)

    assert bus.emit("demo", {"n": 1}) == 1
    assert received == [{"n": 1}]
    assert bus.emit("other", {}) == 0


def test_pin_failure_records_only_a_masked_prefix(db, owner):
    security_audit.log_staff_pin_failure(owner.id, pin="4821", attempt_count=1, staff_id="s-1")
    security_audit.log_staff_pin_failure(owner.id, pin="4821", attempt_count=3, staff_id="s-1")

    events = security_audit.get_recent_security_events(db, owner.id)
    details = [security_audit.serialize_security_event(event)["details"] for event in events]

    assert {detail["partial_pin"] for detail in details} == {"48**"}
    assert sorted(event.severity for event in events) == ["high", "medium"]
    assert all("4821" not in event.details_json for event in events)


def test_security_metrics_flag_repeated_failures(db, owner, other_owner):
    for attempt in (1, 2, 3):
        security_audit.log_staff_pin_failure(owner.id, pin="1111", attempt_count=attempt)
    security_audit.log_staff_pin_lockout(owner.id, identifier="x", attempt_count=3, lockout_seconds=900)
    security_audit.log_staff_pin_failure(other_owner.id, pin="1111", attempt_count=3)

    metrics = security_audit.get_security_metrics(db, owner.id)

    assert metrics["total_events"] == 4
    assert metrics["events_by_type"] == {"staff_pin_failure": 3, "staff_pin_lockout": 1}
    assert metrics["suspicious_patterns"] == {"multiple_failed_attempts": 1, "rate_limit_violations": 1}


def test_request_context_is_recorded(db, owner):
    from backoffice.core.request_context import clear_request_context, set_request_context

    set_request_context(client_ip="203.0.113.9", user_agent="pytest-agent")
    try:
        security_audit.log_unauthorized_access(owner.id, attempted_resource="GET /api/staff", user_id="x")
    finally:
        clear_request_context()

    [event] = db.query(SecurityAuditLog).all()
    assert event.ip_address == "203.0.113.9"
    assert event.user_agent == "pytest-agent"


def test_activity_summary_per_staff_member(db, owner, make_staff, make_session):
    staff = make_staff(owner)
    session = make_session(staff)
    sign_out_session(db, owner, session.id)

    [summary] = get_staff_activity_summary(db, owner.id)

    assert summary["staff_id"] == staff.id
    assert summary["total_sessions"] == 1
    assert summary["total_actions"] == 1
    assert summary["most_common_actions"] == [{"action": "staff_signed_out", "count": 1}]


def test_activity_endpoints_are_tenant_scoped(build_client, db, owner, other_owner):
    client = build_client(activity_router)
    staff = create_staff(db, owner, ALICE).data["staff"]
    log_staff_activity(business_id=other_owner.id, action=StaffAction.STAFF_LOGIN, staff_id="foreign")

    mine = client.get("/api/business-owner/activity", headers=auth_headers(owner.id)).json()
    filtered = client.get(
        "/api/business-owner/activity",
        params={"action": "staff_login"},
        headers=auth_headers(owner.id),
    ).json()
    per_staff = client.get(f"/api/business-owner/staff/{staff.id}/activity", headers=auth_headers(owner.id))
    foreign = client.get(f"/api/business-owner/staff/{staff.id}/activity", headers=auth_headers(other_owner.id))

    assert [entry["action"] for entry in mine] == ["staff_created"]
    assert filtered == []
    assert per_staff.status_code == 200
    assert foreign.status_code == 404
    assert db.query(StaffActivityLog).count() == 2


def test_roles_endpoint_lists_catalogue(build_client, make_owner):
    cafe = make_owner("cafe-owner", business_type="cafe")
    client = build_client(activity_router)

    body = client.get("/api/business-owner/roles", headers=auth_headers(cafe.id)).json()

    assert len(body["roles"]) == 6
    assert body["recommended"] == ["reception", "waiter", "kitchen", "accountant"]
    assert "staff" in body["permission_groups"]


def test_activity_date_filters_are_normalised_to_utc():
    assert _parse_datetime("2026-03-01T12:00:00+02:00") == datetime(2026, 3, 1, 10, 0, 0)
    assert _parse_datetime("2026-03-01T12:00:00Z") == datetime(2026, 3, 1, 12, 0, 0)
    assert _parse_datetime("2026-03-01T12:00:00") == datetime(2026, 3, 1, 12, 0, 0)
    assert _parse_datetime("yesterday") is None
