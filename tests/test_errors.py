from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from backoffice.core.errors import RateLimited, ValidationFailed, register_exception_handlers


def _client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/boom")
    def boom():
        raise KeyError("staff_id")

    @app.get("/db-down")
    def db_down():
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    @app.get("/invalid")
    def invalid():
        raise ValidationFailed(
            "validation-failed",
            details=[{"field": "first_name", "code": "required"}, {"field": "role", "code": "invalid-role"}],
        )

    @app.get("/locked")
    def locked():
        raise RateLimited("rate-limited", minutes_remaining=15)

    return TestClient(app, raise_server_exceptions=False)


def test_unexpected_errors_surface_only_as_server_error():
    response = _client().get("/boom")

    assert response.status_code == 500
    assert response.json() == {"error": "server-error"}
    assert "staff_id" not in response.text


def test_database_errors_surface_only_as_server_error():
    response = _client().get("/db-down")

    assert response.status_code == 500
    assert response.json() == {"error": "server-error"}


def test_core_errors_render_code_and_details():
    client = _client()

    invalid = client.get("/invalid")
    locked = client.get("/locked")

    assert invalid.status_code == 422
    assert [entry["field"] for entry in invalid.json()["details"]] == ["first_name", "role"]
    assert locked.status_code == 429
    assert locked.json() == {"error": "rate-limited", "minutes": 15}
