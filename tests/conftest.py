import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENV"] = "test"
os.environ["AUTH_JWT_SECRET"] = "test-jwt-secret"
os.environ["STAFF_BUSINESS_COOKIE_SECRET"] = "test-cookie-secret"
os.environ["STAFF_PIN_BCRYPT_ROUNDS"] = "4"
os.environ["ADMIN_PIN_BCRYPT_ROUNDS"] = "4"
os.environ["RATE_LIMIT_BACKEND"] = "memory"

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

import backoffice.models  # noqa: F401
import backoffice.services.audit_handlers  # noqa: F401
from backoffice.core.database import Base, SessionLocal, engine, get_db
from backoffice.core.errors import register_exception_handlers
from backoffice.core.rate_limiter import InMemoryRateLimitStore, set_rate_limit_store
from backoffice.models.business_owner import BusinessOwner
from backoffice.models.staff import Staff
from backoffice.services.permissions import get_permissions_for_role
from backoffice.services.pins import hash_admin_pin, hash_pin
from backoffice.services.staff_sessions import StaffSessionManager
from tests.fixtures_data import ADMIN_PIN, OTHER_OWNER_ID, OWNER_ID


@pytest.fixture(autouse=True)
def rate_limit_store():
    store = InMemoryRateLimitStore()
    set_rate_limit_store(store)
    yield store
    set_rate_limit_store(None)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


def _create_owner(db, owner_id, *, admin_pin=ADMIN_PIN, business_type="restaurant"):
    owner = BusinessOwner(
        id=owner_id,
        email=f"{owner_id}@example.com",
        account_type="business",
        business_name=f"Business {owner_id}",
        business_type=business_type,
        admin_pin_hash=hash_admin_pin(admin_pin) if admin_pin else None,
    )
    db.add(owner)
    db.commit()
    return owner


@pytest.fixture
def owner(db):
    return _create_owner(db, OWNER_ID)


@pytest.fixture
def other_owner(db):
    return _create_owner(db, OTHER_OWNER_ID)


@pytest.fixture
def make_owner(db):
    def _make(owner_id, **kwargs):
        return _create_owner(db, owner_id, **kwargs)

    return _make


@pytest.fixture
def make_staff(db):
    def _make(owner, *, pin="1234", role="reception", active=True, **fields):
        staff = Staff(
            business_id=owner.id,
            first_name=fields.pop("first_name", "Alice"),
            last_name=fields.pop("last_name", "Souza"),
            pin_hash=hash_pin(pin),
            role=role,
            permissions=get_permissions_for_role(role),
            is_active=active,
            **fields,
        )
        db.add(staff)
        db.commit()
        return staff

    return _make


@pytest.fixture
def make_session(db):
    def _make(staff):
        session = StaffSessionManager(db).create_session(staff.id, staff.business_id, staff.business_id)
        db.commit()
        return session

    return _make


@pytest.fixture
def build_client(db):
    def _build(*routers):
        app = FastAPI()
        register_exception_handlers(app)
        for router in routers:
            app.include_router(router)

        def override_get_db():
            try:
                yield db
            finally:
                pass

        app.dependency_overrides[get_db] = override_get_db
        return TestClient(app)

    return _build
