import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backoffice.core.config import CORS_ORIGINS, ENV, IS_TEST
from backoffice.core.database import SessionLocal, engine
from backoffice.core.errors import register_exception_handlers
from backoffice.core.logging_setup import configure_logging
from backoffice.core.rate_limiter import (
    ADMIN_PIN_POLICY,
    STAFF_PIN_POLICY,
    STAFF_SIGNIN_POLICY,
    PinRateLimiter,
)
from backoffice.core.startup_checks import (
    ensure_auth_tables_exist,
    ensure_migrations_applied,
    validate_database_environment,
    validate_security_settings,
)
from backoffice.middleware.observability import ObservabilityMiddleware
import backoffice.models  # models must be imported before metadata is used
import backoffice.services.audit_handlers  # subscribes the audit persistence handlers

from backoffice.routers.activity import router as activity_router
from backoffice.routers.admin_pin import router as admin_pin_router
from backoffice.routers.auth import router as auth_router
from backoffice.routers.staff import router as staff_router
from backoffice.routers.staff_auth import router as staff_auth_router
from backoffice.services.staff_sessions import StaffSessionManager

configure_logging()

logger = logging.getLogger(__name__)
STARTUP_PREFIX = "[STARTUP]"
REPO_ROOT = Path(__file__).resolve().parents[1]
ALEMBIC_CONFIG_PATH = Path(
    os.getenv("ALEMBIC_CONFIG", str(REPO_ROOT / "alembic.ini"))
)


def _housekeeping() -> None:
    """Terminate expired session rows and drop stale rate-limit counters."""
    db = SessionLocal()
    try:
        reaped = StaffSessionManager(db).reap_expired_sessions()
    finally:
        db.close()
    purged = sum(
        PinRateLimiter(policy).cleanup_expired()
        for policy in (STAFF_PIN_POLICY, STAFF_SIGNIN_POLICY, ADMIN_PIN_POLICY)
    )
    logger.info("%s housekeeping reaped_sessions=%s purged_rate_limits=%s", STARTUP_PREFIX, reaped, purged)


def _startup_tasks() -> None:
    logger.info("%s env=%s", STARTUP_PREFIX, ENV)
    try:
        validate_database_environment()
        validate_security_settings()
        if IS_TEST:
            return
        ensure_migrations_applied(engine=engine, alembic_config_path=ALEMBIC_CONFIG_PATH)
        ensure_auth_tables_exist(engine)
        _housekeeping()
    except Exception:
        logger.exception("%s ERROR startup failed", STARTUP_PREFIX)
        raise


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield


app = FastAPI(
    title="Restaurant Back-Office API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ObservabilityMiddleware)

register_exception_handlers(app)

# Routers
app.include_router(auth_router)
app.include_router(admin_pin_router)
app.include_router(staff_router)
app.include_router(staff_auth_router)
app.include_router(activity_router)


@app.get("/")
def root():
    return {"status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
