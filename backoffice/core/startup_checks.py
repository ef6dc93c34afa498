from __future__ import annotations

import logging
from pathlib import Path

from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from backoffice.core.config import (
    AUTH_JWT_SECRET,
    DATABASE_URL,
    IS_PROD,
    IS_TEST,
    RATE_LIMIT_BACKEND,
    STAFF_BUSINESS_COOKIE_SECRET,
)

logger = logging.getLogger(__name__)
MIGRATIONS_PREFIX = "[MIGRATIONS]"
STARTUP_PREFIX = "[STARTUP]"

REQUIRED_TABLES = {
    "business_owner",
    "staff",
    "staff_sessions",
    "admin_sessions",
    "staff_activity_logs",
    "security_audit_logs",
    "pin_attempts",
}


def validate_database_environment() -> None:
    if IS_PROD and DATABASE_URL.startswith("sqlite"):
        logger.critical("%s SQLite is forbidden in production", MIGRATIONS_PREFIX)
        raise RuntimeError("SQLite is forbidden in production environment")


def validate_security_settings() -> None:
    missing = [
        name
        for name, value in (
            ("AUTH_JWT_SECRET", AUTH_JWT_SECRET),
            ("STAFF_BUSINESS_COOKIE_SECRET", STAFF_BUSINESS_COOKIE_SECRET),
        )
        if not value
    ]
    if missing:
        if IS_PROD:
            logger.critical("%s missing secrets=%s", STARTUP_PREFIX, ",".join(missing))
            raise RuntimeError("Required secrets are not configured")
        logger.warning("%s missing secrets=%s", STARTUP_PREFIX, ",".join(missing))

    if IS_PROD and RATE_LIMIT_BACKEND == "memory":
        logger.warning(
            "%s RATE_LIMIT_BACKEND=memory keeps lockouts per process; use database with several instances",
            STARTUP_PREFIX,
        )


def ensure_migrations_applied(*, engine: Engine, alembic_config_path: Path) -> None:
    if IS_TEST:
        logger.info("%s skipped migration check in test environment", MIGRATIONS_PREFIX)
        return

    if not alembic_config_path.exists():
        logger.critical("%s alembic config not found path=%s", MIGRATIONS_PREFIX, alembic_config_path)
        raise RuntimeError("alembic config not found")

    alembic_cfg = Config(str(alembic_config_path))
    script_directory = ScriptDirectory.from_config(alembic_cfg)
    expected_heads = set(script_directory.get_heads())

    with engine.connect() as connection:
        inspector = inspect(connection)
        if "alembic_version" not in inspector.get_table_names():
            logger.critical("%s alembic_version table missing", MIGRATIONS_PREFIX)
            raise RuntimeError("Database has no migration state")

        current_rows = connection.exec_driver_sql("SELECT version_num FROM alembic_version").fetchall()

    current_heads = {row[0] for row in current_rows if row and row[0]}
    if current_heads != expected_heads:
        logger.critical(
            "%s pending migration detected current=%s expected=%s",
            MIGRATIONS_PREFIX,
            sorted(current_heads),
            sorted(expected_heads),
        )
        raise RuntimeError("Pending migrations detected")

    logger.info("%s migration state verified", MIGRATIONS_PREFIX)


def ensure_auth_tables_exist(engine: Engine) -> None:
    inspector = inspect(engine)
    missing = [table for table in sorted(REQUIRED_TABLES) if not inspector.has_table(table)]
    if missing:
        logger.error("%s tables missing / migrations not applied missing=%s", STARTUP_PREFIX, ",".join(missing))
        raise RuntimeError("tables missing / migrations not applied")
