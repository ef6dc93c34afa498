from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_staff_auth_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table("business_owner"):
        op.create_table(
            "business_owner",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("email", sa.String(), nullable=False),
            sa.Column("account_type", sa.String(), nullable=False, server_default="business"),
            sa.Column("business_name", sa.String(), nullable=True),
            sa.Column("business_type", sa.String(), nullable=True),
            sa.Column("admin_pin_hash", sa.String(), nullable=True),
            sa.Column("email_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("phone_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_business_owner_email", "business_owner", ["email"], unique=True)

    if not inspector.has_table("personal_users"):
        op.create_table(
            "personal_users",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("email", sa.String(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_personal_users_email", "personal_users", ["email"], unique=False)

    if not inspector.has_table("staff"):
        op.create_table(
            "staff",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("business_id", sa.String(length=36), sa.ForeignKey("business_owner.id"), nullable=False),
            sa.Column("first_name", sa.String(), nullable=False),
            sa.Column("last_name", sa.String(), nullable=False),
            sa.Column("email", sa.String(), nullable=True),
            sa.Column("username", sa.String(), nullable=True),
            sa.Column("phone_number", sa.String(), nullable=True),
            sa.Column("pin_hash", sa.String(), nullable=False),
            sa.Column("role", sa.String(), nullable=False),
            sa.Column("permissions", sa.JSON(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("last_login_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint("business_id", "email", name="uq_staff_business_email"),
            sa.UniqueConstraint("business_id", "phone_number", name="uq_staff_business_phone"),
            sa.UniqueConstraint("business_id", "username", name="uq_staff_business_username"),
        )
        op.create_index("ix_staff_business_id", "staff", ["business_id"], unique=False)

    if not inspector.has_table("staff_sessions"):
        op.create_table(
            "staff_sessions",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("staff_id", sa.String(length=36), nullable=False),
            sa.Column("business_id", sa.String(length=36), nullable=False),
            sa.Column("session_token", sa.String(length=64), nullable=False),
            sa.Column("signed_in_by", sa.String(length=36), nullable=True),
            sa.Column("signed_in_at", sa.DateTime(), nullable=False),
            sa.Column("signed_out_at", sa.DateTime(), nullable=True),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        )
        op.create_index("ix_staff_sessions_staff_id", "staff_sessions", ["staff_id"], unique=False)
        op.create_index("ix_staff_sessions_business_id", "staff_sessions", ["business_id"], unique=False)
        op.create_index("ix_staff_sessions_session_token", "staff_sessions", ["session_token"], unique=True)
        op.create_index("ix_staff_sessions_is_active", "staff_sessions", ["is_active"], unique=False)

    if not inspector.has_table("admin_sessions"):
        op.create_table(
            "admin_sessions",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column(
                "business_owner_id",
                sa.String(length=36),
                sa.ForeignKey("business_owner.id"),
                nullable=False,
            ),
            sa.Column("session_token", sa.String(length=64), nullable=False),
            sa.Column("required_for", sa.String(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        )
        op.create_index("ix_admin_sessions_business_owner_id", "admin_sessions", ["business_owner_id"], unique=False)
        op.create_index("ix_admin_sessions_session_token", "admin_sessions", ["session_token"], unique=True)

    if not inspector.has_table("staff_activity_logs"):
        op.create_table(
            "staff_activity_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("business_id", sa.String(length=36), nullable=False),
            sa.Column("staff_id", sa.String(length=36), nullable=True),
            sa.Column("action", sa.String(), nullable=False),
            sa.Column("performed_by", sa.String(length=36), nullable=True),
            sa.Column("details_json", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_staff_activity_logs_id", "staff_activity_logs", ["id"], unique=False)
        op.create_index("ix_staff_activity_logs_business_id", "staff_activity_logs", ["business_id"], unique=False)
        op.create_index("ix_staff_activity_logs_staff_id", "staff_activity_logs", ["staff_id"], unique=False)
        op.create_index("ix_staff_activity_logs_action", "staff_activity_logs", ["action"], unique=False)
        op.create_index("ix_staff_activity_logs_created_at", "staff_activity_logs", ["created_at"], unique=False)

    if not inspector.has_table("security_audit_logs"):
        op.create_table(
            "security_audit_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("business_id", sa.String(length=36), nullable=True),
            sa.Column("event_type", sa.String(), nullable=False),
            sa.Column("severity", sa.String(), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=True),
            sa.Column("staff_id", sa.String(length=36), nullable=True),
            sa.Column("ip_address", sa.String(), nullable=True),
            sa.Column("user_agent", sa.String(), nullable=True),
            sa.Column("details_json", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_security_audit_logs_id", "security_audit_logs", ["id"], unique=False)
        op.create_index("ix_security_audit_logs_business_id", "security_audit_logs", ["business_id"], unique=False)
        op.create_index("ix_security_audit_logs_event_type", "security_audit_logs", ["event_type"], unique=False)
        op.create_index("ix_security_audit_logs_created_at", "security_audit_logs", ["created_at"], unique=False)

    if not inspector.has_table("pin_attempts"):
        op.create_table(
            "pin_attempts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(), nullable=False),
            sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_attempt_at", sa.DateTime(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint("key", name="uq_pin_attempts_key"),
        )
        op.create_index("ix_pin_attempts_id", "pin_attempts", ["id"], unique=False)
        op.create_index("ix_pin_attempts_key", "pin_attempts", ["key"], unique=False)


def downgrade() -> None:
    for table in (
        "pin_attempts",
        "security_audit_logs",
        "staff_activity_logs",
        "admin_sessions",
        "staff_sessions",
        "staff",
        "personal_users",
        "business_owner",
    ):
        op.drop_table(table)
