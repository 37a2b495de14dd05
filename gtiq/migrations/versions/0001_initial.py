"""Initial multi-tenant time tracking schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

company_status = postgresql.ENUM("active", "grace", "suspended", name="company_status", create_type=False)
membership_role = postgresql.ENUM("owner", "admin", "manager", "worker", name="membership_role", create_type=False)
work_session_status = postgresql.ENUM("open", "closed", "auto_closed", name="work_session_status", create_type=False)
work_session_review_status = postgresql.ENUM(
    "normal",
    "exceeded_limit",
    "pending_review",
    "resolved",
    name="work_session_review_status",
    create_type=False,
)
time_event_type = postgresql.ENUM(
    "clock_in",
    "clock_out",
    "pause_start",
    "pause_end",
    name="time_event_type",
    create_type=False,
)
clock_source = postgresql.ENUM("web", "mobile", "kiosk", name="clock_source", create_type=False)
incident_type = postgresql.ENUM(
    "late_arrival",
    "early_departure",
    "missing_checkout",
    "missing_checkin",
    "other",
    name="incident_type",
    create_type=False,
)
incident_status = postgresql.ENUM("pending", "resolved", "dismissed", name="incident_status", create_type=False)
notification_type = postgresql.ENUM(
    "info",
    "success",
    "warning",
    "error",
    name="notification_type",
    create_type=False,
)
invite_status = postgresql.ENUM("pending", "accepted", "revoked", "expired", name="invite_status", create_type=False)
holiday_clock_policy = postgresql.ENUM(
    "allow",
    "require_reason",
    "block",
    name="holiday_clock_policy",
    create_type=False,
)
special_day_policy = postgresql.ENUM("allow", "restrict", name="special_day_policy", create_type=False)

ALL_ENUMS = (
    company_status,
    membership_role,
    work_session_status,
    work_session_review_status,
    time_event_type,
    clock_source,
    incident_type,
    incident_status,
    notification_type,
    invite_status,
    holiday_clock_policy,
    special_day_policy,
)


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    for pg_enum in ALL_ENUMS:
        pg_enum.create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("password_hash", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_superadmin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created_at(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "companies",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("status", company_status, nullable=False, server_default=sa.text("'active'")),
        sa.Column("hq_lat", sa.Float(), nullable=True),
        sa.Column("hq_lng", sa.Float(), nullable=True),
        sa.Column("geofence_radius_m", sa.Integer(), nullable=True),
        sa.Column("max_shift_hours", sa.Float(), nullable=True),
        sa.Column("kiosk_pin_hash", sa.String(length=255), nullable=True),
        sa.Column("owner_user_id", sa.Uuid(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["owner_user_id"], ["users.id"], ondelete="SET NULL"),
    )

    op.create_table(
        "memberships",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("role", membership_role, nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "company_id", name="uq_memberships_user_company"),
    )
    op.create_index("ix_memberships_user_id", "memberships", ["user_id"])
    op.create_index("ix_memberships_company_id", "memberships", ["company_id"])

    op.create_table(
        "work_sessions",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("clock_in_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("clock_out_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_on_break", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("break_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", work_session_status, nullable=False, server_default=sa.text("'open'")),
        sa.Column("review_status", work_session_review_status, nullable=True),
        sa.Column(
            "total_pause_duration",
            sa.Interval(),
            nullable=False,
            server_default=sa.text("'0 seconds'::interval"),
        ),
        sa.Column("total_work_duration", sa.Interval(), nullable=True),
        sa.Column("is_corrected", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("corrected_by", sa.Uuid(), nullable=True),
        sa.Column("corrected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("correction_reason", sa.String(length=1000), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["corrected_by"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index(
        "uq_work_sessions_one_active",
        "work_sessions",
        ["user_id", "company_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )
    op.create_index("ix_work_sessions_company_clock_in", "work_sessions", ["company_id", "clock_in_time"])

    op.create_table(
        "time_events",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("session_id", sa.Uuid(), nullable=True),
        sa.Column("event_type", time_event_type, nullable=False),
        sa.Column("source", clock_source, nullable=False, server_default=sa.text("'web'")),
        sa.Column("device_id", sa.String(length=255), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("distance_m", sa.Float(), nullable=True),
        sa.Column("is_within_geofence", sa.Boolean(), nullable=True),
        sa.Column("photo_url", sa.String(length=2048), nullable=True),
        sa.Column("notes", sa.String(length=1000), nullable=True),
        sa.Column("event_time", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["session_id"], ["work_sessions.id"], ondelete="SET NULL"),
    )
    op.create_index(
        "ix_time_events_user_company_time",
        "time_events",
        ["user_id", "company_id", "event_time"],
    )

    op.create_table(
        "time_entries_log",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("session_id", sa.Uuid(), nullable=False),
        sa.Column("changed_by", sa.Uuid(), nullable=True),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("old_start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("old_end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("old_duration", sa.Interval(), nullable=True),
        sa.Column("new_start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("new_end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("new_duration", sa.Interval(), nullable=False),
        sa.Column("reason", sa.String(length=1000), nullable=True),
        sa.ForeignKeyConstraint(["session_id"], ["work_sessions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["changed_by"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_time_entries_log_session_id", "time_entries_log", ["session_id"])

    op.create_table(
        "company_compliance_settings",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("max_week_hours", sa.Float(), nullable=True),
        sa.Column("max_month_hours", sa.Float(), nullable=True),
        sa.Column("min_hours_between_shifts", sa.Float(), nullable=True),
        sa.Column("allowed_checkin_start", sa.Time(), nullable=True),
        sa.Column("allowed_checkin_end", sa.Time(), nullable=True),
        sa.Column("allow_outside_schedule", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created_at(),
        _created_at("updated_at"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("company_id", name="uq_company_compliance_settings_company_id"),
    )

    op.create_table(
        "company_day_rules",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("allow_sunday_clock", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "holiday_clock_policy",
            holiday_clock_policy,
            nullable=False,
            server_default=sa.text("'require_reason'"),
        ),
        sa.Column("special_day_policy", special_day_policy, nullable=False, server_default=sa.text("'allow'")),
        _created_at("updated_at"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("company_id", name="uq_company_day_rules_company_id"),
    )

    op.create_table(
        "worker_day_rules",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("allow_sunday_clock", sa.Boolean(), nullable=True),
        sa.Column("holiday_clock_policy", holiday_clock_policy, nullable=True),
        sa.Column("special_day_policy", special_day_policy, nullable=True),
        _created_at("updated_at"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("company_id", "user_id", name="uq_worker_day_rules_company_user"),
    )

    op.create_table(
        "incidents",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("incident_type", incident_type, nullable=False),
        sa.Column("incident_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", incident_status, nullable=False, server_default=sa.text("'pending'")),
        sa.Column("resolved_by", sa.Uuid(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["resolved_by"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_incidents_user_id", "incidents", ["user_id"])
    op.create_index("ix_incidents_company_id", "incidents", ["company_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", notification_type, nullable=False, server_default=sa.text("'info'")),
        sa.Column("entity_type", sa.String(length=64), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_notifications_user_company", "notifications", ["user_id", "company_id"])

    op.create_table(
        "invites",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("role", membership_role, nullable=False),
        sa.Column("status", invite_status, nullable=False, server_default=sa.text("'pending'")),
        sa.Column("token", sa.String(length=255), nullable=False),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        _created_at(),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_invites_company_id", "invites", ["company_id"])
    op.create_index("ix_invites_token", "invites", ["token"], unique=True)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _created_at("ts_utc"),
        sa.Column("company_id", sa.Uuid(), nullable=True),
        sa.Column("actor_user_id", sa.String(length=255), nullable=False),
        sa.Column("acting_as_role", sa.String(length=32), nullable=True),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column(
            "diff",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("ip", sa.String(length=128), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("reason", sa.String(length=1000), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"])
    op.create_index("ix_audit_logs_company_id", "audit_logs", ["company_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_company_id", table_name="audit_logs")
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_invites_token", table_name="invites")
    op.drop_index("ix_invites_company_id", table_name="invites")
    op.drop_table("invites")
    op.drop_index("ix_notifications_user_company", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_incidents_company_id", table_name="incidents")
    op.drop_index("ix_incidents_user_id", table_name="incidents")
    op.drop_table("incidents")
    op.drop_table("worker_day_rules")
    op.drop_table("company_day_rules")
    op.drop_table("company_compliance_settings")
    op.drop_index("ix_time_entries_log_session_id", table_name="time_entries_log")
    op.drop_table("time_entries_log")
    op.drop_index("ix_time_events_user_company_time", table_name="time_events")
    op.drop_table("time_events")
    op.drop_index("ix_work_sessions_company_clock_in", table_name="work_sessions")
    op.drop_index("uq_work_sessions_one_active", table_name="work_sessions")
    op.drop_table("work_sessions")
    op.drop_index("ix_memberships_company_id", table_name="memberships")
    op.drop_index("ix_memberships_user_id", table_name="memberships")
    op.drop_table("memberships")
    op.drop_table("companies")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    for pg_enum in reversed(ALL_ENUMS):
        pg_enum.drop(bind, checkfirst=True)
