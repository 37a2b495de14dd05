from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from gtiq.models import (
    AbsenceType,
    ClockSource,
    CompanyStatus,
    HolidayPolicy,
    IncidentStatus,
    IncidentType,
    InviteStatus,
    NotificationType,
    RequestStatus,
    ReviewStatus,
    Role,
    SessionStatus,
    SpecialDayPolicy,
    TimeEventType,
)


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "users": {"id", "email", "is_active", "is_superadmin"},
    "companies": {"id", "status", "kiosk_pin_hash"},
    "memberships": {"user_id", "company_id", "role"},
    "work_sessions": {
        "id",
        "is_active",
        "is_on_break",
        "break_started_at",
        "status",
        "review_status",
        "total_pause_duration",
        "total_work_duration",
        "is_corrected",
    },
    "time_events": {"id", "session_id", "event_type", "source", "event_time"},
    "time_entries_log": {"session_id", "old_start_time", "new_start_time", "new_duration"},
    "company_compliance_settings": {"company_id", "max_week_hours", "max_month_hours"},
    "company_day_rules": {"company_id", "holiday_clock_policy"},
    "worker_day_rules": {"company_id", "user_id", "holiday_clock_policy"},
    "incidents": {"id", "status", "resolved_by"},
    "notifications": {"id", "user_id", "read_at"},
    "invites": {"id", "token", "status", "expires_at"},
    "audit_logs": {"id", "action", "diff"},
    "absences": {"id", "user_id", "absence_type", "start_date", "end_date", "status"},
    "correction_requests": {"id", "user_id", "payload", "status", "manager_id"},
    "alembic_version": {"version_num"},
}


def _labels(enum_cls: type[enum.Enum]) -> set[str]:
    return {str(member.value) for member in enum_cls}


REQUIRED_ENUM_VALUES: dict[str, set[str]] = {
    "membership_role": _labels(Role),
    "company_status": _labels(CompanyStatus),
    "work_session_status": _labels(SessionStatus),
    "work_session_review_status": _labels(ReviewStatus),
    "time_event_type": _labels(TimeEventType),
    "clock_source": _labels(ClockSource),
    "incident_type": _labels(IncidentType),
    "incident_status": _labels(IncidentStatus),
    "notification_type": _labels(NotificationType),
    "invite_status": _labels(InviteStatus),
    "holiday_clock_policy": _labels(HolidayPolicy),
    "special_day_policy": _labels(SpecialDayPolicy),
    "request_status": _labels(RequestStatus),
    "absence_type": _labels(AbsenceType),
}


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except SQLAlchemyError as exc:
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue

        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")

    try:
        enums = inspector.get_enums() or []
    except (SQLAlchemyError, NotImplementedError) as exc:
        warnings.append(f"ENUM_INSPECTION_FAILED:{exc.__class__.__name__}")
        enums = []

    enum_values_by_name: dict[str, set[str]] = {}
    for enum_item in enums:
        name = str(enum_item.get("name") or "").strip()
        if not name:
            continue
        labels = enum_item.get("labels")
        if isinstance(labels, list):
            enum_values_by_name[name] = {str(label) for label in labels}

    for enum_name, required_values in REQUIRED_ENUM_VALUES.items():
        if enum_name not in enum_values_by_name:
            warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
            continue
        missing_values = sorted(item for item in required_values if item not in enum_values_by_name[enum_name])
        if missing_values:
            issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing_values)}")

    try:
        with engine.connect() as connection:
            row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
            version = str(row).strip() if row is not None else ""
            if not version:
                issues.append("ALEMBIC_VERSION_EMPTY")
    except SQLAlchemyError as exc:
        issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
