from __future__ import annotations

import enum
from datetime import date, datetime, time, timedelta, timezone
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Interval,
    String,
    Text,
    Time,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gtiq.db import Base


class Role(str, enum.Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MANAGER = "manager"
    WORKER = "worker"


class CompanyStatus(str, enum.Enum):
    ACTIVE = "active"
    GRACE = "grace"
    SUSPENDED = "suspended"


class SessionStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"
    AUTO_CLOSED = "auto_closed"


class ReviewStatus(str, enum.Enum):
    NORMAL = "normal"
    EXCEEDED_LIMIT = "exceeded_limit"
    PENDING_REVIEW = "pending_review"
    RESOLVED = "resolved"


class TimeEventType(str, enum.Enum):
    CLOCK_IN = "clock_in"
    CLOCK_OUT = "clock_out"
    PAUSE_START = "pause_start"
    PAUSE_END = "pause_end"


class ClockSource(str, enum.Enum):
    WEB = "web"
    MOBILE = "mobile"
    KIOSK = "kiosk"


class IncidentType(str, enum.Enum):
    LATE_ARRIVAL = "late_arrival"
    EARLY_DEPARTURE = "early_departure"
    MISSING_CHECKOUT = "missing_checkout"
    MISSING_CHECKIN = "missing_checkin"
    OTHER = "other"


class IncidentStatus(str, enum.Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class NotificationType(str, enum.Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class InviteStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REVOKED = "revoked"
    EXPIRED = "expired"


class HolidayPolicy(str, enum.Enum):
    ALLOW = "allow"
    REQUIRE_REASON = "require_reason"
    BLOCK = "block"


class SpecialDayPolicy(str, enum.Enum):
    ALLOW = "allow"
    RESTRICT = "restrict"


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AbsenceType(str, enum.Enum):
    VACATION = "vacation"
    SICK_LEAVE = "sick_leave"
    PERSONAL = "personal"
    OTHER = "other"


def _enum_values(members: type[enum.Enum]) -> list[str]:
    return [member.value for member in members]


def _pg_enum(enum_cls: type[enum.Enum], name: str) -> Enum:
    # Labels are stored lowercase, matching the values clients send.
    return Enum(enum_cls, name=name, values_callable=_enum_values)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True, index=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    is_superadmin: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    memberships: Mapped[list[Membership]] = relationship(back_populates="user")


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[CompanyStatus] = mapped_column(
        _pg_enum(CompanyStatus, "company_status"),
        nullable=False,
        default=CompanyStatus.ACTIVE,
        server_default=text("'active'"),
    )
    hq_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    hq_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    geofence_radius_m: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_shift_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    kiosk_pin_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    owner_user_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    memberships: Mapped[list[Membership]] = relationship(back_populates="company")


class Membership(Base):
    __tablename__ = "memberships"
    __table_args__ = (
        UniqueConstraint("user_id", "company_id", name="uq_memberships_user_company"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[Role] = mapped_column(_pg_enum(Role, "membership_role"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    user: Mapped[User] = relationship(back_populates="memberships")
    company: Mapped[Company] = relationship(back_populates="memberships")


class WorkSession(Base):
    __tablename__ = "work_sessions"
    __table_args__ = (
        Index(
            "uq_work_sessions_one_active",
            "user_id",
            "company_id",
            unique=True,
            postgresql_where=text("is_active"),
        ),
        Index("ix_work_sessions_company_clock_in", "company_id", "clock_in_time"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    company_id: Mapped[UUID] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    clock_in_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    clock_out_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    is_on_break: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    break_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[SessionStatus] = mapped_column(
        _pg_enum(SessionStatus, "work_session_status"),
        nullable=False,
        default=SessionStatus.OPEN,
        server_default=text("'open'"),
    )
    review_status: Mapped[ReviewStatus | None] = mapped_column(
        _pg_enum(ReviewStatus, "work_session_review_status"),
        nullable=True,
    )
    total_pause_duration: Mapped[timedelta] = mapped_column(
        Interval,
        nullable=False,
        default=timedelta(0),
        server_default=text("'0 seconds'::interval"),
    )
    total_work_duration: Mapped[timedelta | None] = mapped_column(Interval, nullable=True)
    is_corrected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    corrected_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    corrected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    correction_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    user: Mapped[User] = relationship(foreign_keys=[user_id])


class TimeEvent(Base):
    __tablename__ = "time_events"
    __table_args__ = (
        Index("ix_time_events_user_company_time", "user_id", "company_id", "event_time"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    company_id: Mapped[UUID] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    session_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("work_sessions.id", ondelete="SET NULL"),
        nullable=True,
    )
    event_type: Mapped[TimeEventType] = mapped_column(_pg_enum(TimeEventType, "time_event_type"), nullable=False)
    source: Mapped[ClockSource] = mapped_column(
        _pg_enum(ClockSource, "clock_source"),
        nullable=False,
        default=ClockSource.WEB,
        server_default=text("'web'"),
    )
    device_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    distance_m: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_within_geofence: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    photo_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    event_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class TimeEntryLog(Base):
    __tablename__ = "time_entries_log"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    session_id: Mapped[UUID] = mapped_column(
        ForeignKey("work_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    changed_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    old_start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    old_end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    old_duration: Mapped[timedelta | None] = mapped_column(Interval, nullable=True)
    new_start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    new_end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    new_duration: Mapped[timedelta] = mapped_column(Interval, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)


class ComplianceSettings(Base):
    __tablename__ = "company_compliance_settings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    max_week_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_month_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    min_hours_between_shifts: Mapped[float | None] = mapped_column(Float, nullable=True)
    allowed_checkin_start: Mapped[time | None] = mapped_column(Time, nullable=True)
    allowed_checkin_end: Mapped[time | None] = mapped_column(Time, nullable=True)
    allow_outside_schedule: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=_utcnow,
    )


class CompanyDayRules(Base):
    __tablename__ = "company_day_rules"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    allow_sunday_clock: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    holiday_clock_policy: Mapped[HolidayPolicy] = mapped_column(
        _pg_enum(HolidayPolicy, "holiday_clock_policy"),
        nullable=False,
        default=HolidayPolicy.REQUIRE_REASON,
        server_default=text("'require_reason'"),
    )
    special_day_policy: Mapped[SpecialDayPolicy] = mapped_column(
        _pg_enum(SpecialDayPolicy, "special_day_policy"),
        nullable=False,
        default=SpecialDayPolicy.ALLOW,
        server_default=text("'allow'"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=_utcnow,
    )


class WorkerDayRules(Base):
    __tablename__ = "worker_day_rules"
    __table_args__ = (
        UniqueConstraint("company_id", "user_id", name="uq_worker_day_rules_company_user"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    allow_sunday_clock: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    holiday_clock_policy: Mapped[HolidayPolicy | None] = mapped_column(
        _pg_enum(HolidayPolicy, "holiday_clock_policy"),
        nullable=True,
    )
    special_day_policy: Mapped[SpecialDayPolicy | None] = mapped_column(
        _pg_enum(SpecialDayPolicy, "special_day_policy"),
        nullable=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=_utcnow,
    )


class Incident(Base):
    __tablename__ = "incidents"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    incident_type: Mapped[IncidentType] = mapped_column(_pg_enum(IncidentType, "incident_type"), nullable=False)
    incident_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[IncidentStatus] = mapped_column(
        _pg_enum(IncidentStatus, "incident_status"),
        nullable=False,
        default=IncidentStatus.PENDING,
        server_default=text("'pending'"),
    )
    resolved_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_company", "user_id", "company_id"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[NotificationType] = mapped_column(
        _pg_enum(NotificationType, "notification_type"),
        nullable=False,
        default=NotificationType.INFO,
        server_default=text("'info'"),
    )
    entity_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class Invite(Base):
    __tablename__ = "invites"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    role: Mapped[Role] = mapped_column(_pg_enum(Role, "membership_role"), nullable=False)
    status: Mapped[InviteStatus] = mapped_column(
        _pg_enum(InviteStatus, "invite_status"),
        nullable=False,
        default=InviteStatus.PENDING,
        server_default=text("'pending'"),
    )
    token: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    created_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    company_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("companies.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    actor_user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    acting_as_role: Mapped[str | None] = mapped_column(String(32), nullable=True)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    diff: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )
    ip: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))


class Absence(Base):
    __tablename__ = "absences"
    __table_args__ = (
        Index("ix_absences_company_dates", "company_id", "start_date", "end_date"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    absence_type: Mapped[AbsenceType] = mapped_column(_pg_enum(AbsenceType, "absence_type"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    status: Mapped[RequestStatus] = mapped_column(
        _pg_enum(RequestStatus, "request_status"),
        nullable=False,
        default=RequestStatus.PENDING,
        server_default=text("'pending'"),
    )
    created_by: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    approved_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=_utcnow,
    )


class CorrectionRequest(Base):
    __tablename__ = "correction_requests"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    submitted_by: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    manager_id: Mapped[UUID | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    # {"event_type", "event_time", "reason", "session_id"?}
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )
    reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    status: Mapped[RequestStatus] = mapped_column(
        _pg_enum(RequestStatus, "request_status"),
        nullable=False,
        default=RequestStatus.PENDING,
        server_default=text("'pending'"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=_utcnow,
    )
