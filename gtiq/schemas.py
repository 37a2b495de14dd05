from datetime import date, datetime, time, timedelta
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

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
from gtiq.services.clock import ClockAction

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class LoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=256)


class TokenResponse(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    expires_in: int


class MembershipRead(BaseModel):
    company_id: UUID
    company_name: str | None = None
    company_status: CompanyStatus | None = None
    role: Role


class MeResponse(BaseModel):
    id: UUID
    email: str
    full_name: str | None = None
    is_superadmin: bool
    memberships: list[MembershipRead]


class ClockRequest(BaseModel):
    action: ClockAction
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    photo_url: str | None = Field(default=None, max_length=2048)
    device_id: str | None = Field(default=None, max_length=255)
    source: ClockSource = ClockSource.WEB
    notes: str | None = Field(default=None, max_length=1000)
    user_id: UUID | None = None
    company_id: UUID | None = None

    @model_validator(mode="after")
    def _validate_coordinates(self) -> "ClockRequest":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be sent together.")
        return self


class KioskClockRequest(ClockRequest):
    user_id: UUID
    company_id: UUID
    source: ClockSource = ClockSource.KIOSK


class ClockResponse(BaseModel):
    success: bool = True
    status: Literal["working", "paused", "off"]
    event_type: TimeEventType
    timestamp: datetime
    session_id: UUID
    distance_m: float | None = None
    is_within_geofence: bool | None = None


class WorkSessionRead(BaseModel):
    id: UUID
    user_id: UUID
    company_id: UUID
    clock_in_time: datetime
    clock_out_time: datetime | None = None
    is_active: bool
    is_on_break: bool
    status: SessionStatus
    review_status: ReviewStatus | None = None
    total_pause_duration: timedelta
    total_work_duration: timedelta | None = None
    is_corrected: bool
    corrected_by: UUID | None = None
    corrected_at: datetime | None = None
    correction_reason: str | None = None

    model_config = ConfigDict(from_attributes=True)


class ClockStatusResponse(BaseModel):
    status: Literal["working", "paused", "off"]
    company_id: UUID
    session: WorkSessionRead | None = None


class ReviewSessionRead(WorkSessionRead):
    user_full_name: str | None = None
    user_email: str | None = None


class SessionCorrectionRequest(BaseModel):
    clock_in_time: datetime
    clock_out_time: datetime
    correction_reason: str | None = Field(default=None, max_length=1000)


class AdjustWorkSessionRequest(BaseModel):
    session_id: UUID
    clock_out_time: datetime
    clock_in_time: datetime | None = None
    correction_reason: str | None = Field(default=None, max_length=1000)


class SessionCorrectionResponse(BaseModel):
    success: bool = True
    session_id: UUID
    session: WorkSessionRead


class TimeEntryLogRead(BaseModel):
    id: UUID
    session_id: UUID
    changed_by: UUID | None = None
    changed_at: datetime
    old_start_time: datetime | None = None
    old_end_time: datetime | None = None
    old_duration: timedelta | None = None
    new_start_time: datetime
    new_end_time: datetime
    new_duration: timedelta
    reason: str | None = None

    model_config = ConfigDict(from_attributes=True)


class SessionMonitorResponse(BaseModel):
    auto_closed: list[UUID]
    exceeded_shift: list[UUID]
    exceeded_period: list[UUID]


class ComplianceSettingsUpsertRequest(BaseModel):
    max_week_hours: float | None = Field(default=None, ge=0, le=168)
    max_month_hours: float | None = Field(default=None, ge=0, le=744)
    min_hours_between_shifts: float | None = Field(default=None, ge=0, le=48)
    allowed_checkin_start: time | None = None
    allowed_checkin_end: time | None = None
    allow_outside_schedule: bool = False

    @model_validator(mode="after")
    def _validate_window(self) -> "ComplianceSettingsUpsertRequest":
        if (
            self.allowed_checkin_start is not None
            and self.allowed_checkin_end is not None
            and self.allowed_checkin_end <= self.allowed_checkin_start
        ):
            raise ValueError("allowed_checkin_end must be after allowed_checkin_start.")
        return self


class ComplianceSettingsRead(BaseModel):
    company_id: UUID
    max_week_hours: float | None = None
    max_month_hours: float | None = None
    min_hours_between_shifts: float | None = None
    allowed_checkin_start: time | None = None
    allowed_checkin_end: time | None = None
    allow_outside_schedule: bool = False
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class CompanyDayRulesUpsertRequest(BaseModel):
    allow_sunday_clock: bool = False
    holiday_clock_policy: HolidayPolicy = HolidayPolicy.REQUIRE_REASON
    special_day_policy: SpecialDayPolicy = SpecialDayPolicy.ALLOW


class CompanyDayRulesRead(BaseModel):
    company_id: UUID
    allow_sunday_clock: bool
    holiday_clock_policy: HolidayPolicy
    special_day_policy: SpecialDayPolicy

    model_config = ConfigDict(from_attributes=True)


class WorkerDayRulesUpsertRequest(BaseModel):
    allow_sunday_clock: bool | None = None
    holiday_clock_policy: HolidayPolicy | None = None
    special_day_policy: SpecialDayPolicy | None = None


class EffectiveDayRulesRead(BaseModel):
    allow_sunday_clock: bool
    holiday_clock_policy: HolidayPolicy
    special_day_policy: SpecialDayPolicy

    model_config = ConfigDict(from_attributes=True)


class WorkerDayRulesRead(BaseModel):
    company_id: UUID
    user_id: UUID
    allow_sunday_clock: bool | None = None
    holiday_clock_policy: HolidayPolicy | None = None
    special_day_policy: SpecialDayPolicy | None = None
    effective: EffectiveDayRulesRead


class PersonRead(BaseModel):
    user_id: UUID
    email: str
    full_name: str | None = None
    role: Role
    is_active: bool
    joined_at: datetime


class ListPeopleRequest(BaseModel):
    role: Role | None = None
    active: bool | None = None


class UpdatePersonRequest(BaseModel):
    full_name: str | None = Field(default=None, min_length=1, max_length=100)
    role: Role | None = None
    is_active: bool | None = None

    @model_validator(mode="after")
    def _validate_not_empty(self) -> "UpdatePersonRequest":
        if self.full_name is not None:
            self.full_name = self.full_name.strip()
            if not self.full_name:
                raise ValueError("full_name must not be blank.")
        if self.full_name is None and self.role is None and self.is_active is None:
            raise ValueError("At least one of full_name, role or is_active is required.")
        return self


class PersonMutationResponse(BaseModel):
    success: bool = True
    person: PersonRead


class DeletePersonResponse(BaseModel):
    success: bool = True
    user_id: UUID


class InviteRead(BaseModel):
    id: UUID
    company_id: UUID
    email: str
    role: Role
    status: InviteStatus
    created_at: datetime
    expires_at: datetime
    accepted_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ListInvitesRequest(BaseModel):
    status: InviteStatus | None = None


class InviteCreateRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320, pattern=EMAIL_PATTERN)
    role: Role = Role.WORKER


class InviteCreateResponse(InviteRead):
    token: str


class AcceptInviteRequest(BaseModel):
    token: str = Field(min_length=16, max_length=255)
    full_name: str | None = Field(default=None, min_length=1, max_length=100)
    password: str | None = Field(default=None, min_length=8, max_length=256)


class AcceptInviteResponse(BaseModel):
    success: bool = True
    user_id: UUID
    company_id: UUID
    role: Role


class UserRead(BaseModel):
    id: UUID
    email: str
    full_name: str | None = None
    is_active: bool
    is_superadmin: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CreateSuperadminRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=8, max_length=256)
    full_name: str | None = Field(default=None, min_length=1, max_length=100)


class CreateCompanyUserRequest(BaseModel):
    company_id: UUID
    email: str = Field(min_length=3, max_length=320, pattern=EMAIL_PATTERN)
    full_name: str | None = Field(default=None, min_length=1, max_length=100)
    password: str | None = Field(default=None, min_length=8, max_length=256)
    role: Role = Role.WORKER


class CreateCompanyUserResponse(BaseModel):
    success: bool = True
    user: UserRead
    company_id: UUID
    role: Role


class CompanyCreateRequest(BaseModel):
    name: str = Field(min_length=2, max_length=255)
    hq_lat: float | None = Field(default=None, ge=-90, le=90)
    hq_lng: float | None = Field(default=None, ge=-180, le=180)
    geofence_radius_m: int | None = Field(default=None, ge=10, le=10000)
    max_shift_hours: float | None = Field(default=None, gt=0, le=24)
    kiosk_pin: str | None = Field(default=None, pattern=r"^\d{4,8}$")
    owner_user_id: UUID | None = None

    @model_validator(mode="after")
    def _validate_hq(self) -> "CompanyCreateRequest":
        if (self.hq_lat is None) != (self.hq_lng is None):
            raise ValueError("hq_lat and hq_lng must be sent together.")
        return self


class CompanyRead(BaseModel):
    id: UUID
    name: str
    status: CompanyStatus
    hq_lat: float | None = None
    hq_lng: float | None = None
    geofence_radius_m: int | None = None
    max_shift_hours: float | None = None
    owner_user_id: UUID | None = None
    has_kiosk_pin: bool = False
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SetCompanyStatusRequest(BaseModel):
    company_id: UUID
    status: CompanyStatus
    reason: str | None = Field(default=None, max_length=1000)


class AuditLogRead(BaseModel):
    id: int
    ts_utc: datetime
    company_id: UUID | None = None
    actor_user_id: str
    acting_as_role: str | None = None
    action: str
    entity_type: str | None = None
    entity_id: str | None = None
    diff: dict[str, Any]
    ip: str | None = None
    user_agent: str | None = None
    reason: str | None = None
    success: bool

    model_config = ConfigDict(from_attributes=True)


class ImpersonateRequest(BaseModel):
    company_id: UUID
    as_role: Literal["admin", "manager", "worker"] | None = None


class ImpersonationDescriptor(BaseModel):
    superadmin_id: UUID
    company_id: UUID
    company_name: str
    as_role: Role | None = None
    started_at: datetime


class ImpersonateResponse(ImpersonationDescriptor):
    token: str
    expires_in: int


class StopImpersonateRequest(BaseModel):
    company_id: UUID | None = None


class StopImpersonateResponse(BaseModel):
    success: bool = True


class IncidentRead(BaseModel):
    id: UUID
    user_id: UUID
    company_id: UUID
    incident_type: IncidentType
    incident_date: date
    description: str | None = None
    status: IncidentStatus
    resolved_by: UUID | None = None
    resolved_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class IncidentCreateRequest(BaseModel):
    user_id: UUID
    incident_type: IncidentType
    incident_date: date
    description: str | None = Field(default=None, max_length=2000)


class IncidentUpdateRequest(BaseModel):
    status: IncidentStatus


class NotificationRead(BaseModel):
    id: UUID
    company_id: UUID
    title: str
    message: str
    type: NotificationType
    entity_type: str | None = None
    entity_id: str | None = None
    read_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReactivatePersonRequest(BaseModel):
    send_invite: bool = False


class ReactivatePersonResponse(BaseModel):
    success: bool = True
    already_active: bool
    person: PersonRead
    invite: InviteCreateResponse | None = None


class ResendInviteRequest(BaseModel):
    invite_id: UUID


class CompanyOverviewRead(CompanyRead):
    users_count: int = 0
    last_event_at: datetime | None = None
    owner_email: str | None = None


class CompanyStatsRead(BaseModel):
    users_count: int
    workers_count: int
    events_this_week: int
    open_sessions: int


class CompanyDetailRead(CompanyRead):
    owner: UserRead | None = None
    stats: CompanyStatsRead
    recent_logs: list[AuditLogRead]


class TransferOwnershipRequest(BaseModel):
    company_id: UUID
    new_owner_user_id: UUID
    reason: str | None = Field(default=None, max_length=1000)


class TransferOwnershipResponse(BaseModel):
    success: bool = True
    company: CompanyRead
    previous_owner_user_id: UUID | None = None


class AbsenceRead(BaseModel):
    id: UUID
    company_id: UUID
    user_id: UUID
    absence_type: AbsenceType
    start_date: date
    end_date: date
    reason: str | None = None
    status: RequestStatus
    created_by: UUID
    approved_by: UUID | None = None
    approved_at: datetime | None = None
    created_at: datetime
    user_full_name: str | None = None
    user_email: str | None = None

    model_config = ConfigDict(from_attributes=True)


class AbsenceCreateRequest(BaseModel):
    absence_type: AbsenceType = AbsenceType.VACATION
    start_date: date
    end_date: date
    reason: str | None = Field(default=None, max_length=1000)
    user_id: UUID | None = None


class VacationAssignmentRequest(BaseModel):
    start_date: date
    end_date: date
    user_ids: list[UUID] | None = Field(default=None, min_length=1)
    reason: str | None = Field(default=None, max_length=1000)


class RequestDecision(BaseModel):
    status: Literal["approved", "rejected"]
    reason: str | None = Field(default=None, max_length=1000)


class CorrectionRequestCreate(BaseModel):
    event_type: TimeEventType
    event_time: datetime
    reason: str = Field(min_length=1, max_length=1000)
    session_id: UUID | None = None

    @model_validator(mode="after")
    def _validate_reason(self) -> "CorrectionRequestCreate":
        self.reason = self.reason.strip()
        if not self.reason:
            raise ValueError("reason must not be blank.")
        return self


class CorrectionRequestRead(BaseModel):
    id: UUID
    company_id: UUID
    user_id: UUID
    submitted_by: UUID
    manager_id: UUID | None = None
    payload: dict[str, Any]
    reason: str | None = None
    status: RequestStatus
    created_at: datetime
    updated_at: datetime
    user_full_name: str | None = None
    user_email: str | None = None

    model_config = ConfigDict(from_attributes=True)


class CorrectionDecisionResponse(BaseModel):
    request: CorrectionRequestRead
    event_id: UUID | None = None
    session: WorkSessionRead | None = None
