from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from gtiq.errors import ApiError, conflict
from gtiq.models import (
    ClockSource,
    Company,
    CompanyStatus,
    IncidentType,
    NotificationType,
    SessionStatus,
    TimeEvent,
    TimeEventType,
    User,
    WorkSession,
)
from gtiq.services.incidents import notify_managers, report_incident
from gtiq.services.location import GeofenceResult, evaluate_geofence

logger = logging.getLogger("gtiq.clock")

STATE_WORKING = "working"
STATE_PAUSED = "paused"
STATE_OFF = "off"


class ClockAction(str, enum.Enum):
    IN = "in"
    OUT = "out"
    BREAK_START = "break_start"
    BREAK_END = "break_end"


@dataclass(frozen=True, slots=True)
class ClockEvidence:
    source: ClockSource = ClockSource.WEB
    latitude: float | None = None
    longitude: float | None = None
    photo_url: str | None = None
    device_id: str | None = None
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class ClockOutcome:
    state: str
    event: TimeEvent
    session: WorkSession
    geofence: GeofenceResult


def _normalize_ts(value: datetime | None) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def compute_work_duration(clock_in: datetime, clock_out: datetime, pause: timedelta | None) -> timedelta:
    worked = _normalize_ts(clock_out) - _normalize_ts(clock_in) - (pause or timedelta(0))
    return max(worked, timedelta(0))


def session_state(session: WorkSession | None) -> str:
    if session is None or not session.is_active:
        return STATE_OFF
    if session.is_on_break:
        return STATE_PAUSED
    return STATE_WORKING


def get_active_session(db: Session, *, user_id: UUID, company_id: UUID) -> WorkSession | None:
    return db.scalar(
        select(WorkSession)
        .where(
            WorkSession.user_id == user_id,
            WorkSession.company_id == company_id,
            WorkSession.is_active.is_(True),
        )
        .order_by(WorkSession.clock_in_time.desc())
    )


def _close_break(session: WorkSession, now: datetime) -> None:
    started = _normalize_ts(session.break_started_at) if session.break_started_at else now
    span = max(now - started, timedelta(0))
    session.total_pause_duration = (session.total_pause_duration or timedelta(0)) + span
    session.is_on_break = False
    session.break_started_at = None


def _reject(
    db: Session,
    *,
    user: User,
    company: Company,
    incident_type: IncidentType,
    description: str,
    now: datetime,
    error: ApiError,
) -> ApiError:
    report_incident(
        db,
        company_id=company.id,
        user_id=user.id,
        incident_type=incident_type,
        description=description,
        occurred_at=now,
    )
    logger.info(
        "clock_action_rejected",
        extra={"user_id": user.id, "company_id": company.id, "code": error.code},
    )
    return error


def _apply_transition(
    db: Session,
    *,
    user: User,
    company: Company,
    action: ClockAction,
    session: WorkSession | None,
    now: datetime,
) -> tuple[WorkSession, list[TimeEventType]]:
    if action == ClockAction.IN:
        if session is not None:
            raise _reject(
                db,
                user=user,
                company=company,
                incident_type=IncidentType.MISSING_CHECKOUT,
                description="Clock-in attempted while a session is still open.",
                now=now,
                error=conflict("ALREADY_ACTIVE_SESSION", "An active session already exists."),
            )
        session = WorkSession(
            id=uuid4(),
            user_id=user.id,
            company_id=company.id,
            clock_in_time=now,
            is_active=True,
            is_on_break=False,
            status=SessionStatus.OPEN,
            total_pause_duration=timedelta(0),
            is_corrected=False,
        )
        db.add(session)
        return session, [TimeEventType.CLOCK_IN]

    if session is None:
        raise _reject(
            db,
            user=user,
            company=company,
            incident_type=IncidentType.MISSING_CHECKIN,
            description=f"Action '{action.value}' attempted without an open session.",
            now=now,
            error=conflict("NO_ACTIVE_SESSION", "There is no active session."),
        )

    if action == ClockAction.BREAK_START:
        if session.is_on_break:
            raise conflict("ALREADY_ON_BREAK", "The session is already paused.")
        session.is_on_break = True
        session.break_started_at = now
        return session, [TimeEventType.PAUSE_START]

    if action == ClockAction.BREAK_END:
        if not session.is_on_break:
            raise conflict("NOT_ON_BREAK", "The session is not paused.")
        _close_break(session, now)
        return session, [TimeEventType.PAUSE_END]

    event_types: list[TimeEventType] = []
    if session.is_on_break:
        _close_break(session, now)
        event_types.append(TimeEventType.PAUSE_END)
    session.clock_out_time = now
    session.is_active = False
    session.status = SessionStatus.CLOSED
    session.total_work_duration = compute_work_duration(
        session.clock_in_time,
        now,
        session.total_pause_duration,
    )
    event_types.append(TimeEventType.CLOCK_OUT)
    return session, event_types


def perform_clock_action(
    db: Session,
    *,
    user: User,
    company: Company,
    action: ClockAction,
    evidence: ClockEvidence | None = None,
    now: datetime | None = None,
) -> ClockOutcome:
    evidence = evidence or ClockEvidence()
    now = _normalize_ts(now)

    if not user.is_active:
        raise ApiError(status_code=403, code="USER_INACTIVE", message="User account is inactive.")
    if company.status == CompanyStatus.SUSPENDED:
        raise _reject(
            db,
            user=user,
            company=company,
            incident_type=IncidentType.OTHER,
            description="Clock attempt rejected because the company is suspended.",
            now=now,
            error=ApiError(status_code=403, code="COMPANY_SUSPENDED", message="Company is suspended."),
        )

    session = get_active_session(db, user_id=user.id, company_id=company.id)
    session, event_types = _apply_transition(
        db,
        user=user,
        company=company,
        action=action,
        session=session,
        now=now,
    )

    geofence = evaluate_geofence(company, evidence.latitude, evidence.longitude)
    events: list[TimeEvent] = []
    for event_type in event_types:
        event = TimeEvent(
            id=uuid4(),
            user_id=user.id,
            company_id=company.id,
            session_id=session.id,
            event_type=event_type,
            source=evidence.source,
            device_id=evidence.device_id,
            latitude=evidence.latitude,
            longitude=evidence.longitude,
            distance_m=geofence.distance_m,
            is_within_geofence=geofence.is_within_geofence,
            photo_url=evidence.photo_url,
            notes=evidence.notes,
            event_time=now,
        )
        db.add(event)
        events.append(event)

    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if action == ClockAction.IN:
            raise _reject(
                db,
                user=user,
                company=company,
                incident_type=IncidentType.MISSING_CHECKOUT,
                description="Concurrent clock-in rejected by the one-active-session rule.",
                now=now,
                error=conflict("ALREADY_ACTIVE_SESSION", "An active session already exists."),
            ) from exc
        logger.exception("clock_write_failed", extra={"user_id": user.id, "company_id": company.id})
        raise ApiError(status_code=500, code="CLOCK_WRITE_FAILED", message="Clock action could not be saved.") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("clock_write_failed", extra={"user_id": user.id, "company_id": company.id})
        raise _reject(
            db,
            user=user,
            company=company,
            incident_type=IncidentType.OTHER,
            description=f"Clock action '{action.value}' could not be saved.",
            now=now,
            error=ApiError(status_code=500, code="CLOCK_WRITE_FAILED", message="Clock action could not be saved."),
        ) from exc

    last_event = events[-1]
    if geofence.is_within_geofence is False:
        worker_label = user.full_name or user.email
        notify_managers(
            db,
            company_id=company.id,
            title="Clock event outside geofence",
            message=f"{worker_label} registered {last_event.event_type.value} {geofence.distance_m:.0f} m from HQ.",
            notification_type=NotificationType.WARNING,
            entity_type="time_event",
            entity_id=str(last_event.id),
        )

    logger.info(
        "clock_action_completed",
        extra={
            "user_id": user.id,
            "company_id": company.id,
            "session_id": session.id,
            "action": action,
            "event_type": last_event.event_type,
            "source": evidence.source,
            "is_within_geofence": geofence.is_within_geofence,
        },
    )
    return ClockOutcome(state=session_state(session), event=last_event, session=session, geofence=geofence)
