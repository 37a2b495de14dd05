from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.orm import Session

from gtiq.db import SessionLocal
from gtiq.models import (
    Company,
    ComplianceSettings,
    NotificationType,
    ReviewStatus,
    SessionStatus,
    WorkSession,
)
from gtiq.services.clock import _close_break, _normalize_ts, compute_work_duration
from gtiq.services.incidents import add_notifications, manager_user_ids
from gtiq.settings import get_settings

logger = logging.getLogger("gtiq.session_monitor")


@dataclass(frozen=True, slots=True)
class SessionMonitorReport:
    auto_closed: list[UUID]
    exceeded_shift: list[UUID]
    exceeded_period: list[UUID]

    def to_dict(self) -> dict[str, Any]:
        return {
            "auto_closed": [str(item) for item in self.auto_closed],
            "exceeded_shift": [str(item) for item in self.exceeded_shift],
            "exceeded_period": [str(item) for item in self.exceeded_period],
        }


@lru_cache
def _attendance_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or "Europe/Madrid"
    try:
        return ZoneInfo(raw_name)
    except ZoneInfoNotFoundError:
        logger.warning("attendance_timezone_unknown", extra={"timezone": raw_name})
        return ZoneInfo("UTC")


def _week_bounds_utc(now: datetime) -> tuple[datetime, datetime]:
    tz = _attendance_timezone()
    local_day = now.astimezone(tz).date()
    week_start = local_day - timedelta(days=local_day.isoweekday() - 1)
    start = datetime.combine(week_start, time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), (start + timedelta(days=7)).astimezone(timezone.utc)


def _month_bounds_utc(now: datetime) -> tuple[datetime, datetime]:
    tz = _attendance_timezone()
    local_day = now.astimezone(tz).date()
    month_start = date(local_day.year, local_day.month, 1)
    if local_day.month == 12:
        next_month = date(local_day.year + 1, 1, 1)
    else:
        next_month = date(local_day.year, local_day.month + 1, 1)
    start = datetime.combine(month_start, time.min, tzinfo=tz)
    end = datetime.combine(next_month, time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def autoclose_stale_sessions(
    db: Session,
    *,
    now: datetime | None = None,
    max_open_hours: int | None = None,
) -> list[WorkSession]:
    now = _normalize_ts(now)
    hours = max_open_hours if max_open_hours is not None else get_settings().autoclose_after_hours
    threshold = now - timedelta(hours=hours)

    stale = list(
        db.scalars(
            select(WorkSession).where(
                WorkSession.is_active.is_(True),
                WorkSession.clock_in_time < threshold,
            )
        ).all()
    )
    if not stale:
        return []

    for session in stale:
        if session.is_on_break:
            _close_break(session, now)
        session.clock_out_time = now
        session.is_active = False
        session.status = SessionStatus.AUTO_CLOSED
        session.review_status = ReviewStatus.PENDING_REVIEW
        session.total_work_duration = compute_work_duration(
            session.clock_in_time,
            now,
            session.total_pause_duration,
        )
        add_notifications(
            db,
            company_id=session.company_id,
            user_ids=[session.user_id, *manager_user_ids(db, session.company_id)],
            title="Session closed automatically",
            message=f"A session open since {_normalize_ts(session.clock_in_time).isoformat()} was closed and needs review.",
            notification_type=NotificationType.WARNING,
            entity_type="work_session",
            entity_id=str(session.id),
        )

    db.commit()
    for session in stale:
        logger.info(
            "session_auto_closed",
            extra={"session_id": session.id, "company_id": session.company_id, "user_id": session.user_id},
        )
    return stale


def _flag_open_sessions_over_shift(db: Session, now: datetime) -> list[WorkSession]:
    default_hours = get_settings().default_max_shift_hours
    companies: dict[UUID, Company | None] = {}
    flagged: list[WorkSession] = []

    open_sessions = db.scalars(
        select(WorkSession).where(
            WorkSession.is_active.is_(True),
            WorkSession.review_status.is_(None) | (WorkSession.review_status == ReviewStatus.NORMAL),
        )
    ).all()
    for session in open_sessions:
        if session.company_id not in companies:
            companies[session.company_id] = db.get(Company, session.company_id)
        company = companies[session.company_id]
        limit_hours = company.max_shift_hours if company is not None and company.max_shift_hours else default_hours
        if now - _normalize_ts(session.clock_in_time) > timedelta(hours=limit_hours):
            session.review_status = ReviewStatus.EXCEEDED_LIMIT
            flagged.append(session)
    return flagged


def _flag_closed_sessions_over_period(db: Session, now: datetime) -> list[WorkSession]:
    flagged: dict[UUID, WorkSession] = {}
    settings_rows = db.scalars(
        select(ComplianceSettings).where(
            ComplianceSettings.max_week_hours.is_not(None) | ComplianceSettings.max_month_hours.is_not(None)
        )
    ).all()

    for rules in settings_rows:
        periods: list[tuple[tuple[datetime, datetime], float]] = []
        if rules.max_week_hours is not None:
            periods.append((_week_bounds_utc(now), rules.max_week_hours))
        if rules.max_month_hours is not None:
            periods.append((_month_bounds_utc(now), rules.max_month_hours))

        for (start, end), limit_hours in periods:
            sessions = db.scalars(
                select(WorkSession).where(
                    WorkSession.company_id == rules.company_id,
                    WorkSession.is_active.is_(False),
                    WorkSession.clock_in_time >= start,
                    WorkSession.clock_in_time < end,
                )
            ).all()
            totals: dict[UUID, timedelta] = defaultdict(timedelta)
            by_user: dict[UUID, list[WorkSession]] = defaultdict(list)
            for session in sessions:
                totals[session.user_id] += session.total_work_duration or timedelta(0)
                by_user[session.user_id].append(session)

            for user_id, total in totals.items():
                if total <= timedelta(hours=limit_hours):
                    continue
                for session in by_user[user_id]:
                    if session.review_status is None:
                        session.review_status = ReviewStatus.EXCEEDED_LIMIT
                        flagged[session.id] = session
    return list(flagged.values())


def flag_sessions_over_limit(db: Session, *, now: datetime | None = None) -> tuple[list[WorkSession], list[WorkSession]]:
    now = _normalize_ts(now)
    over_shift = _flag_open_sessions_over_shift(db, now)
    over_period = _flag_closed_sessions_over_period(db, now)
    if over_shift or over_period:
        db.commit()
    for session in [*over_shift, *over_period]:
        logger.info(
            "session_flagged_exceeded_limit",
            extra={"session_id": session.id, "company_id": session.company_id, "user_id": session.user_id},
        )
    return over_shift, over_period


def sweep_sessions(db: Session, *, now: datetime | None = None) -> SessionMonitorReport:
    now = _normalize_ts(now)
    auto_closed = autoclose_stale_sessions(db, now=now)
    over_shift, over_period = flag_sessions_over_limit(db, now=now)
    return SessionMonitorReport(
        auto_closed=[session.id for session in auto_closed],
        exceeded_shift=[session.id for session in over_shift],
        exceeded_period=[session.id for session in over_period],
    )


def run_session_monitor(now: datetime | None = None) -> SessionMonitorReport:
    with SessionLocal() as db:
        return sweep_sessions(db, now=now)
