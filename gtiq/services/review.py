from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from gtiq.errors import ApiError
from gtiq.models import ReviewStatus, SessionStatus, TimeEntryLog, User, WorkSession
from gtiq.services.clock import _close_break, _normalize_ts, compute_work_duration

logger = logging.getLogger("gtiq.review")

REVIEWABLE_STATUSES: tuple[ReviewStatus, ...] = (ReviewStatus.EXCEEDED_LIMIT, ReviewStatus.PENDING_REVIEW)


@dataclass(frozen=True, slots=True)
class CorrectionResult:
    session: WorkSession
    log_entry: TimeEntryLog


def review_queue_filter() -> Any:
    return or_(
        WorkSession.review_status.in_(REVIEWABLE_STATUSES),
        WorkSession.review_status.is_(None),
        WorkSession.status == SessionStatus.AUTO_CLOSED,
    )


def list_review_sessions(db: Session, *, company_id: UUID, limit: int = 500) -> list[tuple[WorkSession, User]]:
    rows = db.execute(
        select(WorkSession, User)
        .join(User, User.id == WorkSession.user_id)
        .where(WorkSession.company_id == company_id, review_queue_filter())
        .order_by(WorkSession.clock_in_time.desc())
        .limit(limit)
    ).all()
    return [(row[0], row[1]) for row in rows]


def get_company_session(db: Session, *, company_id: UUID, session_id: UUID) -> WorkSession:
    session = db.get(WorkSession, session_id)
    if session is None or session.company_id != company_id:
        raise ApiError(status_code=404, code="SESSION_NOT_FOUND", message="Work session not found.")
    return session


def correct_session(
    db: Session,
    *,
    company_id: UUID,
    session_id: UUID,
    acting_user_id: UUID,
    clock_out_time: datetime,
    clock_in_time: datetime | None = None,
    reason: str | None = None,
    resulting_review_status: ReviewStatus = ReviewStatus.RESOLVED,
    now: datetime | None = None,
) -> CorrectionResult:
    """Overwrite a session's times and record the before/after values.

    Applying the same correction twice leaves the session in the same state;
    each application appends its own log row.
    """
    session = get_company_session(db, company_id=company_id, session_id=session_id)

    new_start = _normalize_ts(clock_in_time) if clock_in_time is not None else _normalize_ts(session.clock_in_time)
    new_end = _normalize_ts(clock_out_time)
    if new_end <= new_start:
        raise ApiError(
            status_code=400,
            code="INVALID_RANGE",
            message="clock_out_time must be after clock_in_time.",
        )

    changed_at = _normalize_ts(now)
    if session.is_on_break:
        # An open pause ends at the corrected clock-out and counts as pause.
        _close_break(session, new_end)
    new_duration = compute_work_duration(new_start, new_end, session.total_pause_duration)
    log_entry = TimeEntryLog(
        id=uuid4(),
        session_id=session.id,
        changed_by=acting_user_id,
        changed_at=changed_at,
        old_start_time=session.clock_in_time,
        old_end_time=session.clock_out_time,
        old_duration=session.total_work_duration,
        new_start_time=new_start,
        new_end_time=new_end,
        new_duration=new_duration,
        reason=reason,
    )

    session.clock_in_time = new_start
    session.clock_out_time = new_end
    session.total_work_duration = new_duration
    session.is_active = False
    session.is_on_break = False
    session.break_started_at = None
    session.status = SessionStatus.CLOSED
    session.review_status = resulting_review_status
    session.is_corrected = True
    session.corrected_by = acting_user_id
    session.corrected_at = changed_at
    session.correction_reason = reason

    db.add(log_entry)
    db.commit()
    db.refresh(session)

    logger.info(
        "session_corrected",
        extra={
            "company_id": company_id,
            "session_id": session.id,
            "corrected_by": acting_user_id,
            "review_status": resulting_review_status,
        },
    )
    return CorrectionResult(session=session, log_entry=log_entry)


def list_corrections(db: Session, *, company_id: UUID, session_id: UUID) -> list[TimeEntryLog]:
    get_company_session(db, company_id=company_id, session_id=session_id)
    return list(
        db.scalars(
            select(TimeEntryLog)
            .where(TimeEntryLog.session_id == session_id)
            .order_by(TimeEntryLog.changed_at.asc())
        ).all()
    )


def list_company_sessions(
    db: Session,
    *,
    company_id: UUID,
    start: datetime,
    end: datetime,
) -> list[tuple[WorkSession, User]]:
    rows = db.execute(
        select(WorkSession, User)
        .join(User, User.id == WorkSession.user_id)
        .where(
            WorkSession.company_id == company_id,
            WorkSession.clock_in_time >= start.astimezone(timezone.utc),
            WorkSession.clock_in_time < end.astimezone(timezone.utc),
        )
        .order_by(WorkSession.clock_in_time.asc())
    ).all()
    return [(row[0], row[1]) for row in rows]
