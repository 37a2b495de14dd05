from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from gtiq.errors import ApiError, conflict
from gtiq.models import (
    ClockSource,
    CorrectionRequest,
    NotificationType,
    RequestStatus,
    ReviewStatus,
    TimeEvent,
    TimeEventType,
    User,
    WorkSession,
)
from gtiq.schemas import CorrectionRequestCreate
from gtiq.services.clock import _normalize_ts
from gtiq.services.incidents import add_notifications, notify_managers
from gtiq.services.memberships import CompanyContext
from gtiq.services.review import correct_session, get_company_session

logger = logging.getLogger("gtiq.correction_requests")

EVENT_LABELS: dict[TimeEventType, str] = {
    TimeEventType.CLOCK_IN: "clock-in",
    TimeEventType.CLOCK_OUT: "clock-out",
    TimeEventType.PAUSE_START: "pause start",
    TimeEventType.PAUSE_END: "pause end",
}


@dataclass(frozen=True, slots=True)
class CorrectionDecision:
    request: CorrectionRequest
    event: TimeEvent | None = None
    session: WorkSession | None = None


def list_correction_requests(
    db: Session,
    *,
    company_id: UUID,
    user_id: UUID | None = None,
    status: RequestStatus | None = None,
) -> list[tuple[CorrectionRequest, User]]:
    stmt = (
        select(CorrectionRequest, User)
        .join(User, User.id == CorrectionRequest.user_id)
        .where(CorrectionRequest.company_id == company_id)
    )
    if user_id is not None:
        stmt = stmt.where(CorrectionRequest.user_id == user_id)
    if status is not None:
        stmt = stmt.where(CorrectionRequest.status == status)
    stmt = stmt.order_by(CorrectionRequest.created_at.desc())
    return [(row[0], row[1]) for row in db.execute(stmt).all()]


def submit_correction_request(
    db: Session,
    *,
    context: CompanyContext,
    payload: CorrectionRequestCreate,
    now: datetime | None = None,
) -> CorrectionRequest:
    if payload.session_id is not None:
        session = get_company_session(db, company_id=context.company_id, session_id=payload.session_id)
        if session.user_id != context.user_id:
            raise ApiError(status_code=404, code="SESSION_NOT_FOUND", message="Work session not found.")

    event_time = _normalize_ts(payload.event_time)
    now = now or datetime.now(timezone.utc)
    correction = CorrectionRequest(
        id=uuid4(),
        company_id=context.company_id,
        user_id=context.user_id,
        submitted_by=context.user_id,
        payload={
            "event_type": payload.event_type.value,
            "event_time": event_time.isoformat(),
            "reason": payload.reason,
            "session_id": str(payload.session_id) if payload.session_id is not None else None,
        },
        status=RequestStatus.PENDING,
        created_at=now,
        updated_at=now,
    )
    db.add(correction)
    db.commit()
    db.refresh(correction)
    logger.info(
        "correction_request_submitted",
        extra={"company_id": context.company_id, "request_id": correction.id, "user_id": context.user_id},
    )

    worker = db.get(User, context.user_id)
    worker_label = (worker.full_name or worker.email) if worker is not None else str(context.user_id)
    notify_managers(
        db,
        company_id=context.company_id,
        title="Correction request",
        message=(
            f"{worker_label} asks to set the {EVENT_LABELS[payload.event_type]} "
            f"at {event_time.isoformat()}: {payload.reason}"
        ),
        notification_type=NotificationType.INFO,
        entity_type="correction_request",
        entity_id=str(correction.id),
    )
    return correction


def _apply_to_session(
    db: Session,
    *,
    correction: CorrectionRequest,
    acting_user_id: UUID,
    event_type: TimeEventType,
    event_time: datetime,
) -> WorkSession | None:
    raw_session_id = correction.payload.get("session_id")
    if not raw_session_id or event_type not in (TimeEventType.CLOCK_IN, TimeEventType.CLOCK_OUT):
        return None

    session = get_company_session(db, company_id=correction.company_id, session_id=UUID(raw_session_id))
    if event_type == TimeEventType.CLOCK_IN:
        if session.clock_out_time is None:
            # Nothing to recompute until the session is closed.
            return None
        clock_in_time, clock_out_time = event_time, session.clock_out_time
    else:
        clock_in_time, clock_out_time = None, event_time

    result = correct_session(
        db,
        company_id=correction.company_id,
        session_id=session.id,
        acting_user_id=acting_user_id,
        clock_in_time=clock_in_time,
        clock_out_time=clock_out_time,
        reason=correction.payload.get("reason"),
        resulting_review_status=ReviewStatus.RESOLVED,
    )
    return result.session


def decide_correction_request(
    db: Session,
    *,
    context: CompanyContext,
    request_id: UUID,
    status: RequestStatus,
    reason: str | None = None,
    now: datetime | None = None,
) -> CorrectionDecision:
    """Approve or reject a pending request.

    Approval appends the requested time event and, when the request names a
    closed session, rewrites that session's times through the regular
    correction path so the change lands in the correction log.
    """
    correction = db.get(CorrectionRequest, request_id)
    if correction is None or correction.company_id != context.company_id:
        raise ApiError(status_code=404, code="CORRECTION_REQUEST_NOT_FOUND", message="Correction request not found.")
    if correction.status != RequestStatus.PENDING:
        raise conflict("CORRECTION_REQUEST_NOT_PENDING", "This correction request was already decided.")

    event_type = TimeEventType(correction.payload["event_type"])
    event_time = _normalize_ts(datetime.fromisoformat(correction.payload["event_time"]))
    approved = status == RequestStatus.APPROVED

    session: WorkSession | None = None
    event: TimeEvent | None = None
    if approved:
        session = _apply_to_session(
            db,
            correction=correction,
            acting_user_id=context.user_id,
            event_type=event_type,
            event_time=event_time,
        )
        raw_session_id = correction.payload.get("session_id")
        event = TimeEvent(
            id=uuid4(),
            user_id=correction.user_id,
            company_id=correction.company_id,
            session_id=UUID(raw_session_id) if raw_session_id else None,
            event_type=event_type,
            source=ClockSource.WEB,
            event_time=event_time,
            notes=f"Correction approved: {correction.payload.get('reason') or ''}".strip()[:1000],
        )
        db.add(event)

    correction.status = status
    correction.manager_id = context.user_id
    correction.reason = reason
    correction.updated_at = now or datetime.now(timezone.utc)

    if approved:
        message = f"Your {EVENT_LABELS[event_type]} correction for {event_time.isoformat()} was approved."
    else:
        message = "Your correction request was rejected." + (f" Reason: {reason}" if reason else "")
    add_notifications(
        db,
        company_id=correction.company_id,
        user_ids=[correction.user_id],
        title="Correction request approved" if approved else "Correction request rejected",
        message=message,
        notification_type=NotificationType.SUCCESS if approved else NotificationType.ERROR,
        entity_type="correction_request",
        entity_id=str(correction.id),
    )
    db.commit()
    db.refresh(correction)
    logger.info(
        "correction_request_decided",
        extra={
            "company_id": correction.company_id,
            "request_id": correction.id,
            "status": status,
            "session_corrected": session is not None,
        },
    )
    return CorrectionDecision(request=correction, event=event, session=session)
