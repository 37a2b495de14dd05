from datetime import date, datetime, time, timedelta
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, Request, Response
from sqlalchemy.orm import Session

from gtiq.db import get_db
from gtiq.dependencies import audit_company_action, require_manager
from gtiq.errors import ApiError
from gtiq.models import ReviewStatus, User, WorkSession
from gtiq.schemas import (
    AdjustWorkSessionRequest,
    ReviewSessionRead,
    SessionCorrectionRequest,
    SessionCorrectionResponse,
    TimeEntryLogRead,
    WorkSessionRead,
)
from gtiq.security import require_user
from gtiq.services.exports import build_sessions_xlsx_bytes
from gtiq.services.memberships import (
    MANAGER_ROLES,
    CompanyContext,
    get_company_or_404,
    require_role,
    resolve_context,
)
from gtiq.services.review import (
    CorrectionResult,
    correct_session,
    list_company_sessions,
    list_corrections,
    list_review_sessions,
)
from gtiq.services.session_monitor import _attendance_timezone

router = APIRouter(tags=["sessions"])


def _audit_correction(
    db: Session,
    request: Request,
    context: CompanyContext,
    result: CorrectionResult,
    *,
    action: str,
) -> None:
    log_entry = result.log_entry
    audit_company_action(
        db,
        request,
        context,
        action=action,
        entity_type="work_session",
        entity_id=str(result.session.id),
        diff={
            "clock_in_time": {"old": log_entry.old_start_time, "new": log_entry.new_start_time},
            "clock_out_time": {"old": log_entry.old_end_time, "new": log_entry.new_end_time},
            "total_work_duration": {"old": log_entry.old_duration, "new": log_entry.new_duration},
            "review_status": result.session.review_status,
        },
        reason=log_entry.reason,
    )


@router.get("/review-sessions", response_model=list[ReviewSessionRead])
def review_sessions(
    context: CompanyContext = Depends(require_manager),
    db: Session = Depends(get_db),
) -> list[ReviewSessionRead]:
    rows = list_review_sessions(db, company_id=context.company_id)
    return [
        ReviewSessionRead.model_validate(session).model_copy(
            update={"user_full_name": user.full_name, "user_email": user.email}
        )
        for session, user in rows
    ]


@router.post("/review-sessions/{session_id}/correct", response_model=SessionCorrectionResponse)
def correct_review_session(
    session_id: UUID,
    payload: SessionCorrectionRequest,
    request: Request,
    context: CompanyContext = Depends(require_manager),
    db: Session = Depends(get_db),
) -> SessionCorrectionResponse:
    result = correct_session(
        db,
        company_id=context.company_id,
        session_id=session_id,
        acting_user_id=context.user_id,
        clock_in_time=payload.clock_in_time,
        clock_out_time=payload.clock_out_time,
        reason=payload.correction_reason,
        resulting_review_status=ReviewStatus.RESOLVED,
    )
    _audit_correction(db, request, context, result, action="work_session.review_correct")
    return SessionCorrectionResponse(
        session_id=result.session.id,
        session=WorkSessionRead.model_validate(result.session),
    )


@router.post("/adjust-work-session", response_model=SessionCorrectionResponse)
def adjust_work_session(
    payload: AdjustWorkSessionRequest,
    request: Request,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
    x_impersonation_token: str | None = Header(default=None, alias="X-Impersonation-Token"),
) -> SessionCorrectionResponse:
    session = db.get(WorkSession, payload.session_id)
    if session is None:
        raise ApiError(status_code=404, code="SESSION_NOT_FOUND", message="Work session not found.")

    # Authorised against the session's company, not the caller's active one.
    context = resolve_context(
        db,
        user,
        company_id=session.company_id,
        impersonation_token=x_impersonation_token,
    )
    require_role(context, MANAGER_ROLES)
    request.state.company_id = str(context.company_id)

    result = correct_session(
        db,
        company_id=session.company_id,
        session_id=payload.session_id,
        acting_user_id=context.user_id,
        clock_in_time=payload.clock_in_time,
        clock_out_time=payload.clock_out_time,
        reason=payload.correction_reason,
        resulting_review_status=ReviewStatus.NORMAL,
    )
    _audit_correction(db, request, context, result, action="work_session.adjust")
    return SessionCorrectionResponse(
        session_id=result.session.id,
        session=WorkSessionRead.model_validate(result.session),
    )


@router.get("/work-sessions/{session_id}/corrections", response_model=list[TimeEntryLogRead])
def session_corrections(
    session_id: UUID,
    context: CompanyContext = Depends(require_manager),
    db: Session = Depends(get_db),
) -> list[TimeEntryLogRead]:
    entries = list_corrections(db, company_id=context.company_id, session_id=session_id)
    return [TimeEntryLogRead.model_validate(item) for item in entries]


@router.get("/reports/sessions.xlsx")
def sessions_report(
    start: date = Query(...),
    end: date = Query(...),
    context: CompanyContext = Depends(require_manager),
    db: Session = Depends(get_db),
) -> Response:
    if end < start:
        raise ApiError(status_code=400, code="INVALID_RANGE", message="end must not be before start.")

    tz = _attendance_timezone()
    range_start = datetime.combine(start, time.min, tzinfo=tz)
    range_end = datetime.combine(end + timedelta(days=1), time.min, tzinfo=tz)
    company = get_company_or_404(db, context.company_id)
    rows = list_company_sessions(db, company_id=company.id, start=range_start, end=range_end)
    content = build_sessions_xlsx_bytes(rows, company_name=company.name, start_date=start, end_date=end)
    filename = f"sessions_{start.isoformat()}_{end.isoformat()}.xlsx"
    return Response(
        content=content,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
