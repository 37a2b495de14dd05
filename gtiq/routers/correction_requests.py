from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from gtiq.db import get_db
from gtiq.dependencies import audit_company_action, get_company_context, require_manager
from gtiq.models import CorrectionRequest, RequestStatus, User
from gtiq.schemas import (
    CorrectionDecisionResponse,
    CorrectionRequestCreate,
    CorrectionRequestRead,
    RequestDecision,
    WorkSessionRead,
)
from gtiq.services.correction_requests import (
    decide_correction_request,
    list_correction_requests,
    submit_correction_request,
)
from gtiq.services.memberships import MANAGER_ROLES, CompanyContext

router = APIRouter(tags=["correction-requests"])


def _request_read(correction: CorrectionRequest, user: User | None) -> CorrectionRequestRead:
    update = {"user_full_name": user.full_name, "user_email": user.email} if user is not None else {}
    return CorrectionRequestRead.model_validate(correction).model_copy(update=update)


@router.get("/correction-requests", response_model=list[CorrectionRequestRead])
def get_correction_requests(
    status: RequestStatus | None = Query(default=None),
    user_id: UUID | None = Query(default=None),
    context: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db),
) -> list[CorrectionRequestRead]:
    if context.role not in MANAGER_ROLES:
        user_id = context.user_id
    rows = list_correction_requests(db, company_id=context.company_id, user_id=user_id, status=status)
    return [_request_read(correction, user) for correction, user in rows]


@router.post("/correction-requests", response_model=CorrectionRequestRead)
def post_correction_request(
    payload: CorrectionRequestCreate,
    request: Request,
    context: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db),
) -> CorrectionRequestRead:
    correction = submit_correction_request(db, context=context, payload=payload)
    audit_company_action(
        db,
        request,
        context,
        action="correction_request.create",
        entity_type="correction_request",
        entity_id=str(correction.id),
        diff=correction.payload,
    )
    return _request_read(correction, db.get(User, correction.user_id))


@router.patch("/correction-requests/{request_id}", response_model=CorrectionDecisionResponse)
def patch_correction_request(
    request_id: UUID,
    payload: RequestDecision,
    request: Request,
    context: CompanyContext = Depends(require_manager),
    db: Session = Depends(get_db),
) -> CorrectionDecisionResponse:
    decision = decide_correction_request(
        db,
        context=context,
        request_id=request_id,
        status=RequestStatus(payload.status),
        reason=payload.reason,
    )
    audit_company_action(
        db,
        request,
        context,
        action="correction_request.decide",
        entity_type="correction_request",
        entity_id=str(decision.request.id),
        diff={
            "status": {"old": RequestStatus.PENDING, "new": decision.request.status},
            "session_id": decision.session.id if decision.session is not None else None,
        },
        reason=payload.reason,
    )
    return CorrectionDecisionResponse(
        request=_request_read(decision.request, db.get(User, decision.request.user_id)),
        event_id=decision.event.id if decision.event is not None else None,
        session=WorkSessionRead.model_validate(decision.session) if decision.session is not None else None,
    )
