from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from gtiq.db import get_db
from gtiq.dependencies import audit_company_action, get_company_context, require_company_admin, require_manager
from gtiq.models import Absence, RequestStatus, User
from gtiq.schemas import AbsenceCreateRequest, AbsenceRead, RequestDecision, VacationAssignmentRequest
from gtiq.services.absences import assign_vacations, list_absences, request_absence, review_absence
from gtiq.services.memberships import MANAGER_ROLES, CompanyContext

router = APIRouter(tags=["absences"])


def _absence_read(absence: Absence, user: User | None) -> AbsenceRead:
    update = {"user_full_name": user.full_name, "user_email": user.email} if user is not None else {}
    return AbsenceRead.model_validate(absence).model_copy(update=update)


@router.get("/absences", response_model=list[AbsenceRead])
def get_absences(
    user_id: UUID | None = Query(default=None),
    status: RequestStatus | None = Query(default=None),
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
    context: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db),
) -> list[AbsenceRead]:
    # Workers only ever see their own absences.
    if context.role not in MANAGER_ROLES:
        user_id = context.user_id
    rows = list_absences(
        db,
        company_id=context.company_id,
        user_id=user_id,
        status=status,
        start=start,
        end=end,
    )
    return [_absence_read(absence, user) for absence, user in rows]


@router.post("/absences", response_model=AbsenceRead)
def post_absence(
    payload: AbsenceCreateRequest,
    request: Request,
    context: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db),
) -> AbsenceRead:
    absence = request_absence(db, context=context, payload=payload)
    audit_company_action(
        db,
        request,
        context,
        action="absence.create",
        entity_type="absence",
        entity_id=str(absence.id),
        diff={
            "user_id": absence.user_id,
            "absence_type": absence.absence_type,
            "start_date": absence.start_date,
            "end_date": absence.end_date,
            "status": absence.status,
        },
    )
    return _absence_read(absence, db.get(User, absence.user_id))


@router.post("/absences/vacations", response_model=list[AbsenceRead])
def post_vacations(
    payload: VacationAssignmentRequest,
    request: Request,
    context: CompanyContext = Depends(require_company_admin),
    db: Session = Depends(get_db),
) -> list[AbsenceRead]:
    created = assign_vacations(db, context=context, payload=payload)
    audit_company_action(
        db,
        request,
        context,
        action="absence.assign_vacation",
        entity_type="absence",
        diff={
            "scope": "individual" if payload.user_ids else "company",
            "user_ids": [absence.user_id for absence in created],
            "start_date": payload.start_date,
            "end_date": payload.end_date,
        },
        reason=payload.reason,
    )
    return [AbsenceRead.model_validate(absence) for absence in created]


@router.patch("/absences/{absence_id}", response_model=AbsenceRead)
def patch_absence(
    absence_id: UUID,
    payload: RequestDecision,
    request: Request,
    context: CompanyContext = Depends(require_manager),
    db: Session = Depends(get_db),
) -> AbsenceRead:
    absence = review_absence(
        db,
        company_id=context.company_id,
        absence_id=absence_id,
        status=RequestStatus(payload.status),
        acting_user_id=context.user_id,
    )
    audit_company_action(
        db,
        request,
        context,
        action="absence.review",
        entity_type="absence",
        entity_id=str(absence.id),
        diff={"status": {"old": RequestStatus.PENDING, "new": absence.status}},
        reason=payload.reason,
    )
    return _absence_read(absence, db.get(User, absence.user_id))
