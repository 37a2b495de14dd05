from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from gtiq.errors import ApiError, conflict, forbidden
from gtiq.models import Absence, AbsenceType, Membership, NotificationType, RequestStatus, Role, User
from gtiq.schemas import AbsenceCreateRequest, VacationAssignmentRequest
from gtiq.services.incidents import add_notifications, notify_managers
from gtiq.services.memberships import MANAGER_ROLES, CompanyContext, get_membership

logger = logging.getLogger("gtiq.absences")

ABSENCE_LABELS: dict[AbsenceType, str] = {
    AbsenceType.VACATION: "Vacation",
    AbsenceType.SICK_LEAVE: "Sick leave",
    AbsenceType.PERSONAL: "Personal leave",
    AbsenceType.OTHER: "Absence",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_range(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise ApiError(status_code=400, code="INVALID_RANGE", message="end_date must not be before start_date.")


def _describe(absence: Absence) -> str:
    label = ABSENCE_LABELS[absence.absence_type]
    if absence.start_date == absence.end_date:
        return f"{label} on {absence.start_date.isoformat()}"
    return f"{label} from {absence.start_date.isoformat()} to {absence.end_date.isoformat()}"


def list_absences(
    db: Session,
    *,
    company_id: UUID,
    user_id: UUID | None = None,
    status: RequestStatus | None = None,
    start: date | None = None,
    end: date | None = None,
) -> list[tuple[Absence, User]]:
    stmt = (
        select(Absence, User)
        .join(User, User.id == Absence.user_id)
        .where(Absence.company_id == company_id)
    )
    if user_id is not None:
        stmt = stmt.where(Absence.user_id == user_id)
    if status is not None:
        stmt = stmt.where(Absence.status == status)
    # Overlap with [start, end].
    if start is not None:
        stmt = stmt.where(Absence.end_date >= start)
    if end is not None:
        stmt = stmt.where(Absence.start_date <= end)
    stmt = stmt.order_by(Absence.start_date.desc(), Absence.created_at.desc())
    return [(row[0], row[1]) for row in db.execute(stmt).all()]


def request_absence(
    db: Session,
    *,
    context: CompanyContext,
    payload: AbsenceCreateRequest,
    now: datetime | None = None,
) -> Absence:
    """Workers request their own absences; managers record absences that are approved on creation."""
    _check_range(payload.start_date, payload.end_date)
    is_manager = context.role in MANAGER_ROLES
    target_id = payload.user_id or context.user_id
    if target_id != context.user_id:
        if not is_manager:
            raise forbidden("Only managers can record absences for other people.")
        if get_membership(db, user_id=target_id, company_id=context.company_id) is None:
            raise ApiError(status_code=404, code="PERSON_NOT_FOUND", message="Person not found in this company.")

    now = now or _utcnow()
    absence = Absence(
        id=uuid4(),
        company_id=context.company_id,
        user_id=target_id,
        absence_type=payload.absence_type,
        start_date=payload.start_date,
        end_date=payload.end_date,
        reason=payload.reason,
        status=RequestStatus.APPROVED if is_manager else RequestStatus.PENDING,
        created_by=context.user_id,
        approved_by=context.user_id if is_manager else None,
        approved_at=now if is_manager else None,
        created_at=now,
    )
    db.add(absence)
    db.commit()
    db.refresh(absence)
    logger.info(
        "absence_created",
        extra={"company_id": context.company_id, "absence_id": absence.id, "status": absence.status},
    )

    if absence.status == RequestStatus.PENDING:
        worker = db.get(User, target_id)
        worker_label = (worker.full_name or worker.email) if worker is not None else str(target_id)
        notify_managers(
            db,
            company_id=context.company_id,
            title="Absence request",
            message=f"{worker_label}: {_describe(absence)}",
            notification_type=NotificationType.INFO,
            entity_type="absence",
            entity_id=str(absence.id),
        )
    return absence


def assign_vacations(
    db: Session,
    *,
    context: CompanyContext,
    payload: VacationAssignmentRequest,
    now: datetime | None = None,
) -> list[Absence]:
    """Record approved vacation for the listed people, or for every active worker when none are listed."""
    _check_range(payload.start_date, payload.end_date)
    if payload.user_ids is None:
        user_ids = list(
            db.scalars(
                select(Membership.user_id)
                .join(User, User.id == Membership.user_id)
                .where(
                    Membership.company_id == context.company_id,
                    Membership.role == Role.WORKER,
                    User.is_active.is_(True),
                )
            ).all()
        )
        reason = payload.reason or "Company vacation"
    else:
        user_ids = list(dict.fromkeys(payload.user_ids))
        for user_id in user_ids:
            if get_membership(db, user_id=user_id, company_id=context.company_id) is None:
                raise ApiError(status_code=404, code="PERSON_NOT_FOUND", message="Person not found in this company.")
        reason = payload.reason or "Vacation"

    if not user_ids:
        raise ApiError(status_code=400, code="INVALID_INPUT", message="There are no workers to assign vacation to.")

    now = now or _utcnow()
    created: list[Absence] = []
    for user_id in user_ids:
        absence = Absence(
            id=uuid4(),
            company_id=context.company_id,
            user_id=user_id,
            absence_type=AbsenceType.VACATION,
            start_date=payload.start_date,
            end_date=payload.end_date,
            reason=reason,
            status=RequestStatus.APPROVED,
            created_by=context.user_id,
            approved_by=context.user_id,
            approved_at=now,
            created_at=now,
        )
        db.add(absence)
        add_notifications(
            db,
            company_id=context.company_id,
            user_ids=[user_id],
            title="Vacation assigned",
            message=_describe(absence),
            notification_type=NotificationType.INFO,
            entity_type="absence",
            entity_id=str(absence.id),
        )
        created.append(absence)

    db.commit()
    logger.info(
        "vacations_assigned",
        extra={
            "company_id": context.company_id,
            "count": len(created),
            "scope": "individual" if payload.user_ids else "company",
        },
    )
    return created


def review_absence(
    db: Session,
    *,
    company_id: UUID,
    absence_id: UUID,
    status: RequestStatus,
    acting_user_id: UUID,
    now: datetime | None = None,
) -> Absence:
    absence = db.get(Absence, absence_id)
    if absence is None or absence.company_id != company_id:
        raise ApiError(status_code=404, code="ABSENCE_NOT_FOUND", message="Absence not found.")
    if absence.status != RequestStatus.PENDING:
        raise conflict("ABSENCE_NOT_PENDING", "Only pending absences can be reviewed.")

    absence.status = status
    if status == RequestStatus.APPROVED:
        absence.approved_by = acting_user_id
        absence.approved_at = now or _utcnow()

    approved = status == RequestStatus.APPROVED
    add_notifications(
        db,
        company_id=company_id,
        user_ids=[absence.user_id],
        title="Absence approved" if approved else "Absence rejected",
        message=_describe(absence),
        notification_type=NotificationType.SUCCESS if approved else NotificationType.ERROR,
        entity_type="absence",
        entity_id=str(absence.id),
    )
    db.commit()
    db.refresh(absence)
    logger.info(
        "absence_reviewed",
        extra={"company_id": company_id, "absence_id": absence.id, "status": status, "reviewed_by": acting_user_id},
    )
    return absence
