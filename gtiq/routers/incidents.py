from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from gtiq.db import get_db
from gtiq.dependencies import audit_company_action, get_company_context, require_manager
from gtiq.models import IncidentStatus
from gtiq.schemas import IncidentCreateRequest, IncidentRead, IncidentUpdateRequest, NotificationRead
from gtiq.services.incidents import (
    create_incident,
    list_incidents,
    list_notifications,
    mark_notification_read,
    set_incident_status,
)
from gtiq.services.memberships import CompanyContext

router = APIRouter(tags=["incidents"])


@router.get("/incidents", response_model=list[IncidentRead])
def get_incidents(
    status: IncidentStatus | None = Query(default=None),
    context: CompanyContext = Depends(require_manager),
    db: Session = Depends(get_db),
) -> list[IncidentRead]:
    incidents = list_incidents(db, company_id=context.company_id, status=status)
    return [IncidentRead.model_validate(item) for item in incidents]


@router.post("/incidents", response_model=IncidentRead)
def post_incident(
    payload: IncidentCreateRequest,
    request: Request,
    context: CompanyContext = Depends(require_manager),
    db: Session = Depends(get_db),
) -> IncidentRead:
    incident = create_incident(
        db,
        company_id=context.company_id,
        user_id=payload.user_id,
        incident_type=payload.incident_type,
        incident_date=payload.incident_date,
        description=payload.description,
    )
    audit_company_action(
        db,
        request,
        context,
        action="incident.create",
        entity_type="incident",
        entity_id=str(incident.id),
        diff={"user_id": payload.user_id, "incident_type": payload.incident_type},
    )
    return IncidentRead.model_validate(incident)


@router.patch("/incidents/{incident_id}", response_model=IncidentRead)
def patch_incident(
    incident_id: UUID,
    payload: IncidentUpdateRequest,
    request: Request,
    context: CompanyContext = Depends(require_manager),
    db: Session = Depends(get_db),
) -> IncidentRead:
    incident = set_incident_status(
        db,
        company_id=context.company_id,
        incident_id=incident_id,
        status=payload.status,
        acting_user_id=context.user_id,
    )
    audit_company_action(
        db,
        request,
        context,
        action="incident.set_status",
        entity_type="incident",
        entity_id=str(incident.id),
        diff={"status": payload.status},
    )
    return IncidentRead.model_validate(incident)


@router.get("/notifications", response_model=list[NotificationRead])
def get_notifications(
    unread_only: bool = Query(default=False),
    context: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db),
) -> list[NotificationRead]:
    notifications = list_notifications(
        db,
        user_id=context.user_id,
        company_id=context.company_id,
        unread_only=unread_only,
    )
    return [NotificationRead.model_validate(item) for item in notifications]


@router.post("/notifications/{notification_id}/read", response_model=NotificationRead)
def read_notification(
    notification_id: UUID,
    context: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db),
) -> NotificationRead:
    notification = mark_notification_read(db, user_id=context.user_id, notification_id=notification_id)
    return NotificationRead.model_validate(notification)
