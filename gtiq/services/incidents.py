from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Iterable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gtiq.errors import ApiError
from gtiq.models import (
    Incident,
    IncidentStatus,
    IncidentType,
    Membership,
    Notification,
    NotificationType,
    User,
)
from gtiq.services.memberships import MANAGER_ROLES, get_membership

logger = logging.getLogger("gtiq.incidents")

INCIDENT_TITLES: dict[IncidentType, str] = {
    IncidentType.LATE_ARRIVAL: "Late arrival",
    IncidentType.EARLY_DEPARTURE: "Early departure",
    IncidentType.MISSING_CHECKOUT: "Missing clock-out",
    IncidentType.MISSING_CHECKIN: "Missing clock-in",
    IncidentType.OTHER: "Clock incident",
}


def manager_user_ids(db: Session, company_id: UUID) -> list[UUID]:
    rows = db.scalars(
        select(Membership.user_id).where(
            Membership.company_id == company_id,
            Membership.role.in_(list(MANAGER_ROLES)),
        )
    ).all()
    return list(dict.fromkeys(rows))


def add_notifications(
    db: Session,
    *,
    company_id: UUID,
    user_ids: Iterable[UUID],
    title: str,
    message: str,
    notification_type: NotificationType = NotificationType.INFO,
    entity_type: str | None = None,
    entity_id: str | None = None,
) -> list[Notification]:
    created: list[Notification] = []
    for user_id in dict.fromkeys(user_ids):
        notification = Notification(
            company_id=company_id,
            user_id=user_id,
            title=title,
            message=message,
            type=notification_type,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.add(notification)
        created.append(notification)
    return created


def notify_managers(
    db: Session,
    *,
    company_id: UUID,
    title: str,
    message: str,
    notification_type: NotificationType = NotificationType.WARNING,
    entity_type: str | None = None,
    entity_id: str | None = None,
) -> None:
    """Best-effort notification of every owner, admin and manager of a company."""
    try:
        add_notifications(
            db,
            company_id=company_id,
            user_ids=manager_user_ids(db, company_id),
            title=title,
            message=message,
            notification_type=notification_type,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "manager_notification_failed",
            extra={"company_id": company_id, "entity_type": entity_type, "entity_id": entity_id},
        )


def report_incident(
    db: Session,
    *,
    company_id: UUID,
    user_id: UUID,
    incident_type: IncidentType,
    description: str,
    occurred_at: datetime | None = None,
) -> Incident | None:
    """Record an incident for a rejected clock attempt and notify managers and the worker.

    Failures are logged and swallowed: the caller is already answering with the
    error that triggered the report.
    """
    occurred_at = occurred_at or datetime.now(timezone.utc)
    incident = Incident(
        id=uuid4(),
        company_id=company_id,
        user_id=user_id,
        incident_type=incident_type,
        incident_date=occurred_at.date(),
        description=description,
        status=IncidentStatus.PENDING,
    )
    try:
        db.add(incident)
        db.flush()
        worker = db.get(User, user_id)
        worker_label = (worker.full_name or worker.email) if worker is not None else str(user_id)
        title = INCIDENT_TITLES[incident_type]
        add_notifications(
            db,
            company_id=company_id,
            user_ids=manager_user_ids(db, company_id),
            title=title,
            message=f"{worker_label}: {description}",
            notification_type=NotificationType.WARNING,
            entity_type="incident",
            entity_id=str(incident.id),
        )
        add_notifications(
            db,
            company_id=company_id,
            user_ids=[user_id],
            title=title,
            message=description,
            notification_type=NotificationType.WARNING,
            entity_type="incident",
            entity_id=str(incident.id),
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "incident_report_failed",
            extra={"company_id": company_id, "user_id": user_id, "incident_type": incident_type},
        )
        return None

    logger.info(
        "incident_reported",
        extra={
            "company_id": company_id,
            "user_id": user_id,
            "incident_id": incident.id,
            "incident_type": incident_type,
        },
    )
    return incident


def list_incidents(
    db: Session,
    *,
    company_id: UUID,
    status: IncidentStatus | None = None,
    limit: int = 200,
) -> list[Incident]:
    stmt = select(Incident).where(Incident.company_id == company_id)
    if status is not None:
        stmt = stmt.where(Incident.status == status)
    stmt = stmt.order_by(Incident.created_at.desc()).limit(limit)
    return list(db.scalars(stmt).all())


def create_incident(
    db: Session,
    *,
    company_id: UUID,
    user_id: UUID,
    incident_type: IncidentType,
    incident_date: date,
    description: str | None,
) -> Incident:
    if get_membership(db, user_id=user_id, company_id=company_id) is None:
        raise ApiError(status_code=404, code="PERSON_NOT_FOUND", message="Person not found in this company.")

    incident = Incident(
        company_id=company_id,
        user_id=user_id,
        incident_type=incident_type,
        incident_date=incident_date,
        description=description,
        status=IncidentStatus.PENDING,
    )
    db.add(incident)
    db.commit()
    db.refresh(incident)
    return incident


def set_incident_status(
    db: Session,
    *,
    company_id: UUID,
    incident_id: UUID,
    status: IncidentStatus,
    acting_user_id: UUID,
    now: datetime | None = None,
) -> Incident:
    incident = db.get(Incident, incident_id)
    if incident is None or incident.company_id != company_id:
        raise ApiError(status_code=404, code="INCIDENT_NOT_FOUND", message="Incident not found.")

    incident.status = status
    if status == IncidentStatus.PENDING:
        incident.resolved_by = None
        incident.resolved_at = None
    else:
        incident.resolved_by = acting_user_id
        incident.resolved_at = now or datetime.now(timezone.utc)

    db.commit()
    db.refresh(incident)
    return incident


def list_notifications(
    db: Session,
    *,
    user_id: UUID,
    company_id: UUID,
    unread_only: bool = False,
    limit: int = 100,
) -> list[Notification]:
    stmt = select(Notification).where(
        Notification.user_id == user_id,
        Notification.company_id == company_id,
    )
    if unread_only:
        stmt = stmt.where(Notification.read_at.is_(None))
    stmt = stmt.order_by(Notification.created_at.desc()).limit(limit)
    return list(db.scalars(stmt).all())


def mark_notification_read(
    db: Session,
    *,
    user_id: UUID,
    notification_id: UUID,
    now: datetime | None = None,
) -> Notification:
    notification = db.get(Notification, notification_id)
    if notification is None or notification.user_id != user_id:
        raise ApiError(status_code=404, code="NOTIFICATION_NOT_FOUND", message="Notification not found.")
    if notification.read_at is None:
        notification.read_at = now or datetime.now(timezone.utc)
        db.commit()
        db.refresh(notification)
    return notification
