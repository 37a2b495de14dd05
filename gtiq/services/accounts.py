from __future__ import annotations

import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from gtiq.errors import ApiError, conflict
from gtiq.models import (
    AuditLog,
    Company,
    CompanyStatus,
    Membership,
    Role,
    SessionStatus,
    TimeEvent,
    User,
    WorkSession,
)
from gtiq.schemas import CompanyCreateRequest, CreateCompanyUserRequest, CreateSuperadminRequest
from gtiq.security import hash_password, verify_password
from gtiq.services.memberships import get_company_or_404, get_membership
from gtiq.services.people import list_people, normalize_email
from gtiq.settings import get_settings

logger = logging.getLogger("gtiq.accounts")


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.scalar(select(User).where(func.lower(User.email) == normalize_email(email)))


def authenticate(db: Session, *, email: str, password: str) -> User:
    user = get_user_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        raise ApiError(status_code=401, code="INVALID_CREDENTIALS", message="Invalid email or password.")
    if not user.is_active:
        raise ApiError(status_code=403, code="USER_INACTIVE", message="User account is inactive.")
    return user


def superadmin_exists(db: Session) -> bool:
    return db.scalar(select(User.id).where(User.is_superadmin.is_(True)).limit(1)) is not None


def bootstrap_token_matches(candidate: str | None) -> bool:
    expected = (get_settings().superadmin_bootstrap_token or "").strip()
    if not expected or not candidate:
        return False
    return hmac.compare_digest(candidate.strip(), expected)


def create_superadmin(db: Session, payload: CreateSuperadminRequest) -> User:
    user = get_user_by_email(db, payload.email)
    if user is None:
        user = User(
            id=uuid4(),
            email=normalize_email(payload.email),
            full_name=payload.full_name,
            password_hash=hash_password(payload.password),
            is_active=True,
            is_superadmin=True,
            created_at=datetime.now(timezone.utc),
        )
        db.add(user)
    else:
        user.is_superadmin = True
        user.is_active = True
        if payload.full_name:
            user.full_name = payload.full_name

    db.commit()
    db.refresh(user)
    logger.info("superadmin_granted", extra={"user_id": user.id})
    return user


def create_company_user(db: Session, payload: CreateCompanyUserRequest) -> tuple[User, Membership]:
    company = get_company_or_404(db, payload.company_id)
    user = get_user_by_email(db, payload.email)
    if user is None:
        user = User(
            id=uuid4(),
            email=normalize_email(payload.email),
            full_name=payload.full_name,
            password_hash=hash_password(payload.password) if payload.password else None,
            is_active=True,
            is_superadmin=False,
            created_at=datetime.now(timezone.utc),
        )
        db.add(user)
    elif get_membership(db, user_id=user.id, company_id=company.id) is not None:
        raise conflict("EMAIL_TAKEN", "This person is already a member of the company.")

    membership = Membership(
        id=uuid4(),
        user_id=user.id,
        company_id=company.id,
        role=payload.role,
        created_at=datetime.now(timezone.utc),
    )
    db.add(membership)
    if payload.role == Role.OWNER:
        company.owner_user_id = user.id

    db.commit()
    db.refresh(user)
    logger.info(
        "company_user_created",
        extra={"company_id": company.id, "user_id": user.id, "role": payload.role},
    )
    return user, membership


def create_company(db: Session, payload: CompanyCreateRequest) -> Company:
    owner: User | None = None
    if payload.owner_user_id is not None:
        owner = db.get(User, payload.owner_user_id)
        if owner is None:
            raise ApiError(status_code=404, code="PERSON_NOT_FOUND", message="Owner user not found.")

    now = datetime.now(timezone.utc)
    company = Company(
        id=uuid4(),
        name=payload.name.strip(),
        status=CompanyStatus.ACTIVE,
        hq_lat=payload.hq_lat,
        hq_lng=payload.hq_lng,
        geofence_radius_m=payload.geofence_radius_m,
        max_shift_hours=payload.max_shift_hours,
        kiosk_pin_hash=hash_password(payload.kiosk_pin) if payload.kiosk_pin else None,
        owner_user_id=owner.id if owner is not None else None,
        created_at=now,
    )
    db.add(company)
    if owner is not None:
        db.add(Membership(id=uuid4(), user_id=owner.id, company_id=company.id, role=Role.OWNER, created_at=now))

    db.commit()
    db.refresh(company)
    logger.info("company_created", extra={"company_id": company.id})
    return company


def set_company_status(db: Session, *, company_id: UUID, status: CompanyStatus) -> tuple[Company, CompanyStatus]:
    company = get_company_or_404(db, company_id)
    previous = company.status
    company.status = status
    db.commit()
    db.refresh(company)
    return company, previous


def list_audit_logs(
    db: Session,
    *,
    company_id: UUID | None = None,
    action: str | None = None,
    limit: int = 200,
) -> list[AuditLog]:
    stmt = select(AuditLog)
    if company_id is not None:
        stmt = stmt.where(AuditLog.company_id == company_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    stmt = stmt.order_by(AuditLog.ts_utc.desc(), AuditLog.id.desc()).limit(limit)
    return list(db.scalars(stmt).all())


def list_companies_overview(db: Session, *, status: CompanyStatus | None = None) -> list[dict[str, Any]]:
    users_count = (
        select(func.count(Membership.id))
        .where(Membership.company_id == Company.id)
        .correlate(Company)
        .scalar_subquery()
    )
    last_event_at = (
        select(func.max(TimeEvent.event_time))
        .where(TimeEvent.company_id == Company.id)
        .correlate(Company)
        .scalar_subquery()
    )
    owner_email = select(User.email).where(User.id == Company.owner_user_id).correlate(Company).scalar_subquery()

    stmt = select(
        Company,
        users_count.label("users_count"),
        last_event_at.label("last_event_at"),
        owner_email.label("owner_email"),
    )
    if status is not None:
        stmt = stmt.where(Company.status == status)
    stmt = stmt.order_by(Company.created_at.desc())
    return [
        {
            "company": row[0],
            "users_count": int(row[1] or 0),
            "last_event_at": row[2],
            "owner_email": row[3],
        }
        for row in db.execute(stmt).all()
    ]


def _count(db: Session, stmt: Select[Any]) -> int:
    return int(db.scalar(stmt) or 0)


def get_company_detail(db: Session, *, company_id: UUID, now: datetime | None = None) -> dict[str, Any]:
    company = get_company_or_404(db, company_id)
    now = now or datetime.now(timezone.utc)
    owner = db.get(User, company.owner_user_id) if company.owner_user_id is not None else None
    stats = {
        "users_count": _count(
            db,
            select(func.count()).select_from(Membership).where(Membership.company_id == company.id),
        ),
        "workers_count": _count(
            db,
            select(func.count())
            .select_from(Membership)
            .where(Membership.company_id == company.id, Membership.role == Role.WORKER),
        ),
        "events_this_week": _count(
            db,
            select(func.count())
            .select_from(TimeEvent)
            .where(TimeEvent.company_id == company.id, TimeEvent.event_time >= now - timedelta(days=7)),
        ),
        "open_sessions": _count(
            db,
            select(func.count())
            .select_from(WorkSession)
            .where(WorkSession.company_id == company.id, WorkSession.status == SessionStatus.OPEN),
        ),
    }
    return {
        "company": company,
        "owner": owner,
        "stats": stats,
        "recent_logs": list_audit_logs(db, company_id=company.id, limit=20),
    }


def list_company_users(db: Session, *, company_id: UUID) -> list[dict[str, Any]]:
    get_company_or_404(db, company_id)
    return list_people(db, company_id=company_id)


def transfer_ownership(db: Session, *, company_id: UUID, new_owner_user_id: UUID) -> tuple[Company, UUID | None]:
    company = get_company_or_404(db, company_id)
    membership = get_membership(db, user_id=new_owner_user_id, company_id=company.id)
    if membership is None:
        raise ApiError(status_code=400, code="INVALID_INPUT", message="User is not a member of this company.")
    if membership.role not in (Role.OWNER, Role.ADMIN):
        raise ApiError(status_code=400, code="INVALID_INPUT", message="User must be an admin to become owner.")

    previous_owner_id = company.owner_user_id
    company.owner_user_id = new_owner_user_id
    membership.role = Role.OWNER
    if previous_owner_id is not None and previous_owner_id != new_owner_user_id:
        previous = get_membership(db, user_id=previous_owner_id, company_id=company.id)
        if previous is not None:
            previous.role = Role.ADMIN

    db.commit()
    db.refresh(company)
    logger.info(
        "company_ownership_transferred",
        extra={"company_id": company.id, "old_owner": previous_owner_id, "new_owner": new_owner_user_id},
    )
    return company, previous_owner_id
