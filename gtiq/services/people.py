from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from gtiq.errors import ApiError, conflict, forbidden
from gtiq.models import Company, Invite, InviteStatus, Membership, Role, User
from gtiq.schemas import AcceptInviteRequest, InviteCreateRequest, UpdatePersonRequest
from gtiq.security import hash_password
from gtiq.services.memberships import CompanyContext, get_company_or_404, get_membership
from gtiq.settings import get_settings

logger = logging.getLogger("gtiq.people")


def normalize_email(value: str) -> str:
    return value.strip().lower()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def person_payload(membership: Membership, user: User) -> dict[str, Any]:
    return {
        "user_id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "role": membership.role,
        "is_active": user.is_active,
        "joined_at": membership.created_at,
    }


def list_people(
    db: Session,
    *,
    company_id: UUID,
    role: Role | None = None,
    active: bool | None = None,
) -> list[dict[str, Any]]:
    stmt = (
        select(Membership, User)
        .join(User, User.id == Membership.user_id)
        .where(Membership.company_id == company_id)
    )
    if role is not None:
        stmt = stmt.where(Membership.role == role)
    if active is not None:
        stmt = stmt.where(User.is_active.is_(active))
    stmt = stmt.order_by(Membership.created_at.asc())
    return [person_payload(row[0], row[1]) for row in db.execute(stmt).all()]


def _active_owner_count(db: Session, company_id: UUID) -> int:
    count = db.scalar(
        select(func.count())
        .select_from(Membership)
        .join(User, User.id == Membership.user_id)
        .where(
            Membership.company_id == company_id,
            Membership.role == Role.OWNER,
            User.is_active.is_(True),
        )
    )
    return int(count or 0)


def _load_person(db: Session, *, company_id: UUID, user_id: UUID) -> tuple[Membership, User]:
    membership = get_membership(db, user_id=user_id, company_id=company_id)
    user = db.get(User, user_id) if membership is not None else None
    if membership is None or user is None:
        raise ApiError(status_code=404, code="PERSON_NOT_FOUND", message="Person not found in this company.")
    return membership, user


def update_person(
    db: Session,
    *,
    context: CompanyContext,
    user_id: UUID,
    payload: UpdatePersonRequest,
) -> tuple[dict[str, Any], dict[str, Any]]:
    membership, user = _load_person(db, company_id=context.company_id, user_id=user_id)

    touches_owner = membership.role == Role.OWNER or payload.role == Role.OWNER
    if touches_owner and context.role != Role.OWNER:
        raise forbidden("Only owners can modify owners.")

    loses_owner = membership.role == Role.OWNER and (
        (payload.role is not None and payload.role != Role.OWNER) or payload.is_active is False
    )
    if loses_owner and _active_owner_count(db, context.company_id) <= 1:
        raise conflict("LAST_OWNER", "The company must keep at least one owner.")

    diff: dict[str, Any] = {}
    if payload.full_name is not None and payload.full_name != user.full_name:
        diff["full_name"] = {"old": user.full_name, "new": payload.full_name}
        user.full_name = payload.full_name
    if payload.role is not None and payload.role != membership.role:
        diff["role"] = {"old": membership.role.value, "new": payload.role.value}
        membership.role = payload.role
    if payload.is_active is not None and payload.is_active != user.is_active:
        diff["is_active"] = {"old": user.is_active, "new": payload.is_active}
        user.is_active = payload.is_active

    company = db.get(Company, context.company_id)
    if company is not None:
        if membership.role == Role.OWNER and company.owner_user_id is None:
            company.owner_user_id = user.id
        elif membership.role != Role.OWNER and company.owner_user_id == user.id:
            company.owner_user_id = None

    db.commit()
    logger.info(
        "person_updated",
        extra={"company_id": context.company_id, "user_id": user.id, "changed": sorted(diff)},
    )
    return person_payload(membership, user), diff


def delete_person(db: Session, *, context: CompanyContext, user_id: UUID) -> User:
    if user_id == context.user_id:
        raise ApiError(status_code=400, code="INVALID_INPUT", message="You cannot remove yourself.")

    membership, user = _load_person(db, company_id=context.company_id, user_id=user_id)
    if membership.role == Role.OWNER:
        if context.role != Role.OWNER:
            raise forbidden("Only owners can remove owners.")
        if _active_owner_count(db, context.company_id) <= 1:
            raise conflict("LAST_OWNER", "The company must keep at least one owner.")

    user.is_active = False
    db.commit()
    logger.info("person_deactivated", extra={"company_id": context.company_id, "user_id": user.id})
    return user


def _expire_stale_invites(db: Session, *, company_id: UUID, now: datetime) -> None:
    stale = db.scalars(
        select(Invite).where(
            Invite.company_id == company_id,
            Invite.status == InviteStatus.PENDING,
            Invite.expires_at < now,
        )
    ).all()
    if not stale:
        return
    for invite in stale:
        invite.status = InviteStatus.EXPIRED
    db.commit()


def list_invites(
    db: Session,
    *,
    company_id: UUID,
    status: InviteStatus | None = None,
    now: datetime | None = None,
) -> list[Invite]:
    _expire_stale_invites(db, company_id=company_id, now=now or _utcnow())
    stmt = select(Invite).where(Invite.company_id == company_id)
    if status is not None:
        stmt = stmt.where(Invite.status == status)
    stmt = stmt.order_by(Invite.created_at.desc())
    return list(db.scalars(stmt).all())


def create_invite(
    db: Session,
    *,
    context: CompanyContext,
    payload: InviteCreateRequest,
    now: datetime | None = None,
) -> Invite:
    if payload.role == Role.OWNER and context.role != Role.OWNER:
        raise forbidden("Only owners can invite owners.")

    email = normalize_email(payload.email)
    existing_user = db.scalar(select(User).where(func.lower(User.email) == email))
    if existing_user is not None and get_membership(db, user_id=existing_user.id, company_id=context.company_id):
        raise conflict("EMAIL_TAKEN", "This person is already a member of the company.")

    now = now or _utcnow()
    invite = Invite(
        id=uuid4(),
        company_id=context.company_id,
        email=email,
        role=payload.role,
        status=InviteStatus.PENDING,
        token=secrets.token_urlsafe(32),
        created_by=context.user_id,
        created_at=now,
        expires_at=now + timedelta(days=get_settings().invite_valid_days),
    )
    db.add(invite)
    db.commit()
    db.refresh(invite)
    logger.info("invite_created", extra={"company_id": context.company_id, "invite_id": invite.id})
    return invite


def revoke_invite(db: Session, *, company_id: UUID, invite_id: UUID) -> Invite:
    invite = db.get(Invite, invite_id)
    if invite is None or invite.company_id != company_id:
        raise ApiError(status_code=404, code="INVITE_NOT_FOUND", message="Invite not found.")
    if invite.status != InviteStatus.PENDING:
        raise conflict("INVITE_NOT_PENDING", "Only pending invites can be revoked.")

    invite.status = InviteStatus.REVOKED
    db.commit()
    db.refresh(invite)
    return invite


def accept_invite(
    db: Session,
    payload: AcceptInviteRequest,
    *,
    now: datetime | None = None,
) -> tuple[User, Membership]:
    now = now or _utcnow()
    invite = db.scalar(select(Invite).where(Invite.token == payload.token))
    if invite is None:
        raise ApiError(status_code=404, code="INVITE_NOT_FOUND", message="Invite not found.")
    if invite.status != InviteStatus.PENDING:
        raise conflict("INVITE_NOT_PENDING", "This invite is no longer pending.")
    if invite.expires_at < now:
        invite.status = InviteStatus.EXPIRED
        db.commit()
        raise conflict("INVITE_EXPIRED", "This invite has expired.")

    company = get_company_or_404(db, invite.company_id)
    user = db.scalar(select(User).where(func.lower(User.email) == invite.email))
    if user is None:
        user = User(
            id=uuid4(),
            email=invite.email,
            full_name=payload.full_name,
            password_hash=hash_password(payload.password) if payload.password else None,
            is_active=True,
            is_superadmin=False,
        )
        db.add(user)
    elif get_membership(db, user_id=user.id, company_id=invite.company_id) is not None:
        raise conflict("EMAIL_TAKEN", "This person is already a member of the company.")

    membership = Membership(
        id=uuid4(),
        user_id=user.id,
        company_id=invite.company_id,
        role=invite.role,
        created_at=now,
    )
    db.add(membership)
    if invite.role == Role.OWNER and company.owner_user_id is None:
        company.owner_user_id = user.id

    invite.status = InviteStatus.ACCEPTED
    invite.accepted_at = now
    db.commit()
    logger.info(
        "invite_accepted",
        extra={"company_id": invite.company_id, "invite_id": invite.id, "user_id": user.id},
    )
    return user, membership


@dataclass(frozen=True, slots=True)
class Reactivation:
    membership: Membership
    user: User
    already_active: bool
    invite: Invite | None = None


def _new_invite_token(invite: Invite, now: datetime) -> None:
    invite.token = secrets.token_urlsafe(32)
    invite.status = InviteStatus.PENDING
    invite.expires_at = now + timedelta(days=get_settings().invite_valid_days)
    invite.accepted_at = None


def reactivate_person(
    db: Session,
    *,
    context: CompanyContext,
    user_id: UUID,
    send_invite: bool = False,
    now: datetime | None = None,
) -> Reactivation:
    """Undo a soft delete; optionally issue a fresh invite so the person can set a password."""
    membership, user = _load_person(db, company_id=context.company_id, user_id=user_id)
    if membership.role == Role.OWNER and context.role != Role.OWNER:
        raise forbidden("Only owners can modify owners.")
    if user.is_active:
        return Reactivation(membership=membership, user=user, already_active=True)

    user.is_active = True
    invite: Invite | None = None
    if send_invite:
        now = now or _utcnow()
        invite = Invite(
            id=uuid4(),
            company_id=context.company_id,
            email=normalize_email(user.email),
            role=membership.role,
            created_by=context.user_id,
            created_at=now,
        )
        _new_invite_token(invite, now)
        db.add(invite)

    db.commit()
    logger.info(
        "person_reactivated",
        extra={"company_id": context.company_id, "user_id": user.id, "invite_created": invite is not None},
    )
    return Reactivation(membership=membership, user=user, already_active=False, invite=invite)


def resend_invite(db: Session, *, invite: Invite, now: datetime | None = None) -> Invite:
    """Rotate the token and expiry of an invite that has not been accepted yet."""
    if invite.status == InviteStatus.ACCEPTED:
        raise conflict("INVITE_NOT_PENDING", "Accepted invites cannot be resent.")

    _new_invite_token(invite, now or _utcnow())
    db.commit()
    db.refresh(invite)
    logger.info("invite_resent", extra={"company_id": invite.company_id, "invite_id": invite.id})
    return invite


def get_invite_or_404(db: Session, invite_id: UUID) -> Invite:
    invite = db.get(Invite, invite_id)
    if invite is None:
        raise ApiError(status_code=404, code="INVITE_NOT_FOUND", message="Invite not found.")
    return invite
