from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from gtiq.errors import ApiError, forbidden
from gtiq.models import Company, Membership, Role, User
from gtiq.security import IMPERSONATION_TOKEN_TYPE, decode_token, parse_subject

MANAGER_ROLES: frozenset[Role] = frozenset({Role.OWNER, Role.ADMIN, Role.MANAGER})
ADMIN_ROLES: frozenset[Role] = frozenset({Role.OWNER, Role.ADMIN})


@dataclass(frozen=True, slots=True)
class CompanyContext:
    user_id: UUID
    company_id: UUID
    role: Role
    impersonated_by: UUID | None = None

    @property
    def is_impersonating(self) -> bool:
        return self.impersonated_by is not None


def list_memberships(db: Session, user_id: UUID) -> list[Membership]:
    return list(
        db.scalars(
            select(Membership)
            .where(Membership.user_id == user_id)
            .order_by(Membership.created_at.asc(), Membership.id.asc())
        ).all()
    )


def get_membership(db: Session, *, user_id: UUID, company_id: UUID) -> Membership | None:
    return db.scalar(
        select(Membership).where(
            Membership.user_id == user_id,
            Membership.company_id == company_id,
        )
    )


def get_company_or_404(db: Session, company_id: UUID) -> Company:
    company = db.get(Company, company_id)
    if company is None:
        raise ApiError(status_code=404, code="COMPANY_NOT_FOUND", message="Company not found.")
    return company


def _resolve_impersonation(
    db: Session,
    principal: User,
    token: str,
    company_id: UUID | None,
) -> CompanyContext:
    if not principal.is_superadmin:
        raise forbidden("Impersonation requires superadmin access.")

    payload = decode_token(token, expected_type=IMPERSONATION_TOKEN_TYPE)
    if parse_subject(payload) != principal.id:
        raise forbidden("Impersonation token was issued to another user.")

    try:
        token_company_id = UUID(str(payload.get("company_id")))
        role = Role(payload.get("as_role") or Role.OWNER.value)
    except ValueError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Impersonation token is invalid.") from exc

    if company_id is not None and company_id != token_company_id:
        raise forbidden("Impersonation token is scoped to another company.")

    get_company_or_404(db, token_company_id)
    return CompanyContext(
        user_id=principal.id,
        company_id=token_company_id,
        role=role,
        impersonated_by=principal.id,
    )


def resolve_context(
    db: Session,
    principal: User,
    *,
    company_id: UUID | None = None,
    impersonation_token: str | None = None,
) -> CompanyContext:
    if impersonation_token:
        return _resolve_impersonation(db, principal, impersonation_token, company_id)

    memberships = list_memberships(db, principal.id)
    if company_id is not None:
        for membership in memberships:
            if membership.company_id == company_id:
                return CompanyContext(user_id=principal.id, company_id=company_id, role=membership.role)
        raise forbidden("You are not a member of this company.")

    if not memberships:
        raise ApiError(status_code=404, code="NO_MEMBERSHIP", message="User has no company membership.")

    first = memberships[0]
    return CompanyContext(user_id=principal.id, company_id=first.company_id, role=first.role)


def require_role(context: CompanyContext, roles: Iterable[Role]) -> CompanyContext:
    if context.role not in set(roles):
        raise forbidden()
    return context


def describe_principal(db: Session, user: User) -> dict[str, Any]:
    memberships: list[dict[str, Any]] = []
    for membership in list_memberships(db, user.id):
        company = db.get(Company, membership.company_id)
        memberships.append(
            {
                "company_id": membership.company_id,
                "company_name": company.name if company is not None else None,
                "company_status": company.status if company is not None else None,
                "role": membership.role,
            }
        )
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "is_superadmin": user.is_superadmin,
        "memberships": memberships,
    }
