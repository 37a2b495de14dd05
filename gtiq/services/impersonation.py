from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from gtiq.errors import forbidden
from gtiq.models import Role, User
from gtiq.security import create_impersonation_token
from gtiq.services.memberships import get_company_or_404


@dataclass(frozen=True, slots=True)
class ImpersonationGrant:
    descriptor: dict[str, Any]
    token: str
    expires_in: int


def start_impersonation(
    db: Session,
    *,
    superadmin: User,
    company_id: UUID,
    as_role: Role | None = None,
    now: datetime | None = None,
) -> ImpersonationGrant:
    """Issue a signed token that lets a superadmin act inside one company.

    The token is bound to the superadmin's id and the company; the role
    defaults to owner when none is requested.
    """
    if not superadmin.is_superadmin:
        raise forbidden("Superadmin access required.")
    if as_role == Role.OWNER:
        as_role = None

    company = get_company_or_404(db, company_id)
    started_at = now or datetime.now(timezone.utc)
    token, expires_in, _claims = create_impersonation_token(
        superadmin_id=superadmin.id,
        company_id=company.id,
        as_role=as_role,
        started_at=started_at,
    )
    descriptor = {
        "superadmin_id": superadmin.id,
        "company_id": company.id,
        "company_name": company.name,
        "as_role": as_role,
        "started_at": started_at,
    }
    return ImpersonationGrant(descriptor=descriptor, token=token, expires_in=expires_in)
