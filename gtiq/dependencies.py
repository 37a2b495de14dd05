from __future__ import annotations

from typing import Any, Callable, Iterable
from uuid import UUID

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from gtiq.audit import log_audit
from gtiq.db import get_db
from gtiq.models import Role, User
from gtiq.security import require_user
from gtiq.services.memberships import (
    ADMIN_ROLES,
    MANAGER_ROLES,
    CompanyContext,
    require_role,
    resolve_context,
)


def client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent")


def request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def get_company_context(
    request: Request,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
    x_company_id: UUID | None = Header(default=None, alias="X-Company-Id"),
    x_impersonation_token: str | None = Header(default=None, alias="X-Impersonation-Token"),
) -> CompanyContext:
    context = resolve_context(
        db,
        user,
        company_id=x_company_id,
        impersonation_token=x_impersonation_token,
    )
    request.state.company_id = str(context.company_id)
    if context.is_impersonating:
        request.state.actor = "impersonation"
    return context


def require_roles(roles: Iterable[Role]) -> Callable[..., CompanyContext]:
    allowed = frozenset(roles)

    def _dependency(context: CompanyContext = Depends(get_company_context)) -> CompanyContext:
        return require_role(context, allowed)

    return _dependency


require_manager = require_roles(MANAGER_ROLES)
require_company_admin = require_roles(ADMIN_ROLES)


def audit_company_action(
    db: Session,
    request: Request,
    context: CompanyContext,
    *,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    diff: dict[str, Any] | None = None,
    reason: str | None = None,
) -> None:
    log_audit(
        db,
        company_id=context.company_id,
        actor_user_id=context.impersonated_by or context.user_id,
        acting_as_role=context.role.value if context.is_impersonating else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        diff=diff,
        reason=reason,
        ip=client_ip(request),
        user_agent=user_agent(request),
        request_id=request_id(request),
    )
