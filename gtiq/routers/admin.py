from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from gtiq.audit import log_audit
from gtiq.db import get_db
from gtiq.dependencies import client_ip, request_id, user_agent
from gtiq.errors import ApiError, forbidden
from gtiq.models import Company, CompanyStatus, Role, User
from gtiq.schemas import (
    AuditLogRead,
    CompanyCreateRequest,
    CompanyDetailRead,
    CompanyOverviewRead,
    CompanyRead,
    CompanyStatsRead,
    CreateSuperadminRequest,
    ImpersonateRequest,
    ImpersonateResponse,
    PersonRead,
    SessionMonitorResponse,
    SetCompanyStatusRequest,
    StopImpersonateRequest,
    StopImpersonateResponse,
    TransferOwnershipRequest,
    TransferOwnershipResponse,
    UserRead,
)
from gtiq.security import bearer_scheme, require_superadmin, require_user
from gtiq.services.accounts import (
    bootstrap_token_matches,
    create_company,
    create_superadmin,
    get_company_detail,
    list_audit_logs,
    list_companies_overview,
    list_company_users,
    set_company_status,
    superadmin_exists,
    transfer_ownership,
)
from gtiq.services.impersonation import start_impersonation
from gtiq.services.session_monitor import sweep_sessions

router = APIRouter(tags=["admin"])


def _company_read(company: Company) -> CompanyRead:
    return CompanyRead.model_validate(company).model_copy(update={"has_kiosk_pin": bool(company.kiosk_pin_hash)})


def _audit(db: Session, request: Request, actor: User | str, **fields) -> None:
    log_audit(
        db,
        actor_user_id=actor.id if isinstance(actor, User) else actor,
        ip=client_ip(request),
        user_agent=user_agent(request),
        request_id=request_id(request),
        **fields,
    )


def _authorize_superadmin_creation(
    request: Request,
    db: Session,
    credentials: HTTPAuthorizationCredentials | None,
    bootstrap_token: str | None,
) -> User | str:
    if credentials is not None:
        caller = require_user(request, credentials, db)
        if not caller.is_superadmin:
            raise forbidden("Superadmin access required.")
        return caller

    if superadmin_exists(db):
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")
    if not bootstrap_token_matches(bootstrap_token):
        raise forbidden("Bootstrap token is invalid.")
    request.state.actor = "bootstrap"
    request.state.actor_id = "bootstrap"
    return "bootstrap"


@router.post("/admin-create-superadmin", response_model=UserRead)
def admin_create_superadmin(
    payload: CreateSuperadminRequest,
    request: Request,
    db: Session = Depends(get_db),
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    x_bootstrap_token: str | None = Header(default=None, alias="X-Bootstrap-Token"),
) -> UserRead:
    actor = _authorize_superadmin_creation(request, db, credentials, x_bootstrap_token)
    user = create_superadmin(db, payload)
    _audit(
        db,
        request,
        actor,
        action="admin.superadmin.create",
        entity_type="user",
        entity_id=str(user.id),
        diff={"email": user.email},
    )
    return UserRead.model_validate(user)


@router.post("/admin-create-company", response_model=CompanyRead)
def admin_create_company(
    payload: CompanyCreateRequest,
    request: Request,
    superadmin: User = Depends(require_superadmin),
    db: Session = Depends(get_db),
) -> CompanyRead:
    company = create_company(db, payload)
    _audit(
        db,
        request,
        superadmin,
        company_id=company.id,
        action="admin.company.create",
        entity_type="company",
        entity_id=str(company.id),
        diff={"name": company.name, "owner_user_id": company.owner_user_id},
    )
    return _company_read(company)


@router.post("/admin-set-company-status", response_model=CompanyRead)
def admin_set_company_status(
    payload: SetCompanyStatusRequest,
    request: Request,
    superadmin: User = Depends(require_superadmin),
    db: Session = Depends(get_db),
) -> CompanyRead:
    company, previous = set_company_status(db, company_id=payload.company_id, status=payload.status)
    _audit(
        db,
        request,
        superadmin,
        company_id=company.id,
        action="admin.company.set_status",
        entity_type="company",
        entity_id=str(company.id),
        diff={"status": {"old": previous, "new": company.status}},
        reason=payload.reason,
    )
    return _company_read(company)


@router.get("/admin-list-companies", response_model=list[CompanyOverviewRead])
def admin_list_companies(
    status: CompanyStatus | None = Query(default=None),
    _superadmin: User = Depends(require_superadmin),
    db: Session = Depends(get_db),
) -> list[CompanyOverviewRead]:
    return [
        CompanyOverviewRead.model_validate(row["company"]).model_copy(
            update={
                "has_kiosk_pin": bool(row["company"].kiosk_pin_hash),
                "users_count": row["users_count"],
                "last_event_at": row["last_event_at"],
                "owner_email": row["owner_email"],
            }
        )
        for row in list_companies_overview(db, status=status)
    ]


@router.get("/admin-get-company", response_model=CompanyDetailRead)
def admin_get_company(
    company_id: UUID = Query(),
    _superadmin: User = Depends(require_superadmin),
    db: Session = Depends(get_db),
) -> CompanyDetailRead:
    detail = get_company_detail(db, company_id=company_id)
    company = detail["company"]
    return CompanyDetailRead(
        **_company_read(company).model_dump(),
        owner=UserRead.model_validate(detail["owner"]) if detail["owner"] is not None else None,
        stats=CompanyStatsRead(**detail["stats"]),
        recent_logs=[AuditLogRead.model_validate(item) for item in detail["recent_logs"]],
    )


@router.get("/admin-list-users", response_model=list[PersonRead])
def admin_list_users(
    company_id: UUID = Query(),
    _superadmin: User = Depends(require_superadmin),
    db: Session = Depends(get_db),
) -> list[PersonRead]:
    return [PersonRead.model_validate(item) for item in list_company_users(db, company_id=company_id)]


@router.post("/admin-transfer-ownership", response_model=TransferOwnershipResponse)
def admin_transfer_ownership(
    payload: TransferOwnershipRequest,
    request: Request,
    superadmin: User = Depends(require_superadmin),
    db: Session = Depends(get_db),
) -> TransferOwnershipResponse:
    company, previous_owner_id = transfer_ownership(
        db,
        company_id=payload.company_id,
        new_owner_user_id=payload.new_owner_user_id,
    )
    _audit(
        db,
        request,
        superadmin,
        company_id=company.id,
        action="admin.company.transfer_ownership",
        entity_type="company",
        entity_id=str(company.id),
        diff={"owner_user_id": {"old": previous_owner_id, "new": company.owner_user_id}},
        reason=payload.reason or "Ownership transferred by superadmin",
    )
    return TransferOwnershipResponse(company=_company_read(company), previous_owner_user_id=previous_owner_id)


@router.get("/admin-list-logs", response_model=list[AuditLogRead])
def admin_list_logs(
    company_id: UUID | None = Query(default=None),
    action: str | None = Query(default=None, max_length=255),
    limit: int = Query(default=200, ge=1, le=1000),
    _superadmin: User = Depends(require_superadmin),
    db: Session = Depends(get_db),
) -> list[AuditLogRead]:
    logs = list_audit_logs(db, company_id=company_id, action=action, limit=limit)
    return [AuditLogRead.model_validate(item) for item in logs]


@router.post("/admin-impersonate", response_model=ImpersonateResponse)
def admin_impersonate(
    payload: ImpersonateRequest,
    request: Request,
    superadmin: User = Depends(require_superadmin),
    db: Session = Depends(get_db),
) -> ImpersonateResponse:
    grant = start_impersonation(
        db,
        superadmin=superadmin,
        company_id=payload.company_id,
        as_role=Role(payload.as_role) if payload.as_role else None,
    )
    _audit(
        db,
        request,
        superadmin,
        company_id=payload.company_id,
        acting_as_role=(payload.as_role or Role.OWNER.value),
        action="admin.impersonate.start",
        entity_type="company",
        entity_id=str(payload.company_id),
        diff={"as_role": payload.as_role},
    )
    return ImpersonateResponse(**grant.descriptor, token=grant.token, expires_in=grant.expires_in)


@router.post("/admin-stop-impersonate", response_model=StopImpersonateResponse)
def admin_stop_impersonate(
    request: Request,
    payload: StopImpersonateRequest | None = None,
    superadmin: User = Depends(require_superadmin),
    db: Session = Depends(get_db),
) -> StopImpersonateResponse:
    company_id = payload.company_id if payload is not None else None
    _audit(
        db,
        request,
        superadmin,
        company_id=company_id,
        action="admin.impersonate.stop",
        entity_type="company",
        entity_id=str(company_id) if company_id else None,
    )
    return StopImpersonateResponse()


@router.post("/admin-autoclose-sessions", response_model=SessionMonitorResponse)
def admin_autoclose_sessions(
    request: Request,
    superadmin: User = Depends(require_superadmin),
    db: Session = Depends(get_db),
) -> SessionMonitorResponse:
    report = sweep_sessions(db)
    _audit(
        db,
        request,
        superadmin,
        action="admin.sessions.autoclose",
        diff=report.to_dict(),
    )
    return SessionMonitorResponse.model_validate(report.to_dict())
