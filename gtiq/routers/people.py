from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from gtiq.audit import log_audit
from gtiq.db import get_db
from gtiq.dependencies import (
    audit_company_action,
    client_ip,
    request_id,
    require_company_admin,
    require_manager,
    user_agent,
)
from gtiq.errors import forbidden
from gtiq.models import InviteStatus, Role, User
from gtiq.schemas import (
    AcceptInviteRequest,
    AcceptInviteResponse,
    CreateCompanyUserRequest,
    CreateCompanyUserResponse,
    DeletePersonResponse,
    InviteCreateRequest,
    InviteCreateResponse,
    InviteRead,
    ListInvitesRequest,
    ListPeopleRequest,
    PersonMutationResponse,
    PersonRead,
    ReactivatePersonRequest,
    ReactivatePersonResponse,
    ResendInviteRequest,
    UpdatePersonRequest,
    UserRead,
)
from gtiq.security import require_user
from gtiq.services.accounts import create_company_user
from gtiq.services.memberships import ADMIN_ROLES, CompanyContext, get_membership
from gtiq.services.people import (
    accept_invite,
    create_invite,
    delete_person,
    get_invite_or_404,
    list_invites,
    list_people,
    person_payload,
    reactivate_person,
    resend_invite,
    revoke_invite,
    update_person,
)

router = APIRouter(tags=["people"])


@router.get("/list-people", response_model=list[PersonRead])
def list_people_get(
    role: Role | None = Query(default=None),
    active: bool | None = Query(default=None),
    context: CompanyContext = Depends(require_manager),
    db: Session = Depends(get_db),
) -> list[PersonRead]:
    rows = list_people(db, company_id=context.company_id, role=role, active=active)
    return [PersonRead.model_validate(item) for item in rows]


@router.post("/list-people", response_model=list[PersonRead])
def list_people_post(
    payload: ListPeopleRequest | None = None,
    context: CompanyContext = Depends(require_manager),
    db: Session = Depends(get_db),
) -> list[PersonRead]:
    payload = payload or ListPeopleRequest()
    rows = list_people(db, company_id=context.company_id, role=payload.role, active=payload.active)
    return [PersonRead.model_validate(item) for item in rows]


@router.post("/update-person/{user_id}", response_model=PersonMutationResponse)
def update_person_endpoint(
    user_id: UUID,
    payload: UpdatePersonRequest,
    request: Request,
    context: CompanyContext = Depends(require_company_admin),
    db: Session = Depends(get_db),
) -> PersonMutationResponse:
    person, diff = update_person(db, context=context, user_id=user_id, payload=payload)
    audit_company_action(
        db,
        request,
        context,
        action="person.update",
        entity_type="user",
        entity_id=str(user_id),
        diff=diff,
    )
    return PersonMutationResponse(person=PersonRead.model_validate(person))


@router.post("/delete-person/{user_id}", response_model=DeletePersonResponse)
def delete_person_endpoint(
    user_id: UUID,
    request: Request,
    context: CompanyContext = Depends(require_company_admin),
    db: Session = Depends(get_db),
) -> DeletePersonResponse:
    user = delete_person(db, context=context, user_id=user_id)
    audit_company_action(
        db,
        request,
        context,
        action="person.deactivate",
        entity_type="user",
        entity_id=str(user.id),
        diff={"is_active": {"old": True, "new": False}},
    )
    return DeletePersonResponse(user_id=user.id)


@router.post("/reactivate-person/{user_id}", response_model=ReactivatePersonResponse)
def reactivate_person_endpoint(
    user_id: UUID,
    request: Request,
    payload: ReactivatePersonRequest | None = None,
    context: CompanyContext = Depends(require_company_admin),
    db: Session = Depends(get_db),
) -> ReactivatePersonResponse:
    payload = payload or ReactivatePersonRequest()
    result = reactivate_person(db, context=context, user_id=user_id, send_invite=payload.send_invite)
    if not result.already_active:
        audit_company_action(
            db,
            request,
            context,
            action="person.reactivate",
            entity_type="user",
            entity_id=str(user_id),
            diff={
                "is_active": {"old": False, "new": True},
                "invite_id": result.invite.id if result.invite is not None else None,
            },
        )
    return ReactivatePersonResponse(
        already_active=result.already_active,
        person=PersonRead.model_validate(person_payload(result.membership, result.user)),
        invite=InviteCreateResponse.model_validate(result.invite) if result.invite is not None else None,
    )


@router.post("/resend-invite", response_model=InviteCreateResponse)
def resend_invite_endpoint(
    payload: ResendInviteRequest,
    request: Request,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
) -> InviteCreateResponse:
    invite = get_invite_or_404(db, payload.invite_id)
    if not user.is_superadmin:
        membership = get_membership(db, user_id=user.id, company_id=invite.company_id)
        if membership is None or membership.role not in ADMIN_ROLES:
            raise forbidden()

    invite = resend_invite(db, invite=invite)
    log_audit(
        db,
        company_id=invite.company_id,
        actor_user_id=user.id,
        action="invite.resend",
        entity_type="invite",
        entity_id=str(invite.id),
        diff={"email": invite.email, "expires_at": invite.expires_at},
        ip=client_ip(request),
        user_agent=user_agent(request),
        request_id=request_id(request),
    )
    return InviteCreateResponse.model_validate(invite)


@router.get("/list-invites", response_model=list[InviteRead])
def list_invites_get(
    status: InviteStatus | None = Query(default=None),
    context: CompanyContext = Depends(require_company_admin),
    db: Session = Depends(get_db),
) -> list[InviteRead]:
    return [InviteRead.model_validate(item) for item in list_invites(db, company_id=context.company_id, status=status)]


@router.post("/list-invites", response_model=list[InviteRead])
def list_invites_post(
    payload: ListInvitesRequest | None = None,
    context: CompanyContext = Depends(require_company_admin),
    db: Session = Depends(get_db),
) -> list[InviteRead]:
    payload = payload or ListInvitesRequest()
    invites = list_invites(db, company_id=context.company_id, status=payload.status)
    return [InviteRead.model_validate(item) for item in invites]


@router.post("/create-invite", response_model=InviteCreateResponse)
def create_invite_endpoint(
    payload: InviteCreateRequest,
    request: Request,
    context: CompanyContext = Depends(require_company_admin),
    db: Session = Depends(get_db),
) -> InviteCreateResponse:
    invite = create_invite(db, context=context, payload=payload)
    audit_company_action(
        db,
        request,
        context,
        action="invite.create",
        entity_type="invite",
        entity_id=str(invite.id),
        diff={"email": invite.email, "role": invite.role},
    )
    return InviteCreateResponse.model_validate(invite)


@router.post("/revoke-invite/{invite_id}", response_model=InviteRead)
def revoke_invite_endpoint(
    invite_id: UUID,
    request: Request,
    context: CompanyContext = Depends(require_company_admin),
    db: Session = Depends(get_db),
) -> InviteRead:
    invite = revoke_invite(db, company_id=context.company_id, invite_id=invite_id)
    audit_company_action(
        db,
        request,
        context,
        action="invite.revoke",
        entity_type="invite",
        entity_id=str(invite.id),
    )
    return InviteRead.model_validate(invite)


@router.post("/accept-invite", response_model=AcceptInviteResponse)
def accept_invite_endpoint(
    payload: AcceptInviteRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AcceptInviteResponse:
    user, membership = accept_invite(db, payload)
    request.state.actor = "user"
    request.state.actor_id = str(user.id)
    log_audit(
        db,
        company_id=membership.company_id,
        actor_user_id=user.id,
        action="invite.accept",
        entity_type="membership",
        entity_id=str(membership.id),
        diff={"role": membership.role},
        ip=client_ip(request),
        user_agent=user_agent(request),
        request_id=request_id(request),
    )
    return AcceptInviteResponse(user_id=user.id, company_id=membership.company_id, role=membership.role)


@router.post("/create-company-user", response_model=CreateCompanyUserResponse)
def create_company_user_endpoint(
    payload: CreateCompanyUserRequest,
    request: Request,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
) -> CreateCompanyUserResponse:
    if not user.is_superadmin:
        membership = get_membership(db, user_id=user.id, company_id=payload.company_id)
        if membership is None or membership.role not in ADMIN_ROLES:
            raise forbidden()
        if payload.role == Role.OWNER and membership.role != Role.OWNER:
            raise forbidden("Only owners can create owners.")

    created, membership = create_company_user(db, payload)
    log_audit(
        db,
        company_id=payload.company_id,
        actor_user_id=user.id,
        action="company_user.create",
        entity_type="user",
        entity_id=str(created.id),
        diff={"email": created.email, "role": membership.role},
        ip=client_ip(request),
        user_agent=user_agent(request),
        request_id=request_id(request),
    )
    return CreateCompanyUserResponse(
        user=UserRead.model_validate(created),
        company_id=membership.company_id,
        role=membership.role,
    )
