from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from gtiq.audit import log_audit
from gtiq.db import get_db
from gtiq.dependencies import client_ip, request_id, user_agent
from gtiq.errors import ApiError
from gtiq.models import User
from gtiq.schemas import LoginRequest, MeResponse, TokenResponse
from gtiq.security import (
    create_access_token,
    ensure_attempt_allowed,
    register_attempt_failure,
    register_attempt_success,
    require_user,
)
from gtiq.services.accounts import authenticate
from gtiq.services.memberships import describe_principal

router = APIRouter(tags=["auth"])


@router.post("/auth/login", response_model=TokenResponse)
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)) -> TokenResponse:
    ip = client_ip(request) or "unknown"
    attempt_key = f"login:{ip}"
    ensure_attempt_allowed(attempt_key)

    try:
        user = authenticate(db, email=payload.email, password=payload.password)
    except ApiError:
        register_attempt_failure(attempt_key)
        log_audit(
            db,
            actor_user_id=payload.email.strip().lower(),
            action="auth.login",
            success=False,
            ip=client_ip(request),
            user_agent=user_agent(request),
            request_id=request_id(request),
        )
        raise

    register_attempt_success(attempt_key)
    token, expires_in, _claims = create_access_token(user)
    request.state.actor = "user"
    request.state.actor_id = str(user.id)
    log_audit(
        db,
        actor_user_id=user.id,
        action="auth.login",
        entity_type="user",
        entity_id=str(user.id),
        ip=client_ip(request),
        user_agent=user_agent(request),
        request_id=request_id(request),
    )
    return TokenResponse(access_token=token, expires_in=expires_in)


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(require_user), db: Session = Depends(get_db)) -> MeResponse:
    return MeResponse.model_validate(describe_principal(db, user))
