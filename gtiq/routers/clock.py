from uuid import UUID

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from gtiq.db import get_db
from gtiq.dependencies import client_ip, get_company_context
from gtiq.errors import ApiError, forbidden
from gtiq.models import Company, User
from gtiq.schemas import ClockRequest, ClockResponse, ClockStatusResponse, KioskClockRequest, WorkSessionRead
from gtiq.security import (
    ensure_attempt_allowed,
    register_attempt_failure,
    register_attempt_success,
    require_user,
    verify_kiosk_pin,
)
from gtiq.services.clock import (
    ClockEvidence,
    ClockOutcome,
    get_active_session,
    perform_clock_action,
    session_state,
)
from gtiq.services.memberships import CompanyContext, get_company_or_404, get_membership, resolve_context

router = APIRouter(tags=["clock"])


def _evidence(payload: ClockRequest) -> ClockEvidence:
    return ClockEvidence(
        source=payload.source,
        latitude=payload.latitude,
        longitude=payload.longitude,
        photo_url=payload.photo_url,
        device_id=payload.device_id,
        notes=payload.notes,
    )


def _clock_response(request: Request, outcome: ClockOutcome) -> ClockResponse:
    request.state.session_id = str(outcome.session.id)
    request.state.event_type = outcome.event.event_type.value
    return ClockResponse(
        status=outcome.state,
        event_type=outcome.event.event_type,
        timestamp=outcome.event.event_time,
        session_id=outcome.session.id,
        distance_m=outcome.geofence.distance_m,
        is_within_geofence=outcome.geofence.is_within_geofence,
    )


@router.post("/clock", response_model=ClockResponse)
def clock(
    payload: ClockRequest,
    request: Request,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
    x_company_id: UUID | None = Header(default=None, alias="X-Company-Id"),
    x_impersonation_token: str | None = Header(default=None, alias="X-Impersonation-Token"),
) -> ClockResponse:
    if payload.user_id is not None and payload.user_id != user.id:
        raise forbidden("Clocking for another user requires kiosk mode.")

    context = resolve_context(
        db,
        user,
        company_id=payload.company_id or x_company_id,
        impersonation_token=x_impersonation_token,
    )
    request.state.company_id = str(context.company_id)
    company = get_company_or_404(db, context.company_id)
    outcome = perform_clock_action(
        db,
        user=user,
        company=company,
        action=payload.action,
        evidence=_evidence(payload),
    )
    return _clock_response(request, outcome)


@router.post("/kiosk/clock", response_model=ClockResponse)
def kiosk_clock(
    payload: KioskClockRequest,
    request: Request,
    db: Session = Depends(get_db),
    x_kiosk_pin: str | None = Header(default=None, alias="X-Kiosk-Pin"),
) -> ClockResponse:
    attempt_key = f"kiosk:{payload.company_id}:{client_ip(request) or 'unknown'}"
    ensure_attempt_allowed(attempt_key)

    # Unknown companies fail exactly like a wrong PIN.
    company = db.get(Company, payload.company_id)
    if company is None or not verify_kiosk_pin(company, x_kiosk_pin):
        register_attempt_failure(attempt_key)
        raise ApiError(status_code=401, code="INVALID_KIOSK_PIN", message="Kiosk PIN is invalid.")
    register_attempt_success(attempt_key)

    request.state.actor = "kiosk"
    request.state.actor_id = str(company.id)
    request.state.company_id = str(company.id)

    worker = db.get(User, payload.user_id)
    if worker is None or get_membership(db, user_id=worker.id, company_id=company.id) is None:
        raise ApiError(status_code=404, code="PERSON_NOT_FOUND", message="Person not found in this company.")

    outcome = perform_clock_action(
        db,
        user=worker,
        company=company,
        action=payload.action,
        evidence=_evidence(payload),
    )
    return _clock_response(request, outcome)


@router.get("/clock/status", response_model=ClockStatusResponse)
def clock_status(
    context: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db),
) -> ClockStatusResponse:
    session = get_active_session(db, user_id=context.user_id, company_id=context.company_id)
    return ClockStatusResponse(
        status=session_state(session),
        company_id=context.company_id,
        session=WorkSessionRead.model_validate(session) if session is not None else None,
    )
