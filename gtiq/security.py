from __future__ import annotations

import threading
from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID, uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from passlib.exc import UnknownHashError
from sqlalchemy.orm import Session

from gtiq.db import get_db
from gtiq.errors import ApiError, forbidden
from gtiq.models import Company, Role, User
from gtiq.settings import get_settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)

ACCESS_TOKEN_TYPE = "access"
IMPERSONATION_TOKEN_TYPE = "impersonation"

_LOCK = threading.Lock()
_FAILED_ATTEMPTS: dict[str, deque[datetime]] = defaultdict(deque)
_MAX_ATTEMPTS = 10
_ATTEMPT_WINDOW = timedelta(minutes=10)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _cleanup_attempts(key: str, now: datetime) -> None:
    queue = _FAILED_ATTEMPTS[key]
    threshold = now - _ATTEMPT_WINDOW
    while queue and queue[0] < threshold:
        queue.popleft()
    if not queue:
        _FAILED_ATTEMPTS.pop(key, None)


def ensure_attempt_allowed(key: str) -> None:
    now = _utcnow()
    with _LOCK:
        _cleanup_attempts(key, now)
        queue = _FAILED_ATTEMPTS.get(key, deque())
        if len(queue) >= _MAX_ATTEMPTS:
            raise ApiError(
                status_code=429,
                code="TOO_MANY_ATTEMPTS",
                message="Too many failed attempts. Please try again later.",
            )


def register_attempt_failure(key: str) -> None:
    now = _utcnow()
    with _LOCK:
        _cleanup_attempts(key, now)
        _FAILED_ATTEMPTS[key].append(now)


def register_attempt_success(key: str) -> None:
    with _LOCK:
        _FAILED_ATTEMPTS.pop(key, None)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    try:
        return pwd_context.verify(password, password_hash)
    except (ValueError, TypeError, UnknownHashError):
        return False


def verify_kiosk_pin(company: Company, pin: str | None) -> bool:
    if not pin or not company.kiosk_pin_hash:
        return False
    return verify_password(pin, company.kiosk_pin_hash)


def _build_claims(*, token_type: str, expires_delta: timedelta, sub: str, extra: dict[str, Any]) -> dict[str, Any]:
    settings = get_settings()
    now = _utcnow()
    exp = now + expires_delta
    return {
        **extra,
        "sub": sub,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
        "jti": str(uuid4()),
        "typ": token_type,
    }


def create_access_token(user: User) -> tuple[str, int, dict[str, Any]]:
    settings = get_settings()
    claims = _build_claims(
        token_type=ACCESS_TOKEN_TYPE,
        expires_delta=timedelta(minutes=settings.access_token_minutes),
        sub=str(user.id),
        extra={"email": user.email},
    )
    token = jwt.encode(claims, settings.jwt_secret, algorithm="HS256")
    return token, settings.access_token_minutes * 60, claims


def create_impersonation_token(
    *,
    superadmin_id: UUID,
    company_id: UUID,
    as_role: Role | None,
    started_at: datetime,
) -> tuple[str, int, dict[str, Any]]:
    settings = get_settings()
    claims = _build_claims(
        token_type=IMPERSONATION_TOKEN_TYPE,
        expires_delta=timedelta(minutes=settings.impersonation_token_minutes),
        sub=str(superadmin_id),
        extra={
            "company_id": str(company_id),
            "as_role": as_role.value if as_role is not None else None,
            "started_at": started_at.isoformat(),
        },
    )
    token = jwt.encode(claims, settings.jwt_secret, algorithm="HS256")
    return token, settings.impersonation_token_minutes * 60, claims


def decode_token(token: str, *, expected_type: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_iat": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc

    if payload.get("typ") != expected_type:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token type is invalid.")

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.")

    return payload


def parse_subject(payload: dict[str, Any]) -> UUID:
    try:
        return UUID(str(payload["sub"]))
    except (KeyError, ValueError) as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.") from exc


def require_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")

    payload = decode_token(credentials.credentials, expected_type=ACCESS_TOKEN_TYPE)
    user = db.get(User, parse_subject(payload))
    if user is None:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is unknown.")
    if not user.is_active:
        raise ApiError(status_code=403, code="USER_INACTIVE", message="User account is inactive.")

    request.state.actor = "superadmin" if user.is_superadmin else "user"
    request.state.actor_id = str(user.id)
    return user


def require_superadmin(user: User = Depends(require_user)) -> User:
    if not user.is_superadmin:
        raise forbidden("Superadmin access required.")
    return user
