from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from gtiq.models import AuditLog

logger = logging.getLogger("gtiq.audit")


def log_audit(
    db: Session,
    *,
    actor_user_id: UUID | str,
    action: str,
    company_id: UUID | None = None,
    acting_as_role: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    diff: dict[str, Any] | None = None,
    reason: str | None = None,
    success: bool = True,
    ip: str | None = None,
    user_agent: str | None = None,
    request_id: str | None = None,
) -> None:
    audit = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        company_id=company_id,
        actor_user_id=str(actor_user_id),
        acting_as_role=acting_as_role,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        diff=jsonable_encoder(diff or {}),
        reason=reason,
        ip=ip,
        user_agent=user_agent,
        success=success,
    )
    db.add(audit)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={
                "request_id": request_id,
                "action": action,
                "actor_user_id": str(actor_user_id),
                "company_id": company_id,
                "success": success,
            },
        )
        return

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action,
            "actor_user_id": str(actor_user_id),
            "acting_as_role": acting_as_role,
            "company_id": company_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "ip": ip,
            "success": success,
            "diff": diff or {},
        },
    )
