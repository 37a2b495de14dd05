from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from gtiq.db import get_db
from gtiq.dependencies import audit_company_action, require_company_admin, require_manager
from gtiq.models import CompanyDayRules, WorkerDayRules
from gtiq.schemas import (
    CompanyDayRulesRead,
    CompanyDayRulesUpsertRequest,
    ComplianceSettingsRead,
    ComplianceSettingsUpsertRequest,
    EffectiveDayRulesRead,
    WorkerDayRulesRead,
    WorkerDayRulesUpsertRequest,
)
from gtiq.services.compliance import (
    effective_day_rules,
    get_company_day_rules,
    get_compliance_settings,
    list_worker_day_rules,
    upsert_company_day_rules,
    upsert_compliance_settings,
    upsert_worker_day_rules,
)
from gtiq.services.memberships import CompanyContext

router = APIRouter(tags=["compliance"])


def _worker_rules_read(rules: WorkerDayRules, company_rules: CompanyDayRules | None) -> WorkerDayRulesRead:
    effective = effective_day_rules(company_rules, rules)
    return WorkerDayRulesRead(
        company_id=rules.company_id,
        user_id=rules.user_id,
        allow_sunday_clock=rules.allow_sunday_clock,
        holiday_clock_policy=rules.holiday_clock_policy,
        special_day_policy=rules.special_day_policy,
        effective=EffectiveDayRulesRead.model_validate(effective),
    )


@router.get("/compliance-settings", response_model=ComplianceSettingsRead)
def get_settings_for_company(
    context: CompanyContext = Depends(require_manager),
    db: Session = Depends(get_db),
) -> ComplianceSettingsRead:
    rules = get_compliance_settings(db, context.company_id)
    if rules is None:
        return ComplianceSettingsRead(company_id=context.company_id)
    return ComplianceSettingsRead.model_validate(rules)


@router.put("/compliance-settings", response_model=ComplianceSettingsRead)
def put_settings_for_company(
    payload: ComplianceSettingsUpsertRequest,
    request: Request,
    context: CompanyContext = Depends(require_company_admin),
    db: Session = Depends(get_db),
) -> ComplianceSettingsRead:
    rules = upsert_compliance_settings(db, context.company_id, payload)
    audit_company_action(
        db,
        request,
        context,
        action="compliance.settings.upsert",
        entity_type="company_compliance_settings",
        entity_id=str(context.company_id),
        diff=payload.model_dump(mode="json"),
    )
    return ComplianceSettingsRead.model_validate(rules)


@router.get("/day-rules", response_model=CompanyDayRulesRead)
def get_day_rules(
    context: CompanyContext = Depends(require_manager),
    db: Session = Depends(get_db),
) -> CompanyDayRulesRead:
    rules = get_company_day_rules(db, context.company_id)
    effective = effective_day_rules(rules)
    return CompanyDayRulesRead(
        company_id=context.company_id,
        allow_sunday_clock=effective.allow_sunday_clock,
        holiday_clock_policy=effective.holiday_clock_policy,
        special_day_policy=effective.special_day_policy,
    )


@router.put("/day-rules", response_model=CompanyDayRulesRead)
def put_day_rules(
    payload: CompanyDayRulesUpsertRequest,
    request: Request,
    context: CompanyContext = Depends(require_company_admin),
    db: Session = Depends(get_db),
) -> CompanyDayRulesRead:
    rules = upsert_company_day_rules(db, context.company_id, payload)
    audit_company_action(
        db,
        request,
        context,
        action="compliance.day_rules.upsert",
        entity_type="company_day_rules",
        entity_id=str(context.company_id),
        diff=payload.model_dump(mode="json"),
    )
    return CompanyDayRulesRead.model_validate(rules)


@router.get("/day-rules/workers", response_model=list[WorkerDayRulesRead])
def get_worker_day_rules(
    context: CompanyContext = Depends(require_manager),
    db: Session = Depends(get_db),
) -> list[WorkerDayRulesRead]:
    company_rules = get_company_day_rules(db, context.company_id)
    return [_worker_rules_read(item, company_rules) for item in list_worker_day_rules(db, context.company_id)]


@router.put("/day-rules/workers/{user_id}", response_model=WorkerDayRulesRead)
def put_worker_day_rules(
    user_id: UUID,
    payload: WorkerDayRulesUpsertRequest,
    request: Request,
    context: CompanyContext = Depends(require_company_admin),
    db: Session = Depends(get_db),
) -> WorkerDayRulesRead:
    rules = upsert_worker_day_rules(db, context.company_id, user_id, payload)
    audit_company_action(
        db,
        request,
        context,
        action="compliance.worker_day_rules.upsert",
        entity_type="worker_day_rules",
        entity_id=str(user_id),
        diff=payload.model_dump(mode="json"),
    )
    return _worker_rules_read(rules, get_company_day_rules(db, context.company_id))
