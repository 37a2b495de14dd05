from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from gtiq.errors import ApiError
from gtiq.models import (
    CompanyDayRules,
    ComplianceSettings,
    HolidayPolicy,
    SpecialDayPolicy,
    WorkerDayRules,
)
from gtiq.schemas import (
    ComplianceSettingsUpsertRequest,
    CompanyDayRulesUpsertRequest,
    WorkerDayRulesUpsertRequest,
)
from gtiq.services.memberships import get_membership

DEFAULT_ALLOW_SUNDAY_CLOCK = False
DEFAULT_HOLIDAY_CLOCK_POLICY = HolidayPolicy.REQUIRE_REASON
DEFAULT_SPECIAL_DAY_POLICY = SpecialDayPolicy.ALLOW


@dataclass(frozen=True, slots=True)
class EffectiveDayRules:
    allow_sunday_clock: bool
    holiday_clock_policy: HolidayPolicy
    special_day_policy: SpecialDayPolicy


def get_compliance_settings(db: Session, company_id: UUID) -> ComplianceSettings | None:
    return db.scalar(select(ComplianceSettings).where(ComplianceSettings.company_id == company_id))


def upsert_compliance_settings(
    db: Session,
    company_id: UUID,
    payload: ComplianceSettingsUpsertRequest,
) -> ComplianceSettings:
    rules = get_compliance_settings(db, company_id)
    if rules is None:
        rules = ComplianceSettings(company_id=company_id)
        db.add(rules)

    rules.max_week_hours = payload.max_week_hours
    rules.max_month_hours = payload.max_month_hours
    rules.min_hours_between_shifts = payload.min_hours_between_shifts
    rules.allowed_checkin_start = payload.allowed_checkin_start
    rules.allowed_checkin_end = payload.allowed_checkin_end
    rules.allow_outside_schedule = payload.allow_outside_schedule

    db.commit()
    db.refresh(rules)
    return rules


def get_company_day_rules(db: Session, company_id: UUID) -> CompanyDayRules | None:
    return db.scalar(select(CompanyDayRules).where(CompanyDayRules.company_id == company_id))


def upsert_company_day_rules(
    db: Session,
    company_id: UUID,
    payload: CompanyDayRulesUpsertRequest,
) -> CompanyDayRules:
    rules = get_company_day_rules(db, company_id)
    if rules is None:
        rules = CompanyDayRules(company_id=company_id)
        db.add(rules)

    rules.allow_sunday_clock = payload.allow_sunday_clock
    rules.holiday_clock_policy = payload.holiday_clock_policy
    rules.special_day_policy = payload.special_day_policy

    db.commit()
    db.refresh(rules)
    return rules


def list_worker_day_rules(db: Session, company_id: UUID) -> list[WorkerDayRules]:
    return list(
        db.scalars(
            select(WorkerDayRules)
            .where(WorkerDayRules.company_id == company_id)
            .order_by(WorkerDayRules.updated_at.desc())
        ).all()
    )


def upsert_worker_day_rules(
    db: Session,
    company_id: UUID,
    user_id: UUID,
    payload: WorkerDayRulesUpsertRequest,
) -> WorkerDayRules:
    if get_membership(db, user_id=user_id, company_id=company_id) is None:
        raise ApiError(status_code=404, code="PERSON_NOT_FOUND", message="Person not found in this company.")

    rules = db.scalar(
        select(WorkerDayRules).where(
            WorkerDayRules.company_id == company_id,
            WorkerDayRules.user_id == user_id,
        )
    )
    if rules is None:
        rules = WorkerDayRules(company_id=company_id, user_id=user_id)
        db.add(rules)

    rules.allow_sunday_clock = payload.allow_sunday_clock
    rules.holiday_clock_policy = payload.holiday_clock_policy
    rules.special_day_policy = payload.special_day_policy

    db.commit()
    db.refresh(rules)
    return rules


def effective_day_rules(
    company_rules: CompanyDayRules | None,
    worker_rules: WorkerDayRules | None = None,
) -> EffectiveDayRules:
    allow_sunday = DEFAULT_ALLOW_SUNDAY_CLOCK
    holiday_policy = DEFAULT_HOLIDAY_CLOCK_POLICY
    special_policy = DEFAULT_SPECIAL_DAY_POLICY

    if company_rules is not None:
        allow_sunday = company_rules.allow_sunday_clock
        holiday_policy = company_rules.holiday_clock_policy
        special_policy = company_rules.special_day_policy

    # None on the worker row means "inherit the company value".
    if worker_rules is not None:
        if worker_rules.allow_sunday_clock is not None:
            allow_sunday = worker_rules.allow_sunday_clock
        if worker_rules.holiday_clock_policy is not None:
            holiday_policy = worker_rules.holiday_clock_policy
        if worker_rules.special_day_policy is not None:
            special_policy = worker_rules.special_day_policy

    return EffectiveDayRules(
        allow_sunday_clock=allow_sunday,
        holiday_clock_policy=holiday_policy,
        special_day_policy=special_policy,
    )
