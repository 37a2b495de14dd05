from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch
from uuid import uuid4

from gtiq.errors import ApiError
from gtiq.models import Company, CompanyStatus, Membership, Role, User
from gtiq.security import create_access_token
from gtiq.services.impersonation import start_impersonation
from gtiq.services.memberships import (
    ADMIN_ROLES,
    MANAGER_ROLES,
    CompanyContext,
    require_role,
    resolve_context,
)
from gtiq.settings import Settings

TEST_SETTINGS = Settings(jwt_secret="resolver-test-secret-with-enough-length")


class _ScalarResult:
    def __init__(self, rows):
        self._rows = rows

    def all(self):  # type: ignore[no-untyped-def]
        return self._rows


class _FakeMembershipDB:
    def __init__(self, memberships: list[Membership], companies: list[Company] | None = None):
        self.memberships = memberships
        self.companies = {company.id: company for company in companies or []}

    def scalars(self, statement):  # type: ignore[no-untyped-def]
        if "memberships" in str(statement):
            return _ScalarResult(self.memberships)
        return _ScalarResult([])

    def get(self, model, pk):  # type: ignore[no-untyped-def]
        if model is Company:
            return self.companies.get(pk)
        return None


def _membership(user: User, company_id, role: Role, offset_minutes: int = 0) -> Membership:  # type: ignore[no-untyped-def]
    return Membership(
        id=uuid4(),
        user_id=user.id,
        company_id=company_id,
        role=role,
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=offset_minutes),
    )


class MembershipResolverTests(unittest.TestCase):
    def setUp(self) -> None:
        self.user = User(id=uuid4(), email="worker@example.com", is_active=True, is_superadmin=False)
        self.first_company = uuid4()
        self.second_company = uuid4()
        self.db = _FakeMembershipDB(
            [
                _membership(self.user, self.first_company, Role.WORKER, 0),
                _membership(self.user, self.second_company, Role.MANAGER, 5),
            ]
        )

    def test_defaults_to_first_membership(self) -> None:
        context = resolve_context(self.db, self.user)  # type: ignore[arg-type]
        self.assertEqual(context.company_id, self.first_company)
        self.assertEqual(context.role, Role.WORKER)
        self.assertFalse(context.is_impersonating)

    def test_explicit_company_selects_matching_membership(self) -> None:
        context = resolve_context(self.db, self.user, company_id=self.second_company)  # type: ignore[arg-type]
        self.assertEqual(context.role, Role.MANAGER)

    def test_explicit_company_without_membership_is_forbidden(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            resolve_context(self.db, self.user, company_id=uuid4())  # type: ignore[arg-type]
        self.assertEqual(ctx.exception.status_code, 403)
        self.assertEqual(ctx.exception.code, "FORBIDDEN")

    def test_user_without_memberships_gets_no_membership(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            resolve_context(_FakeMembershipDB([]), self.user)  # type: ignore[arg-type]
        self.assertEqual(ctx.exception.status_code, 404)
        self.assertEqual(ctx.exception.code, "NO_MEMBERSHIP")

    def test_require_role_checks_role_groups(self) -> None:
        worker = CompanyContext(user_id=self.user.id, company_id=self.first_company, role=Role.WORKER)
        manager = CompanyContext(user_id=self.user.id, company_id=self.first_company, role=Role.MANAGER)

        self.assertIs(require_role(manager, MANAGER_ROLES), manager)
        with self.assertRaises(ApiError):
            require_role(worker, MANAGER_ROLES)
        with self.assertRaises(ApiError):
            require_role(manager, ADMIN_ROLES)


class ImpersonationTests(unittest.TestCase):
    def setUp(self) -> None:
        patcher = patch("gtiq.security.get_settings", return_value=TEST_SETTINGS)
        patcher.start()
        self.addCleanup(patcher.stop)

        self.superadmin = User(id=uuid4(), email="root@example.com", is_active=True, is_superadmin=True)
        self.company = Company(id=uuid4(), name="Acme", status=CompanyStatus.ACTIVE)
        self.db = _FakeMembershipDB([], [self.company])

    def _grant(self, as_role: Role | None = None) -> str:
        grant = start_impersonation(
            self.db,  # type: ignore[arg-type]
            superadmin=self.superadmin,
            company_id=self.company.id,
            as_role=as_role,
        )
        return grant.token

    def test_descriptor_describes_company_and_role(self) -> None:
        grant = start_impersonation(
            self.db,  # type: ignore[arg-type]
            superadmin=self.superadmin,
            company_id=self.company.id,
            as_role=Role.MANAGER,
        )
        self.assertEqual(grant.descriptor["company_name"], "Acme")
        self.assertEqual(grant.descriptor["superadmin_id"], self.superadmin.id)
        self.assertEqual(grant.descriptor["as_role"], Role.MANAGER)
        self.assertEqual(grant.expires_in, TEST_SETTINGS.impersonation_token_minutes * 60)

    def test_unknown_company_is_not_found(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            start_impersonation(self.db, superadmin=self.superadmin, company_id=uuid4())  # type: ignore[arg-type]
        self.assertEqual(ctx.exception.code, "COMPANY_NOT_FOUND")

    def test_token_without_role_acts_as_owner(self) -> None:
        context = resolve_context(self.db, self.superadmin, impersonation_token=self._grant())  # type: ignore[arg-type]
        self.assertEqual(context.company_id, self.company.id)
        self.assertEqual(context.role, Role.OWNER)
        self.assertEqual(context.impersonated_by, self.superadmin.id)

    def test_token_with_role_acts_with_that_role(self) -> None:
        token = self._grant(Role.WORKER)
        context = resolve_context(self.db, self.superadmin, impersonation_token=token)  # type: ignore[arg-type]
        self.assertEqual(context.role, Role.WORKER)

    def test_token_is_bound_to_the_issuing_superadmin(self) -> None:
        token = self._grant()
        other_superadmin = User(id=uuid4(), email="other@example.com", is_active=True, is_superadmin=True)
        with self.assertRaises(ApiError) as ctx:
            resolve_context(self.db, other_superadmin, impersonation_token=token)  # type: ignore[arg-type]
        self.assertEqual(ctx.exception.code, "FORBIDDEN")

    def test_non_superadmin_cannot_use_token(self) -> None:
        token = self._grant()
        self.superadmin.is_superadmin = False
        with self.assertRaises(ApiError) as ctx:
            resolve_context(self.db, self.superadmin, impersonation_token=token)  # type: ignore[arg-type]
        self.assertEqual(ctx.exception.code, "FORBIDDEN")

    def test_company_header_must_match_token(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            resolve_context(
                self.db,  # type: ignore[arg-type]
                self.superadmin,
                company_id=uuid4(),
                impersonation_token=self._grant(),
            )
        self.assertEqual(ctx.exception.code, "FORBIDDEN")

    def test_access_token_is_not_accepted_as_impersonation_token(self) -> None:
        access_token, _expires_in, _claims = create_access_token(self.superadmin)
        with self.assertRaises(ApiError) as ctx:
            resolve_context(self.db, self.superadmin, impersonation_token=access_token)  # type: ignore[arg-type]
        self.assertEqual(ctx.exception.status_code, 401)
        self.assertEqual(ctx.exception.code, "INVALID_TOKEN")


if __name__ == "__main__":
    unittest.main()
