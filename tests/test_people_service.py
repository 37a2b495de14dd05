from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch
from uuid import uuid4

from gtiq.errors import ApiError
from gtiq.models import Company, CompanyStatus, Invite, InviteStatus, Membership, Role, User
from gtiq.schemas import AcceptInviteRequest, InviteCreateRequest, UpdatePersonRequest
from gtiq.services.memberships import CompanyContext
from gtiq.services.people import (
    accept_invite,
    create_invite,
    delete_person,
    reactivate_person,
    resend_invite,
    revoke_invite,
    update_person,
)

NOW = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


class _FakePeopleDB:
    def __init__(self, *, company: Company | None = None, invite: Invite | None = None):
        self.company = company
        self.invite = invite
        self.rows: list[object] = []
        self.commit_calls = 0

    def get(self, model, pk):  # type: ignore[no-untyped-def]
        if model is Company and self.company is not None and pk == self.company.id:
            return self.company
        if model is Invite and self.invite is not None and pk == self.invite.id:
            return self.invite
        return None

    def scalar(self, statement):  # type: ignore[no-untyped-def]
        if "FROM invites" in str(statement):
            return self.invite
        return None

    def add(self, obj: object) -> None:
        self.rows.append(obj)

    def commit(self) -> None:
        self.commit_calls += 1

    def refresh(self, _obj: object) -> None:
        return


def _person(company_id, role: Role) -> tuple[Membership, User]:  # type: ignore[no-untyped-def]
    user = User(id=uuid4(), email=f"{role.value}@example.com", full_name=role.value.title(), is_active=True)
    membership = Membership(id=uuid4(), user_id=user.id, company_id=company_id, role=role, created_at=NOW)
    return membership, user


class UpdatePersonTests(unittest.TestCase):
    def setUp(self) -> None:
        self.company = Company(id=uuid4(), name="Acme", status=CompanyStatus.ACTIVE)
        self.db = _FakePeopleDB(company=self.company)
        self.owner_context = CompanyContext(user_id=uuid4(), company_id=self.company.id, role=Role.OWNER)
        self.admin_context = CompanyContext(user_id=uuid4(), company_id=self.company.id, role=Role.ADMIN)

    def _update(self, context: CompanyContext, target: tuple[Membership, User], payload: UpdatePersonRequest, owners: int = 2):
        with (
            patch("gtiq.services.people._load_person", return_value=target),
            patch("gtiq.services.people._active_owner_count", return_value=owners),
        ):
            return update_person(self.db, context=context, user_id=target[1].id, payload=payload)  # type: ignore[arg-type]

    def test_admin_updates_worker_name_and_role(self) -> None:
        target = _person(self.company.id, Role.WORKER)

        person, diff = self._update(self.admin_context, target, UpdatePersonRequest(full_name=" Lucia ", role=Role.MANAGER))

        self.assertEqual(person["full_name"], "Lucia")
        self.assertEqual(person["role"], Role.MANAGER)
        self.assertEqual(diff["role"], {"old": "worker", "new": "manager"})
        self.assertEqual(self.db.commit_calls, 1)

    def test_admin_cannot_touch_owners(self) -> None:
        owner = _person(self.company.id, Role.OWNER)
        with self.assertRaises(ApiError) as ctx:
            self._update(self.admin_context, owner, UpdatePersonRequest(full_name="Renamed"))
        self.assertEqual(ctx.exception.code, "FORBIDDEN")

        worker = _person(self.company.id, Role.WORKER)
        with self.assertRaises(ApiError) as ctx:
            self._update(self.admin_context, worker, UpdatePersonRequest(role=Role.OWNER))
        self.assertEqual(ctx.exception.code, "FORBIDDEN")

    def test_last_owner_cannot_be_demoted_or_deactivated(self) -> None:
        owner = _person(self.company.id, Role.OWNER)
        for payload in (UpdatePersonRequest(role=Role.ADMIN), UpdatePersonRequest(is_active=False)):
            with self.subTest(payload=payload):
                with self.assertRaises(ApiError) as ctx:
                    self._update(self.owner_context, owner, payload, owners=1)
                self.assertEqual(ctx.exception.status_code, 400)
                self.assertEqual(ctx.exception.code, "LAST_OWNER")
        self.assertEqual(owner[0].role, Role.OWNER)

    def test_demoting_one_of_two_owners_clears_company_owner(self) -> None:
        owner = _person(self.company.id, Role.OWNER)
        self.company.owner_user_id = owner[1].id

        self._update(self.owner_context, owner, UpdatePersonRequest(role=Role.ADMIN), owners=2)

        self.assertEqual(owner[0].role, Role.ADMIN)
        self.assertIsNone(self.company.owner_user_id)

    def test_update_requires_at_least_one_field(self) -> None:
        with self.assertRaises(ValueError):
            UpdatePersonRequest()


class DeletePersonTests(unittest.TestCase):
    def setUp(self) -> None:
        self.company = Company(id=uuid4(), name="Acme", status=CompanyStatus.ACTIVE)
        self.db = _FakePeopleDB(company=self.company)

    def test_cannot_remove_yourself(self) -> None:
        context = CompanyContext(user_id=uuid4(), company_id=self.company.id, role=Role.OWNER)
        with self.assertRaises(ApiError) as ctx:
            delete_person(self.db, context=context, user_id=context.user_id)  # type: ignore[arg-type]
        self.assertEqual(ctx.exception.code, "INVALID_INPUT")

    def test_soft_deletes_worker(self) -> None:
        context = CompanyContext(user_id=uuid4(), company_id=self.company.id, role=Role.ADMIN)
        target = _person(self.company.id, Role.WORKER)
        with patch("gtiq.services.people._load_person", return_value=target):
            user = delete_person(self.db, context=context, user_id=target[1].id)  # type: ignore[arg-type]
        self.assertFalse(user.is_active)
        self.assertEqual(self.db.commit_calls, 1)

    def test_last_owner_cannot_be_removed(self) -> None:
        context = CompanyContext(user_id=uuid4(), company_id=self.company.id, role=Role.OWNER)
        target = _person(self.company.id, Role.OWNER)
        with (
            patch("gtiq.services.people._load_person", return_value=target),
            patch("gtiq.services.people._active_owner_count", return_value=1),
        ):
            with self.assertRaises(ApiError) as ctx:
                delete_person(self.db, context=context, user_id=target[1].id)  # type: ignore[arg-type]
        self.assertEqual(ctx.exception.code, "LAST_OWNER")
        self.assertTrue(target[1].is_active)


class InviteTests(unittest.TestCase):
    def setUp(self) -> None:
        self.company = Company(id=uuid4(), name="Acme", status=CompanyStatus.ACTIVE)
        self.admin_context = CompanyContext(user_id=uuid4(), company_id=self.company.id, role=Role.ADMIN)

    def _invite(self, **overrides) -> Invite:
        values = {
            "id": uuid4(),
            "company_id": self.company.id,
            "email": "new@example.com",
            "role": Role.WORKER,
            "status": InviteStatus.PENDING,
            "token": "invite-token-0123456789",
            "created_at": NOW,
            "expires_at": NOW + timedelta(days=7),
        }
        values.update(overrides)
        return Invite(**values)

    def test_admin_cannot_invite_owner(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            create_invite(
                _FakePeopleDB(company=self.company),  # type: ignore[arg-type]
                context=self.admin_context,
                payload=InviteCreateRequest(email="boss@example.com", role=Role.OWNER),
            )
        self.assertEqual(ctx.exception.code, "FORBIDDEN")

    def test_create_invite_normalizes_email_and_sets_expiry(self) -> None:
        db = _FakePeopleDB(company=self.company)
        invite = create_invite(
            db,  # type: ignore[arg-type]
            context=self.admin_context,
            payload=InviteCreateRequest(email="New.Person@Example.com"),
            now=NOW,
        )

        self.assertEqual(invite.email, "new.person@example.com")
        self.assertEqual(invite.status, InviteStatus.PENDING)
        self.assertEqual(invite.expires_at, NOW + timedelta(days=7))
        self.assertGreaterEqual(len(invite.token), 32)
        self.assertEqual(invite.created_by, self.admin_context.user_id)

    def test_revoke_only_pending_invites(self) -> None:
        invite = self._invite(status=InviteStatus.ACCEPTED)
        with self.assertRaises(ApiError) as ctx:
            revoke_invite(_FakePeopleDB(invite=invite), company_id=self.company.id, invite_id=invite.id)  # type: ignore[arg-type]
        self.assertEqual(ctx.exception.code, "INVITE_NOT_PENDING")

    def test_revoke_invite_of_other_company_is_not_found(self) -> None:
        invite = self._invite()
        with self.assertRaises(ApiError) as ctx:
            revoke_invite(_FakePeopleDB(invite=invite), company_id=uuid4(), invite_id=invite.id)  # type: ignore[arg-type]
        self.assertEqual(ctx.exception.code, "INVITE_NOT_FOUND")

    def test_expired_invite_is_marked_and_rejected(self) -> None:
        invite = self._invite(expires_at=NOW - timedelta(minutes=1))
        db = _FakePeopleDB(company=self.company, invite=invite)

        with self.assertRaises(ApiError) as ctx:
            accept_invite(db, AcceptInviteRequest(token=invite.token), now=NOW)  # type: ignore[arg-type]

        self.assertEqual(ctx.exception.code, "INVITE_EXPIRED")
        self.assertEqual(invite.status, InviteStatus.EXPIRED)

    def test_accept_creates_user_and_membership(self) -> None:
        invite = self._invite(role=Role.OWNER)
        db = _FakePeopleDB(company=self.company, invite=invite)

        user, membership = accept_invite(
            db,  # type: ignore[arg-type]
            AcceptInviteRequest(token=invite.token, full_name="New Person"),
            now=NOW,
        )

        self.assertEqual(user.email, "new@example.com")
        self.assertIsNone(user.password_hash)
        self.assertEqual(membership.role, Role.OWNER)
        self.assertEqual(membership.company_id, self.company.id)
        self.assertEqual(self.company.owner_user_id, user.id)
        self.assertEqual(invite.status, InviteStatus.ACCEPTED)
        self.assertEqual(invite.accepted_at, NOW)
        self.assertIn(user, db.rows)
        self.assertIn(membership, db.rows)


class ReactivatePersonTests(unittest.TestCase):
    def setUp(self) -> None:
        self.company = Company(id=uuid4(), name="Acme", status=CompanyStatus.ACTIVE)
        self.db = _FakePeopleDB(company=self.company)
        self.admin_context = CompanyContext(user_id=uuid4(), company_id=self.company.id, role=Role.ADMIN)

    def _reactivate(self, context: CompanyContext, target: tuple[Membership, User], send_invite: bool = False):
        with patch("gtiq.services.people._load_person", return_value=target):
            return reactivate_person(
                self.db,  # type: ignore[arg-type]
                context=context,
                user_id=target[1].id,
                send_invite=send_invite,
                now=NOW,
            )

    def test_reactivates_worker_and_issues_fresh_invite(self) -> None:
        target = _person(self.company.id, Role.WORKER)
        target[1].is_active = False
        target[1].email = "Worker@Example.com"

        result = self._reactivate(self.admin_context, target, send_invite=True)

        self.assertFalse(result.already_active)
        self.assertTrue(target[1].is_active)
        invite = result.invite
        self.assertIsNotNone(invite)
        self.assertEqual(invite.email, "worker@example.com")
        self.assertEqual(invite.role, Role.WORKER)
        self.assertEqual(invite.status, InviteStatus.PENDING)
        self.assertEqual(invite.expires_at, NOW + timedelta(days=7))
        self.assertIn(invite, self.db.rows)
        self.assertEqual(self.db.commit_calls, 1)

    def test_active_person_is_reported_without_changes(self) -> None:
        target = _person(self.company.id, Role.WORKER)

        result = self._reactivate(self.admin_context, target, send_invite=True)

        self.assertTrue(result.already_active)
        self.assertIsNone(result.invite)
        self.assertEqual(self.db.rows, [])
        self.assertEqual(self.db.commit_calls, 0)

    def test_admin_cannot_reactivate_owner(self) -> None:
        target = _person(self.company.id, Role.OWNER)
        target[1].is_active = False

        with self.assertRaises(ApiError) as ctx:
            self._reactivate(self.admin_context, target)

        self.assertEqual(ctx.exception.code, "FORBIDDEN")
        self.assertFalse(target[1].is_active)


class ResendInviteTests(unittest.TestCase):
    def _invite(self, status: InviteStatus) -> Invite:
        return Invite(
            id=uuid4(),
            company_id=uuid4(),
            email="new@example.com",
            role=Role.WORKER,
            status=status,
            token="old-token-0123456789",
            created_at=NOW - timedelta(days=10),
            expires_at=NOW - timedelta(days=3),
        )

    def test_expired_invite_gets_new_token_and_expiry(self) -> None:
        invite = self._invite(InviteStatus.EXPIRED)
        db = _FakePeopleDB(invite=invite)

        resend_invite(db, invite=invite, now=NOW)  # type: ignore[arg-type]

        self.assertEqual(invite.status, InviteStatus.PENDING)
        self.assertNotEqual(invite.token, "old-token-0123456789")
        self.assertEqual(invite.expires_at, NOW + timedelta(days=7))
        self.assertEqual(db.commit_calls, 1)

    def test_accepted_invite_cannot_be_resent(self) -> None:
        invite = self._invite(InviteStatus.ACCEPTED)

        with self.assertRaises(ApiError) as ctx:
            resend_invite(_FakePeopleDB(invite=invite), invite=invite, now=NOW)  # type: ignore[arg-type]

        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(ctx.exception.code, "INVITE_NOT_PENDING")
        self.assertEqual(invite.token, "old-token-0123456789")


if __name__ == "__main__":
    unittest.main()
