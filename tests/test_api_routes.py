from __future__ import annotations

import unittest
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from unittest.mock import patch
from uuid import uuid4

from fastapi.testclient import TestClient

from gtiq.db import get_db
from gtiq.dependencies import get_company_context
from gtiq.main import app
from gtiq.models import (
    AuditLog,
    Company,
    CompanyStatus,
    CorrectionRequest,
    Invite,
    InviteStatus,
    Membership,
    RequestStatus,
    ReviewStatus,
    Role,
    SessionStatus,
    TimeEntryLog,
    User,
    WorkSession,
)
from gtiq.security import hash_password, require_user
from gtiq.services.correction_requests import CorrectionDecision
from gtiq.services.memberships import CompanyContext
from gtiq.services.review import CorrectionResult
from gtiq.settings import Settings


def _override_get_db(fake_db):
    def _override() -> Generator[object, None, None]:
        yield fake_db

    return _override


class _FakeApiDB:
    def __init__(self, *, company: Company | None = None, people: list[tuple[Membership, User]] | None = None):
        self.company = company
        self.people = people or []
        self.sessions: dict[object, WorkSession] = {}
        self.memberships: list[Membership] = []
        self.rows: list[object] = []
        self.commit_calls = 0

    def get(self, model, pk):  # type: ignore[no-untyped-def]
        if model is Company and self.company is not None and pk == self.company.id:
            return self.company
        if model is WorkSession:
            return self.sessions.get(pk)
        return None

    def scalar(self, _statement):  # type: ignore[no-untyped-def]
        return None

    def scalars(self, _statement):  # type: ignore[no-untyped-def]
        return _RowsResult(self.memberships)

    def execute(self, _statement):  # type: ignore[no-untyped-def]
        return _RowsResult(self.people)

    def add(self, obj: object) -> None:
        self.rows.append(obj)

    def commit(self) -> None:
        self.commit_calls += 1

    def rollback(self) -> None:
        return

    def refresh(self, _obj: object) -> None:
        return


class _RowsResult:
    def __init__(self, rows):
        self._rows = rows

    def all(self):  # type: ignore[no-untyped-def]
        return self._rows


class ApiRouteTests(unittest.TestCase):
    def setUp(self) -> None:
        self.client = TestClient(app)
        self.company = Company(id=uuid4(), name="Acme", status=CompanyStatus.ACTIVE)
        self.user = User(
            id=uuid4(),
            email="worker@example.com",
            full_name="Worker",
            is_active=True,
            is_superadmin=False,
            created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )
        self.db = _FakeApiDB(company=self.company)
        app.dependency_overrides[get_db] = _override_get_db(self.db)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def _as_role(self, role: Role) -> CompanyContext:
        context = CompanyContext(user_id=self.user.id, company_id=self.company.id, role=role)
        app.dependency_overrides[get_company_context] = lambda: context
        return context

    def _as_user(self) -> None:
        app.dependency_overrides[require_user] = lambda: self.user

    def test_health_reports_schema_guard(self) -> None:
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "ok")
        self.assertIn("ok", body["schema_guard"])
        self.assertIn("X-Request-Id", response.headers)

    def test_worker_cannot_list_or_update_people(self) -> None:
        self._as_role(Role.WORKER)

        list_response = self.client.get("/list-people", headers={"X-Request-Id": "req-1"})
        update_response = self.client.post(f"/update-person/{uuid4()}", json={"full_name": "Someone"})

        self.assertEqual(list_response.status_code, 403)
        self.assertEqual(list_response.json()["code"], "FORBIDDEN")
        self.assertEqual(list_response.json()["request_id"], "req-1")
        self.assertEqual(update_response.status_code, 403)

    def test_manager_lists_people(self) -> None:
        self._as_role(Role.MANAGER)
        membership = Membership(
            id=uuid4(),
            user_id=self.user.id,
            company_id=self.company.id,
            role=Role.WORKER,
            created_at=datetime(2026, 1, 2, tzinfo=timezone.utc),
        )
        self.db.people = [(membership, self.user)]

        response = self.client.get("/list-people")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(len(body), 1)
        self.assertEqual(body[0]["email"], "worker@example.com")
        self.assertEqual(body[0]["role"], "worker")

    def test_clock_requires_bearer_token(self) -> None:
        response = self.client.post("/clock", json={"action": "in"})

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "INVALID_TOKEN")

    def test_clock_for_another_user_is_forbidden(self) -> None:
        self._as_user()

        response = self.client.post("/clock", json={"action": "in", "user_id": str(uuid4())})

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "FORBIDDEN")

    def test_clock_rejects_unknown_action(self) -> None:
        self._as_user()

        response = self.client.post("/clock", json={"action": "lunch"})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "VALIDATION_ERROR")

    def test_kiosk_rejects_wrong_pin(self) -> None:
        self.company.kiosk_pin_hash = hash_password("4821")

        response = self.client.post(
            "/kiosk/clock",
            json={"action": "in", "user_id": str(self.user.id), "company_id": str(self.company.id)},
            headers={"X-Kiosk-Pin": "0000"},
        )

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "INVALID_KIOSK_PIN")

    def test_non_superadmin_cannot_read_audit_logs(self) -> None:
        self._as_user()

        response = self.client.get("/admin-list-logs")

        self.assertEqual(response.status_code, 403)

    def test_bootstrap_token_creates_first_superadmin(self) -> None:
        bootstrap_settings = Settings(superadmin_bootstrap_token="bootstrap-token-0123456789")
        payload = {"email": "Root@Example.com", "password": "StrongPass123!", "full_name": "Root"}

        with patch("gtiq.services.accounts.get_settings", return_value=bootstrap_settings):
            rejected = self.client.post(
                "/admin-create-superadmin",
                json=payload,
                headers={"X-Bootstrap-Token": "wrong-token"},
            )
            created = self.client.post(
                "/admin-create-superadmin",
                json=payload,
                headers={"X-Bootstrap-Token": "bootstrap-token-0123456789"},
            )

        self.assertEqual(rejected.status_code, 403)
        self.assertEqual(created.status_code, 200)
        body = created.json()
        self.assertEqual(body["email"], "root@example.com")
        self.assertTrue(body["is_superadmin"])
        audit_rows = [row for row in self.db.rows if isinstance(row, AuditLog)]
        self.assertEqual([row.action for row in audit_rows], ["admin.superadmin.create"])
        self.assertEqual(audit_rows[0].actor_user_id, "bootstrap")

    def test_review_correction_is_audited(self) -> None:
        context = self._as_role(Role.MANAGER)
        clock_in = datetime(2026, 3, 9, 9, 15, tzinfo=timezone.utc)
        clock_out = datetime(2026, 3, 9, 17, 10, tzinfo=timezone.utc)
        session = WorkSession(
            id=uuid4(),
            user_id=uuid4(),
            company_id=self.company.id,
            clock_in_time=clock_in,
            clock_out_time=clock_out,
            is_active=False,
            is_on_break=False,
            status=SessionStatus.CLOSED,
            review_status=ReviewStatus.RESOLVED,
            total_pause_duration=timedelta(minutes=30),
            total_work_duration=timedelta(hours=7, minutes=25),
            is_corrected=True,
            corrected_by=context.user_id,
            correction_reason="Forgot to clock out",
        )
        log_entry = TimeEntryLog(
            id=uuid4(),
            session_id=session.id,
            changed_by=context.user_id,
            changed_at=clock_out,
            old_start_time=clock_in,
            old_end_time=None,
            old_duration=None,
            new_start_time=clock_in,
            new_end_time=clock_out,
            new_duration=timedelta(hours=7, minutes=25),
            reason="Forgot to clock out",
        )

        with patch(
            "gtiq.routers.sessions.correct_session",
            return_value=CorrectionResult(session=session, log_entry=log_entry),
        ) as correct_mock:
            response = self.client.post(
                f"/review-sessions/{session.id}/correct",
                json={
                    "clock_in_time": clock_in.isoformat(),
                    "clock_out_time": clock_out.isoformat(),
                    "correction_reason": "Forgot to clock out",
                },
            )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["session"]["review_status"], "resolved")
        self.assertEqual(correct_mock.call_args.kwargs["resulting_review_status"], ReviewStatus.RESOLVED)
        audit_rows = [row for row in self.db.rows if isinstance(row, AuditLog)]
        self.assertEqual(len(audit_rows), 1)
        self.assertEqual(audit_rows[0].action, "work_session.review_correct")
        self.assertEqual(audit_rows[0].company_id, self.company.id)
        self.assertEqual(audit_rows[0].reason, "Forgot to clock out")


    def test_clock_in_with_active_session_returns_message_and_code(self) -> None:
        self._as_user()
        context = CompanyContext(user_id=self.user.id, company_id=self.company.id, role=Role.WORKER)
        open_session = WorkSession(
            id=uuid4(),
            user_id=self.user.id,
            company_id=self.company.id,
            clock_in_time=datetime(2026, 3, 9, 8, 0, tzinfo=timezone.utc),
            is_active=True,
            is_on_break=False,
            status=SessionStatus.OPEN,
            total_pause_duration=timedelta(0),
            is_corrected=False,
        )

        with (
            patch("gtiq.routers.clock.resolve_context", return_value=context),
            patch("gtiq.services.clock.get_active_session", return_value=open_session),
            patch("gtiq.services.clock.report_incident") as incident_mock,
        ):
            response = self.client.post("/clock", json={"action": "in"}, headers={"X-Request-Id": "req-2"})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json(),
            {
                "error": "An active session already exists.",
                "code": "ALREADY_ACTIVE_SESSION",
                "request_id": "req-2",
            },
        )
        incident_mock.assert_called_once()

    def test_kiosk_unknown_company_fails_like_wrong_pin(self) -> None:
        response = self.client.post(
            "/kiosk/clock",
            json={"action": "in", "user_id": str(self.user.id), "company_id": str(uuid4())},
            headers={"X-Kiosk-Pin": "4821"},
        )

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "INVALID_KIOSK_PIN")
        self.assertEqual(response.json()["error"], "Kiosk PIN is invalid.")

    def _stored_session(self) -> WorkSession:
        session = WorkSession(
            id=uuid4(),
            user_id=uuid4(),
            company_id=self.company.id,
            clock_in_time=datetime(2026, 3, 9, 9, 0, tzinfo=timezone.utc),
            clock_out_time=datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc),
            is_active=False,
            is_on_break=False,
            status=SessionStatus.AUTO_CLOSED,
            review_status=ReviewStatus.PENDING_REVIEW,
            total_pause_duration=timedelta(0),
            total_work_duration=timedelta(hours=24),
            is_corrected=False,
        )
        self.db.sessions[session.id] = session
        return session

    def _membership(self, company_id, role: Role) -> Membership:  # type: ignore[no-untyped-def]
        return Membership(id=uuid4(), user_id=self.user.id, company_id=company_id, role=role)

    def test_adjust_is_authorised_in_the_session_company(self) -> None:
        self._as_user()
        other_company_id = uuid4()
        session = self._stored_session()
        self.db.memberships = [
            self._membership(other_company_id, Role.WORKER),
            self._membership(self.company.id, Role.MANAGER),
        ]
        clock_out = datetime(2026, 3, 9, 17, 0, tzinfo=timezone.utc)
        log_entry = TimeEntryLog(
            id=uuid4(),
            session_id=session.id,
            changed_by=self.user.id,
            changed_at=clock_out,
            old_start_time=session.clock_in_time,
            old_end_time=session.clock_out_time,
            old_duration=session.total_work_duration,
            new_start_time=session.clock_in_time,
            new_end_time=clock_out,
            new_duration=timedelta(hours=8),
            reason=None,
        )

        with patch(
            "gtiq.routers.sessions.correct_session",
            return_value=CorrectionResult(session=session, log_entry=log_entry),
        ) as correct_mock:
            response = self.client.post(
                "/adjust-work-session",
                json={"session_id": str(session.id), "clock_out_time": clock_out.isoformat()},
                headers={"X-Company-Id": str(other_company_id)},
            )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(correct_mock.call_args.kwargs["company_id"], self.company.id)
        self.assertEqual(correct_mock.call_args.kwargs["resulting_review_status"], ReviewStatus.NORMAL)
        audit_rows = [row for row in self.db.rows if isinstance(row, AuditLog)]
        self.assertEqual([row.action for row in audit_rows], ["work_session.adjust"])
        self.assertEqual(audit_rows[0].company_id, self.company.id)

    def test_adjust_rejects_manager_of_another_company(self) -> None:
        self._as_user()
        session = self._stored_session()
        self.db.memberships = [
            self._membership(uuid4(), Role.MANAGER),
            self._membership(self.company.id, Role.WORKER),
        ]

        with patch("gtiq.routers.sessions.correct_session") as correct_mock:
            response = self.client.post(
                "/adjust-work-session",
                json={"session_id": str(session.id), "clock_out_time": "2026-03-09T17:00:00+00:00"},
            )

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "FORBIDDEN")
        correct_mock.assert_not_called()

    def test_adjust_unknown_session_is_not_found(self) -> None:
        self._as_user()

        response = self.client.post(
            "/adjust-work-session",
            json={"session_id": str(uuid4()), "clock_out_time": "2026-03-09T17:00:00+00:00"},
        )

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "SESSION_NOT_FOUND")

    def test_worker_absence_list_is_limited_to_own_records(self) -> None:
        self._as_role(Role.WORKER)

        with patch("gtiq.routers.absences.list_absences", return_value=[]) as list_mock:
            response = self.client.get("/absences", params={"user_id": str(uuid4())})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), [])
        self.assertEqual(list_mock.call_args.kwargs["user_id"], self.user.id)

    def test_worker_cannot_decide_correction_requests(self) -> None:
        self._as_role(Role.WORKER)

        with patch("gtiq.routers.correction_requests.decide_correction_request") as decide_mock:
            response = self.client.patch(f"/correction-requests/{uuid4()}", json={"status": "approved"})

        self.assertEqual(response.status_code, 403)
        decide_mock.assert_not_called()

    def test_correction_request_decision_is_audited(self) -> None:
        context = self._as_role(Role.MANAGER)
        now = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)
        correction = CorrectionRequest(
            id=uuid4(),
            company_id=self.company.id,
            user_id=uuid4(),
            submitted_by=uuid4(),
            manager_id=context.user_id,
            payload={"event_type": "clock_in", "event_time": now.isoformat(), "reason": "Badge broken"},
            status=RequestStatus.REJECTED,
            reason="No evidence",
            created_at=now,
            updated_at=now,
        )

        with patch(
            "gtiq.routers.correction_requests.decide_correction_request",
            return_value=CorrectionDecision(request=correction),
        ) as decide_mock:
            response = self.client.patch(
                f"/correction-requests/{correction.id}",
                json={"status": "rejected", "reason": "No evidence"},
            )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["request"]["status"], "rejected")
        self.assertIsNone(response.json()["event_id"])
        self.assertEqual(decide_mock.call_args.kwargs["status"], RequestStatus.REJECTED)
        audit_rows = [row for row in self.db.rows if isinstance(row, AuditLog)]
        self.assertEqual([row.action for row in audit_rows], ["correction_request.decide"])
        self.assertEqual(audit_rows[0].reason, "No evidence")

    def test_resend_invite_requires_admin_of_the_invite_company(self) -> None:
        self._as_user()
        invite = Invite(
            id=uuid4(),
            company_id=self.company.id,
            email="new@example.com",
            role=Role.WORKER,
            status=InviteStatus.EXPIRED,
            token="invite-token-0123456789",
            created_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
            expires_at=datetime(2026, 3, 8, tzinfo=timezone.utc),
        )

        with (
            patch("gtiq.routers.people.get_invite_or_404", return_value=invite),
            patch("gtiq.routers.people.get_membership", return_value=self._membership(self.company.id, Role.MANAGER)),
            patch("gtiq.routers.people.resend_invite") as resend_mock,
        ):
            response = self.client.post("/resend-invite", json={"invite_id": str(invite.id)})

        self.assertEqual(response.status_code, 403)
        resend_mock.assert_not_called()

    def test_superadmin_transfers_ownership_with_audit(self) -> None:
        self.user.is_superadmin = True
        self._as_user()
        previous_owner = uuid4()
        self.company.owner_user_id = uuid4()
        self.company.created_at = datetime(2026, 1, 1, tzinfo=timezone.utc)

        with patch(
            "gtiq.routers.admin.transfer_ownership",
            return_value=(self.company, previous_owner),
        ):
            response = self.client.post(
                "/admin-transfer-ownership",
                json={"company_id": str(self.company.id), "new_owner_user_id": str(self.company.owner_user_id)},
            )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["previous_owner_user_id"], str(previous_owner))
        self.assertEqual(body["company"]["owner_user_id"], str(self.company.owner_user_id))
        audit_rows = [row for row in self.db.rows if isinstance(row, AuditLog)]
        self.assertEqual([row.action for row in audit_rows], ["admin.company.transfer_ownership"])
        self.assertEqual(audit_rows[0].reason, "Ownership transferred by superadmin")

    def test_non_superadmin_cannot_list_companies(self) -> None:
        self._as_user()

        response = self.client.get("/admin-list-companies")

        self.assertEqual(response.status_code, 403)


if __name__ == "__main__":
    unittest.main()
