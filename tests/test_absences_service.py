from __future__ import annotations

import unittest
from datetime import date, datetime, timezone
from unittest.mock import patch
from uuid import uuid4

from gtiq.errors import ApiError
from gtiq.models import Absence, AbsenceType, Membership, Notification, RequestStatus, Role, User
from gtiq.schemas import AbsenceCreateRequest, VacationAssignmentRequest
from gtiq.services.absences import assign_vacations, request_absence, review_absence
from gtiq.services.memberships import CompanyContext

NOW = datetime(2026, 7, 1, 8, 0, tzinfo=timezone.utc)


class _FakeAbsenceDB:
    def __init__(self, *, objects: list[object] | None = None, worker_ids: list | None = None):
        self.objects = {getattr(item, "id"): item for item in objects or []}
        self.worker_ids = worker_ids or []
        self.rows: list[object] = []
        self.commit_calls = 0

    def get(self, model, pk):  # type: ignore[no-untyped-def]
        item = self.objects.get(pk)
        return item if isinstance(item, model) else None

    def scalars(self, _statement):  # type: ignore[no-untyped-def]
        return _RowsResult(self.worker_ids)

    def add(self, obj: object) -> None:
        self.rows.append(obj)

    def commit(self) -> None:
        self.commit_calls += 1

    def rollback(self) -> None:
        return

    def refresh(self, _obj: object) -> None:
        return

    def notifications(self) -> list[Notification]:
        return [row for row in self.rows if isinstance(row, Notification)]

    def absences(self) -> list[Absence]:
        return [row for row in self.rows if isinstance(row, Absence)]


class _RowsResult:
    def __init__(self, rows):  # type: ignore[no-untyped-def]
        self._rows = rows

    def all(self):  # type: ignore[no-untyped-def]
        return list(self._rows)


def _membership(company_id, user_id, role: Role = Role.WORKER) -> Membership:  # type: ignore[no-untyped-def]
    return Membership(id=uuid4(), user_id=user_id, company_id=company_id, role=role, created_at=NOW)


class RequestAbsenceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.company_id = uuid4()
        self.worker = User(id=uuid4(), email="lucia@example.com", full_name="Lucia", is_active=True)
        self.worker_context = CompanyContext(user_id=self.worker.id, company_id=self.company_id, role=Role.WORKER)
        self.manager_context = CompanyContext(user_id=uuid4(), company_id=self.company_id, role=Role.MANAGER)

    def test_worker_request_is_pending_and_notifies_managers(self) -> None:
        manager_id = uuid4()
        db = _FakeAbsenceDB(objects=[self.worker])
        payload = AbsenceCreateRequest(
            absence_type=AbsenceType.SICK_LEAVE,
            start_date=date(2026, 7, 6),
            end_date=date(2026, 7, 7),
            reason="Flu",
        )

        with patch("gtiq.services.incidents.manager_user_ids", return_value=[manager_id]):
            absence = request_absence(db, context=self.worker_context, payload=payload, now=NOW)  # type: ignore[arg-type]

        self.assertEqual(absence.status, RequestStatus.PENDING)
        self.assertEqual(absence.user_id, self.worker.id)
        self.assertIsNone(absence.approved_by)
        notes = db.notifications()
        self.assertEqual([note.user_id for note in notes], [manager_id])
        self.assertEqual(notes[0].message, "Lucia: Sick leave from 2026-07-06 to 2026-07-07")
        self.assertEqual(notes[0].entity_type, "absence")

    def test_manager_recorded_absence_is_approved_at_once(self) -> None:
        db = _FakeAbsenceDB(objects=[self.worker])
        payload = AbsenceCreateRequest(start_date=date(2026, 8, 3), end_date=date(2026, 8, 3), user_id=self.worker.id)

        with (
            patch(
                "gtiq.services.absences.get_membership",
                return_value=_membership(self.company_id, self.worker.id),
            ),
            patch("gtiq.services.incidents.manager_user_ids") as managers,
        ):
            absence = request_absence(db, context=self.manager_context, payload=payload, now=NOW)  # type: ignore[arg-type]

        self.assertEqual(absence.status, RequestStatus.APPROVED)
        self.assertEqual(absence.user_id, self.worker.id)
        self.assertEqual(absence.approved_by, self.manager_context.user_id)
        self.assertEqual(absence.approved_at, NOW)
        managers.assert_not_called()

    def test_worker_cannot_file_for_someone_else(self) -> None:
        payload = AbsenceCreateRequest(start_date=date(2026, 8, 3), end_date=date(2026, 8, 4), user_id=uuid4())
        with self.assertRaises(ApiError) as ctx:
            request_absence(_FakeAbsenceDB(), context=self.worker_context, payload=payload)  # type: ignore[arg-type]
        self.assertEqual(ctx.exception.status_code, 403)

    def test_manager_cannot_file_for_a_stranger(self) -> None:
        payload = AbsenceCreateRequest(start_date=date(2026, 8, 3), end_date=date(2026, 8, 4), user_id=uuid4())
        with patch("gtiq.services.absences.get_membership", return_value=None):
            with self.assertRaises(ApiError) as ctx:
                request_absence(_FakeAbsenceDB(), context=self.manager_context, payload=payload)  # type: ignore[arg-type]
        self.assertEqual(ctx.exception.code, "PERSON_NOT_FOUND")

    def test_reversed_range_is_rejected(self) -> None:
        payload = AbsenceCreateRequest(start_date=date(2026, 8, 5), end_date=date(2026, 8, 4))
        db = _FakeAbsenceDB()
        with self.assertRaises(ApiError) as ctx:
            request_absence(db, context=self.worker_context, payload=payload)  # type: ignore[arg-type]
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(ctx.exception.code, "INVALID_RANGE")
        self.assertEqual(db.rows, [])


class AssignVacationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.company_id = uuid4()
        self.context = CompanyContext(user_id=uuid4(), company_id=self.company_id, role=Role.ADMIN)

    def test_company_vacation_covers_every_active_worker(self) -> None:
        worker_ids = [uuid4(), uuid4(), uuid4()]
        db = _FakeAbsenceDB(worker_ids=worker_ids)
        payload = VacationAssignmentRequest(start_date=date(2026, 8, 10), end_date=date(2026, 8, 21))

        created = assign_vacations(db, context=self.context, payload=payload, now=NOW)  # type: ignore[arg-type]

        self.assertEqual([item.user_id for item in created], worker_ids)
        for absence in created:
            self.assertEqual(absence.absence_type, AbsenceType.VACATION)
            self.assertEqual(absence.status, RequestStatus.APPROVED)
            self.assertEqual(absence.reason, "Company vacation")
            self.assertEqual(absence.approved_by, self.context.user_id)
        self.assertEqual({note.user_id for note in db.notifications()}, set(worker_ids))
        self.assertEqual(db.commit_calls, 1)

    def test_individual_vacation_deduplicates_and_checks_membership(self) -> None:
        target = uuid4()
        db = _FakeAbsenceDB()
        payload = VacationAssignmentRequest(
            start_date=date(2026, 9, 1),
            end_date=date(2026, 9, 4),
            user_ids=[target, target],
            reason="Summer",
        )

        with patch(
            "gtiq.services.absences.get_membership",
            return_value=_membership(self.company_id, target),
        ):
            created = assign_vacations(db, context=self.context, payload=payload, now=NOW)  # type: ignore[arg-type]

        self.assertEqual(len(created), 1)
        self.assertEqual(created[0].reason, "Summer")

    def test_company_without_workers_is_rejected(self) -> None:
        payload = VacationAssignmentRequest(start_date=date(2026, 8, 10), end_date=date(2026, 8, 21))
        with self.assertRaises(ApiError) as ctx:
            assign_vacations(_FakeAbsenceDB(), context=self.context, payload=payload)  # type: ignore[arg-type]
        self.assertEqual(ctx.exception.code, "INVALID_INPUT")

    def test_empty_user_list_is_invalid(self) -> None:
        with self.assertRaises(ValueError):
            VacationAssignmentRequest(start_date=date(2026, 8, 10), end_date=date(2026, 8, 21), user_ids=[])


class ReviewAbsenceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.company_id = uuid4()
        self.manager_id = uuid4()
        self.absence = Absence(
            id=uuid4(),
            company_id=self.company_id,
            user_id=uuid4(),
            absence_type=AbsenceType.PERSONAL,
            start_date=date(2026, 7, 15),
            end_date=date(2026, 7, 15),
            status=RequestStatus.PENDING,
            created_by=uuid4(),
            created_at=NOW,
        )
        self.db = _FakeAbsenceDB(objects=[self.absence])

    def test_approval_records_reviewer_and_notifies_worker(self) -> None:
        absence = review_absence(
            self.db,  # type: ignore[arg-type]
            company_id=self.company_id,
            absence_id=self.absence.id,
            status=RequestStatus.APPROVED,
            acting_user_id=self.manager_id,
            now=NOW,
        )

        self.assertEqual(absence.status, RequestStatus.APPROVED)
        self.assertEqual(absence.approved_by, self.manager_id)
        self.assertEqual(absence.approved_at, NOW)
        notes = self.db.notifications()
        self.assertEqual([note.user_id for note in notes], [self.absence.user_id])
        self.assertEqual(notes[0].title, "Absence approved")
        self.assertEqual(notes[0].message, "Personal leave on 2026-07-15")

    def test_rejection_leaves_approval_fields_empty(self) -> None:
        review_absence(
            self.db,  # type: ignore[arg-type]
            company_id=self.company_id,
            absence_id=self.absence.id,
            status=RequestStatus.REJECTED,
            acting_user_id=self.manager_id,
        )
        self.assertEqual(self.absence.status, RequestStatus.REJECTED)
        self.assertIsNone(self.absence.approved_by)
        self.assertEqual(self.db.notifications()[0].title, "Absence rejected")

    def test_decided_absence_cannot_be_reviewed_again(self) -> None:
        self.absence.status = RequestStatus.APPROVED
        with self.assertRaises(ApiError) as ctx:
            review_absence(
                self.db,  # type: ignore[arg-type]
                company_id=self.company_id,
                absence_id=self.absence.id,
                status=RequestStatus.REJECTED,
                acting_user_id=self.manager_id,
            )
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(ctx.exception.code, "ABSENCE_NOT_PENDING")

    def test_absence_of_other_company_is_not_found(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            review_absence(
                self.db,  # type: ignore[arg-type]
                company_id=uuid4(),
                absence_id=self.absence.id,
                status=RequestStatus.APPROVED,
                acting_user_id=self.manager_id,
            )
        self.assertEqual(ctx.exception.code, "ABSENCE_NOT_FOUND")


if __name__ == "__main__":
    unittest.main()
