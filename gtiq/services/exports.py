from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta
from io import BytesIO
from uuid import UUID

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from gtiq.models import ReviewStatus, SessionStatus, User, WorkSession
from gtiq.services.session_monitor import _attendance_timezone

SESSION_HEADERS = [
    "Worker",
    "Email",
    "Clock in",
    "Clock out",
    "Pause (hh:mm)",
    "Worked (hh:mm)",
    "Status",
    "Review",
    "Corrected",
    "Correction reason",
]
SUMMARY_HEADERS = ["Worker", "Email", "Sessions", "Worked (hh:mm)", "Pending review"]

HEADER_FILL = PatternFill(fill_type="solid", fgColor="0B4F73")
ZEBRA_FILL = PatternFill(fill_type="solid", fgColor="F7FBFE")
WARNING_FILL = PatternFill(fill_type="solid", fgColor="FFF3CD")
HEADER_FONT = Font(bold=True, color="FFFFFF")
TITLE_FONT = Font(bold=True, color="0B4F73", size=14)
THIN_SIDE = Side(style="thin", color="D5E2EC")
THIN_BORDER = Border(left=THIN_SIDE, right=THIN_SIDE, top=THIN_SIDE, bottom=THIN_SIDE)

NEEDS_REVIEW = {ReviewStatus.EXCEEDED_LIMIT, ReviewStatus.PENDING_REVIEW}


def _to_excel_datetime(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    # Excel has no timezones; cells show attendance-local wall time.
    return value.astimezone(_attendance_timezone()).replace(tzinfo=None)


def _duration_to_hhmm(value: timedelta | None) -> str:
    if value is None:
        return ""
    minutes = max(0, int(value.total_seconds() // 60))
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def _style_header(ws: Worksheet, row: int) -> None:
    for cell in ws[row]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        cell.border = THIN_BORDER


def _auto_width(ws: Worksheet) -> None:
    for column_cells in ws.iter_cols(min_row=1, max_row=ws.max_row, min_col=1, max_col=ws.max_column):
        max_len = 0
        col_letter = get_column_letter(column_cells[0].column)
        for cell in column_cells:
            if cell.coordinate in ws.merged_cells:
                continue
            value = "" if cell.value is None else str(cell.value)
            max_len = max(max_len, len(value))
        ws.column_dimensions[col_letter].width = min(max_len + 2, 45)


def _needs_review(session: WorkSession) -> bool:
    return session.review_status in NEEDS_REVIEW or session.status == SessionStatus.AUTO_CLOSED


def _write_sessions_sheet(ws: Worksheet, rows: list[tuple[WorkSession, User]], title: str) -> None:
    ws.merge_cells(start_row=1, start_column=1, end_row=1, end_column=len(SESSION_HEADERS))
    title_cell = ws.cell(row=1, column=1, value=title)
    title_cell.font = TITLE_FONT
    ws.append(SESSION_HEADERS)
    _style_header(ws, 2)

    for index, (session, user) in enumerate(rows):
        ws.append(
            [
                user.full_name or "",
                user.email,
                _to_excel_datetime(session.clock_in_time),
                _to_excel_datetime(session.clock_out_time),
                _duration_to_hhmm(session.total_pause_duration),
                _duration_to_hhmm(session.total_work_duration),
                session.status.value,
                session.review_status.value if session.review_status else "",
                "yes" if session.is_corrected else "no",
                session.correction_reason or "",
            ]
        )
        row_idx = ws.max_row
        fill = WARNING_FILL if _needs_review(session) else (ZEBRA_FILL if index % 2 else None)
        for cell in ws[row_idx]:
            cell.border = THIN_BORDER
            if fill is not None:
                cell.fill = fill
        for column in (3, 4):
            ws.cell(row=row_idx, column=column).number_format = "yyyy-mm-dd hh:mm"

    ws.freeze_panes = "A3"
    _auto_width(ws)


def _write_summary_sheet(ws: Worksheet, rows: list[tuple[WorkSession, User]]) -> None:
    ws.append(SUMMARY_HEADERS)
    _style_header(ws, 1)

    users: dict[UUID, User] = {}
    totals: dict[UUID, timedelta] = defaultdict(timedelta)
    counts: dict[UUID, int] = defaultdict(int)
    pending: dict[UUID, int] = defaultdict(int)
    for session, user in rows:
        users[user.id] = user
        totals[user.id] += session.total_work_duration or timedelta(0)
        counts[user.id] += 1
        if _needs_review(session):
            pending[user.id] += 1

    for user_id, user in sorted(users.items(), key=lambda item: (item[1].full_name or item[1].email).lower()):
        ws.append(
            [
                user.full_name or "",
                user.email,
                counts[user_id],
                _duration_to_hhmm(totals[user_id]),
                pending[user_id],
            ]
        )
        for cell in ws[ws.max_row]:
            cell.border = THIN_BORDER

    _auto_width(ws)


def build_sessions_xlsx_bytes(
    rows: list[tuple[WorkSession, User]],
    *,
    company_name: str,
    start_date: date,
    end_date: date,
) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Sessions"
    _write_sessions_sheet(ws, rows, f"{company_name} sessions {start_date.isoformat()} - {end_date.isoformat()}")
    _write_summary_sheet(wb.create_sheet("Summary"), rows)

    stream = BytesIO()
    wb.save(stream)
    return stream.getvalue()
