#!/usr/bin/env python
from __future__ import annotations

import json
import os
import re
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from gtiq.services.schema_guard import verify_runtime_schema
from gtiq.settings import get_settings

VERSIONS_DIR = ROOT_DIR / "gtiq" / "migrations" / "versions"
MAX_REVISION_ID_LENGTH = 32


@dataclass(slots=True)
class CheckResult:
    name: str
    status: str
    details: dict[str, Any]


def _extract_revision_ids() -> list[str]:
    revisions: list[str] = []
    pattern = re.compile(r'^\s*revision\s*:\s*str\s*=\s*"([^"]+)"\s*$', re.MULTILINE)
    for path in sorted(VERSIONS_DIR.glob("*.py")):
        if path.name.startswith("__"):
            continue
        match = pattern.search(path.read_text(encoding="utf-8"))
        if match:
            revisions.append(match.group(1).strip())
    return revisions


def check_revision_id_lengths() -> CheckResult:
    revisions = _extract_revision_ids()
    too_long = [revision for revision in revisions if len(revision) > MAX_REVISION_ID_LENGTH]
    return CheckResult(
        name="migration_revision_length",
        status="ok" if not too_long else "fail",
        details={"max_len": MAX_REVISION_ID_LENGTH, "too_long": too_long, "total": len(revisions)},
    )


def check_jwt_secret() -> CheckResult:
    secret = (get_settings().jwt_secret or "").strip()
    return CheckResult(
        name="jwt_secret_configured",
        status="ok" if len(secret) >= 32 else "fail",
        details={"configured": bool(secret), "length": len(secret), "min_length": 32},
    )


def _expected_alembic_heads() -> list[str]:
    config = Config(str(ROOT_DIR / "alembic.ini"))
    script = ScriptDirectory.from_config(config)
    return sorted(script.get_heads())


def _duplicate_active_sessions(connection: Connection) -> list[list[str]]:
    rows = connection.execute(
        text(
            """
            select user_id, company_id, count(*)
            from work_sessions
            where is_active = true
            group by user_id, company_id
            having count(*) > 1
            """
        )
    ).fetchall()
    return [[str(value) for value in row] for row in rows]


def _orphan_time_events(connection: Connection) -> list[str]:
    rows = connection.execute(
        text(
            """
            select e.id
            from time_events e
            left join work_sessions s on s.id = e.session_id
            where e.session_id is not null and s.id is null
            limit 20
            """
        )
    ).fetchall()
    return [str(row[0]) for row in rows]


def check_database() -> CheckResult:
    database_url = (os.getenv("DATABASE_URL") or "").strip()
    if not database_url:
        return CheckResult(name="database", status="warn", details={"reason": "DATABASE_URL_NOT_SET"})

    expected_heads = _expected_alembic_heads()
    engine = create_engine(database_url, pool_pre_ping=True)
    try:
        with engine.connect() as connection:
            current_versions = [
                str(row[0]).strip()
                for row in connection.execute(text("SELECT version_num FROM alembic_version")).fetchall()
                if row and row[0] is not None
            ]
            duplicate_active = _duplicate_active_sessions(connection)
            orphan_events = _orphan_time_events(connection)
        schema_result = verify_runtime_schema(engine)
    finally:
        engine.dispose()

    missing_heads = [head for head in expected_heads if head not in current_versions]
    failed = bool(missing_heads or duplicate_active or orphan_events or not schema_result.ok)
    return CheckResult(
        name="database",
        status="fail" if failed else "ok",
        details={
            "expected_heads": expected_heads,
            "current_versions": current_versions,
            "missing_heads": missing_heads,
            "schema_guard_ok": schema_result.ok,
            "schema_guard_issues": schema_result.issues,
            "schema_guard_warnings": schema_result.warnings,
            "duplicate_active_sessions": duplicate_active,
            "orphan_time_event_ids": orphan_events,
        },
    )


def main() -> int:
    checks = [
        check_revision_id_lengths(),
        check_jwt_secret(),
        check_database(),
    ]
    failed_checks = [check for check in checks if check.status == "fail"]
    summary = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "ok": not failed_checks,
        "checks": [
            {"name": check.name, "status": check.status, "details": check.details}
            for check in checks
        ],
    }
    print(json.dumps(summary, ensure_ascii=False, indent=2))
    return 0 if not failed_checks else 1


if __name__ == "__main__":
    raise SystemExit(main())
