"""Case store: client matters, their important dates and notes."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from services.db import get_app_db
from services.models import (
    Case,
    CaseStatus,
    CaseType,
    DateType,
    ImportantDate,
    Note,
    ValidationError,
    check_enum,
    clean_text,
    format_timestamp,
    parse_timestamp,
)
from services.users import normalize_email, user_summaries

logger = logging.getLogger(__name__)

CASE_NUMBER_PAD = 6

# JSON field -> column, for fields a PUT may change
_EDITABLE_FIELDS = {
    "clientName": "client_name",
    "clientEmail": "client_email",
    "clientPhone": "client_phone",
    "caseType": "case_type",
    "description": "description",
    "status": "status",
    "caseManager": "case_manager_id",
    "billingRate": "billing_rate",
}

_ADDRESS_FIELDS = {
    "street": "client_street",
    "city": "client_city",
    "state": "client_state",
    "zipCode": "client_zip_code",
}

_REQUIRED_ON_CREATE = ("clientName", "clientEmail", "clientPhone", "caseType", "description")


class CaseValidationError(ValidationError):
    """Raised when submitted case data fails field validation."""


class CaseNumberConflict(Exception):
    """Raised when a case number is already taken."""


def _validate_case_fields(data: Dict[str, Any], creating: bool) -> Dict[str, Any]:
    """Map JSON fields onto column values, collecting every field error."""
    errors: List[Dict[str, str]] = []
    columns: Dict[str, Any] = {}

    if creating:
        for field in _REQUIRED_ON_CREATE:
            if not clean_text(data.get(field)):
                errors.append({"field": field, "msg": "This field is required"})

    for field, column in _EDITABLE_FIELDS.items():
        if field not in data or any(e["field"] == field for e in errors):
            continue
        value = data[field]
        if field in ("clientName", "clientPhone", "description"):
            if not clean_text(value):
                errors.append({"field": field, "msg": "Must not be empty"})
                continue
            columns[column] = clean_text(value)
        elif field == "clientEmail":
            try:
                columns[column] = normalize_email(value)
            except ValueError as exc:
                errors.append({"field": field, "msg": str(exc)})
        elif field == "caseType":
            columns[column] = check_enum(CaseType, value, field, errors)
        elif field == "status":
            columns[column] = check_enum(CaseStatus, value, field, errors)
        elif field == "caseManager":
            if value in (None, ""):
                columns[column] = None
                continue
            try:
                columns[column] = int(value)
            except (TypeError, ValueError):
                errors.append({"field": field, "msg": "Must be a user id"})
        elif field == "billingRate":
            try:
                rate = float(value or 0)
            except (TypeError, ValueError):
                errors.append({"field": field, "msg": "Must be a number"})
                continue
            if rate < 0:
                errors.append({"field": field, "msg": "Must not be negative"})
                continue
            columns[column] = rate

    address = data.get("clientAddress")
    if address is not None:
        if not isinstance(address, dict):
            errors.append({"field": "clientAddress", "msg": "Must be an object"})
        else:
            for key, column in _ADDRESS_FIELDS.items():
                if key in address:
                    columns[column] = clean_text(address[key]) or None

    if errors:
        raise CaseValidationError(errors)
    return columns


def _check_case_manager(conn: sqlite3.Connection, columns: Dict[str, Any]) -> None:
    manager_id = columns.get("case_manager_id")
    if manager_id is None:
        return
    row = conn.execute("SELECT 1 FROM users WHERE id = ?", (manager_id,)).fetchone()
    if row is None:
        raise CaseValidationError([{"field": "caseManager", "msg": "Unknown user"}])


def _next_case_number(conn: sqlite3.Connection) -> str:
    """Row count + 1, bumped past the highest numbered ``CASE-`` already taken."""
    row = conn.execute("SELECT COUNT(*) AS c FROM cases").fetchone()
    counter = int(row["c"] if row else 0) + 1
    row = conn.execute(
        """
        SELECT CAST(substr(case_number, 6) AS INTEGER) AS highest
        FROM cases
        WHERE case_number GLOB 'CASE-[0-9]*'
        ORDER BY highest DESC
        LIMIT 1
        """
    ).fetchone()
    if row and row["highest"] is not None and row["highest"] >= counter:
        counter = row["highest"] + 1
    return f"CASE-{str(counter).zfill(CASE_NUMBER_PAD)}"


def _load_dates(conn: sqlite3.Connection, case_ids: List[int]) -> Dict[int, List[ImportantDate]]:
    grouped: Dict[int, List[ImportantDate]] = {cid: [] for cid in case_ids}
    if not case_ids:
        return grouped
    placeholders = ",".join("?" for _ in case_ids)
    rows = conn.execute(
        f"SELECT * FROM important_dates WHERE case_id IN ({placeholders}) ORDER BY id",
        case_ids,
    ).fetchall()
    for row in rows:
        grouped[row["case_id"]].append(ImportantDate.from_row(row))
    return grouped


def _load_notes(conn: sqlite3.Connection, case_ids: List[int]) -> Dict[int, List[Note]]:
    grouped: Dict[int, List[Note]] = {cid: [] for cid in case_ids}
    if not case_ids:
        return grouped
    placeholders = ",".join("?" for _ in case_ids)
    rows = conn.execute(
        f"SELECT * FROM case_notes WHERE case_id IN ({placeholders}) ORDER BY id",
        case_ids,
    ).fetchall()
    for row in rows:
        grouped[row["case_id"]].append(Note.from_row(row))
    return grouped


def _hydrate(conn: sqlite3.Connection, rows: List[sqlite3.Row], with_notes: bool = True) -> List[Case]:
    ids = [row["id"] for row in rows]
    dates = _load_dates(conn, ids)
    notes = _load_notes(conn, ids) if with_notes else {}
    return [Case.from_row(row, dates[row["id"]], notes.get(row["id"])) for row in rows]


def create_case(data: Dict[str, Any], attorney_id: int) -> Case:
    columns = _validate_case_fields(data, creating=True)
    conn = get_app_db()
    _check_case_manager(conn, columns)
    case_number = clean_text(data.get("caseNumber")) or _next_case_number(conn)
    columns.update(case_number=case_number, attorney_id=attorney_id)
    columns.setdefault("status", CaseStatus.ACTIVE.value)

    names = ", ".join(columns)
    placeholders = ", ".join("?" for _ in columns)
    try:
        cur = conn.execute(
            f"INSERT INTO cases({names}) VALUES({placeholders})",
            tuple(columns.values()),
        )
        conn.commit()
    except sqlite3.IntegrityError as exc:
        conn.rollback()
        if "case_number" in str(exc).lower():
            raise CaseNumberConflict(f"Case number {case_number!r} already exists") from exc
        raise

    logger.info("Created case %s for attorney %s", case_number, attorney_id)
    return get_case(int(cur.lastrowid))


def get_case(case_id: int) -> Optional[Case]:
    conn = get_app_db()
    row = conn.execute("SELECT * FROM cases WHERE id = ?", (case_id,)).fetchone()
    if row is None:
        return None
    return _hydrate(conn, [row])[0]


def list_cases(
    status: Optional[str] = None,
    case_type: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[List[Case], int]:
    """Return one page of cases, newest first, and the total matching count."""
    clauses = []
    params: List[Any] = []
    if status:
        clauses.append("status = ?")
        params.append(status)
    if case_type:
        clauses.append("case_type = ?")
        params.append(case_type)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    page = max(int(page), 1)
    limit = max(int(limit), 1)
    conn = get_app_db()
    total = conn.execute(f"SELECT COUNT(*) AS c FROM cases {where}", params).fetchone()["c"]
    rows = conn.execute(
        f"SELECT * FROM cases {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
        params + [limit, (page - 1) * limit],
    ).fetchall()
    return _hydrate(conn, rows, with_notes=False), int(total)


def count_cases(status: Optional[str] = None) -> int:
    conn = get_app_db()
    if status:
        row = conn.execute("SELECT COUNT(*) AS c FROM cases WHERE status = ?", (status,)).fetchone()
    else:
        row = conn.execute("SELECT COUNT(*) AS c FROM cases").fetchone()
    return int(row["c"] if row else 0)


def update_case(case_id: int, changes: Dict[str, Any]) -> Optional[Case]:
    columns = _validate_case_fields(changes, creating=False)
    conn = get_app_db()
    if conn.execute("SELECT 1 FROM cases WHERE id = ?", (case_id,)).fetchone() is None:
        return None
    _check_case_manager(conn, columns)
    if columns:
        assignments = ", ".join(f"{column} = ?" for column in columns)
        conn.execute(
            f"UPDATE cases SET {assignments} WHERE id = ?",
            tuple(columns.values()) + (case_id,),
        )
        conn.commit()
    return get_case(case_id)


def add_important_date(case_id: int, data: Dict[str, Any]) -> Optional[Case]:
    errors: List[Dict[str, str]] = []
    title = clean_text(data.get("title"))
    if not title:
        errors.append({"field": "title", "msg": "This field is required"})

    when: Optional[datetime] = None
    try:
        when = parse_timestamp(clean_text(data.get("date")))
    except ValueError:
        errors.append({"field": "date", "msg": "Must be an ISO-8601 date"})

    entry_type = check_enum(DateType, data.get("type") or DateType.OTHER.value, "type", errors)
    if errors:
        raise CaseValidationError(errors)

    conn = get_app_db()
    if conn.execute("SELECT 1 FROM cases WHERE id = ?", (case_id,)).fetchone() is None:
        return None
    conn.execute(
        """
        INSERT INTO important_dates(case_id, title, date, description, type)
        VALUES(?, ?, ?, ?, ?)
        """,
        (case_id, title, format_timestamp(when), clean_text(data.get("description")) or None, entry_type),
    )
    conn.commit()
    return get_case(case_id)


def add_note(case_id: int, content: str, author_id: int) -> Optional[Case]:
    text = clean_text(content)
    if not text:
        raise CaseValidationError([{"field": "content", "msg": "This field is required"}])
    conn = get_app_db()
    if conn.execute("SELECT 1 FROM cases WHERE id = ?", (case_id,)).fetchone() is None:
        return None
    conn.execute(
        "INSERT INTO case_notes(case_id, content, created_by) VALUES(?, ?, ?)",
        (case_id, text, author_id),
    )
    conn.commit()
    return get_case(case_id)


def find_cases_with_dated_entries_in_range(
    user_id: int, range_start: datetime, range_end: datetime
) -> List[Case]:
    """Cases the user works on (attorney or case manager) with a date in ``[start, end)``.

    Each returned case carries all of its important dates, not only those in
    range; ordering is by the earliest in-range date.
    """
    conn = get_app_db()
    rows = conn.execute(
        """
        SELECT c.*, MIN(d.date) AS first_in_range
        FROM cases c
        JOIN important_dates d ON d.case_id = c.id
        WHERE (c.attorney_id = ? OR c.case_manager_id = ?)
          AND d.date >= ? AND d.date < ?
        GROUP BY c.id
        ORDER BY first_in_range, c.id
        """,
        (user_id, user_id, format_timestamp(range_start), format_timestamp(range_end)),
    ).fetchall()
    return _hydrate(conn, rows, with_notes=False)


def serialize_case(case: Case, include_notes: bool = True) -> Dict[str, Any]:
    note_authors = [note.created_by for note in case.notes] if include_notes else []
    people = user_summaries([case.attorney_id, case.case_manager_id, *note_authors])
    payload: Dict[str, Any] = {
        "id": case.id,
        "caseNumber": case.case_number,
        "clientName": case.client_name,
        "clientEmail": case.client_email,
        "clientPhone": case.client_phone,
        "clientAddress": case.client_address,
        "caseType": case.case_type.value,
        "description": case.description,
        "status": case.status.value,
        "attorney": people.get(case.attorney_id),
        "caseManager": people.get(case.case_manager_id),
        "billingRate": case.billing_rate,
        "totalPaid": case.total_paid,
        "importantDates": [entry.to_dict() for entry in case.important_dates],
        "createdAt": case.created_at,
        "updatedAt": case.updated_at,
    }
    if include_notes:
        payload["notes"] = [
            {
                "id": note.id,
                "content": note.content,
                "createdBy": people.get(note.created_by),
                "createdAt": note.created_at,
            }
            for note in case.notes
        ]
    return payload
