"""Lead store: prospective clients tracked before they become cases."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, List, Optional, Tuple

from services.db import get_app_db
from services.models import (
    CaseType,
    Lead,
    LeadSource,
    LeadStatus,
    Note,
    ValidationError,
    check_enum,
    clean_text,
    format_timestamp,
    parse_timestamp,
)
from services.users import normalize_email, user_summaries

logger = logging.getLogger(__name__)

_FIELDS = {
    "name": "name",
    "email": "email",
    "phone": "phone",
    "caseType": "case_type",
    "description": "description",
    "status": "status",
    "source": "source",
    "assignedTo": "assigned_to",
    "followUpDate": "follow_up_date",
}

_REQUIRED_ON_CREATE = ("name", "email", "phone", "caseType")


class LeadValidationError(ValidationError):
    """Raised when submitted lead data fails field validation."""


def _validate_lead_fields(data: Dict[str, Any], creating: bool) -> Dict[str, Any]:
    errors: List[Dict[str, str]] = []
    columns: Dict[str, Any] = {}

    if creating:
        for field in _REQUIRED_ON_CREATE:
            if not clean_text(data.get(field)):
                errors.append({"field": field, "msg": "This field is required"})

    for field, column in _FIELDS.items():
        if field not in data or any(e["field"] == field for e in errors):
            continue
        value = data[field]
        if field in ("name", "phone"):
            if not clean_text(value):
                errors.append({"field": field, "msg": "Must not be empty"})
                continue
            columns[column] = clean_text(value)
        elif field == "email":
            try:
                columns[column] = normalize_email(value)
            except ValueError as exc:
                errors.append({"field": field, "msg": str(exc)})
        elif field == "description":
            columns[column] = clean_text(value) or None
        elif field == "caseType":
            columns[column] = check_enum(CaseType, value, field, errors)
        elif field == "status":
            columns[column] = check_enum(LeadStatus, value, field, errors)
        elif field == "source":
            columns[column] = check_enum(LeadSource, value, field, errors)
        elif field == "assignedTo":
            if value in (None, ""):
                columns[column] = None
                continue
            try:
                columns[column] = int(value)
            except (TypeError, ValueError):
                errors.append({"field": field, "msg": "Must be a user id"})
        elif field == "followUpDate":
            if value in (None, ""):
                columns[column] = None
                continue
            try:
                columns[column] = format_timestamp(parse_timestamp(clean_text(value)))
            except ValueError:
                errors.append({"field": field, "msg": "Must be an ISO-8601 date"})

    if errors:
        raise LeadValidationError(errors)
    return columns


def _check_assignee(conn: sqlite3.Connection, columns: Dict[str, Any]) -> None:
    user_id = columns.get("assigned_to")
    if user_id is None:
        return
    if conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone() is None:
        raise LeadValidationError([{"field": "assignedTo", "msg": "Unknown user"}])


def _lead_exists(conn: sqlite3.Connection, lead_id: int) -> bool:
    return conn.execute("SELECT 1 FROM leads WHERE id = ?", (lead_id,)).fetchone() is not None


def create_lead(data: Dict[str, Any], assigned_to: int) -> Lead:
    """Insert a lead; it is assigned to the creating user unless ``assignedTo`` says otherwise."""
    columns = _validate_lead_fields(data, creating=True)
    conn = get_app_db()
    columns.setdefault("assigned_to", assigned_to)
    _check_assignee(conn, columns)

    names = ", ".join(columns)
    placeholders = ", ".join("?" for _ in columns)
    cur = conn.execute(
        f"INSERT INTO leads({names}) VALUES({placeholders})",
        tuple(columns.values()),
    )
    conn.commit()
    logger.info("Created lead %s assigned to %s", cur.lastrowid, columns["assigned_to"])
    return get_lead(int(cur.lastrowid))


def get_lead(lead_id: int) -> Optional[Lead]:
    conn = get_app_db()
    row = conn.execute("SELECT * FROM leads WHERE id = ?", (lead_id,)).fetchone()
    if row is None:
        return None
    notes = conn.execute(
        "SELECT * FROM lead_notes WHERE lead_id = ? ORDER BY id",
        (lead_id,),
    ).fetchall()
    return Lead.from_row(row, [Note.from_row(note) for note in notes])


def list_leads(
    status: Optional[str] = None,
    case_type: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[List[Lead], int]:
    """Return one page of leads, newest first, and the total matching count."""
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
    total = conn.execute(f"SELECT COUNT(*) AS c FROM leads {where}", params).fetchone()["c"]
    rows = conn.execute(
        f"SELECT * FROM leads {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
        params + [limit, (page - 1) * limit],
    ).fetchall()
    return [Lead.from_row(row) for row in rows], int(total)


def count_leads() -> int:
    conn = get_app_db()
    row = conn.execute("SELECT COUNT(*) AS c FROM leads").fetchone()
    return int(row["c"] if row else 0)


def update_lead(lead_id: int, changes: Dict[str, Any]) -> Optional[Lead]:
    columns = _validate_lead_fields(changes, creating=False)
    conn = get_app_db()
    if not _lead_exists(conn, lead_id):
        return None
    _check_assignee(conn, columns)
    if columns:
        assignments = ", ".join(f"{column} = ?" for column in columns)
        conn.execute(
            f"UPDATE leads SET {assignments} WHERE id = ?",
            tuple(columns.values()) + (lead_id,),
        )
        conn.commit()
    return get_lead(lead_id)


def add_lead_note(lead_id: int, content: str, author_id: int) -> Optional[Lead]:
    text = clean_text(content)
    if not text:
        raise LeadValidationError([{"field": "content", "msg": "This field is required"}])
    conn = get_app_db()
    if not _lead_exists(conn, lead_id):
        return None
    conn.execute(
        "INSERT INTO lead_notes(lead_id, content, created_by) VALUES(?, ?, ?)",
        (lead_id, text, author_id),
    )
    conn.commit()
    return get_lead(lead_id)


def serialize_lead(lead: Lead, include_notes: bool = True) -> Dict[str, Any]:
    note_authors = [note.created_by for note in lead.notes] if include_notes else []
    people = user_summaries([lead.assigned_to, *note_authors])
    payload: Dict[str, Any] = {
        "id": lead.id,
        "name": lead.name,
        "email": lead.email,
        "phone": lead.phone,
        "caseType": lead.case_type.value,
        "description": lead.description,
        "status": lead.status.value,
        "source": lead.source.value,
        "assignedTo": people.get(lead.assigned_to),
        "followUpDate": format_timestamp(lead.follow_up_date) if lead.follow_up_date else None,
        "createdAt": lead.created_at,
        "updatedAt": lead.updated_at,
    }
    if include_notes:
        payload["notes"] = [
            {
                "id": note.id,
                "content": note.content,
                "createdBy": people.get(note.created_by),
                "createdAt": note.created_at,
            }
            for note in lead.notes
        ]
    return payload
