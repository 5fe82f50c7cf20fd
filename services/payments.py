"""Payments recorded against cases (cash, check, bank transfer)."""

from __future__ import annotations

import logging
import math
import sqlite3
from typing import Any, Dict, Iterable, List, Optional, Tuple

from services.db import get_app_db
from services.models import (
    Payment,
    PaymentMethod,
    ValidationError,
    check_enum,
    clean_text,
)
from services.users import user_summaries

logger = logging.getLogger(__name__)

RECEIPT_NUMBER_PAD = 6


class PaymentValidationError(ValidationError):
    """Raised when a submitted payment fails field validation."""


def _validate_manual_payment(data: Dict[str, Any]) -> Dict[str, Any]:
    errors: List[Dict[str, str]] = []
    columns: Dict[str, Any] = {}

    try:
        columns["case_id"] = int(data.get("caseId"))
    except (TypeError, ValueError):
        errors.append({"field": "caseId", "msg": "Must be a case id"})

    raw_amount = data.get("amount")
    try:
        amount = None if isinstance(raw_amount, bool) else float(raw_amount)
    except (TypeError, ValueError):
        amount = None
    if amount is None or not math.isfinite(amount) or amount <= 0:
        errors.append({"field": "amount", "msg": "Must be a number greater than 0"})
    else:
        columns["amount"] = amount

    columns["payment_method"] = check_enum(PaymentMethod, data.get("paymentMethod"), "paymentMethod", errors)

    for field, column in (("description", "description"), ("paidBy", "paid_by")):
        text = clean_text(data.get(field))
        if not text:
            errors.append({"field": field, "msg": "This field is required"})
        columns[column] = text

    columns["notes"] = clean_text(data.get("notes")) or None

    if errors:
        raise PaymentValidationError(errors)
    return columns


def _next_receipt_number(conn: sqlite3.Connection) -> str:
    row = conn.execute(
        """
        SELECT MAX(CAST(substr(receipt_number, 5) AS INTEGER)) AS highest
        FROM payments
        WHERE receipt_number GLOB 'RCP-[0-9]*'
        """
    ).fetchone()
    highest = int(row["highest"]) if row and row["highest"] is not None else 0
    return f"RCP-{str(highest + 1).zfill(RECEIPT_NUMBER_PAD)}"


def record_manual_payment(data: Dict[str, Any], processed_by: int) -> Optional[Payment]:
    """Store a completed cash/check/transfer payment and add it to the case's paid total.

    Returns ``None`` when the case does not exist.
    """
    columns = _validate_manual_payment(data)
    conn = get_app_db()
    if conn.execute("SELECT 1 FROM cases WHERE id = ?", (columns["case_id"],)).fetchone() is None:
        return None

    columns.update(receipt_number=_next_receipt_number(conn), processed_by=processed_by, status="completed")
    names = ", ".join(columns)
    placeholders = ", ".join("?" for _ in columns)
    try:
        cur = conn.execute(
            f"INSERT INTO payments({names}) VALUES({placeholders})",
            tuple(columns.values()),
        )
        conn.execute(
            "UPDATE cases SET total_paid = total_paid + ? WHERE id = ?",
            (columns["amount"], columns["case_id"]),
        )
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise

    logger.info(
        "Recorded %s payment %s of %.2f on case %s",
        columns["payment_method"],
        columns["receipt_number"],
        columns["amount"],
        columns["case_id"],
    )
    return get_payment(int(cur.lastrowid))


def get_payment(payment_id: int) -> Optional[Payment]:
    conn = get_app_db()
    row = conn.execute("SELECT * FROM payments WHERE id = ?", (payment_id,)).fetchone()
    return Payment.from_row(row) if row else None


def list_payments(
    case_id: Optional[int] = None,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[List[Payment], int]:
    """Return one page of payments, newest first, and the total matching count."""
    clauses = []
    params: List[Any] = []
    if case_id is not None:
        clauses.append("case_id = ?")
        params.append(case_id)
    if status:
        clauses.append("status = ?")
        params.append(status)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    page = max(int(page), 1)
    limit = max(int(limit), 1)
    conn = get_app_db()
    total = conn.execute(f"SELECT COUNT(*) AS c FROM payments {where}", params).fetchone()["c"]
    rows = conn.execute(
        f"SELECT * FROM payments {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
        params + [limit, (page - 1) * limit],
    ).fetchall()
    return [Payment.from_row(row) for row in rows], int(total)


def total_revenue() -> float:
    conn = get_app_db()
    row = conn.execute("SELECT COALESCE(SUM(amount), 0) AS total FROM payments").fetchone()
    return float(row["total"])


def _case_summaries(case_ids: Iterable[int]) -> Dict[int, Dict[str, Any]]:
    ids = sorted(set(case_ids))
    if not ids:
        return {}
    placeholders = ",".join("?" for _ in ids)
    conn = get_app_db()
    rows = conn.execute(
        f"SELECT id, case_number, client_name FROM cases WHERE id IN ({placeholders})",
        ids,
    ).fetchall()
    return {
        row["id"]: {"id": row["id"], "caseNumber": row["case_number"], "clientName": row["client_name"]}
        for row in rows
    }


def serialize_payments(payments: List[Payment]) -> List[Dict[str, Any]]:
    """JSON shape of several payments, with case and processor summaries filled in."""
    cases = _case_summaries(payment.case_id for payment in payments)
    people = user_summaries(payment.processed_by for payment in payments)
    return [
        {
            "id": payment.id,
            "receiptNumber": payment.receipt_number,
            "case": cases.get(payment.case_id),
            "amount": payment.amount,
            "paymentMethod": payment.payment_method.value,
            "description": payment.description,
            "paidBy": payment.paid_by,
            "status": payment.status.value,
            "processedBy": people.get(payment.processed_by),
            "notes": payment.notes,
            "createdAt": payment.created_at,
        }
        for payment in payments
    ]


def serialize_payment(payment: Payment) -> Dict[str, Any]:
    return serialize_payments([payment])[0]
