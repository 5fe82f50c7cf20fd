"""User directory: staff accounts, roles and display names."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, Iterable, Optional

from email_validator import EmailNotValidError, validate_email

from services.db import get_app_db
from services.security import hash_password, needs_rehash, verify_password

logger = logging.getLogger(__name__)

ROLES = ("admin", "attorney", "case_manager", "staff")


class UserExistsError(ValueError):
    """Raised when attempting to create a user with an email that already exists."""


class EmailInUseError(UserExistsError):
    """Raised when updating a user to an email that already exists."""


def normalize_email(email: str) -> str:
    """Validate the address syntax and return it lower-cased; raises ``ValueError``."""
    if email is not None and not isinstance(email, str):
        raise ValueError("Email must be a string")
    raw = (email or "").strip()
    if not raw:
        raise ValueError("Email is required")
    try:
        result = validate_email(raw, check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValueError(f"Invalid email address: {raw!r}") from exc
    return result.normalized.lower()


def create_user(
    email: str,
    password: str,
    first_name: str = "",
    last_name: str = "",
    role: str = "staff",
    is_active: bool = True,
) -> int:
    email_norm = normalize_email(email)
    if role not in ROLES:
        raise ValueError("Invalid role")
    password_hash = hash_password(password)

    conn = get_app_db()
    try:
        cur = conn.execute(
            """
            INSERT INTO users(email, password_hash, first_name, last_name, role, is_active)
            VALUES(?, ?, ?, ?, ?, ?)
            """,
            (
                email_norm,
                password_hash,
                (first_name or "").strip(),
                (last_name or "").strip(),
                role,
                1 if is_active else 0,
            ),
        )
        conn.commit()
    except sqlite3.IntegrityError as exc:
        raise UserExistsError(f"User with email {email_norm!r} already exists") from exc

    logger.info("Created %s account %s", role, email_norm)
    return int(cur.lastrowid)


def get_user_by_email(email: str) -> Optional[sqlite3.Row]:
    try:
        email_norm = normalize_email(email)
    except ValueError:
        return None
    conn = get_app_db()
    return conn.execute(
        "SELECT * FROM users WHERE email = ?",
        (email_norm,),
    ).fetchone()


def get_user_by_id(user_id: int) -> Optional[sqlite3.Row]:
    conn = get_app_db()
    return conn.execute(
        "SELECT * FROM users WHERE id = ?",
        (user_id,),
    ).fetchone()


def authenticate_user(email: str, password: str) -> Optional[sqlite3.Row]:
    user = get_user_by_email(email)
    if not user or not user["is_active"]:
        return None
    if not verify_password(password, user["password_hash"]):
        return None
    if needs_rehash(user["password_hash"]):
        set_user_password(user["id"], password)
    return user


def count_users() -> int:
    conn = get_app_db()
    row = conn.execute("SELECT COUNT(*) AS c FROM users").fetchone()
    return int(row["c"] if row else 0)


def count_admins(active_only: bool = True) -> int:
    conn = get_app_db()
    sql = "SELECT COUNT(*) AS c FROM users WHERE role = 'admin'"
    if active_only:
        sql += " AND is_active = 1"
    row = conn.execute(sql).fetchone()
    return int(row["c"] if row else 0)


def set_user_password(user_id: int, password: str) -> None:
    conn = get_app_db()
    conn.execute(
        "UPDATE users SET password_hash = ? WHERE id = ?",
        (hash_password(password), user_id),
    )
    conn.commit()


def mark_user_login(user_id: int) -> None:
    conn = get_app_db()
    conn.execute(
        "UPDATE users SET last_login_at = CURRENT_TIMESTAMP WHERE id = ?",
        (user_id,),
    )
    conn.commit()


def set_user_active(user_id: int, active: bool) -> None:
    conn = get_app_db()
    conn.execute(
        "UPDATE users SET is_active = ? WHERE id = ?",
        (1 if active else 0, user_id),
    )
    conn.commit()


def list_users() -> list[sqlite3.Row]:
    conn = get_app_db()
    return conn.execute(
        """
        SELECT id, email, first_name, last_name, role, is_active, created_at, last_login_at
        FROM users
        ORDER BY last_name COLLATE NOCASE, first_name COLLATE NOCASE, email
        """
    ).fetchall()


def display_name(user: Optional[sqlite3.Row]) -> str:
    if user is None:
        return ""
    full = f"{user['first_name']} {user['last_name']}".strip()
    return full or user["email"]


def user_summary(user: sqlite3.Row) -> Dict[str, Any]:
    return {
        "id": user["id"],
        "email": user["email"],
        "firstName": user["first_name"],
        "lastName": user["last_name"],
        "role": user["role"],
    }


def user_summaries(user_ids: Iterable[Optional[int]]) -> Dict[int, Dict[str, Any]]:
    """Look up several users at once, keyed by id; unknown ids are left out."""
    ids = sorted({uid for uid in user_ids if uid is not None})
    if not ids:
        return {}
    placeholders = ",".join("?" for _ in ids)
    conn = get_app_db()
    rows = conn.execute(
        f"SELECT id, email, first_name, last_name, role FROM users WHERE id IN ({placeholders})",
        ids,
    ).fetchall()
    summaries = {}
    for row in rows:
        summary = user_summary(row)
        summary["name"] = display_name(row)
        summaries[row["id"]] = summary
    return summaries
