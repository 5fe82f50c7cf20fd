"""SQLite access for Docket: per-request connection and schema migrations."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Optional

from flask import current_app, g

import docket_config

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 3


def _app_db_path() -> Path:
    override = current_app.config.get("DATABASE")
    if override:
        return Path(override)
    return docket_config.DATABASE_PATH


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS app_meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """
    )

    row = conn.execute(
        "SELECT value FROM app_meta WHERE key = 'schema_version'"
    ).fetchone()
    current_version = int(row["value"]) if row else 0

    if current_version < 1:
        logger.info("Creating user tables (schema v1)")
        _migrate_to_v1(conn)

    if current_version < 2:
        logger.info("Creating case tables (schema v2)")
        _migrate_to_v2(conn)

    if current_version < 3:
        logger.info("Creating lead and payment tables (schema v3)")
        _migrate_to_v3(conn)

    if current_version != _SCHEMA_VERSION:
        conn.execute(
            "INSERT INTO app_meta(key, value) VALUES('schema_version', ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (str(_SCHEMA_VERSION),),
        )
        conn.commit()


def _migrate_to_v1(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            email TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            first_name TEXT NOT NULL DEFAULT '',
            last_name TEXT NOT NULL DEFAULT '',
            role TEXT NOT NULL CHECK(role IN ('admin','attorney','case_manager','staff')),
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            last_login_at TEXT
        )
        """
    )

    conn.execute(
        """
        CREATE TRIGGER IF NOT EXISTS trg_users_updated_at
        AFTER UPDATE ON users
        BEGIN
            UPDATE users SET updated_at = CURRENT_TIMESTAMP WHERE id = NEW.id;
        END;
        """
    )


def _migrate_to_v2(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS cases (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            case_number TEXT NOT NULL UNIQUE,
            client_name TEXT NOT NULL,
            client_email TEXT NOT NULL,
            client_phone TEXT NOT NULL,
            client_street TEXT,
            client_city TEXT,
            client_state TEXT,
            client_zip_code TEXT,
            case_type TEXT NOT NULL,
            description TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'active',
            attorney_id INTEGER NOT NULL,
            case_manager_id INTEGER,
            billing_rate REAL NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(attorney_id) REFERENCES users(id),
            FOREIGN KEY(case_manager_id) REFERENCES users(id) ON DELETE SET NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TRIGGER IF NOT EXISTS trg_cases_updated_at
        AFTER UPDATE ON cases
        BEGIN
            UPDATE cases SET updated_at = CURRENT_TIMESTAMP WHERE id = NEW.id;
        END;
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_cases_attorney ON cases(attorney_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_cases_manager ON cases(case_manager_id)")

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS important_dates (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            case_id INTEGER NOT NULL,
            title TEXT NOT NULL DEFAULT '',
            date TEXT NOT NULL,
            description TEXT,
            type TEXT NOT NULL DEFAULT 'other'
                CHECK(type IN ('court_date','deadline','meeting','other')),
            FOREIGN KEY(case_id) REFERENCES cases(id) ON DELETE CASCADE
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_important_dates_date ON important_dates(date, case_id)"
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS case_notes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            case_id INTEGER NOT NULL,
            content TEXT NOT NULL,
            created_by INTEGER,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(case_id) REFERENCES cases(id) ON DELETE CASCADE,
            FOREIGN KEY(created_by) REFERENCES users(id) ON DELETE SET NULL
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_case_notes_case ON case_notes(case_id)")


def _migrate_to_v3(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS leads (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            email TEXT NOT NULL,
            phone TEXT NOT NULL,
            case_type TEXT NOT NULL,
            description TEXT,
            status TEXT NOT NULL DEFAULT 'new'
                CHECK(status IN ('new','contacted','qualified','converted','closed')),
            source TEXT NOT NULL DEFAULT 'other'
                CHECK(source IN ('website','referral','advertising','social_media','other')),
            assigned_to INTEGER,
            follow_up_date TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(assigned_to) REFERENCES users(id) ON DELETE SET NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TRIGGER IF NOT EXISTS trg_leads_updated_at
        AFTER UPDATE ON leads
        BEGIN
            UPDATE leads SET updated_at = CURRENT_TIMESTAMP WHERE id = NEW.id;
        END;
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_leads_status ON leads(status)")

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS lead_notes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            lead_id INTEGER NOT NULL,
            content TEXT NOT NULL,
            created_by INTEGER,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(lead_id) REFERENCES leads(id) ON DELETE CASCADE,
            FOREIGN KEY(created_by) REFERENCES users(id) ON DELETE SET NULL
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_lead_notes_lead ON lead_notes(lead_id)")

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS payments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            case_id INTEGER NOT NULL,
            amount REAL NOT NULL CHECK(amount > 0),
            payment_method TEXT NOT NULL
                CHECK(payment_method IN ('cash','check','bank_transfer')),
            description TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'completed'
                CHECK(status IN ('pending','completed','failed','refunded')),
            paid_by TEXT NOT NULL,
            receipt_number TEXT NOT NULL UNIQUE,
            processed_by INTEGER,
            notes TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(case_id) REFERENCES cases(id) ON DELETE CASCADE,
            FOREIGN KEY(processed_by) REFERENCES users(id) ON DELETE SET NULL
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_payments_case ON payments(case_id)")

    columns = {row["name"] for row in conn.execute("PRAGMA table_info(cases)")}
    if "total_paid" not in columns:
        conn.execute("ALTER TABLE cases ADD COLUMN total_paid REAL NOT NULL DEFAULT 0")

def get_app_db() -> sqlite3.Connection:
    """Return the request-scoped connection to the application database."""
    if "app_db" not in g:
        db_path = _app_db_path()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        _ensure_schema(conn)
        g.app_db = conn
    return g.app_db


def close_app_db(_: Optional[BaseException]) -> None:
    conn = g.pop("app_db", None)
    if conn is not None:
        conn.close()
