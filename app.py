from __future__ import annotations

import logging
import sqlite3
import sys
from contextlib import suppress
from datetime import datetime
from functools import wraps
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from flask import Flask, g, jsonify, request, session

from services.calendar import (
    day_bounds,
    day_view,
    parse_day,
    today_view,
    week_bounds,
    week_view,
)
from services.cases import (
    CaseNumberConflict,
    CaseValidationError,
    add_important_date,
    add_note,
    create_case,
    find_cases_with_dated_entries_in_range,
    get_case,
    list_cases,
    serialize_case,
    update_case,
)
from services.db import close_app_db
from services.leads import (
    LeadValidationError,
    add_lead_note,
    create_lead,
    get_lead,
    list_leads,
    serialize_lead,
    update_lead,
)
from services.payments import (
    PaymentValidationError,
    get_payment,
    list_payments,
    record_manual_payment,
    serialize_payment,
    serialize_payments,
)
from services.reports import dashboard_stats
from services.users import (
    UserExistsError,
    authenticate_user,
    count_admins,
    create_user,
    get_user_by_id,
    list_users,
    mark_user_login,
    user_summary,
)

import docket_config as config


SESSION_ACTIVITY_KEY = "last_activity"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

DEFAULT_ADMIN = {
    "email": "admin@docket.example.com",
    "password": "admin123",
    "firstName": "System",
    "lastName": "Administrator",
}


def configure_logging(flask_app: Flask, level: str = config.LOG_LEVEL, log_file: Optional[str] = config.LOG_FILE) -> None:
    """Attach console (and optional file) handlers to the app and service loggers."""
    log_level = getattr(logging, str(level).upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path))

    for name in (flask_app.logger.name, "services"):
        logger = logging.getLogger(name)
        logger.setLevel(log_level)
        logger.handlers.clear()
        for handler in handlers:
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            logger.addHandler(handler)


def error(msg: str, status: int, **extra: Any):
    return jsonify({"ok": False, "msg": msg, **extra}), status


def login_user_session(user: sqlite3.Row) -> None:
    session.clear()
    session.permanent = True
    session["user_id"] = user["id"]
    session["user_role"] = user["role"]
    session[SESSION_ACTIVITY_KEY] = datetime.utcnow().isoformat()


def logout_user_session() -> None:
    session.clear()


def require_login_api(handler):
    @wraps(handler)
    def wrapper(*args, **kwargs):
        if g.get("current_user") is None:
            return error("Authentication required.", 401)
        return handler(*args, **kwargs)

    return wrapper


def require_admin_api(handler):
    @wraps(handler)
    def wrapper(*args, **kwargs):
        user = g.get("current_user")
        if user is None:
            return error("Authentication required.", 401)
        if user["role"] != "admin":
            return error("Administrator access required.", 403)
        return handler(*args, **kwargs)

    return wrapper


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _page_args() -> Tuple[int, int]:
    """``page`` and ``limit`` query arguments; raises ``ValueError`` when not integers."""
    page = max(int(request.args.get("page", 1)), 1)
    limit = min(max(int(request.args.get("limit", 10)), 1), config.CASES_PAGE_LIMIT_MAX)
    return page, limit


def _page_payload(key: str, items: list, total: int, page: int, limit: int) -> Dict[str, Any]:
    return {"ok": True, key: items, "totalPages": -(-total // limit), "currentPage": page, "total": total}


# ---- Flask setup --------------------------------------------------------
app = Flask(__name__)
app.secret_key = config.SECRET_KEY
app.permanent_session_lifetime = config.SESSION_TIMEOUT
configure_logging(app)


@app.before_request
def _enforce_session_timeout():
    if session.get("user_id") is None:
        return

    now = datetime.utcnow()
    last_activity = None
    raw_last_activity = session.get(SESSION_ACTIVITY_KEY)
    if raw_last_activity:
        with suppress(ValueError, TypeError):
            last_activity = datetime.fromisoformat(raw_last_activity)

    if last_activity and now - last_activity > app.permanent_session_lifetime:
        app.logger.info("Session for user %s expired", session.get("user_id"))
        logout_user_session()
        return error("Session expired. Please log in again.", 401)

    session.permanent = True
    session[SESSION_ACTIVITY_KEY] = now.isoformat()


@app.before_request
def _load_current_user() -> None:
    g.current_user = None
    user_id = session.get("user_id")
    if user_id is None:
        return
    user = get_user_by_id(user_id)
    if user and user["is_active"]:
        g.current_user = user
    else:
        session.clear()


@app.teardown_appcontext
def close_application_db(exc: Optional[BaseException]) -> None:
    close_app_db(exc)


@app.errorhandler(sqlite3.Error)
def _storage_failure(exc: sqlite3.Error):
    app.logger.exception("Database error on %s %s: %s", request.method, request.path, exc)
    return error("Server error", 500)


# ---- Diagnostics --------------------------------------------------------
@app.get("/ping")
def ping():
    return "pong"


@app.get("/api/health")
def health():
    return jsonify({"status": "OK", "timestamp": datetime.utcnow().isoformat() + "Z"})


# ---- Setup & Auth -------------------------------------------------------
@app.post("/api/setup/create-admin")
def setup_create_admin():
    if count_admins(active_only=False) > 0:
        return jsonify({"ok": True, "msg": "Admin user already exists"})

    data = {**DEFAULT_ADMIN, **_json_body()}
    try:
        user_id = create_user(
            str(data.get("email") or ""),
            str(data.get("password") or ""),
            first_name=str(data.get("firstName") or ""),
            last_name=str(data.get("lastName") or ""),
            role="admin",
        )
    except (UserExistsError, ValueError) as exc:
        return error(str(exc), 400)

    app.logger.info("Initial administrator %s created", data["email"])
    return jsonify({"ok": True, "msg": "Admin user created successfully", "user": user_summary(get_user_by_id(user_id))}), 201


@app.post("/api/auth/login")
def login():
    data = _json_body()
    user = authenticate_user(str(data.get("email") or ""), str(data.get("password") or ""))
    if user is None:
        app.logger.warning("Failed login for %r", data.get("email"))
        return error("Invalid credentials", 400)

    login_user_session(user)
    mark_user_login(user["id"])
    return jsonify({"ok": True, "user": user_summary(user)})


@app.post("/api/auth/logout")
def logout():
    logout_user_session()
    return jsonify({"ok": True})


@app.get("/api/auth/me")
@require_login_api
def me():
    return jsonify({"ok": True, "user": user_summary(g.current_user)})


# ---- Employees ----------------------------------------------------------
@app.get("/api/employees")
@require_login_api
def employees_list():
    users = [
        {**user_summary(row), "isActive": bool(row["is_active"]), "lastLoginAt": row["last_login_at"]}
        for row in list_users()
    ]
    return jsonify({"ok": True, "employees": users})


@app.post("/api/employees")
@require_admin_api
def employees_create():
    data = _json_body()
    try:
        user_id = create_user(
            str(data.get("email") or ""),
            str(data.get("password") or ""),
            first_name=str(data.get("firstName") or ""),
            last_name=str(data.get("lastName") or ""),
            role=str(data.get("role") or "staff"),
        )
    except UserExistsError as exc:
        return error(str(exc), 409)
    except ValueError as exc:
        return error(str(exc), 400)
    return jsonify({"ok": True, "employee": user_summary(get_user_by_id(user_id))}), 201


# ---- Cases --------------------------------------------------------------
@app.get("/api/cases")
@require_login_api
def cases_list():
    try:
        page, limit = _page_args()
    except ValueError:
        return error("page and limit must be integers", 400)

    cases, total = list_cases(
        status=request.args.get("status") or None,
        case_type=request.args.get("caseType") or None,
        page=page,
        limit=limit,
    )
    return jsonify(_page_payload("cases", [serialize_case(case, include_notes=False) for case in cases], total, page, limit))


@app.post("/api/cases")
@require_login_api
def cases_create():
    try:
        case = create_case(_json_body(), attorney_id=g.current_user["id"])
    except CaseValidationError as exc:
        return error("Validation failed", 400, errors=exc.errors)
    except CaseNumberConflict as exc:
        return error(str(exc), 409)
    return jsonify({"ok": True, "case": serialize_case(case)}), 201


@app.get("/api/cases/<int:case_id>")
@require_login_api
def cases_detail(case_id: int):
    case = get_case(case_id)
    if case is None:
        return error("Case not found", 404)
    return jsonify({"ok": True, "case": serialize_case(case)})


@app.put("/api/cases/<int:case_id>")
@require_login_api
def cases_update(case_id: int):
    try:
        case = update_case(case_id, _json_body())
    except CaseValidationError as exc:
        return error("Validation failed", 400, errors=exc.errors)
    if case is None:
        return error("Case not found", 404)
    return jsonify({"ok": True, "case": serialize_case(case)})


@app.post("/api/cases/<int:case_id>/dates")
@require_login_api
def cases_add_date(case_id: int):
    try:
        case = add_important_date(case_id, _json_body())
    except CaseValidationError as exc:
        return error("Validation failed", 400, errors=exc.errors)
    if case is None:
        return error("Case not found", 404)
    return jsonify({"ok": True, "case": serialize_case(case)})


@app.post("/api/cases/<int:case_id>/notes")
@require_login_api
def cases_add_note(case_id: int):
    try:
        case = add_note(case_id, _json_body().get("content"), author_id=g.current_user["id"])
    except CaseValidationError as exc:
        return error("Validation failed", 400, errors=exc.errors)
    if case is None:
        return error("Case not found", 404)
    return jsonify({"ok": True, "case": serialize_case(case)})


# ---- Leads --------------------------------------------------------------
@app.get("/api/leads")
@require_login_api
def leads_list():
    try:
        page, limit = _page_args()
    except ValueError:
        return error("page and limit must be integers", 400)

    leads, total = list_leads(
        status=request.args.get("status") or None,
        case_type=request.args.get("caseType") or None,
        page=page,
        limit=limit,
    )
    return jsonify(_page_payload("leads", [serialize_lead(lead, include_notes=False) for lead in leads], total, page, limit))


@app.post("/api/leads")
@require_login_api
def leads_create():
    try:
        lead = create_lead(_json_body(), assigned_to=g.current_user["id"])
    except LeadValidationError as exc:
        return error("Validation failed", 400, errors=exc.errors)
    return jsonify({"ok": True, "lead": serialize_lead(lead)}), 201


@app.get("/api/leads/<int:lead_id>")
@require_login_api
def leads_detail(lead_id: int):
    lead = get_lead(lead_id)
    if lead is None:
        return error("Lead not found", 404)
    return jsonify({"ok": True, "lead": serialize_lead(lead)})


@app.put("/api/leads/<int:lead_id>")
@require_login_api
def leads_update(lead_id: int):
    try:
        lead = update_lead(lead_id, _json_body())
    except LeadValidationError as exc:
        return error("Validation failed", 400, errors=exc.errors)
    if lead is None:
        return error("Lead not found", 404)
    return jsonify({"ok": True, "lead": serialize_lead(lead)})


@app.post("/api/leads/<int:lead_id>/notes")
@require_login_api
def leads_add_note(lead_id: int):
    try:
        lead = add_lead_note(lead_id, _json_body().get("content"), author_id=g.current_user["id"])
    except LeadValidationError as exc:
        return error("Validation failed", 400, errors=exc.errors)
    if lead is None:
        return error("Lead not found", 404)
    return jsonify({"ok": True, "lead": serialize_lead(lead)})


# ---- Billing & reports --------------------------------------------------
@app.get("/api/billing")
@require_login_api
def billing_list():
    try:
        page, limit = _page_args()
        case_id = request.args.get("caseId")
        case_id = int(case_id) if case_id else None
    except ValueError:
        return error("page, limit and caseId must be integers", 400)

    payments, total = list_payments(
        case_id=case_id,
        status=request.args.get("status") or None,
        page=page,
        limit=limit,
    )
    return jsonify(_page_payload("payments", serialize_payments(payments), total, page, limit))


@app.post("/api/billing/manual")
@require_login_api
def billing_record_manual():
    try:
        payment = record_manual_payment(_json_body(), processed_by=g.current_user["id"])
    except PaymentValidationError as exc:
        return error("Validation failed", 400, errors=exc.errors)
    if payment is None:
        return error("Case not found", 404)
    return jsonify({"ok": True, "payment": serialize_payment(payment)}), 201


@app.get("/api/billing/<int:payment_id>")
@require_login_api
def billing_detail(payment_id: int):
    payment = get_payment(payment_id)
    if payment is None:
        return error("Payment not found", 404)
    return jsonify({"ok": True, "payment": serialize_payment(payment)})


@app.get("/api/reports/dashboard")
@require_login_api
def reports_dashboard():
    return jsonify({"ok": True, **dashboard_stats()})


# ---- Calendar -----------------------------------------------------------
@app.get("/api/calendar/today")
@require_login_api
def calendar_today():
    today = datetime.now().date()
    start, end = day_bounds(today)
    cases = find_cases_with_dated_entries_in_range(g.current_user["id"], start, end)
    return jsonify(today_view(cases, today))


@app.get("/api/calendar/date/<day>")
@require_login_api
def calendar_day(day: str):
    try:
        target = parse_day(day)
        start, end = day_bounds(target)
    except ValueError:
        return error("Invalid date. Use YYYY-MM-DD.", 400)
    cases = find_cases_with_dated_entries_in_range(g.current_user["id"], start, end)
    return jsonify(day_view(cases, target))


@app.get("/api/calendar/week/<day>")
@require_login_api
def calendar_week(day: str):
    try:
        week_start = parse_day(day)
        start, end = week_bounds(week_start)
    except ValueError:
        return error("Invalid date. Use YYYY-MM-DD.", 400)
    cases = find_cases_with_dated_entries_in_range(g.current_user["id"], start, end)
    return jsonify(week_view(cases, week_start))


# ---- Entrypoint ---------------------------------------------------------
if __name__ == "__main__":
    print("Database:", config.DATABASE_PATH)
    print("\nURL map:")
    for r in app.url_map.iter_rules():
        methods = ",".join(sorted(m for m in r.methods if m not in {"HEAD", "OPTIONS"}))
        print(f"  {r.rule:36s} [{methods}]")
    print()
    app.run(host="0.0.0.0", port=5000, debug=True)
