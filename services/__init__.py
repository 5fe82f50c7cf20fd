"""Service layer for Docket."""

from . import security, db, settings, models, users, cases, leads, payments, reports, calendar  # noqa: F401

__all__ = [
    "security",
    "db",
    "settings",
    "models",
    "users",
    "cases",
    "leads",
    "payments",
    "reports",
    "calendar",
]
