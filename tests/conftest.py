"""Shared pytest fixtures for Docket tests."""

import os
import tempfile

# The settings store is created at import time, so point it at a scratch
# directory before any project module is imported.
os.environ["XDG_CONFIG_HOME"] = tempfile.mkdtemp(prefix="docket-tests-")
os.environ["DOCKET_SECRET_KEY"] = "test-passphrase"
os.environ.pop("DOCKET_DATABASE", None)

from datetime import datetime
from pathlib import Path
from typing import Callable

import pytest

from app import app as flask_app
from services.models import Case, CaseType, DateType, ImportantDate


@pytest.fixture
def app(tmp_path: Path):
    """The Flask app bound to a fresh database file."""
    flask_app.config.update(TESTING=True, DATABASE=str(tmp_path / "docket.db"))
    yield flask_app
    flask_app.config.pop("DATABASE", None)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield


@pytest.fixture
def seed_user(app) -> Callable[..., int]:
    """Create a user in its own app context and return the new id."""
    from services.users import create_user

    def _seed(email: str, password: str = "secret123", role: str = "attorney", **names) -> int:
        with app.app_context():
            return create_user(email, password, role=role, **names)

    return _seed


@pytest.fixture
def login(client) -> Callable[[str, str], None]:
    def _login(email: str, password: str = "secret123") -> None:
        response = client.post("/api/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.get_json()

    return _login


@pytest.fixture
def make_case() -> Callable[..., Case]:
    """Build an in-memory Case with important dates given as (id, datetime[, title])."""

    def _make(case_id: int, entries, client_name: str = "Jane Smith") -> Case:
        dates = []
        for entry in entries:
            date_id, when, *rest = entry
            dates.append(
                ImportantDate(
                    id=date_id,
                    title=rest[0] if rest else f"Entry {date_id}",
                    date=when,
                    type=DateType.COURT_DATE,
                )
            )
        return Case(
            id=case_id,
            case_number=f"CASE-{case_id:06d}",
            client_name=client_name,
            case_type=CaseType.FAMILY_LAW,
            important_dates=dates,
        )

    return _make


@pytest.fixture
def sample_case_payload() -> dict:
    return {
        "clientName": "Jane Smith",
        "clientEmail": "Jane.Smith@Example.com",
        "clientPhone": "555-0100",
        "clientAddress": {"street": "1 Main St", "city": "Springfield", "state": "IL", "zipCode": "62701"},
        "caseType": "family_law",
        "description": "Child custody modification",
    }


@pytest.fixture
def morning() -> datetime:
    return datetime(2024, 3, 1, 9, 0)
