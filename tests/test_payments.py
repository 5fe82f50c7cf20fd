"""Tests for manual payments, the dashboard figures and the v3 schema upgrade."""

import sqlite3

import pytest

from services import db
from services.cases import create_case, get_case
from services.leads import create_lead
from services.models import PaymentMethod, PaymentStatus
from services.payments import (
    PaymentValidationError,
    get_payment,
    list_payments,
    record_manual_payment,
    serialize_payment,
    total_revenue,
)
from services.reports import dashboard_stats
from services.users import create_user


@pytest.fixture
def clerk_id(app_ctx):
    return create_user("clerk@example.com", "secret123", "Cal", "Hughes", role="staff")


@pytest.fixture
def case_id(clerk_id, sample_case_payload):
    return create_case(sample_case_payload, clerk_id).id


def _payment(case_id, **extra):
    return {
        "caseId": case_id,
        "amount": 150.5,
        "paymentMethod": "check",
        "description": "Retainer",
        "paidBy": "Jane Smith",
        **extra,
    }


class TestRecordManualPayment:
    def test_records_and_updates_case_total(self, clerk_id, case_id):
        first = record_manual_payment(_payment(case_id), clerk_id)
        second = record_manual_payment(_payment(case_id, amount="49.5", paymentMethod="cash"), clerk_id)

        assert first.receipt_number == "RCP-000001"
        assert second.receipt_number == "RCP-000002"
        assert first.status is PaymentStatus.COMPLETED
        assert second.payment_method is PaymentMethod.CASH
        assert first.processed_by == clerk_id
        assert get_case(case_id).total_paid == 200.0

    def test_unknown_case(self, clerk_id):
        assert record_manual_payment(_payment(404), clerk_id) is None
        assert list_payments()[1] == 0

    @pytest.mark.parametrize(
        "override,field",
        [
            ({"amount": 0}, "amount"),
            ({"amount": -5}, "amount"),
            ({"amount": "lots"}, "amount"),
            ({"amount": True}, "amount"),
            ({"paymentMethod": "square"}, "paymentMethod"),
            ({"description": " "}, "description"),
            ({"paidBy": None}, "paidBy"),
            ({"caseId": "abc"}, "caseId"),
        ],
    )
    def test_validation(self, clerk_id, case_id, override, field):
        with pytest.raises(PaymentValidationError) as excinfo:
            record_manual_payment(_payment(case_id, **override), clerk_id)
        assert [e["field"] for e in excinfo.value.errors] == [field]
        assert get_case(case_id).total_paid == 0.0


class TestListAndSerialize:
    def test_filter_by_case_newest_first(self, clerk_id, case_id, sample_case_payload):
        other = create_case(sample_case_payload, clerk_id).id
        older = record_manual_payment(_payment(case_id), clerk_id)
        record_manual_payment(_payment(other), clerk_id)
        newer = record_manual_payment(_payment(case_id, amount=10), clerk_id)

        payments, total = list_payments(case_id=case_id)

        assert total == 2
        assert [p.id for p in payments] == [newer.id, older.id]
        assert list_payments(status="refunded")[1] == 0

    def test_serialize_includes_case_and_processor(self, clerk_id, case_id):
        payment = record_manual_payment(_payment(case_id, notes="Check #1042"), clerk_id)

        body = serialize_payment(get_payment(payment.id))

        assert body["case"] == {"id": case_id, "caseNumber": "CASE-000001", "clientName": "Jane Smith"}
        assert body["processedBy"]["name"] == "Cal Hughes"
        assert body["paymentMethod"] == "check"
        assert body["notes"] == "Check #1042"

    def test_missing_payment(self, app_ctx):
        assert get_payment(1) is None


class TestDashboard:
    def test_empty_office(self, app_ctx):
        assert dashboard_stats() == {
            "totalCases": 0,
            "activeCases": 0,
            "totalLeads": 0,
            "totalRevenue": 0.0,
            "recentPayments": [],
        }

    def test_counts_revenue_and_recent_payments(self, clerk_id, case_id, sample_case_payload):
        create_case({**sample_case_payload, "status": "closed"}, clerk_id)
        create_lead(
            {"name": "Sam", "email": "sam@example.com", "phone": "555-0101", "caseType": "other"},
            clerk_id,
        )
        for amount in range(1, 8):
            record_manual_payment(_payment(case_id, amount=amount), clerk_id)

        stats = dashboard_stats()

        assert stats["totalCases"] == 2
        assert stats["activeCases"] == 1
        assert stats["totalLeads"] == 1
        assert stats["totalRevenue"] == total_revenue() == 28.0
        assert [p["amount"] for p in stats["recentPayments"]] == [7.0, 6.0, 5.0, 4.0, 3.0]


class TestSchemaUpgrade:
    def test_version_two_database_gains_payment_columns(self, app, tmp_path):
        path = tmp_path / "old.db"
        conn = sqlite3.connect(path)
        conn.row_factory = sqlite3.Row
        db._migrate_to_v1(conn)
        db._migrate_to_v2(conn)
        conn.execute("CREATE TABLE app_meta (key TEXT PRIMARY KEY, value TEXT NOT NULL)")
        conn.execute("INSERT INTO app_meta(key, value) VALUES('schema_version', '2')")
        conn.execute("INSERT INTO users(email, password_hash, role) VALUES('a@example.com', 'x', 'staff')")
        conn.execute(
            """
            INSERT INTO cases(case_number, client_name, client_email, client_phone,
                              case_type, description, attorney_id)
            VALUES('CASE-000001', 'Jane', 'jane@example.com', '555', 'other', 'Old matter', 1)
            """
        )
        conn.commit()
        conn.close()

        app.config["DATABASE"] = str(path)
        with app.app_context():
            upgraded = db.get_app_db()
            version = upgraded.execute("SELECT value FROM app_meta WHERE key = 'schema_version'").fetchone()
            assert version["value"] == "3"
            assert get_case(1).total_paid == 0.0
            assert record_manual_payment(_payment(1), processed_by=1).receipt_number == "RCP-000001"
