"""Tests for the case store."""

from datetime import datetime

import pytest

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
from services.models import CaseStatus, DateType
from services.users import create_user


@pytest.fixture
def attorney_id(app_ctx):
    return create_user("attorney@example.com", "secret123", "Alice", "Stone", role="attorney")


@pytest.fixture
def manager_id(app_ctx):
    return create_user("manager@example.com", "secret123", "Bob", "Reed", role="case_manager")


class TestCreateCase:
    def test_assigns_sequential_case_numbers(self, attorney_id, sample_case_payload):
        first = create_case(sample_case_payload, attorney_id)
        second = create_case(sample_case_payload, attorney_id)

        assert first.case_number == "CASE-000001"
        assert second.case_number == "CASE-000002"
        assert first.status is CaseStatus.ACTIVE
        assert first.client_email == "jane.smith@example.com"
        assert first.client_address["city"] == "Springfield"

    def test_missing_fields_are_reported_together(self, attorney_id):
        with pytest.raises(CaseValidationError) as excinfo:
            create_case({"caseType": "tax"}, attorney_id)

        fields = {e["field"] for e in excinfo.value.errors}
        assert fields == {"clientName", "clientEmail", "clientPhone", "description", "caseType"}

    def test_rejects_bad_email(self, attorney_id, sample_case_payload):
        sample_case_payload["clientEmail"] = "not-an-email"
        with pytest.raises(CaseValidationError):
            create_case(sample_case_payload, attorney_id)

    def test_duplicate_case_number(self, attorney_id, sample_case_payload):
        sample_case_payload["caseNumber"] = "FAM-1"
        create_case(sample_case_payload, attorney_id)
        with pytest.raises(CaseNumberConflict):
            create_case(sample_case_payload, attorney_id)

    def test_auto_number_skips_manually_taken_number(self, attorney_id, sample_case_payload):
        create_case({**sample_case_payload, "caseNumber": "CASE-000002"}, attorney_id)

        auto = create_case(sample_case_payload, attorney_id)
        after = create_case(sample_case_payload, attorney_id)

        assert auto.case_number == "CASE-000003"
        assert after.case_number == "CASE-000004"

    def test_unknown_case_manager(self, attorney_id, sample_case_payload):
        sample_case_payload["caseManager"] = 999
        with pytest.raises(CaseValidationError) as excinfo:
            create_case(sample_case_payload, attorney_id)
        assert excinfo.value.errors[0]["field"] == "caseManager"


class TestUpdateCase:
    def test_partial_update(self, attorney_id, manager_id, sample_case_payload):
        case = create_case(sample_case_payload, attorney_id)

        updated = update_case(case.id, {"status": "on_hold", "caseManager": manager_id, "billingRate": 250})

        assert updated.status is CaseStatus.ON_HOLD
        assert updated.case_manager_id == manager_id
        assert updated.billing_rate == 250.0
        assert updated.client_name == "Jane Smith"

    def test_invalid_status(self, attorney_id, sample_case_payload):
        case = create_case(sample_case_payload, attorney_id)
        with pytest.raises(CaseValidationError):
            update_case(case.id, {"status": "archived"})

    def test_missing_case(self, attorney_id):
        assert update_case(12345, {"status": "closed"}) is None


class TestListCases:
    def test_filters_and_pagination(self, attorney_id, sample_case_payload):
        for _ in range(3):
            create_case(sample_case_payload, attorney_id)
        create_case({**sample_case_payload, "caseType": "immigration"}, attorney_id)

        page, total = list_cases(case_type="family_law", page=1, limit=2)
        assert total == 3
        assert len(page) == 2

        page, total = list_cases(case_type="family_law", page=2, limit=2)
        assert len(page) == 1

        newest, _ = list_cases(limit=1)
        assert newest[0].case_type.value == "immigration"


class TestSubRecords:
    def test_add_important_date(self, attorney_id, sample_case_payload):
        case = create_case(sample_case_payload, attorney_id)

        updated = add_important_date(
            case.id, {"title": "Hearing", "date": "2024-03-01T09:00:00", "type": "court_date"}
        )

        (entry,) = updated.important_dates
        assert entry.title == "Hearing"
        assert entry.date == datetime(2024, 3, 1, 9, 0)
        assert entry.type is DateType.COURT_DATE

    def test_important_date_defaults_to_other(self, attorney_id, sample_case_payload):
        case = create_case(sample_case_payload, attorney_id)
        updated = add_important_date(case.id, {"title": "Call", "date": "2024-03-01T10:00"})
        assert updated.important_dates[0].type is DateType.OTHER

    @pytest.mark.parametrize(
        "payload,field",
        [
            ({"date": "2024-03-01T09:00"}, "title"),
            ({"title": "Hearing", "date": "next week"}, "date"),
            ({"title": "Hearing", "date": "2024-03-01", "type": "party"}, "type"),
        ],
    )
    def test_important_date_validation(self, attorney_id, sample_case_payload, payload, field):
        case = create_case(sample_case_payload, attorney_id)
        with pytest.raises(CaseValidationError) as excinfo:
            add_important_date(case.id, payload)
        assert [e["field"] for e in excinfo.value.errors] == [field]

    def test_add_note(self, attorney_id, sample_case_payload):
        case = create_case(sample_case_payload, attorney_id)

        updated = add_note(case.id, "  Client called  ", attorney_id)

        assert updated.notes[0].content == "Client called"
        assert updated.notes[0].created_by == attorney_id

    def test_blank_note(self, attorney_id, sample_case_payload):
        case = create_case(sample_case_payload, attorney_id)
        with pytest.raises(CaseValidationError):
            add_note(case.id, "   ", attorney_id)

    def test_sub_records_on_missing_case(self, attorney_id):
        assert add_note(999, "hello", attorney_id) is None
        assert add_important_date(999, {"title": "x", "date": "2024-03-01"}) is None


class TestDatedEntryRange:
    def _case_with_dates(self, payload, attorney_id, *stamps, **extra):
        case = create_case({**payload, **extra}, attorney_id)
        for stamp in stamps:
            add_important_date(case.id, {"title": "Entry", "date": stamp})
        return case

    def test_matches_attorney_or_manager_in_range(self, attorney_id, manager_id, sample_case_payload):
        other = create_user("other@example.com", "secret123", role="attorney")
        mine = self._case_with_dates(sample_case_payload, attorney_id, "2024-03-01T09:00", "2024-04-01T09:00")
        managed = self._case_with_dates(
            sample_case_payload, other, "2024-03-01T08:00", caseManager=manager_id
        )
        self._case_with_dates(sample_case_payload, other, "2024-03-01T10:00")
        self._case_with_dates(sample_case_payload, attorney_id, "2024-03-02T00:00")

        start, end = datetime(2024, 3, 1), datetime(2024, 3, 2)

        assert [c.id for c in find_cases_with_dated_entries_in_range(attorney_id, start, end)] == [mine.id]
        assert [c.id for c in find_cases_with_dated_entries_in_range(manager_id, start, end)] == [managed.id]

    def test_returned_cases_keep_all_dates(self, attorney_id, sample_case_payload):
        self._case_with_dates(sample_case_payload, attorney_id, "2024-03-01T09:00", "2024-05-01T09:00")

        (case,) = find_cases_with_dated_entries_in_range(
            attorney_id, datetime(2024, 3, 1), datetime(2024, 3, 2)
        )

        assert len(case.important_dates) == 2

    def test_ordered_by_earliest_matching_date(self, attorney_id, sample_case_payload):
        late = self._case_with_dates(sample_case_payload, attorney_id, "2024-03-01T15:00")
        early = self._case_with_dates(sample_case_payload, attorney_id, "2024-03-01T08:00")

        found = find_cases_with_dated_entries_in_range(attorney_id, datetime(2024, 3, 1), datetime(2024, 3, 2))

        assert [c.id for c in found] == [early.id, late.id]


class TestSerializeCase:
    def test_populates_people(self, attorney_id, manager_id, sample_case_payload):
        case = create_case({**sample_case_payload, "caseManager": manager_id}, attorney_id)
        case = add_note(case.id, "Initial consult", attorney_id)

        data = serialize_case(case)

        assert data["attorney"]["name"] == "Alice Stone"
        assert data["caseManager"]["name"] == "Bob Reed"
        assert data["notes"][0]["createdBy"]["id"] == attorney_id
        assert get_case(case.id).case_number == data["caseNumber"]

    def test_without_notes(self, attorney_id, sample_case_payload):
        case = create_case(sample_case_payload, attorney_id)
        assert "notes" not in serialize_case(case, include_notes=False)
