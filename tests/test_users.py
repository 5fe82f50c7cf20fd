"""Tests for the user directory and password hashing."""

import pytest

from services.security import hash_password, verify_password
from services.users import (
    UserExistsError,
    authenticate_user,
    count_admins,
    count_users,
    create_user,
    display_name,
    get_user_by_email,
    list_users,
    normalize_email,
    set_user_active,
    user_summaries,
)


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = hash_password("secret123")
        assert hashed != "secret123"
        assert verify_password("secret123", hashed)
        assert not verify_password("wrong-pass", hashed)

    def test_short_password_rejected(self):
        with pytest.raises(ValueError):
            hash_password("12345")

    def test_non_string_password_rejected(self):
        with pytest.raises(ValueError):
            hash_password(12345678)

    def test_garbage_hash_does_not_raise(self):
        assert verify_password("secret123", "not-a-hash") is False


class TestNormalizeEmail:
    def test_lowercases(self):
        assert normalize_email("  Alice@Example.COM ") == "alice@example.com"

    @pytest.mark.parametrize("raw", ["", "   ", "alice", "alice@"])
    def test_invalid(self, raw):
        with pytest.raises(ValueError):
            normalize_email(raw)

    @pytest.mark.parametrize("raw", [123, ["alice@example.com"], {"email": "alice@example.com"}])
    def test_non_string_is_a_value_error(self, raw):
        with pytest.raises(ValueError):
            normalize_email(raw)


class TestUsers:
    def test_create_and_authenticate(self, app_ctx):
        create_user("Alice@Example.com", "secret123", "Alice", "Stone", role="attorney")

        user = authenticate_user("alice@example.com", "secret123")

        assert user is not None
        assert user["role"] == "attorney"
        assert display_name(user) == "Alice Stone"
        assert authenticate_user("alice@example.com", "nope-nope") is None

    def test_duplicate_email(self, app_ctx):
        create_user("alice@example.com", "secret123")
        with pytest.raises(UserExistsError):
            create_user("ALICE@example.com", "secret123")

    def test_invalid_role(self, app_ctx):
        with pytest.raises(ValueError):
            create_user("alice@example.com", "secret123", role="partner")

    def test_inactive_user_cannot_log_in(self, app_ctx):
        user_id = create_user("alice@example.com", "secret123")
        set_user_active(user_id, False)
        assert authenticate_user("alice@example.com", "secret123") is None

    def test_counts_and_listing(self, app_ctx):
        create_user("zed@example.com", "secret123", "Zed", "Adams", role="admin")
        create_user("amy@example.com", "secret123", "Amy", "Young")

        assert count_users() == 2
        assert count_admins() == 1
        assert [row["email"] for row in list_users()] == ["zed@example.com", "amy@example.com"]

    def test_display_name_falls_back_to_email(self, app_ctx):
        create_user("nameless@example.com", "secret123")
        assert display_name(get_user_by_email("nameless@example.com")) == "nameless@example.com"
        assert display_name(None) == ""

    def test_user_summaries_skip_unknown_ids(self, app_ctx):
        user_id = create_user("alice@example.com", "secret123", "Alice", "Stone")

        summaries = user_summaries([user_id, None, 404])

        assert list(summaries) == [user_id]
        assert summaries[user_id]["name"] == "Alice Stone"
