"""Tests for identifier validation and quoting."""

import pytest

from bakery_db.errors import InvalidIdentifierError, PersistenceError
from bakery_db.schema.identifiers import (
    is_valid_identifier,
    quote_identifier,
    validate_identifier,
)


class TestIsValidIdentifier:
    """Names must be non-empty strings of ASCII letters, digits and underscores."""

    @pytest.mark.parametrize(
        "name",
        ["users", "daily_sales", "consolidated_daily_sales", "branchId", "t1", "_", "2024"],
    )
    def test_accepts_safe_names(self, name: str) -> None:
        assert is_valid_identifier(name)

    @pytest.mark.parametrize(
        "name",
        [
            "",
            "users; DROP TABLE users",
            'users"',
            "daily-sales",
            "public.users",
            "user name",
            "users\n",
            "المستخدمين",
            "users--",
        ],
    )
    def test_rejects_unsafe_names(self, name: str) -> None:
        assert not is_valid_identifier(name)

    @pytest.mark.parametrize("value", [None, 42, b"users", ["users"]])
    def test_rejects_non_strings(self, value: object) -> None:
        assert not is_valid_identifier(value)


class TestValidateIdentifier:
    """validate_identifier returns the name or raises."""

    def test_returns_name_unchanged(self) -> None:
        assert validate_identifier("monthly_targets") == "monthly_targets"

    def test_injection_attempt_raises(self) -> None:
        with pytest.raises(InvalidIdentifierError) as exc_info:
            validate_identifier("users; DROP TABLE users")
        assert exc_info.value.name == "users; DROP TABLE users"
        assert "users; DROP TABLE users" in str(exc_info.value)

    def test_error_is_value_error_and_persistence_error(self) -> None:
        with pytest.raises(ValueError):
            validate_identifier("a b")
        with pytest.raises(PersistenceError):
            validate_identifier("a b")


class TestQuoteIdentifier:
    """quote_identifier validates before quoting."""

    def test_wraps_in_double_quotes(self) -> None:
        assert quote_identifier("daily_sales") == '"daily_sales"'

    def test_preserves_case(self) -> None:
        assert quote_identifier("branchId") == '"branchId"'

    def test_refuses_embedded_quote(self) -> None:
        with pytest.raises(InvalidIdentifierError):
            quote_identifier('x" OR 1=1 --')
