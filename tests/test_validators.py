from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from budget_server.errors import ValidationError
from budget_server.validators import (
    format_timestamp,
    from_minor_units,
    parse_amount,
    parse_occurred_at,
    to_minor_units,
    validate_category_name,
    validate_credentials,
    validate_limit,
    validate_offset,
    validate_record_data,
)


@pytest.mark.parametrize("raw, expected", [
    ("12.5", Decimal("12.50")),
    (Decimal("0.01"), Decimal("0.01")),
    (7, Decimal("7.00")),
    ("-3.20", Decimal("-3.20")),
    (0.1, Decimal("0.10")),
])
def test_parse_amount_accepts_currency_values(raw, expected):
    assert parse_amount(raw) == expected


@pytest.mark.parametrize("raw, message", [
    ("12.345", "decimal places"),
    ("0", "cannot be zero"),
    ("abc", "Invalid amount"),
    ("NaN", "finite"),
    (None, "required"),
    (True, "required"),
])
def test_parse_amount_rejects_without_rounding(raw, message):
    with pytest.raises(ValueError, match=message):
        parse_amount(raw)


def test_minor_units_are_exact():
    amount = parse_amount("19.99")
    assert to_minor_units(amount) == 1999
    assert from_minor_units(1999) == amount
    assert str(from_minor_units(1250)) == "12.50"


def test_parse_occurred_at_widens_dates():
    assert parse_occurred_at(date(2025, 3, 1)) == datetime(2025, 3, 1)
    assert parse_occurred_at("2025-03-01", end_of_day=True) == datetime(2025, 3, 1, 23, 59, 59, 999999)
    assert parse_occurred_at("2025-03-01T08:15:00") == datetime(2025, 3, 1, 8, 15)
    assert parse_occurred_at(0) == datetime(1970, 1, 1)


def test_parse_occurred_at_rejects_aware_values():
    with pytest.raises(ValueError, match="timezone"):
        parse_occurred_at(datetime(2025, 3, 1, tzinfo=timezone.utc))
    with pytest.raises(ValueError, match="Invalid timestamp"):
        parse_occurred_at("yesterday")


def test_format_timestamp_is_fixed_width():
    early = format_timestamp(datetime(2025, 1, 1))
    late = format_timestamp(datetime(2025, 1, 1, 0, 0, 0, 1))
    assert len(early) == len(late)
    assert early < late


def test_validate_record_data_requires_fields():
    cleaned, errors = validate_record_data({})
    assert cleaned == {}
    assert "Record name is required" in errors
    assert "Amount is required" in errors
    assert "Category ID is required" in errors


def test_validate_record_data_partial():
    cleaned, errors = validate_record_data({"name": "  Coffee  "}, partial=True)
    assert errors == []
    assert cleaned == {"name": "Coffee"}

    _, errors = validate_record_data({}, partial=True)
    assert errors == ["At least one field must be provided for update"]

    _, errors = validate_record_data({"name": "   "}, partial=True)
    assert errors == ["Record name cannot be empty"]


def test_validate_record_data_rejects_long_name_and_unknown_fields():
    _, errors = validate_record_data(
        {"name": "x" * 256, "amount": "1", "category_id": 1, "color": "red"}
    )
    assert "Unknown record fields: color" in errors
    assert "Record name must be 255 characters or less" in errors


def test_validate_category_name():
    assert validate_category_name("Food") == (True, [])
    assert validate_category_name("  ") == (False, ["Category name cannot be empty"])
    is_valid, _ = validate_category_name("x" * 101)
    assert not is_valid


def test_paging_limits():
    assert validate_limit(None, 100) == 100
    assert validate_offset(None) == 0
    with pytest.raises(ValidationError):
        validate_limit(0, 100)
    with pytest.raises(ValidationError):
        validate_limit(1001, 100)
    with pytest.raises(ValidationError):
        validate_offset(-1)


def test_validate_credentials():
    assert validate_credentials("alice", "secret1") == (True, [])
    is_valid, errors = validate_credentials("al", "123")
    assert not is_valid
    assert len(errors) == 2
