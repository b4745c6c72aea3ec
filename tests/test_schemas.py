"""
Tests for commit-time validation and coercion of canonical records.
"""
from datetime import date

import pytest

from app.domain.ingestion.schemas import (
    RecordValidationError,
    SchemaLabel,
    UnsupportedDataTypeError,
    coerce_integer,
    coerce_number,
    parse_schema_label,
    validate_records,
)


@pytest.mark.parametrize(
    "value, expected",
    [("$1,200.50", 1200.5), ("(75)", -75.0), (" 950 ", 950.0), (12, 12.0), ("", None), (None, None)],
)
def test_coerce_number(value, expected):
    assert coerce_number(value) == expected


def test_coerce_number_rejects_text():
    with pytest.raises(ValueError):
        coerce_number("twelve")


def test_coerce_integer_rejects_fractions():
    assert coerce_integer("3") == 3
    with pytest.raises(ValueError):
        coerce_integer("2.5")


def test_parse_schema_label():
    assert parse_schema_label(" Tenants ") is SchemaLabel.TENANTS

    for bad in ("unknown", "invoices", "", None):
        with pytest.raises(UnsupportedDataTypeError):
            parse_schema_label(bad)


def test_tenant_defaults_and_coercion():
    [record] = validate_records(
        SchemaLabel.TENANTS,
        [{"name": "John", "unit": 4, "monthly_rent": "$1,200.50", "status": "Moving Out", "email": ""}],
    )

    assert record["unit"] == "4"
    assert record["monthly_rent"] == 1200.5
    assert record["status"] == "moving-out"
    assert record["rent_status"] == "current"
    assert record["arrears"] == 0
    assert record["email"] is None
    assert record["move_in_date"] == date.today()


def test_dates_are_normalized():
    [record] = validate_records(
        SchemaLabel.EXPENSES,
        [{"category": "Repairs", "amount": "250", "expense_date": "03/15/2024"}],
    )

    assert record["expense_date"] == date(2024, 3, 15)
    assert record["status"] == "pending"


def test_payment_type_uses_underscores():
    [record] = validate_records(
        SchemaLabel.PAYMENTS,
        [{"amount": "50", "payment_type": "Late Fee", "payment_date": "2024-04-01"}],
    )

    assert record["payment_type"] == "late_fee"


def test_unknown_keys_are_ignored():
    [record] = validate_records(SchemaLabel.UNITS, [{"unit_number": "4A", "Notes": "corner unit"}])

    assert "Notes" not in record
    assert record["status"] == "vacant"
    assert record["bedrooms"] == 0


def test_validation_errors_name_row_and_field():
    records = [
        {"name": "Maple Court", "address": "1 Elm St", "city": "Springfield"},
        {"name": "Oak House", "address": "3 Pine Rd"},
        {"name": "Birch", "address": "9 Ash Ave", "city": "Ogdenville", "total_units": "-4"},
    ]

    with pytest.raises(RecordValidationError) as exc_info:
        validate_records(SchemaLabel.BUILDINGS, records)

    errors = exc_info.value.row_errors
    assert len(errors) == 2
    assert errors[0].startswith("Row 2: city:")
    assert errors[1].startswith("Row 3: total_units:")
    assert exc_info.value.data_type == "buildings"


def test_rows_that_were_never_normalized_fail_validation():
    # What the normalizer hands back when the oracle failed
    raw_rows = [{"Tenant Name": "John", "Apartment": "4A"}]

    with pytest.raises(RecordValidationError) as exc_info:
        validate_records(SchemaLabel.TENANTS, raw_rows)

    assert "name" in exc_info.value.row_errors[0]
    assert "unit" in exc_info.value.row_errors[0]


def test_invalid_enum_value_is_rejected():
    with pytest.raises(RecordValidationError):
        validate_records(SchemaLabel.TENANTS, [{"name": "John", "unit": "4A", "rent_status": "sometimes"}])
