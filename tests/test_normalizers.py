from datetime import date, datetime
from decimal import Decimal

import pytest

from statement_ingest.errors import UnparseableDate
from statement_ingest.normalizers import (
    date_to_timestamp,
    parse_amount,
    parse_date,
    parse_optional_amount,
    parse_timestamp,
)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("01-11-2024", date(2024, 11, 1)),
        ("01/11/2024", date(2024, 11, 1)),
        ("2024-11-01", date(2024, 11, 1)),
        ("2024/11/01", date(2024, 11, 1)),
        ("01-11-24", date(2024, 11, 1)),
        ("15/08/75", date(1975, 8, 15)),
        ("05/03/50", date(2050, 3, 5)),
        ("05 Nov 2024", date(2024, 11, 5)),
        ("05 NOV 2024", date(2024, 11, 5)),
        ("  01-11-2024  ", date(2024, 11, 1)),
    ],
)
def test_parse_date_supported_shapes(text: str, expected: date) -> None:
    assert parse_date(text) == expected


def test_parse_date_is_day_first_for_ambiguous_values() -> None:
    # 03-04 is 3 April, never 4 March.
    assert parse_date("03-04-2024") == date(2024, 4, 3)


def test_parse_date_generic_fallback() -> None:
    assert parse_date("Nov 5, 2024") == date(2024, 11, 5)
    assert parse_date("5.11.2024") == date(2024, 11, 5)


@pytest.mark.parametrize("text", ["", "   ", None, "not a date", "31-02-2024", "2024-13-01"])
def test_parse_date_rejects_invalid(text: str | None) -> None:
    with pytest.raises(UnparseableDate):
        parse_date(text)


def test_unparseable_date_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        parse_date("yesterday-ish")


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("1,234.56", Decimal("1234.56")),
        ("₹1,234.56", Decimal("1234.56")),
        ("Rs. 500", Decimal("500.00")),
        ("Rs500", Decimal("500.00")),
        ("INR 1,00,000", Decimal("100000.00")),
        ("$12", Decimal("12.00")),
        ("-250.5", Decimal("250.50")),
        ("1.005", Decimal("1.01")),
        (125.5, Decimal("125.50")),
        (Decimal("-3"), Decimal("3.00")),
        ("1,500.00 Dr", Decimal("1500.00")),
        ("2,000.50Cr", Decimal("2000.50")),
        ("Rs. 75 CR.", Decimal("75.00")),
    ],
)
def test_parse_amount(text, expected: Decimal) -> None:
    assert parse_amount(text) == expected


@pytest.mark.parametrize("text", ["", "   ", None, "abc", "NaN", "Infinity", "--", "Dr"])
def test_parse_amount_invalid_is_zero(text) -> None:
    assert parse_amount(text) == Decimal("0.00")


def test_parse_optional_amount_blank_is_none() -> None:
    assert parse_optional_amount("") is None
    assert parse_optional_amount(None) is None
    assert parse_optional_amount("150,000.00") == Decimal("150000.00")


def test_parse_timestamp_converts_to_naive_utc() -> None:
    assert parse_timestamp("2024-11-03T10:30:00.000Z") == datetime(2024, 11, 3, 10, 30)
    assert parse_timestamp("2024-11-03T16:00:00+05:30") == datetime(2024, 11, 3, 10, 30)
    assert parse_timestamp("2024-11-03T10:30:00") == datetime(2024, 11, 3, 10, 30)


def test_parse_timestamp_falls_back_to_date_at_midnight() -> None:
    assert parse_timestamp("03-11-2024") == datetime(2024, 11, 3)


def test_parse_timestamp_rejects_blank() -> None:
    with pytest.raises(UnparseableDate):
        parse_timestamp("  ")


def test_date_to_timestamp_is_midnight() -> None:
    assert date_to_timestamp(date(2024, 11, 1)) == datetime(2024, 11, 1, 0, 0)
