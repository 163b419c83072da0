import textwrap
from datetime import datetime
from decimal import Decimal

import pytest

from statement_ingest.errors import MalformedStatement, MissingRequiredColumn
from statement_ingest.ingest.adapters.delimited_csv import (
    parse_delimited_text,
    split_delimited_line,
)
from statement_ingest.ingest.utils import SAMPLE_CSV
from statement_ingest.models import Direction, SourceType


def _dedent(s: str) -> str:
    return textwrap.dedent(s).lstrip("\n").rstrip()


def test_split_delimited_line_honors_quotes() -> None:
    assert split_delimited_line('a, "b, c" ,d') == ["a", "b, c", "d"]
    assert split_delimited_line("a;b", delimiter=";") == ["a", "b"]
    assert split_delimited_line("a,,") == ["a", "", ""]


def test_sample_statement_totals() -> None:
    result = parse_delimited_text(SAMPLE_CSV, "user-1", "XXXX9876")

    assert result.row_errors == ()
    assert len(result.records) == 6
    assert result.summary.total_rows == 6
    assert result.summary.parsed == 6
    assert result.summary.failed == 0
    assert result.summary.total_credit == Decimal("50125.50")
    assert result.summary.total_debit == Decimal("23000.00")


def test_sample_statement_first_record() -> None:
    first = parse_delimited_text(SAMPLE_CSV, "user-1", "XXXX9876").records[0]

    assert first.external_id == "SAL001"
    assert first.user_id == "user-1"
    assert first.timestamp == datetime(2024, 11, 1)
    assert first.direction is Direction.CREDIT
    assert first.amount == Decimal("50000.00")
    assert first.balance_after == Decimal("150000.00")
    assert first.narration == "SALARY CREDIT NOV 2024"
    assert first.reference == "SAL001"
    assert first.source_type is SourceType.BANK_ACCOUNT
    assert first.source_account == "XXXX9876"
    assert first.consent_ref is None
    assert first.currency == "INR"
    # Drafts leave classification to the classifier.
    assert first.category is None
    assert first.merchant is None
    assert first.payment_mode is None
    assert first.raw_payload["description"] == "SALARY CREDIT NOV 2024"
    assert set(first.raw_payload) == {
        "date",
        "description",
        "debit",
        "credit",
        "balance",
        "reference",
    }


def test_row_errors_are_collected_and_numbered() -> None:
    csv_text = _dedent(
        """
        Date,Description,Debit,Credit,Balance,Reference
        01-11-2024,COFFEE,120.00,,880.00,R1
        32-13-2024,BAD DATE,50.00,,830.00,R2
        03-11-2024,NOTHING,,,830.00,R3
        xx,BOTH BAD,,,830.00,R4
        05-11-2024,REFUND,,20.00,850.00,R5
        """
    )
    result = parse_delimited_text(csv_text, "u")

    assert [r.external_id for r in result.records] == ["R1", "R5"]
    assert result.row_errors == (
        'Row 2: Invalid date "32-13-2024"',
        "Row 3: Both debit and credit are zero or invalid",
        'Row 4: Invalid date "xx"',
        "Row 4: Both debit and credit are zero or invalid",
    )
    assert result.summary.total_rows == 5
    assert result.summary.parsed == 2
    assert result.summary.failed == 3
    assert result.summary.total_debit == Decimal("120.00")
    assert result.summary.total_credit == Decimal("20.00")


def test_rows_with_wrong_field_count_are_dropped() -> None:
    csv_text = _dedent(
        """
        Date,Description,Debit,Credit
        01-11-2024,OK ROW,10.00,
        02-11-2024,TOO,MANY,FIELDS,HERE
        03-11-2024,SHORT
        04-11-2024,ALSO OK,,5.00
        """
    )
    result = parse_delimited_text(csv_text, "u")

    assert result.summary.total_rows == 2
    assert result.summary.parsed == 2
    assert result.row_errors == ()


def test_synthesized_ids_follow_row_date_and_index() -> None:
    csv_text = _dedent(
        """
        Date,Description,Debit,Credit
        01-11-2024,A,10.00,
        02-11-2024,B,20.00,
        """
    )
    records = parse_delimited_text(csv_text, "alice").records

    assert [r.external_id for r in records] == [
        "CSV_alice_1730419200000_0",
        "CSV_alice_1730505600000_1",
    ]
    assert all(r.reference is None for r in records)
    # A second parse of the same export yields the same keys.
    assert [r.external_id for r in parse_delimited_text(csv_text, "alice").records] == [
        r.external_id for r in records
    ]


def test_credit_wins_when_both_columns_are_filled() -> None:
    csv_text = "Date,Description,Debit,Credit\n01-11-2024,ODD,5.00,7.00"
    record = parse_delimited_text(csv_text, "u").records[0]
    assert record.direction is Direction.CREDIT
    assert record.amount == Decimal("7.00")


def test_hdfc_layout_with_quoted_amount_and_crlf() -> None:
    csv_text = (
        "Date,Narration,Chq./Ref.No.,Value Dt,Withdrawal Amt.,Deposit Amt.,Closing Balance\r\n"
        "01/11/24,UPI-ZOMATO-123,UPI123,01/11/24,450.00,,10550.00\r\n"
        "\r\n"
        '02/11/24,NEFT CR-ACME PAYROLL,N456,02/11/24,,"75,000.00",85550.00\r\n'
    )
    result = parse_delimited_text(csv_text, "u")

    debit, credit = result.records
    assert debit.external_id == "UPI123"
    assert debit.direction is Direction.DEBIT
    assert debit.amount == Decimal("450.00")
    assert debit.timestamp == datetime(2024, 11, 1)
    assert credit.direction is Direction.CREDIT
    assert credit.amount == Decimal("75000.00")
    assert credit.balance_after == Decimal("85550.00")


def test_blank_balance_is_none() -> None:
    csv_text = "Date,Description,Debit,Credit,Balance\n01-11-2024,X,1.00,,"
    assert parse_delimited_text(csv_text, "u").records[0].balance_after is None


def test_currency_override() -> None:
    csv_text = "Date,Description,Debit,Credit\n01-11-2024,X,1.00,"
    assert parse_delimited_text(csv_text, "u", currency="USD").records[0].currency == "USD"


@pytest.mark.parametrize(
    "content",
    ["", "   \n  ", "Date,Description,Debit,Credit", "Date,Description,Debit,Credit\n\n"],
)
def test_header_only_or_empty_is_malformed(content: str) -> None:
    with pytest.raises(MalformedStatement):
        parse_delimited_text(content, "u")


def test_unrecognized_header_is_structural_error() -> None:
    with pytest.raises(MissingRequiredColumn):
        parse_delimited_text("When,What,How Much\n01-11-2024,X,1.00", "u")
