"""Adapter for free-form bank statement CSV exports.

The header row is resolved through :mod:`statement_ingest.dialects`, so the
standard export as well as the HDFC, ICICI and SBI layouts are accepted
without per-bank code.

Row handling:

- Lines are split on ``\\r\\n``/``\\n``; blank lines are ignored.
- A row whose field count differs from the header is dropped silently. It
  counts neither as parsed nor as failed.
- A row with an unparseable date, or with both debit and credit zero, is
  reported in ``row_errors`` (``"Row N: ..."``) and excluded from ``records``.
- ``raw_payload`` maps lower-cased header names to the row's cell values.

Records come out as drafts: merchant, category, subcategory and payment mode
are left for the classifier.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from decimal import Decimal

from ...dialects import ColumnMapping, detect_columns
from ...errors import MalformedStatement, RowValidationFailed, UnparseableDate
from ...logging_setup import get_logger
from ...models import (
    DEFAULT_CURRENCY,
    Direction,
    NormalizedTransaction,
    ParseSummary,
    SourceType,
    StatementParseResult,
)
from ...normalizers import date_to_timestamp, parse_amount, parse_date, parse_optional_amount

_logger = get_logger("statement_ingest.ingest.adapters.delimited_csv")

_LINE_SPLIT_RE = re.compile(r"\r?\n")
_ZERO = Decimal("0.00")


def split_delimited_line(line: str, delimiter: str = ",") -> list[str]:
    """Split one line honoring double quotes.

    A quote toggles the "inside quotes" state and is dropped from the output,
    so a delimiter inside quotes stays part of the field. Fields are trimmed.
    """

    values: list[str] = []
    current: list[str] = []
    in_quotes = False
    for ch in line:
        if ch == '"':
            in_quotes = not in_quotes
        elif ch == delimiter and not in_quotes:
            values.append("".join(current))
            current = []
        else:
            current.append(ch)
    values.append("".join(current))
    return [v.strip() for v in values]


def _cell(row: list[str], idx: int | None) -> str:
    if idx is None:
        return ""
    return row[idx]


def synthesize_external_id(user_id: str, timestamp: datetime, index: int) -> str:
    """Id for a row without a bank reference: user, row timestamp and row index."""
    epoch_ms = int(timestamp.replace(tzinfo=UTC).timestamp() * 1000)
    return f"CSV_{user_id}_{epoch_ms}_{index}"


def _validate_row(row: list[str], mapping: ColumnMapping, index: int) -> list[RowValidationFailed]:
    problems: list[RowValidationFailed] = []
    raw_date = _cell(row, mapping.date)
    try:
        parse_date(raw_date)
    except UnparseableDate:
        problems.append(RowValidationFailed(index + 1, f'Invalid date "{raw_date}"'))

    debit = parse_amount(_cell(row, mapping.debit))
    credit = parse_amount(_cell(row, mapping.credit))
    if debit == 0 and credit == 0:
        problems.append(
            RowValidationFailed(index + 1, "Both debit and credit are zero or invalid")
        )
    return problems


def parse_delimited_text(
    content: str,
    user_id: str,
    account_hint: str | None = None,
    *,
    delimiter: str = ",",
    currency: str = DEFAULT_CURRENCY,
) -> StatementParseResult:
    """Parse a statement export into draft records plus row-level errors.

    Raises
    ------
    MalformedStatement
        Fewer than two non-blank lines (no header or no data).
    MissingRequiredColumn
        The header has no date column, or no debit/credit column.
    """

    lines = [ln.strip() for ln in _LINE_SPLIT_RE.split(content.strip())]
    lines = [ln for ln in lines if ln]
    if len(lines) < 2:
        raise MalformedStatement("CSV must have at least a header row and one data row")

    headers = [h.lower() for h in split_delimited_line(lines[0], delimiter)]
    mapping = detect_columns(headers)

    rows: list[list[str]] = []
    dropped = 0
    for line in lines[1:]:
        values = split_delimited_line(line, delimiter)
        if len(values) != len(headers):
            dropped += 1
            continue
        rows.append(values)
    if dropped:
        _logger.debug("Dropped %d row(s) whose field count differs from the header", dropped)

    records: list[NormalizedTransaction] = []
    row_errors: list[str] = []
    failed_rows = 0
    total_credit = _ZERO
    total_debit = _ZERO

    for index, row in enumerate(rows):
        problems = _validate_row(row, mapping, index)
        if problems:
            failed_rows += 1
            row_errors.extend(str(p) for p in problems)
            continue

        day = parse_date(_cell(row, mapping.date))
        debit = parse_amount(_cell(row, mapping.debit))
        credit = parse_amount(_cell(row, mapping.credit))
        narration = _cell(row, mapping.narration)
        reference = _cell(row, mapping.reference)
        balance = (
            parse_optional_amount(_cell(row, mapping.balance))
            if mapping.balance is not None
            else None
        )

        if credit > 0:
            direction, amount = Direction.CREDIT, credit
            total_credit += amount
        else:
            direction, amount = Direction.DEBIT, debit
            total_debit += amount

        timestamp = date_to_timestamp(day)
        records.append(
            NormalizedTransaction(
                external_id=reference or synthesize_external_id(user_id, timestamp, index),
                user_id=user_id,
                timestamp=timestamp,
                amount=amount,
                direction=direction,
                consent_ref=None,
                source_type=SourceType.BANK_ACCOUNT,
                source_account=account_hint,
                reference=reference or None,
                narration=narration or None,
                balance_after=balance,
                currency=currency,
                raw_payload=dict(zip(headers, row, strict=True)),
            )
        )

    summary = ParseSummary(
        total_rows=len(rows),
        parsed=len(records),
        failed=failed_rows,
        total_credit=total_credit,
        total_debit=total_debit,
    )
    _logger.info(
        "Parsed statement for user %s: %d row(s), %d parsed, %d failed",
        user_id,
        summary.total_rows,
        summary.parsed,
        summary.failed,
    )
    return StatementParseResult(
        records=tuple(records),
        row_errors=tuple(row_errors),
        summary=summary,
    )


__all__ = ["parse_delimited_text", "split_delimited_line", "synthesize_external_id"]
