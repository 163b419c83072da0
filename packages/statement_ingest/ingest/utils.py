"""Ingest utilities shared by CLI commands and workflows.

- :func:`decode_statement_bytes` turns an uploaded file body into text.
- :func:`load_statement_from_path` reads and parses a statement on disk.
- :data:`SAMPLE_CSV` and :func:`sample_csv_format` document the accepted
  layout for users preparing an upload.
"""

from __future__ import annotations

from os import PathLike
from pathlib import Path
from typing import Any

from ..errors import MalformedStatement
from ..models import DEFAULT_CURRENCY, StatementParseResult
from .adapters.delimited_csv import parse_delimited_text

SAMPLE_CSV = """Date,Description,Debit,Credit,Balance,Reference
01-11-2024,SALARY CREDIT NOV 2024,,50000.00,150000.00,SAL001
02-11-2024,UPI-SWIGGY-ORDER123,500.00,,149500.00,UPI001
03-11-2024,NEFT-RENT PAYMENT,15000.00,,134500.00,NEFT001
05-11-2024,ATM WITHDRAWAL,5000.00,,129500.00,ATM001
10-11-2024,UPI-AMAZON PAY,2500.00,,127000.00,UPI002
15-11-2024,INTEREST CREDIT,,125.50,127125.50,INT001"""

CSV_FORMAT_GUIDE: dict[str, Any] = {
    "description": "Sample CSV format for bank statement upload",
    "required_columns": ["Date", "Debit or Credit amount"],
    "optional_columns": ["Description", "Balance", "Reference"],
    "supported_date_formats": ["DD-MM-YYYY", "DD/MM/YYYY", "YYYY-MM-DD"],
    "notes": [
        "First row must be headers",
        "Either Debit or Credit column must have a value per row",
        "Amount can include currency symbols and commas (will be stripped)",
    ],
}


def sample_csv_format() -> dict[str, Any]:
    """Format guide plus the reference sample file."""

    return {**CSV_FORMAT_GUIDE, "sample_csv": SAMPLE_CSV}


def decode_statement_bytes(content: bytes) -> str:
    """Decode an uploaded statement.

    UTF-8 (a leading BOM is dropped) is tried first; bytes that are not valid
    UTF-8 are read as Latin-1, which older bank exports use.
    """

    if not content or not content.strip():
        raise MalformedStatement("Statement file is empty")
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        return content.decode("latin-1")


def load_statement_from_path(
    path: str | PathLike[str],
    user_id: str,
    account_hint: str | None = None,
    *,
    currency: str = DEFAULT_CURRENCY,
) -> StatementParseResult:
    """Read a statement file and parse it into draft records."""

    text = decode_statement_bytes(Path(path).read_bytes())
    return parse_delimited_text(text, user_id, account_hint, currency=currency)


__all__ = [
    "CSV_FORMAT_GUIDE",
    "SAMPLE_CSV",
    "decode_statement_bytes",
    "load_statement_from_path",
    "sample_csv_format",
]
