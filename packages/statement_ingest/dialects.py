"""Header-row dialect detection for bank statement exports.

Each semantic column has an ordered alias list. Supporting another bank is a
matter of adding aliases here; the matcher itself stays the same.

Matching is a case-insensitive substring test. For a given field the aliases
are tried in order and, for each alias, headers are scanned left to right.
Trying aliases in priority order keeps short aliases such as ``cr`` from
claiming a ``Description`` column before ``credit`` has had its chance.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from .errors import MissingRequiredColumn

# field -> aliases, highest priority first
COLUMN_ALIASES: Mapping[str, tuple[str, ...]] = {
    "date": ("date", "transaction date", "txn date", "trans date"),
    "narration": ("description", "narration", "particulars", "remarks", "details"),
    "debit": ("debit", "withdrawal", "withdrawal amt", "withdrawal amt.", "dr"),
    "credit": ("credit", "deposit", "deposit amt", "deposit amt.", "cr"),
    "balance": ("balance", "closing balance", "available balance"),
    "reference": ("ref", "reference", "ref no", "ref no.", "chq./ref.no.", "cheque no", "txn id"),
}

# Reference header rows for the exports we know about.
KNOWN_DIALECTS: Mapping[str, tuple[str, ...]] = {
    "standard": ("Date", "Description", "Debit", "Credit", "Balance", "Reference"),
    "hdfc": (
        "Date",
        "Narration",
        "Chq./Ref.No.",
        "Value Dt",
        "Withdrawal Amt.",
        "Deposit Amt.",
        "Closing Balance",
    ),
    "icici": (
        "Transaction Date",
        "Value Date",
        "Description",
        "Ref No./Cheque No.",
        "Debit",
        "Credit",
        "Balance",
    ),
    "sbi": ("Txn Date", "Value Date", "Description", "Ref No", "Debit", "Credit", "Balance"),
}


@dataclass(frozen=True, slots=True)
class ColumnMapping:
    """Header index for each semantic column (``None`` when absent)."""

    date: int
    narration: int | None = None
    debit: int | None = None
    credit: int | None = None
    balance: int | None = None
    reference: int | None = None


def _find_column(headers: Sequence[str], aliases: Sequence[str]) -> int | None:
    for alias in aliases:
        for idx, header in enumerate(headers):
            if alias in header:
                return idx
    return None


def detect_columns(headers: Sequence[str]) -> ColumnMapping:
    """Map semantic fields to header positions.

    Raises :class:`MissingRequiredColumn` when no date column is found or
    when neither a debit nor a credit column is found.
    """

    lowered = [h.strip().lower() for h in headers]
    found = {field: _find_column(lowered, aliases) for field, aliases in COLUMN_ALIASES.items()}

    date_idx = found["date"]
    if date_idx is None:
        raise MissingRequiredColumn(
            list(headers), "date column (Date, Transaction Date, Txn Date)"
        )
    if found["debit"] is None and found["credit"] is None:
        raise MissingRequiredColumn(
            list(headers), "debit/credit or withdrawal/deposit column"
        )

    return ColumnMapping(
        date=date_idx,
        narration=found["narration"],
        debit=found["debit"],
        credit=found["credit"],
        balance=found["balance"],
        reference=found["reference"],
    )


__all__ = ["COLUMN_ALIASES", "KNOWN_DIALECTS", "ColumnMapping", "detect_columns"]
