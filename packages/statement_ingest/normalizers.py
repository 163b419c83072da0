"""Date, amount and timestamp normalization for bank statement cells.

Indian retail bank exports are day-first. ``parse_date`` tries a fixed list of
shapes in order; a shape that matches but does not form a real calendar date
(``31-02-2024``) falls through to the next one and, failing everything,
raises :class:`~statement_ingest.errors.UnparseableDate`.

``parse_amount`` never fails: an empty or garbled cell is ``0.00``. Callers
decide whether a zero amount makes the row invalid.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import UTC, date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from dateutil import parser as dateutil_parser

from .errors import UnparseableDate

# Two-digit years above the pivot belong to the 1900s, the rest to the 2000s.
TWO_DIGIT_YEAR_PIVOT = 50

_TWO_PLACES = Decimal("0.01")
_ZERO = Decimal("0.00")

# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

_DMY4_RE = re.compile(r"^(\d{2})[-/](\d{2})[-/](\d{4})$")
_YMD_RE = re.compile(r"^(\d{4})[-/](\d{2})[-/](\d{2})$")
_DMY2_RE = re.compile(r"^(\d{2})[-/](\d{2})[-/](\d{2})$")
_D_MON_Y_RE = re.compile(r"^(\d{2})\s+([A-Za-z]{3})\s+(\d{4})$")


def _resolve_two_digit_year(yy: int) -> int:
    return 1900 + yy if yy > TWO_DIGIT_YEAR_PIVOT else 2000 + yy


def _try_dmy4(s: str) -> date | None:
    m = _DMY4_RE.match(s)
    if not m:
        return None
    return date(int(m.group(3)), int(m.group(2)), int(m.group(1)))


def _try_ymd(s: str) -> date | None:
    m = _YMD_RE.match(s)
    if not m:
        return None
    return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))


def _try_dmy2(s: str) -> date | None:
    m = _DMY2_RE.match(s)
    if not m:
        return None
    return date(_resolve_two_digit_year(int(m.group(3))), int(m.group(2)), int(m.group(1)))


def _try_d_mon_y(s: str) -> date | None:
    m = _D_MON_Y_RE.match(s)
    if not m:
        return None
    return datetime.strptime(f"{m.group(1)} {m.group(2).title()} {m.group(3)}", "%d %b %Y").date()


def _try_generic(s: str) -> date | None:
    # Shapes handled above must not be reinterpreted month-first here.
    if _DMY4_RE.match(s) or _YMD_RE.match(s) or _DMY2_RE.match(s) or _D_MON_Y_RE.match(s):
        return None
    return dateutil_parser.parse(s, dayfirst=True).date()


_DATE_PARSERS: tuple[Callable[[str], date | None], ...] = (
    _try_dmy4,
    _try_ymd,
    _try_dmy2,
    _try_d_mon_y,
    _try_generic,
)


def parse_date(text: str | None) -> date:
    """Parse a statement date cell.

    Order: ``DD-MM-YYYY``/``DD/MM/YYYY``, ``YYYY-MM-DD``, ``DD-MM-YY``,
    ``DD MMM YYYY``, then a generic day-first parser. The first shape that
    yields a real calendar date wins.
    """

    if text is None:
        raise UnparseableDate(text)
    s = text.strip()
    if not s:
        raise UnparseableDate(text)

    for attempt in _DATE_PARSERS:
        try:
            parsed = attempt(s)
        except (ValueError, OverflowError):
            continue
        if parsed is not None:
            return parsed
    raise UnparseableDate(text)


def parse_timestamp(text: str | None) -> datetime:
    """Parse an aggregator timestamp into naive UTC.

    ISO 8601 values (``Z`` suffix or explicit offsets) are converted to UTC and
    stripped of tzinfo; naive ISO values are taken as UTC. Anything else goes
    through :func:`parse_date` and lands at midnight.
    """

    if text is None or not str(text).strip():
        raise UnparseableDate(text)
    s = str(text).strip()
    iso = s[:-1] + "+00:00" if s.endswith(("Z", "z")) else s
    try:
        dt = datetime.fromisoformat(iso)
    except ValueError:
        d = parse_date(s)
        return datetime(d.year, d.month, d.day)
    if dt.tzinfo is not None:
        dt = dt.astimezone(UTC).replace(tzinfo=None)
    return dt


def date_to_timestamp(d: date) -> datetime:
    """Midnight (naive UTC) on the given calendar date."""
    return datetime(d.year, d.month, d.day)


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------

_CURRENCY_MARKERS_RE = re.compile(r"(?:INR|Rs\.?|[₹$€£])", re.IGNORECASE)
_DR_CR_SUFFIX_RE = re.compile(r"\s*(?:Dr|Cr)\.?\s*$", re.IGNORECASE)


def parse_amount(text: str | int | float | Decimal | None) -> Decimal:
    """Return the absolute value of a currency-formatted amount, 2dp.

    Currency symbols (``₹ $ € £``, ``Rs``/``Rs.``, ``INR``), a trailing
    ``Dr``/``Cr`` marker, thousands separators and whitespace are removed.
    Empty, unparseable or non-finite input yields ``Decimal("0.00")``.
    """

    if text is None:
        return _ZERO
    if isinstance(text, Decimal):
        d = text
    else:
        s = _DR_CR_SUFFIX_RE.sub("", str(text))
        s = _CURRENCY_MARKERS_RE.sub("", s)
        s = s.replace(",", "")
        s = re.sub(r"\s+", "", s)
        if not s:
            return _ZERO
        try:
            d = Decimal(s)
        except InvalidOperation:
            return _ZERO
    if not d.is_finite():
        return _ZERO
    return abs(d).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


def parse_optional_amount(text: str | int | float | Decimal | None) -> Decimal | None:
    """Like :func:`parse_amount` but ``None`` for a blank cell."""

    if text is None or (isinstance(text, str) and not text.strip()):
        return None
    return parse_amount(text)


__all__ = [
    "TWO_DIGIT_YEAR_PIVOT",
    "date_to_timestamp",
    "parse_amount",
    "parse_date",
    "parse_optional_amount",
    "parse_timestamp",
]
