"""Rule-based narration classification.

Three independent helpers read the narration text:

- :func:`categorize` walks :data:`CATEGORY_RULES` in order and returns the
  first rule with a keyword contained in the lower-cased narration. Order
  matters: ``"SALARY CREDIT VIA NEFT"`` must land on Income/Salary, not on the
  transfer rule further down.
- :func:`extract_merchant` pulls a counterparty name from common rail
  prefixes (``UPI-<name>-``, ``NEFT-<name>-``, ...).
- :func:`detect_payment_mode` scans for rail keywords.

:func:`classify_transaction` applies all three to a draft record, filling
only the fields the source left empty.
"""

from __future__ import annotations

import dataclasses
import re
from collections.abc import Mapping
from dataclasses import dataclass

from .models import MERCHANT_MAX_LEN, NormalizedTransaction, PaymentMode

DEFAULT_CATEGORY = "Other"
DEFAULT_SUBCATEGORY = "Uncategorized"


@dataclass(frozen=True, slots=True)
class CategoryRule:
    keywords: tuple[str, ...]
    category: str
    subcategory: str

    def matches(self, lowered: str) -> bool:
        return any(k in lowered for k in self.keywords)


# Evaluated top to bottom; first hit wins.
CATEGORY_RULES: tuple[CategoryRule, ...] = (
    CategoryRule(("salary", "payroll", "wages"), "Income", "Salary"),
    CategoryRule(("interest", "int credit"), "Income", "Interest"),
    CategoryRule(("dividend",), "Income", "Dividend"),
    CategoryRule(("refund", "cashback"), "Income", "Refund"),
    CategoryRule(("rent", "rental"), "Housing", "Rent"),
    CategoryRule(("electricity", "power", "bescom", "discom"), "Utilities", "Electricity"),
    CategoryRule(("water", "bwssb"), "Utilities", "Water"),
    CategoryRule(("gas", "lpg", "indane", "bharat gas"), "Utilities", "Gas"),
    CategoryRule(("mobile", "recharge", "airtel", "jio", "vi ", "bsnl"), "Utilities", "Mobile"),
    CategoryRule(("broadband", "internet", "wifi"), "Utilities", "Internet"),
    CategoryRule(("swiggy", "zomato", "food", "restaurant", "cafe", "hotel"), "Food", "Dining"),
    CategoryRule(("grocery", "bigbasket", "blinkit", "zepto", "dmart"), "Food", "Groceries"),
    CategoryRule(("amazon", "flipkart", "myntra", "shopping", "mall"), "Shopping", "Online"),
    CategoryRule(("uber", "ola", "rapido", "taxi", "cab"), "Transport", "Ride"),
    CategoryRule(("petrol", "diesel", "fuel", "iocl", "bpcl", "hpcl"), "Transport", "Fuel"),
    CategoryRule(("metro", "bus", "train", "irctc"), "Transport", "Public"),
    CategoryRule(("emi", "loan", "equated"), "Loan", "EMI"),
    CategoryRule(("insurance", "lic", "premium"), "Insurance", "Premium"),
    CategoryRule(("mutual fund", "sip", "investment"), "Investment", "Mutual Fund"),
    CategoryRule(("atm", "cash withdrawal"), "Cash", "ATM"),
    CategoryRule(("transfer", "upi", "neft", "imps", "rtgs"), "Transfer", "Bank Transfer"),
    CategoryRule(
        ("netflix", "prime", "hotstar", "spotify", "subscription"),
        "Entertainment",
        "Subscription",
    ),
    CategoryRule(
        ("hospital", "medical", "pharmacy", "doctor", "clinic"), "Health", "Medical"
    ),
    CategoryRule(
        ("school", "college", "tuition", "education", "course"), "Education", "Fees"
    ),
)


def _build_taxonomy() -> dict[str, tuple[str, ...]]:
    tree: dict[str, list[str]] = {}
    for rule in CATEGORY_RULES:
        subs = tree.setdefault(rule.category, [])
        if rule.subcategory not in subs:
            subs.append(rule.subcategory)
    tree.setdefault(DEFAULT_CATEGORY, []).append(DEFAULT_SUBCATEGORY)
    return {k: tuple(v) for k, v in tree.items()}


# Closed two-level taxonomy: category -> subcategories.
TAXONOMY: Mapping[str, tuple[str, ...]] = _build_taxonomy()


def is_known_category(category: str, subcategory: str) -> bool:
    return subcategory in TAXONOMY.get(category, ())


def categorize(narration: str | None) -> tuple[str, str]:
    """Return ``(category, subcategory)``; ``("Other", "Uncategorized")`` when nothing matches."""

    if not narration:
        return DEFAULT_CATEGORY, DEFAULT_SUBCATEGORY
    lowered = narration.lower()
    for rule in CATEGORY_RULES:
        if rule.matches(lowered):
            return rule.category, rule.subcategory
    return DEFAULT_CATEGORY, DEFAULT_SUBCATEGORY


# ---------------------------------------------------------------------------
# Merchant
# ---------------------------------------------------------------------------

_MERCHANT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"UPI[-/]([A-Za-z0-9\s]+?)[-/]", re.IGNORECASE),
    re.compile(r"NEFT[-/]([A-Za-z0-9\s]+?)[-/]", re.IGNORECASE),
    re.compile(r"IMPS[-/]([A-Za-z0-9\s]+?)[-/]", re.IGNORECASE),
    re.compile(r"to\s+([A-Za-z0-9\s]+)", re.IGNORECASE),
    re.compile(r"from\s+([A-Za-z0-9\s]+)", re.IGNORECASE),
)
_DELIMITER_RE = re.compile(r"[-/]")


def extract_merchant(narration: str | None) -> str | None:
    """Best-effort counterparty name, capped at 100 characters.

    Falls back to the text before the first ``-`` or ``/``. ``None`` only
    when the narration is empty (or reduces to nothing).
    """

    if not narration:
        return None
    for pattern in _MERCHANT_PATTERNS:
        m = pattern.search(narration)
        if m and m.group(1):
            name = m.group(1).strip()[:MERCHANT_MAX_LEN]
            if name:
                return name
    head = _DELIMITER_RE.split(narration, maxsplit=1)[0].strip()[:MERCHANT_MAX_LEN]
    return head or None


# ---------------------------------------------------------------------------
# Payment mode
# ---------------------------------------------------------------------------

_PAYMENT_MODE_KEYWORDS: tuple[tuple[tuple[str, ...], PaymentMode], ...] = (
    (("upi",), PaymentMode.UPI),
    (("neft",), PaymentMode.NEFT),
    (("imps",), PaymentMode.IMPS),
    (("rtgs",), PaymentMode.RTGS),
    (("atm",), PaymentMode.ATM),
    (("pos", "card"), PaymentMode.CARD),
    (("cheque", "chq"), PaymentMode.CHEQUE),
    (("cash",), PaymentMode.CASH),
)


def detect_payment_mode(narration: str | None) -> PaymentMode:
    if not narration:
        return PaymentMode.OTHER
    lowered = narration.lower()
    for keywords, mode in _PAYMENT_MODE_KEYWORDS:
        if any(k in lowered for k in keywords):
            return mode
    return PaymentMode.OTHER


# ---------------------------------------------------------------------------
# Record enrichment
# ---------------------------------------------------------------------------


def classify_transaction(tx: NormalizedTransaction) -> NormalizedTransaction:
    """Return a copy of ``tx`` with unset classification fields filled in.

    Fields a source already supplied (aggregator ``mode``, EMI category and
    lender) are kept as-is.
    """

    changes: dict[str, object] = {}
    if tx.category is None or tx.subcategory is None:
        category, subcategory = categorize(tx.narration)
        if tx.category is None:
            changes["category"] = category
        if tx.subcategory is None:
            changes["subcategory"] = (
                subcategory if tx.category in (None, category) else DEFAULT_SUBCATEGORY
            )
    if tx.merchant is None:
        merchant = extract_merchant(tx.narration)
        if merchant is not None:
            changes["merchant"] = merchant
    if tx.payment_mode is None:
        changes["payment_mode"] = detect_payment_mode(tx.narration)
    if not changes:
        return tx
    return dataclasses.replace(tx, **changes)


__all__ = [
    "CATEGORY_RULES",
    "DEFAULT_CATEGORY",
    "DEFAULT_SUBCATEGORY",
    "TAXONOMY",
    "CategoryRule",
    "categorize",
    "classify_transaction",
    "detect_payment_mode",
    "extract_merchant",
    "is_known_category",
]
