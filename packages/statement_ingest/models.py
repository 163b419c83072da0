"""Data models and type aliases for ``statement_ingest``.

Every source (bank CSV export, aggregator JSON) is normalized into a single
:class:`NormalizedTransaction`. Consent authorizations are stored as an
append-only chain of :class:`ConsentRecord` versions. Both are frozen:
enrichment and state changes produce new instances.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Direction(StrEnum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class SourceType(StrEnum):
    BANK_ACCOUNT = "BANK_ACCOUNT"
    CREDIT_CARD = "CREDIT_CARD"
    LOAN = "LOAN"
    MUTUAL_FUND = "MUTUAL_FUND"
    INSURANCE = "INSURANCE"
    OTHER = "OTHER"


class PaymentMode(StrEnum):
    UPI = "UPI"
    NEFT = "NEFT"
    IMPS = "IMPS"
    RTGS = "RTGS"
    ATM = "ATM"
    CARD = "CARD"
    CHEQUE = "CHEQUE"
    CASH = "CASH"
    AUTO_DEBIT = "AUTO_DEBIT"
    OTHER = "OTHER"


class ConsentStatus(StrEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"


# Raw header -> cell mapping for a CSV row, or an aggregator JSON fragment.
type RawPayload = Mapping[str, Any]

DEFAULT_CURRENCY = "INR"
MERCHANT_MAX_LEN = 100
_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


# ---------------------------------------------------------------------------
# Core record
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class NormalizedTransaction:
    """One money movement in the unified schema.

    ``amount`` is always non-negative; the sign lives in ``direction``.
    ``timestamp`` is naive UTC (CSV dates become midnight).

    Parsers emit drafts where ``merchant``, ``category``, ``subcategory`` and
    ``payment_mode`` may still be ``None``; the classifier fills them in by
    returning a new instance. ``(external_id, user_id)`` is the dedup key.
    """

    external_id: str
    user_id: str
    timestamp: datetime
    amount: Decimal
    direction: Direction
    consent_ref: str | None = None
    merchant: str | None = None
    category: str | None = None
    subcategory: str | None = None
    source_type: SourceType = SourceType.BANK_ACCOUNT
    source_account: str | None = None
    payment_mode: PaymentMode | None = None
    reference: str | None = None
    narration: str | None = None
    balance_after: Decimal | None = None
    currency: str = DEFAULT_CURRENCY
    raw_payload: RawPayload = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        if not self.external_id:
            raise ValueError("external_id must be non-empty")
        if not self.user_id:
            raise ValueError("user_id must be non-empty")
        if not isinstance(self.amount, Decimal):
            raise ValueError(f"amount must be a Decimal, got {type(self.amount).__name__}")
        if self.amount < 0:
            raise ValueError(f"amount must be non-negative, got {self.amount}")
        if self.timestamp.tzinfo is not None:
            raise ValueError("timestamp must be naive UTC")
        if self.merchant is not None and len(self.merchant) > MERCHANT_MAX_LEN:
            raise ValueError(f"merchant exceeds {MERCHANT_MAX_LEN} characters")
        if not _CURRENCY_RE.match(self.currency or ""):
            raise ValueError(f"currency must be a 3-letter code, got {self.currency!r}")

    @property
    def is_classified(self) -> bool:
        return (
            self.category is not None
            and self.subcategory is not None
            and self.payment_mode is not None
        )


type Transactions = Iterable[NormalizedTransaction]


# ---------------------------------------------------------------------------
# Consent versions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ConsentRecord:
    """One immutable version of a consent authorization.

    All versions of the same authorization share ``consent_id``. Version
    ``n + 1`` points at version ``n`` through ``parent_version_ref`` (row id)
    and ``parent_hash`` (its ``integrity_hash``). ``created_at`` is assigned by
    storage and is not part of the hashed content.
    """

    id: str
    consent_id: str
    consent_handle: str | None
    user_id: str
    customer_identifier: str
    request_payload: Mapping[str, Any] = field(hash=False)
    response_payload: Mapping[str, Any] | None = field(hash=False)
    scopes: tuple[str, ...]
    status: ConsentStatus
    purpose_code: str | None
    provider_id: str | None
    integrity_hash: str
    version: int
    parent_version_ref: str | None
    parent_hash: str | None
    expires_at: datetime
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Parse / ingest results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ParseSummary:
    total_rows: int
    parsed: int
    failed: int
    total_credit: Decimal
    total_debit: Decimal


@dataclass(frozen=True, slots=True)
class StatementParseResult:
    records: tuple[NormalizedTransaction, ...]
    row_errors: tuple[str, ...]
    summary: ParseSummary


@dataclass(frozen=True, slots=True)
class IngestError:
    """A record the coordinator could not persist."""

    external_id: str
    message: str


@dataclass(frozen=True, slots=True)
class IngestResult:
    saved_count: int
    skipped_count: int
    errors: tuple[IngestError, ...] = ()


@dataclass(frozen=True, slots=True)
class StatementIngestResult:
    """Outcome of parsing and persisting one uploaded statement."""

    summary: ParseSummary
    row_errors: tuple[str, ...]
    ingest: IngestResult


# ---------------------------------------------------------------------------
# DTOs for JSON output
# ---------------------------------------------------------------------------


class TransactionView(BaseModel):
    """JSON-friendly projection of a stored transaction."""

    model_config = ConfigDict(strict=True, extra="forbid")

    external_id: str
    user_id: str
    timestamp: datetime
    amount: Decimal
    direction: Direction
    merchant: str | None = None
    category: str
    subcategory: str
    source_type: SourceType
    source_account: str | None = None
    payment_mode: PaymentMode
    reference: str | None = None
    narration: str | None = None
    balance_after: Decimal | None = None
    currency: str
    consent_ref: str | None = None

    @classmethod
    def from_transaction(cls, tx: NormalizedTransaction) -> TransactionView:
        return cls(
            external_id=tx.external_id,
            user_id=tx.user_id,
            timestamp=tx.timestamp,
            amount=tx.amount,
            direction=tx.direction,
            merchant=tx.merchant,
            category=tx.category or "Other",
            subcategory=tx.subcategory or "Uncategorized",
            source_type=tx.source_type,
            source_account=tx.source_account,
            payment_mode=tx.payment_mode or PaymentMode.OTHER,
            reference=tx.reference,
            narration=tx.narration,
            balance_after=tx.balance_after,
            currency=tx.currency,
            consent_ref=tx.consent_ref,
        )


class ConsentView(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid")

    consent_id: str
    version: int
    status: ConsentStatus
    consent_handle: str | None = None
    integrity_hash: str
    parent_hash: str | None = None
    expires_at: datetime

    @classmethod
    def from_record(cls, record: ConsentRecord) -> ConsentView:
        return cls(
            consent_id=record.consent_id,
            version=record.version,
            status=record.status,
            consent_handle=record.consent_handle,
            integrity_hash=record.integrity_hash,
            parent_hash=record.parent_hash,
            expires_at=record.expires_at,
        )


__all__ = [
    "DEFAULT_CURRENCY",
    "MERCHANT_MAX_LEN",
    "ConsentRecord",
    "ConsentStatus",
    "ConsentView",
    "Direction",
    "IngestError",
    "IngestResult",
    "NormalizedTransaction",
    "ParseSummary",
    "PaymentMode",
    "RawPayload",
    "SourceType",
    "StatementIngestResult",
    "StatementParseResult",
    "TransactionView",
    "Transactions",
]
