"""Adapter for Account Aggregator financial-information (FI) responses.

Payload shape (only the parts we read)::

    {"FI": [{"fipId": ..., "data": [{
        "maskedAccNumber": "XXXX1234",
        "Account": {"type": "SAVINGS", "currency": "INR",
                    "Transactions": {"Transaction": [{...}, ...]},
                    "EMIs": {"EMI": [...]}},
        "Loan": {"lenderName": ..., "loanType": ..., "EMIs": {"EMI": [...]}}
    }]}]}

Each provider, account and transaction is handled on its own. A level that
is missing or has the wrong shape is skipped with a warning so one broken
provider never hides the others. Individual transaction objects are validated
with pydantic; an invalid one is skipped the same way.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ...errors import UnparseableDate
from ...logging_setup import get_logger
from ...models import (
    DEFAULT_CURRENCY,
    Direction,
    NormalizedTransaction,
    PaymentMode,
    SourceType,
)
from ...normalizers import (
    date_to_timestamp,
    parse_amount,
    parse_date,
    parse_optional_amount,
    parse_timestamp,
)

_logger = get_logger("statement_ingest.ingest.adapters.aggregator_json")

_SOURCE_TYPE_BY_FI_TYPE: Mapping[str, SourceType] = {
    "DEPOSIT": SourceType.BANK_ACCOUNT,
    "SAVINGS": SourceType.BANK_ACCOUNT,
    "CURRENT": SourceType.BANK_ACCOUNT,
    "CREDIT_CARD": SourceType.CREDIT_CARD,
    "TERM_DEPOSIT": SourceType.BANK_ACCOUNT,
    "RECURRING_DEPOSIT": SourceType.BANK_ACCOUNT,
    "LOAN": SourceType.LOAN,
    "MUTUAL_FUND": SourceType.MUTUAL_FUND,
    "INSURANCE": SourceType.INSURANCE,
}


def map_source_type(fi_type: str | None, account_type: str | None = None) -> SourceType:
    """Map an FI type (or, failing that, an account type) to :class:`SourceType`."""

    for key in (fi_type, account_type):
        if key and key.strip().upper() in _SOURCE_TYPE_BY_FI_TYPE:
            return _SOURCE_TYPE_BY_FI_TYPE[key.strip().upper()]
    return SourceType.OTHER


def _payment_mode(raw: str | None) -> PaymentMode | None:
    if not raw:
        return None
    try:
        return PaymentMode(raw.strip().upper())
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Typed views of payload fragments
# ---------------------------------------------------------------------------


class _FiTransaction(BaseModel):
    model_config = ConfigDict(extra="allow", str_strip_whitespace=True)

    txn_id: str = Field(alias="txnId", min_length=1)
    type: Literal["CREDIT", "DEBIT"]
    mode: str | None = None
    amount: str | int | float
    current_balance: str | int | float | None = Field(default=None, alias="currentBalance")
    transaction_timestamp: str = Field(alias="transactionTimestamp")
    narration: str | None = None
    reference: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _upper_type(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v


class _FiEmi(BaseModel):
    model_config = ConfigDict(extra="allow", str_strip_whitespace=True)

    txn_id: str | None = Field(default=None, alias="txnId")
    due_date: str | None = Field(default=None, alias="dueDate")
    paid_date: str | None = Field(default=None, alias="paidDate")
    amount: str | int | float | None = None
    emi_amount: str | int | float | None = Field(default=None, alias="emiAmount")


# ---------------------------------------------------------------------------
# Structure walking
# ---------------------------------------------------------------------------


def _as_list(value: Any, what: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        _logger.warning("Skipping %s: expected a list, got %s", what, type(value).__name__)
        return []
    return value


def _as_mapping(value: Any, what: str) -> Mapping[str, Any] | None:
    if value is None:
        return None
    if not isinstance(value, Mapping):
        _logger.warning("Skipping %s: expected an object, got %s", what, type(value).__name__)
        return None
    return value


def _iter_fi_data(payload: Any) -> Iterator[tuple[Mapping[str, Any], Mapping[str, Any]]]:
    """Yield ``(fi, data)`` pairs for every well-formed provider/account entry."""

    root = _as_mapping(payload, "aggregator payload")
    if root is None:
        return
    for i, fi in enumerate(_as_list(root.get("FI"), "FI")):
        fi_map = _as_mapping(fi, f"FI[{i}]")
        if fi_map is None:
            continue
        for j, data in enumerate(_as_list(fi_map.get("data"), f"FI[{i}].data")):
            data_map = _as_mapping(data, f"FI[{i}].data[{j}]")
            if data_map is not None:
                yield fi_map, data_map


def _masked_account(data: Mapping[str, Any], account: Mapping[str, Any] | None) -> str | None:
    masked = data.get("maskedAccNumber")
    if not masked and account is not None:
        masked = account.get("maskedAccNumber")
    return str(masked) if masked else None


def parse_bank_transactions(
    payload: Any, user_id: str, consent_id: str
) -> list[NormalizedTransaction]:
    """Records from ``FI[].data[].Account.Transactions.Transaction[]``."""

    out: list[NormalizedTransaction] = []
    for fi, data in _iter_fi_data(payload):
        fip_id = fi.get("fipId")
        account = _as_mapping(data.get("Account"), f"Account for provider {fip_id}")
        if account is None:
            continue
        masked = _masked_account(data, account)
        source_type = map_source_type(data.get("fiType") or fi.get("fiType"), account.get("type"))
        currency = str(account.get("currency") or DEFAULT_CURRENCY).upper()

        txns = _as_mapping(account.get("Transactions"), f"Transactions for {masked}")
        if txns is None:
            continue
        for raw in _as_list(txns.get("Transaction"), f"Transaction list for {masked}"):
            try:
                txn = _FiTransaction.model_validate(raw)
                timestamp = parse_timestamp(txn.transaction_timestamp)
                record = NormalizedTransaction(
                    external_id=txn.txn_id,
                    user_id=user_id,
                    consent_ref=consent_id,
                    timestamp=timestamp,
                    amount=parse_amount(txn.amount),
                    direction=Direction(txn.type),
                    source_type=source_type,
                    source_account=masked,
                    payment_mode=_payment_mode(txn.mode),
                    reference=txn.reference or None,
                    narration=txn.narration or None,
                    balance_after=parse_optional_amount(txn.current_balance),
                    currency=currency,
                    raw_payload=dict(raw),
                )
            except (ValidationError, UnparseableDate, ValueError, TypeError) as exc:
                _logger.warning(
                    "Skipping malformed transaction for account %s (provider %s): %s",
                    masked,
                    fip_id,
                    exc,
                )
                continue
            out.append(record)
    return out


def parse_loan_emis(payload: Any, user_id: str, consent_id: str) -> list[NormalizedTransaction]:
    """Pre-classified EMI debits from ``FI[].data[].(Loan|Account).EMIs.EMI[]``."""

    out: list[NormalizedTransaction] = []
    for _fi, data in _iter_fi_data(payload):
        loan = _as_mapping(data.get("Loan") or data.get("Account"), "Loan")
        if loan is None:
            continue
        masked = _masked_account(data, loan)
        emis = _as_mapping(loan.get("EMIs"), f"EMIs for {masked}")
        if emis is None:
            continue
        lender = loan.get("lenderName") or "Loan EMI"
        loan_type = loan.get("loanType") or "Loan"

        for raw in _as_list(emis.get("EMI"), f"EMI list for {masked}"):
            try:
                emi = _FiEmi.model_validate(raw)
                when = emi.due_date or emi.paid_date
                amount_raw = emi.amount if emi.amount is not None else emi.emi_amount
                if not when:
                    raise ValueError("EMI has neither dueDate nor paidDate")
                if amount_raw is None:
                    raise ValueError("EMI has neither amount nor emiAmount")
                record = NormalizedTransaction(
                    external_id=emi.txn_id or f"EMI_{masked}_{when}",
                    user_id=user_id,
                    consent_ref=consent_id,
                    timestamp=date_to_timestamp(parse_date(when[:10])),
                    amount=parse_amount(amount_raw),
                    direction=Direction.DEBIT,
                    merchant=str(lender)[:100],
                    category="Loan",
                    subcategory="EMI",
                    source_type=SourceType.LOAN,
                    source_account=masked,
                    payment_mode=PaymentMode.AUTO_DEBIT,
                    narration=f"EMI Payment - {loan_type}",
                    raw_payload=dict(raw),
                )
            except (ValidationError, UnparseableDate, ValueError, TypeError) as exc:
                _logger.warning("Skipping malformed EMI for account %s: %s", masked, exc)
                continue
            out.append(record)
    return out


def parse_aggregator_payload(
    payload: Any, user_id: str, consent_id: str
) -> list[NormalizedTransaction]:
    """Bank transactions followed by loan EMIs; never raises on bad structure."""

    bank = parse_bank_transactions(payload, user_id, consent_id)
    emis = parse_loan_emis(payload, user_id, consent_id)
    _logger.info(
        "Parsed aggregator payload for consent %s: %d transaction(s), %d EMI(s)",
        consent_id,
        len(bank),
        len(emis),
    )
    return bank + emis


__all__ = [
    "map_source_type",
    "parse_aggregator_payload",
    "parse_bank_transactions",
    "parse_loan_emis",
]
