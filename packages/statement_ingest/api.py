"""Public API for the ``statement_ingest`` package.

Each function opens one ``db.client.session_scope`` so a call is a single
database transaction. Core components (:class:`IngestionCoordinator`,
:class:`ConsentLedger`) can also be used directly with any store
implementation; these wrappers bind them to the shared SQL database.

DB imports are local to each function so importing this module does not
require a configured engine.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping, Sequence
from datetime import date, datetime
from os import PathLike
from pathlib import Path
from typing import Any

from .aggregator import AggregatorClient, AggregatorConfig, MockAggregatorClient
from .consent import ConsentInitiation, ConsentLedger
from .ingestion import IngestionCoordinator
from .ingest.utils import decode_statement_bytes
from .models import (
    DEFAULT_CURRENCY,
    ConsentRecord,
    ConsentStatus,
    Direction,
    IngestResult,
    NormalizedTransaction,
    SourceType,
    StatementIngestResult,
    StatementParseResult,
)
from .persistence import TransactionSummary

_CURRENCY_ENV_VAR = "STATEMENT_INGEST_DEFAULT_CURRENCY"


def default_currency() -> str:
    """Currency assigned to CSV rows; ``STATEMENT_INGEST_DEFAULT_CURRENCY`` or INR."""

    return (os.getenv(_CURRENCY_ENV_VAR) or DEFAULT_CURRENCY).strip().upper()


def _ledger(session, *, config: AggregatorConfig | None, clock: Callable[[], datetime] | None):
    from .persistence import SqlConsentStore

    return ConsentLedger(SqlConsentStore(session), config=config, clock=clock)


# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------


def ingest_statement_bytes(
    content: bytes,
    *,
    user_id: str,
    account_hint: str | None = None,
    database_url: str | None = None,
) -> StatementIngestResult:
    """Decode, parse, classify and persist an uploaded statement."""

    from db.client import session_scope
    from .persistence import SqlTransactionStore

    text = decode_statement_bytes(content)
    with session_scope(database_url=database_url) as session:
        coordinator = IngestionCoordinator(SqlTransactionStore(session))
        return coordinator.ingest_statement(
            text, user_id, account_hint, currency=default_currency()
        )


def ingest_parsed_statement(
    parsed: StatementParseResult,
    *,
    database_url: str | None = None,
) -> StatementIngestResult:
    """Classify and persist records that were parsed and checked beforehand."""

    from db.client import session_scope
    from .persistence import SqlTransactionStore

    with session_scope(database_url=database_url) as session:
        return IngestionCoordinator(SqlTransactionStore(session)).ingest_parsed(parsed)


def ingest_statement_file(
    path: str | PathLike[str],
    *,
    user_id: str,
    account_hint: str | None = None,
    database_url: str | None = None,
) -> StatementIngestResult:
    return ingest_statement_bytes(
        Path(path).read_bytes(),
        user_id=user_id,
        account_hint=account_hint,
        database_url=database_url,
    )


# ---------------------------------------------------------------------------
# Consent
# ---------------------------------------------------------------------------


def initiate_consent(
    *,
    user_id: str,
    customer_identifier: str,
    scopes: Sequence[str] = ("DEPOSIT",),
    date_range: tuple[datetime, datetime] | None = None,
    purpose_code: str = "101",
    database_url: str | None = None,
    config: AggregatorConfig | None = None,
    clock: Callable[[], datetime] | None = None,
) -> ConsentInitiation:
    from db.client import session_scope

    with session_scope(database_url=database_url) as session:
        return _ledger(session, config=config, clock=clock).initiate(
            user_id=user_id,
            customer_identifier=customer_identifier,
            scopes=scopes,
            date_range=date_range,
            purpose_code=purpose_code,
        )


def record_consent_callback(
    status: ConsentStatus | str,
    *,
    consent_id: str | None = None,
    consent_handle: str | None = None,
    response_payload: Mapping[str, Any] | None = None,
    provider_id: str | None = None,
    database_url: str | None = None,
    clock: Callable[[], datetime] | None = None,
) -> ConsentRecord:
    """Apply an aggregator callback identified by consent id or handle."""

    from db.client import session_scope

    if not consent_id and not consent_handle:
        raise ValueError("either consent_id or consent_handle is required")
    with session_scope(database_url=database_url) as session:
        ledger = _ledger(session, config=None, clock=clock)
        if not consent_id:
            consent_id = ledger.find_by_handle(consent_handle or "").consent_id
        return ledger.record_callback(
            consent_id,
            status,
            response_payload=response_payload,
            provider_id=provider_id,
        )


def revoke_consent(
    consent_id: str,
    *,
    database_url: str | None = None,
    clock: Callable[[], datetime] | None = None,
) -> ConsentRecord:
    from db.client import session_scope

    with session_scope(database_url=database_url) as session:
        return _ledger(session, config=None, clock=clock).revoke(consent_id)


def consent_history(consent_id: str, *, database_url: str | None = None) -> list[ConsentRecord]:
    from db.client import session_scope

    with session_scope(database_url=database_url) as session:
        return _ledger(session, config=None, clock=None).history(consent_id)


def verify_consent_chain(consent_id: str, *, database_url: str | None = None) -> bool:
    from db.client import session_scope

    with session_scope(database_url=database_url) as session:
        return _ledger(session, config=None, clock=None).verify_chain(consent_id)


def ingest_from_aggregator(
    consent_id: str,
    *,
    client: AggregatorClient | None = None,
    user_id: str | None = None,
    database_url: str | None = None,
    clock: Callable[[], datetime] | None = None,
) -> IngestResult:
    """Expire the consent if due, then fetch and ingest its FI data.

    ``client`` defaults to :class:`MockAggregatorClient`.
    """

    from db.client import session_scope
    from .persistence import SqlTransactionStore

    # Committed on its own so a refused ingestion keeps the EXPIRED version.
    with session_scope(database_url=database_url) as session:
        _ledger(session, config=None, clock=clock).expire_due(consent_id)

    with session_scope(database_url=database_url) as session:
        ledger = _ledger(session, config=None, clock=clock)
        coordinator = IngestionCoordinator(SqlTransactionStore(session))
        return coordinator.ingest_aggregator(
            consent_id,
            ledger=ledger,
            client=client or MockAggregatorClient(),
            user_id=user_id,
        )


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def list_user_transactions(
    *,
    user_id: str,
    start: date | None = None,
    end: date | None = None,
    category: str | None = None,
    direction: Direction | str | None = None,
    source_type: SourceType | str | None = None,
    limit: int = 50,
    offset: int = 0,
    database_url: str | None = None,
) -> tuple[list[NormalizedTransaction], int]:
    """One page of transactions (newest first) and the total matching count."""

    from db.client import session_scope
    from .persistence import count_transactions, list_transactions

    filters: dict[str, Any] = {
        "user_id": user_id,
        "start": start,
        "end": end,
        "category": category,
        "direction": direction,
        "source_type": source_type,
    }
    with session_scope(database_url=database_url) as session:
        page = list_transactions(session, limit=limit, offset=offset, **filters)
        total = count_transactions(session, **filters)
    return page, total


def summarize_user_transactions(
    *,
    user_id: str,
    start: date | None = None,
    end: date | None = None,
    database_url: str | None = None,
) -> TransactionSummary:
    from db.client import session_scope
    from .persistence import summarize_transactions

    with session_scope(database_url=database_url) as session:
        return summarize_transactions(session, user_id=user_id, start=start, end=end)


__all__ = [
    "consent_history",
    "default_currency",
    "ingest_from_aggregator",
    "ingest_parsed_statement",
    "ingest_statement_bytes",
    "ingest_statement_file",
    "initiate_consent",
    "list_user_transactions",
    "record_consent_callback",
    "revoke_consent",
    "summarize_user_transactions",
    "verify_consent_chain",
]
