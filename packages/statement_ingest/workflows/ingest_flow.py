# ruff: noqa: I001
"""Workflow orchestrators for end-to-end ingestion flows.

These compose consent checks, the aggregator fetch and persistence behind a
single call, reporting short status lines through ``on_progress``.
"""

from __future__ import annotations

from collections.abc import Callable
from os import PathLike

from ..aggregator import AggregatorClient
from ..api import (
    default_currency,
    ingest_from_aggregator,
    ingest_parsed_statement,
    record_consent_callback,
)
from ..errors import MalformedStatement
from ..ingest.utils import load_statement_from_path
from ..models import ConsentStatus, IngestResult, StatementIngestResult


def ingest_statement_from_csv(
    csv_path: str | PathLike[str],
    *,
    user_id: str,
    account_hint: str | None = None,
    database_url: str | None = None,
    on_progress: Callable[[str], None] | None = None,
) -> StatementIngestResult:
    """End-to-end: CSV → draft records → classify → insert-or-skip.

    Raises :class:`MalformedStatement` without touching the database when the
    file parses but every data row is invalid; the row errors are in the
    message. The file is read once and the checked records are the ones
    stored.
    """

    parsed = load_statement_from_path(
        csv_path, user_id, account_hint, currency=default_currency()
    )
    if parsed.row_errors and not parsed.records:
        raise MalformedStatement("Failed to parse CSV: " + "; ".join(parsed.row_errors))

    if on_progress:
        on_progress(f"Parsed {parsed.summary.parsed} of {parsed.summary.total_rows} row(s).")

    result = ingest_parsed_statement(parsed, database_url=database_url)

    if on_progress:
        on_progress(
            f"Saved {result.ingest.saved_count}, skipped {result.ingest.skipped_count} "
            f"existing, {len(result.ingest.errors)} failed."
        )
    return result


def approve_and_ingest(
    consent_id: str,
    *,
    client: AggregatorClient | None = None,
    provider_id: str | None = None,
    database_url: str | None = None,
    on_progress: Callable[[str], None] | None = None,
) -> IngestResult:
    """Record an APPROVED callback, then fetch and ingest the consent's data.

    A consent that is already APPROVED is left as is.
    """

    record = record_consent_callback(
        ConsentStatus.APPROVED,
        consent_id=consent_id,
        provider_id=provider_id,
        database_url=database_url,
    )
    if on_progress:
        on_progress(f"Consent {consent_id} is {record.status.value} (v{record.version}).")

    result = ingest_from_aggregator(consent_id, client=client, database_url=database_url)
    if on_progress:
        on_progress(
            f"Saved {result.saved_count}, skipped {result.skipped_count} existing, "
            f"{len(result.errors)} failed."
        )
    return result


__all__ = ["approve_and_ingest", "ingest_statement_from_csv"]
