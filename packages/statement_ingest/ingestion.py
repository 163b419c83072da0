"""Ingestion coordinator: parse, classify and persist one batch.

The coordinator is storage-agnostic; it talks to a :class:`TransactionStore`
and counts outcomes. A batch never aborts on a single record: duplicates are
counted as skipped and any other per-record failure is collected into
:attr:`IngestResult.errors`.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

from .aggregator import AggregatorClient
from .categorization import classify_transaction
from .consent import ConsentLedger
from .errors import AggregatorUnavailable, ConsentUserMismatch, DuplicateRecord
from .ingest.adapters.aggregator_json import parse_aggregator_payload
from .ingest.adapters.delimited_csv import parse_delimited_text
from .logging_setup import get_logger
from .models import (
    DEFAULT_CURRENCY,
    IngestError,
    IngestResult,
    NormalizedTransaction,
    StatementIngestResult,
    StatementParseResult,
)
from .persistence import TransactionStore

_logger = get_logger("statement_ingest.ingestion")

type Classifier = Callable[[NormalizedTransaction], NormalizedTransaction]


class IngestionCoordinator:
    def __init__(
        self,
        store: TransactionStore,
        *,
        classifier: Classifier = classify_transaction,
    ) -> None:
        self._store = store
        self._classifier = classifier

    def ingest(self, records: Iterable[NormalizedTransaction]) -> IngestResult:
        """Classify and insert each record; existing keys are left untouched."""

        saved = 0
        skipped = 0
        errors: list[IngestError] = []
        for record in records:
            try:
                inserted = self._store.insert_or_skip(self._classifier(record))
            except DuplicateRecord:
                inserted = False
            except Exception as exc:  # noqa: BLE001 - collected per record
                _logger.warning("Failed to persist %s: %s", record.external_id, exc)
                errors.append(IngestError(external_id=record.external_id, message=str(exc)))
                continue
            if inserted:
                saved += 1
            else:
                skipped += 1

        _logger.info(
            "Ingested batch: %d saved, %d skipped, %d error(s)", saved, skipped, len(errors)
        )
        return IngestResult(saved_count=saved, skipped_count=skipped, errors=tuple(errors))

    def ingest_statement(
        self,
        content: str,
        user_id: str,
        account_hint: str | None = None,
        *,
        currency: str = DEFAULT_CURRENCY,
    ) -> StatementIngestResult:
        """Parse a CSV statement and ingest its valid rows.

        Structural problems (no header, no date or amount column) raise before
        anything is written.
        """

        parsed = parse_delimited_text(content, user_id, account_hint, currency=currency)
        return self.ingest_parsed(parsed)

    def ingest_parsed(self, parsed: StatementParseResult) -> StatementIngestResult:
        """Ingest the records of an already parsed statement."""

        result = self.ingest(parsed.records)
        return StatementIngestResult(
            summary=parsed.summary,
            row_errors=parsed.row_errors,
            ingest=result,
        )

    def ingest_aggregator(
        self,
        consent_id: str,
        *,
        ledger: ConsentLedger,
        client: AggregatorClient,
        user_id: str | None = None,
    ) -> IngestResult:
        """Fetch and ingest FI data authorized by ``consent_id``.

        The consent chain is verified and must be APPROVED and unexpired;
        otherwise nothing is fetched. ``user_id``, when given, must name the
        user who granted the consent.
        """

        consent = ledger.require_usable(consent_id)
        if user_id is not None and user_id != consent.user_id:
            raise ConsentUserMismatch(consent_id, consent.user_id, user_id)
        try:
            payload = client.fetch_fi_data(consent_id)
        except Exception as exc:
            raise AggregatorUnavailable(
                f"FI fetch failed for consent {consent_id}: {exc}"
            ) from exc
        records = parse_aggregator_payload(payload, consent.user_id, consent_id)
        return self.ingest(records)


__all__ = ["Classifier", "IngestionCoordinator"]
