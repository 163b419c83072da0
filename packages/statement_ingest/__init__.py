"""Public interface for the ``statement_ingest`` package.

This module exposes the package's core components, API functions and public
models/types as the stable import surface. There is no runtime logic here,
only symbol re-exports.
"""

from .aggregator import AggregatorConfig, MockAggregatorClient
from .api import (
    consent_history,
    ingest_from_aggregator,
    ingest_parsed_statement,
    ingest_statement_bytes,
    ingest_statement_file,
    initiate_consent,
    list_user_transactions,
    record_consent_callback,
    revoke_consent,
    summarize_user_transactions,
    verify_consent_chain,
)
from .categorization import categorize, classify_transaction, detect_payment_mode, extract_merchant
from .consent import ConsentInitiation, ConsentLedger, compute_integrity_hash
from .dialects import ColumnMapping, detect_columns
from .ingest.adapters.aggregator_json import parse_aggregator_payload
from .ingest.adapters.delimited_csv import parse_delimited_text
from .ingestion import IngestionCoordinator
from .models import (
    ConsentRecord,
    ConsentStatus,
    Direction,
    IngestError,
    IngestResult,
    NormalizedTransaction,
    ParseSummary,
    PaymentMode,
    SourceType,
    StatementIngestResult,
    StatementParseResult,
)
from .normalizers import parse_amount, parse_date
from .workflows.ingest_flow import approve_and_ingest, ingest_statement_from_csv

__all__ = [
    # Components
    "ConsentLedger",
    "IngestionCoordinator",
    "MockAggregatorClient",
    "AggregatorConfig",
    # Parsing / classification
    "parse_date",
    "parse_amount",
    "detect_columns",
    "ColumnMapping",
    "parse_delimited_text",
    "parse_aggregator_payload",
    "categorize",
    "classify_transaction",
    "detect_payment_mode",
    "extract_merchant",
    "compute_integrity_hash",
    # API
    "consent_history",
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
    "approve_and_ingest",
    "ingest_statement_from_csv",
    # Models / types
    "NormalizedTransaction",
    "ConsentRecord",
    "ConsentInitiation",
    "ConsentStatus",
    "Direction",
    "PaymentMode",
    "SourceType",
    "ParseSummary",
    "StatementParseResult",
    "StatementIngestResult",
    "IngestResult",
    "IngestError",
]
