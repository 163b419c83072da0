"""Exception taxonomy for ``statement_ingest``.

Structural problems with a whole batch (unreadable file, unrecognized header,
broken consent chain) are raised. Per-row and per-record problems are
collected into result objects by the parser and the ingestion coordinator;
the exception types below still describe them so callers can reason about a
single vocabulary.
"""

from __future__ import annotations


class StatementIngestError(Exception):
    """Base class for every error raised by this package."""


class UnparseableDate(StatementIngestError, ValueError):
    """A date string matched none of the supported formats."""

    def __init__(self, text: str | None) -> None:
        self.text = text
        super().__init__(f"Invalid date {text!r}")


class MissingRequiredColumn(StatementIngestError):
    """The header row lacks a date column or any amount column."""

    def __init__(self, headers: list[str] | tuple[str, ...], missing: str) -> None:
        self.headers = tuple(headers)
        self.missing = missing
        super().__init__(
            f"Could not detect required columns ({missing}); found headers: {list(self.headers)}"
        )


class MalformedStatement(StatementIngestError):
    """The statement has no header row or no data rows."""


class RowValidationFailed(StatementIngestError):
    """A single data row failed validation; carries its 1-based row index."""

    def __init__(self, row_index: int, message: str) -> None:
        self.row_index = row_index
        self.message = message
        super().__init__(f"Row {row_index}: {message}")


class DuplicateRecord(StatementIngestError):
    """The ``(external_id, user_id)`` key already exists in storage."""

    def __init__(self, external_id: str, user_id: str) -> None:
        self.external_id = external_id
        self.user_id = user_id
        super().__init__(f"duplicate transaction {external_id!r} for user {user_id!r}")


class PersistenceFailed(StatementIngestError):
    """The storage collaborator failed for a reason other than a duplicate."""


# ---------------------------
# Consent
# ---------------------------


class ConsentError(StatementIngestError):
    """Base class for consent-ledger failures."""


class ConsentNotFound(ConsentError):
    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Consent not found: {key}")


class ConsentIntegrityViolation(ConsentError):
    """A stored consent version does not match its recomputed hash or chain."""

    def __init__(self, consent_id: str, version: int | None, detail: str) -> None:
        self.consent_id = consent_id
        self.version = version
        self.detail = detail
        where = f" v{version}" if version is not None else ""
        super().__init__(f"Consent integrity check failed for {consent_id}{where}: {detail}")


class ConsentExpiredOrUnapproved(ConsentError):
    def __init__(self, consent_id: str, status: str, detail: str | None = None) -> None:
        self.consent_id = consent_id
        self.status = status
        msg = f"Consent {consent_id} is not usable for ingestion (status={status})"
        super().__init__(f"{msg}: {detail}" if detail else msg)


class ConsentVersionConflict(ConsentError):
    """Another writer already stored this ``(consent_id, version)``."""

    def __init__(self, consent_id: str, version: int) -> None:
        self.consent_id = consent_id
        self.version = version
        super().__init__(f"Consent {consent_id} v{version} was written concurrently")


class ConsentUserMismatch(ConsentError):
    """The caller named a user other than the one who granted the consent."""

    def __init__(self, consent_id: str, owner: str, requested: str) -> None:
        self.consent_id = consent_id
        self.owner = owner
        self.requested = requested
        super().__init__(
            f"Consent {consent_id} belongs to user {owner!r}, not {requested!r}"
        )


class ConsentTransitionNotAllowed(ConsentError):
    def __init__(self, consent_id: str, current: str, requested: str) -> None:
        self.consent_id = consent_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Consent {consent_id}: transition {current} -> {requested} is not allowed"
        )


# ---------------------------
# Aggregator boundary
# ---------------------------


class AggregatorUnavailable(StatementIngestError):
    """The aggregator collaborator failed to return financial data."""


__all__ = [
    "AggregatorUnavailable",
    "ConsentError",
    "ConsentExpiredOrUnapproved",
    "ConsentIntegrityViolation",
    "ConsentNotFound",
    "ConsentTransitionNotAllowed",
    "ConsentUserMismatch",
    "ConsentVersionConflict",
    "DuplicateRecord",
    "MalformedStatement",
    "MissingRequiredColumn",
    "PersistenceFailed",
    "RowValidationFailed",
    "StatementIngestError",
    "UnparseableDate",
]
