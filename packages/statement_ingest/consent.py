"""Consent ledger: an append-only, hash-chained history per authorization.

Every state change inserts a new :class:`ConsentRecord` version. Version
``n + 1`` carries the row id and the integrity hash of version ``n``, so
editing any stored version breaks both its own hash and the link from its
successor. Nothing here updates or deletes a stored version.

State machine::

    PENDING  -> APPROVED | REJECTED | EXPIRED
    APPROVED -> EXPIRED | REVOKED

REJECTED, EXPIRED and REVOKED are terminal.
"""

from __future__ import annotations

import dataclasses
import hashlib
import hmac
import json
import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from .aggregator import (
    CONSENT_VALIDITY,
    AggregatorConfig,
    build_authorization_url,
    build_consent_request,
    consent_handle_for,
    new_txn_id,
)
from .errors import (
    ConsentExpiredOrUnapproved,
    ConsentIntegrityViolation,
    ConsentNotFound,
    ConsentTransitionNotAllowed,
    ConsentVersionConflict,
)
from .logging_setup import get_logger
from .models import ConsentRecord, ConsentStatus
from .persistence import ConsentStore

_logger = get_logger("statement_ingest.consent")

_ALLOWED_TRANSITIONS: Mapping[ConsentStatus, frozenset[ConsentStatus]] = {
    ConsentStatus.PENDING: frozenset(
        {ConsentStatus.APPROVED, ConsentStatus.REJECTED, ConsentStatus.EXPIRED}
    ),
    ConsentStatus.APPROVED: frozenset({ConsentStatus.EXPIRED, ConsentStatus.REVOKED}),
}


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def _naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is not None:
        return dt.astimezone(UTC).replace(tzinfo=None)
    return dt


def _hashed_fields(record: ConsentRecord) -> dict[str, Any]:
    # Row id, the hash itself and the storage timestamp are excluded.
    return {
        "consent_id": record.consent_id,
        "consent_handle": record.consent_handle,
        "user_id": record.user_id,
        "customer_identifier": record.customer_identifier,
        "request_payload": record.request_payload,
        "response_payload": record.response_payload,
        "scopes": list(record.scopes),
        "status": record.status.value,
        "purpose_code": record.purpose_code,
        "provider_id": record.provider_id,
        "version": record.version,
        "parent_version_ref": record.parent_version_ref,
        "parent_hash": record.parent_hash,
        "expires_at": _naive_utc(record.expires_at).isoformat(),
    }


def compute_integrity_hash(record: ConsentRecord) -> str:
    """SHA-256 hex digest over the canonical JSON of the record's content."""

    canonical = json.dumps(
        _hashed_fields(record),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _sealed(record: ConsentRecord) -> ConsentRecord:
    return dataclasses.replace(record, integrity_hash=compute_integrity_hash(record))


def _coerce_status(value: ConsentStatus | str) -> ConsentStatus:
    if isinstance(value, ConsentStatus):
        return value
    try:
        return ConsentStatus(str(value).strip().upper())
    except ValueError:
        raise ValueError(f"Unknown consent status: {value!r}") from None


def _chain_problem(versions: Sequence[ConsentRecord]) -> tuple[int | None, str] | None:
    """First ``(version, detail)`` that breaks the chain, or ``None``."""

    if not versions:
        return None, "no versions stored"
    consent_id = versions[0].consent_id
    prev: ConsentRecord | None = None
    for expected, record in enumerate(versions, start=1):
        if record.consent_id != consent_id:
            return record.version, f"foreign consent id {record.consent_id!r} in chain"
        if record.version != expected:
            return record.version, f"expected version {expected}"
        if not hmac.compare_digest(compute_integrity_hash(record), record.integrity_hash):
            return record.version, "integrity hash mismatch"
        if prev is None:
            if record.parent_version_ref is not None or record.parent_hash is not None:
                return record.version, "first version has a parent"
        else:
            if record.parent_version_ref != prev.id:
                return record.version, "parent reference does not match previous version"
            if record.parent_hash != prev.integrity_hash:
                return record.version, "parent hash does not match previous version"
        prev = record
    return None


@dataclass(frozen=True, slots=True)
class ConsentInitiation:
    consent_id: str
    consent_handle: str
    authorization_url: str
    record: ConsentRecord


class ConsentLedger:
    """Lifecycle operations over a :class:`ConsentStore`.

    ``clock`` returns naive UTC and is injectable for tests.
    """

    def __init__(
        self,
        store: ConsentStore,
        *,
        config: AggregatorConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._config = config or AggregatorConfig.from_env()
        self._clock = clock or _utcnow

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def initiate(
        self,
        *,
        user_id: str,
        customer_identifier: str,
        scopes: Sequence[str] = ("DEPOSIT",),
        date_range: tuple[datetime, datetime] | None = None,
        purpose_code: str = "101",
    ) -> ConsentInitiation:
        """Create version 1 (PENDING) and return the redirect details."""

        if not user_id:
            raise ValueError("user_id must be non-empty")
        if not customer_identifier or not customer_identifier.strip():
            raise ValueError("customer_identifier must be non-empty")
        scope_list = tuple(s.strip().upper() for s in scopes if s and s.strip())
        if not scope_list:
            raise ValueError("at least one scope is required")

        now = self._clock()
        txn_id = new_txn_id()
        handle = consent_handle_for(txn_id)
        request_payload = build_consent_request(
            customer_identifier=customer_identifier.strip(),
            fi_types=scope_list,
            config=self._config,
            txn_id=txn_id,
            now=now,
            date_range=date_range,
            purpose_code=purpose_code,
        )
        draft = ConsentRecord(
            id=str(uuid.uuid4()),
            consent_id=str(uuid.uuid4()),
            consent_handle=handle,
            user_id=user_id,
            customer_identifier=customer_identifier.strip(),
            request_payload=request_payload,
            response_payload=None,
            scopes=scope_list,
            status=ConsentStatus.PENDING,
            purpose_code=purpose_code,
            provider_id=None,
            integrity_hash="",
            version=1,
            parent_version_ref=None,
            parent_hash=None,
            expires_at=now + CONSENT_VALIDITY,
        )
        stored = self._store.append(_sealed(draft))
        _logger.info(
            "Initiated consent %s (handle %s) for user %s", stored.consent_id, handle, user_id
        )
        return ConsentInitiation(
            consent_id=stored.consent_id,
            consent_handle=handle,
            authorization_url=build_authorization_url(handle, self._config),
            record=stored,
        )

    def record_callback(
        self,
        consent_id: str,
        reported_status: ConsentStatus | str,
        *,
        response_payload: Mapping[str, Any] | None = None,
        provider_id: str | None = None,
    ) -> ConsentRecord:
        """Append the status reported by the aggregator callback.

        A repeated callback with the current status returns the current
        version without writing.
        """

        return self._transition(
            consent_id,
            _coerce_status(reported_status),
            response_payload=response_payload,
            provider_id=provider_id,
        )

    def revoke(self, consent_id: str) -> ConsentRecord:
        return self._transition(consent_id, ConsentStatus.REVOKED)

    def expire_due(self, consent_id: str, *, now: datetime | None = None) -> ConsentRecord:
        """Append an EXPIRED version if a live consent is past ``expires_at``."""

        current = self._verified_latest(consent_id)
        now = _naive_utc(now) if now is not None else self._clock()
        if current.status in _ALLOWED_TRANSITIONS and now >= current.expires_at:
            return self._transition(consent_id, ConsentStatus.EXPIRED)
        return current

    def _transition(
        self,
        consent_id: str,
        status: ConsentStatus,
        *,
        response_payload: Mapping[str, Any] | None = None,
        provider_id: str | None = None,
    ) -> ConsentRecord:
        current = self._verified_latest(consent_id)
        if status is current.status:
            return current
        if status not in _ALLOWED_TRANSITIONS.get(current.status, frozenset()):
            raise ConsentTransitionNotAllowed(consent_id, current.status.value, status.value)

        successor = _sealed(
            dataclasses.replace(
                current,
                id=str(uuid.uuid4()),
                status=status,
                response_payload=(
                    dict(response_payload)
                    if response_payload is not None
                    else current.response_payload
                ),
                provider_id=provider_id if provider_id is not None else current.provider_id,
                version=current.version + 1,
                parent_version_ref=current.id,
                parent_hash=current.integrity_hash,
                integrity_hash="",
                created_at=None,
            )
        )
        try:
            stored = self._store.append(successor)
        except ConsentVersionConflict:
            # Lost a race; fine if the winner recorded the same status.
            winner = self.latest(consent_id)
            if winner.status is status:
                _logger.info(
                    "Consent %s already moved to %s by a concurrent writer",
                    consent_id,
                    status.value,
                )
                return winner
            raise
        _logger.info(
            "Consent %s: %s -> %s (v%d)",
            consent_id,
            current.status.value,
            status.value,
            stored.version,
        )
        return stored

    # ------------------------------------------------------------------
    # Reads and checks
    # ------------------------------------------------------------------

    def verify(self, record: ConsentRecord) -> bool:
        return hmac.compare_digest(compute_integrity_hash(record), record.integrity_hash)

    def verify_chain(self, consent_id: str) -> bool:
        return _chain_problem(self.history(consent_id)) is None

    def is_usable_for_ingestion(
        self, record: ConsentRecord, *, now: datetime | None = None
    ) -> bool:
        now = _naive_utc(now) if now is not None else self._clock()
        return record.status is ConsentStatus.APPROVED and record.expires_at > now

    def history(self, consent_id: str) -> list[ConsentRecord]:
        """All versions, oldest first."""

        versions = self._store.versions(consent_id)
        if not versions:
            raise ConsentNotFound(consent_id)
        return versions

    def latest(self, consent_id: str) -> ConsentRecord:
        return self.history(consent_id)[-1]

    def find_by_handle(self, consent_handle: str) -> ConsentRecord:
        consent_id = self._store.find_by_handle(consent_handle)
        if consent_id is None:
            raise ConsentNotFound(consent_handle)
        return self.latest(consent_id)

    def require_usable(self, consent_id: str) -> ConsentRecord:
        """Latest version, after checking the whole chain and its validity."""

        versions = self.history(consent_id)
        problem = _chain_problem(versions)
        if problem is not None:
            version, detail = problem
            _logger.error(
                "Consent %s failed integrity verification at v%s: %s",
                consent_id,
                version,
                detail,
            )
            raise ConsentIntegrityViolation(consent_id, version, detail)
        current = versions[-1]
        if not self.is_usable_for_ingestion(current):
            detail = (
                f"expired at {current.expires_at.isoformat()}"
                if current.status is ConsentStatus.APPROVED
                else None
            )
            raise ConsentExpiredOrUnapproved(consent_id, current.status.value, detail)
        return current

    def _verified_latest(self, consent_id: str) -> ConsentRecord:
        current = self.latest(consent_id)
        if not self.verify(current):
            _logger.error(
                "Consent %s v%d failed integrity verification", consent_id, current.version
            )
            raise ConsentIntegrityViolation(consent_id, current.version, "integrity hash mismatch")
        return current


__all__ = [
    "ConsentInitiation",
    "ConsentLedger",
    "compute_integrity_hash",
]
