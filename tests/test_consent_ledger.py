import dataclasses
from datetime import datetime, timedelta
from urllib.parse import parse_qs, urlparse

import pytest
from db.client import session_scope

from statement_ingest.aggregator import AggregatorConfig
from statement_ingest.consent import ConsentLedger, compute_integrity_hash
from statement_ingest.errors import (
    ConsentExpiredOrUnapproved,
    ConsentIntegrityViolation,
    ConsentNotFound,
    ConsentTransitionNotAllowed,
    ConsentVersionConflict,
)
from statement_ingest.models import ConsentStatus
from statement_ingest.persistence import SqlConsentStore

from tests.helpers.db import bootstrap_sqlite_db, tamper_consent_row
from tests.helpers.fakes import FakeClock, InMemoryConsentStore

START = datetime(2024, 11, 1, 9, 0)
CONFIG = AggregatorConfig(
    base_url="https://aa.test",
    client_id="client-123",
    redirect_url="https://app.test/aa/callback",
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START)


@pytest.fixture
def store() -> InMemoryConsentStore:
    return InMemoryConsentStore()


@pytest.fixture
def ledger(store: InMemoryConsentStore, clock: FakeClock) -> ConsentLedger:
    return ConsentLedger(store, config=CONFIG, clock=clock)


def _initiate(ledger: ConsentLedger):
    return ledger.initiate(user_id="user-1", customer_identifier="9999999999@aa")


def test_initiate_creates_pending_version_one(ledger: ConsentLedger) -> None:
    started = _initiate(ledger)
    record = started.record

    assert record.version == 1
    assert record.status is ConsentStatus.PENDING
    assert record.parent_version_ref is None
    assert record.parent_hash is None
    assert record.consent_handle == started.consent_handle
    assert started.consent_handle.startswith("CONSENT_")
    assert record.expires_at == START + timedelta(days=365)
    assert record.scopes == ("DEPOSIT",)
    assert record.integrity_hash == compute_integrity_hash(record)
    assert ledger.verify(record)


def test_initiate_builds_consent_request(ledger: ConsentLedger) -> None:
    started = ledger.initiate(
        user_id="user-1",
        customer_identifier=" 9999999999@aa ",
        scopes=["deposit", "TERM_DEPOSIT"],
        purpose_code="102",
    )
    detail = started.record.request_payload["ConsentDetail"]

    assert started.record.customer_identifier == "9999999999@aa"
    assert detail["Customer"] == {"id": "9999999999@aa"}
    assert detail["fiTypes"] == ["DEPOSIT", "TERM_DEPOSIT"]
    assert detail["DataConsumer"] == {"id": "client-123"}
    assert detail["Purpose"]["code"] == "102"
    assert detail["consentStart"] == "2024-11-01T09:00:00.000Z"
    assert detail["consentExpiry"] == "2025-11-01T09:00:00.000Z"
    assert detail["FIDataRange"]["from"] == "2024-05-05T09:00:00.000Z"


def test_authorization_url_embeds_handle(ledger: ConsentLedger) -> None:
    started = _initiate(ledger)
    url = urlparse(started.authorization_url)
    query = parse_qs(url.query)

    assert f"{url.scheme}://{url.netloc}{url.path}" == "https://aa.test/consent/authorize"
    assert query["consentHandle"] == [started.consent_handle]
    assert query["redirect_uri"] == ["https://app.test/aa/callback"]
    assert query["client_id"] == ["client-123"]


@pytest.mark.parametrize("customer", ["", "   "])
def test_initiate_requires_customer_identifier(ledger: ConsentLedger, customer: str) -> None:
    with pytest.raises(ValueError):
        ledger.initiate(user_id="user-1", customer_identifier=customer)


def test_approval_chain(ledger: ConsentLedger) -> None:
    started = _initiate(ledger)
    approved = ledger.record_callback(started.consent_id, "APPROVED", provider_id="FIP_1")

    history = ledger.history(started.consent_id)
    assert [(r.version, r.status) for r in history] == [
        (1, ConsentStatus.PENDING),
        (2, ConsentStatus.APPROVED),
    ]
    assert approved.parent_version_ref == history[0].id
    assert approved.parent_hash == history[0].integrity_hash
    assert approved.provider_id == "FIP_1"
    assert approved.consent_handle == started.consent_handle
    assert approved.request_payload == started.record.request_payload
    assert ledger.verify_chain(started.consent_id)

    assert not ledger.is_usable_for_ingestion(history[0])
    assert ledger.is_usable_for_ingestion(history[1])


def test_callback_status_is_case_insensitive(ledger: ConsentLedger) -> None:
    started = _initiate(ledger)
    assert ledger.record_callback(started.consent_id, "rejected").status is ConsentStatus.REJECTED


def test_unknown_status_is_rejected(ledger: ConsentLedger) -> None:
    started = _initiate(ledger)
    with pytest.raises(ValueError):
        ledger.record_callback(started.consent_id, "MAYBE")


def test_repeated_callback_is_idempotent(ledger: ConsentLedger, store) -> None:
    started = _initiate(ledger)
    first = ledger.record_callback(started.consent_id, ConsentStatus.APPROVED)
    again = ledger.record_callback(started.consent_id, ConsentStatus.APPROVED)

    assert again == first
    assert len(store.records) == 2


def test_callback_for_unknown_consent(ledger: ConsentLedger) -> None:
    with pytest.raises(ConsentNotFound):
        ledger.record_callback("no-such-consent", "APPROVED")


def test_history_of_unknown_consent(ledger: ConsentLedger) -> None:
    with pytest.raises(ConsentNotFound):
        ledger.history("nope")


@pytest.mark.parametrize(
    ("path", "rejected"),
    [
        (["REJECTED"], "APPROVED"),
        (["APPROVED"], "PENDING"),
        (["APPROVED"], "REJECTED"),
        (["APPROVED", "REVOKED"], "APPROVED"),
        (["EXPIRED"], "APPROVED"),
    ],
)
def test_disallowed_transitions(ledger: ConsentLedger, path, rejected) -> None:
    started = _initiate(ledger)
    for status in path:
        ledger.record_callback(started.consent_id, status)
    with pytest.raises(ConsentTransitionNotAllowed):
        ledger.record_callback(started.consent_id, rejected)


def test_revoke(ledger: ConsentLedger) -> None:
    started = _initiate(ledger)
    ledger.record_callback(started.consent_id, "APPROVED")
    revoked = ledger.revoke(started.consent_id)

    assert revoked.version == 3
    assert revoked.status is ConsentStatus.REVOKED
    assert not ledger.is_usable_for_ingestion(revoked)
    with pytest.raises(ConsentExpiredOrUnapproved):
        ledger.require_usable(started.consent_id)


def test_revoke_pending_is_not_allowed(ledger: ConsentLedger) -> None:
    started = _initiate(ledger)
    with pytest.raises(ConsentTransitionNotAllowed):
        ledger.revoke(started.consent_id)


def test_expiry(ledger: ConsentLedger, clock: FakeClock) -> None:
    started = _initiate(ledger)
    approved = ledger.record_callback(started.consent_id, "APPROVED")

    assert ledger.expire_due(started.consent_id) == approved

    clock.advance(days=366)
    assert not ledger.is_usable_for_ingestion(approved)
    with pytest.raises(ConsentExpiredOrUnapproved) as exc:
        ledger.require_usable(started.consent_id)
    assert exc.value.status == "APPROVED"

    expired = ledger.expire_due(started.consent_id)
    assert expired.status is ConsentStatus.EXPIRED
    assert expired.version == 3
    assert ledger.verify_chain(started.consent_id)
    # Already terminal: no further versions.
    assert ledger.expire_due(started.consent_id) == expired


def test_pending_consent_can_expire(ledger: ConsentLedger, clock: FakeClock) -> None:
    started = _initiate(ledger)
    clock.advance(days=400)
    assert ledger.expire_due(started.consent_id).status is ConsentStatus.EXPIRED


def test_is_usable_respects_explicit_now(ledger: ConsentLedger) -> None:
    started = _initiate(ledger)
    approved = ledger.record_callback(started.consent_id, "APPROVED")
    assert ledger.is_usable_for_ingestion(approved, now=approved.expires_at - timedelta(seconds=1))
    assert not ledger.is_usable_for_ingestion(approved, now=approved.expires_at)


def test_require_usable_returns_latest(ledger: ConsentLedger) -> None:
    started = _initiate(ledger)
    with pytest.raises(ConsentExpiredOrUnapproved):
        ledger.require_usable(started.consent_id)
    approved = ledger.record_callback(started.consent_id, "APPROVED")
    assert ledger.require_usable(started.consent_id) == approved


def test_find_by_handle_returns_latest(ledger: ConsentLedger) -> None:
    started = _initiate(ledger)
    approved = ledger.record_callback(started.consent_id, "APPROVED")
    assert ledger.find_by_handle(started.consent_handle) == approved
    with pytest.raises(ConsentNotFound):
        ledger.find_by_handle("CONSENT_unknown")


# ---- Tamper detection --------------------------------------------------------


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("status", ConsentStatus.APPROVED),
        ("customer_identifier", "8888888888@aa"),
        ("user_id", "someone-else"),
        ("scopes", ("DEPOSIT", "CREDIT_CARD")),
        ("expires_at", START + timedelta(days=9999)),
        ("version", 7),
        ("consent_handle", "CONSENT_other"),
        ("purpose_code", "999"),
        ("request_payload", {"ConsentDetail": {}}),
        ("response_payload", {"status": "APPROVED"}),
        ("parent_hash", "0" * 64),
    ],
)
def test_verify_detects_mutation(ledger: ConsentLedger, field: str, value) -> None:
    record = _initiate(ledger).record
    assert ledger.verify(record)
    assert not ledger.verify(dataclasses.replace(record, **{field: value}))


def test_storage_fields_are_not_hashed(ledger: ConsentLedger) -> None:
    record = _initiate(ledger).record
    assert ledger.verify(dataclasses.replace(record, created_at=datetime(2030, 1, 1)))


def test_tampered_latest_version_blocks_callback(ledger: ConsentLedger, store) -> None:
    started = _initiate(ledger)
    original = store.records[0]
    store.replace(original, dataclasses.replace(original, customer_identifier="attacker@aa"))

    with pytest.raises(ConsentIntegrityViolation) as exc:
        ledger.record_callback(started.consent_id, "APPROVED")
    assert exc.value.version == 1
    assert len(store.records) == 1


def test_tampered_history_blocks_ingestion(ledger: ConsentLedger, store) -> None:
    started = _initiate(ledger)
    ledger.record_callback(started.consent_id, "APPROVED")
    v1 = store.records[0]
    # Re-sealing the edited row does not help: the successor's parent hash breaks.
    forged = dataclasses.replace(v1, customer_identifier="attacker@aa")
    forged = dataclasses.replace(forged, integrity_hash=compute_integrity_hash(forged))
    store.replace(v1, forged)

    assert not ledger.verify_chain(started.consent_id)
    with pytest.raises(ConsentIntegrityViolation) as exc:
        ledger.require_usable(started.consent_id)
    assert exc.value.version == 2
    assert "parent hash" in exc.value.detail


def test_missing_version_breaks_chain(ledger: ConsentLedger, store) -> None:
    started = _initiate(ledger)
    ledger.record_callback(started.consent_id, "APPROVED")
    ledger.revoke(started.consent_id)
    del store.records[1]

    assert not ledger.verify_chain(started.consent_id)


# ---- Concurrent writers ------------------------------------------------------


def _rival(ledger_store, status: ConsentStatus):
    def hook(record):
        rival = dataclasses.replace(record, id="rival-row", status=status)
        rival = dataclasses.replace(rival, integrity_hash=compute_integrity_hash(rival))
        ledger_store.records.append(rival)

    return hook


def test_lost_race_with_same_status_returns_winner(ledger: ConsentLedger, store) -> None:
    started = _initiate(ledger)
    store.before_append = _rival(store, ConsentStatus.APPROVED)

    result = ledger.record_callback(started.consent_id, "APPROVED")

    assert result.id == "rival-row"
    assert [r.version for r in store.records] == [1, 2]


def test_lost_race_with_other_status_surfaces(ledger: ConsentLedger, store) -> None:
    started = _initiate(ledger)
    store.before_append = _rival(store, ConsentStatus.REJECTED)

    with pytest.raises(ConsentVersionConflict):
        ledger.record_callback(started.consent_id, "APPROVED")


# ---- SQL-backed --------------------------------------------------------------


def test_sql_chain_round_trips_and_detects_tampering(tmp_path, clock: FakeClock) -> None:
    url = bootstrap_sqlite_db(tmp_path / "consent.sqlite")

    with session_scope(database_url=url) as session:
        ledger = ConsentLedger(SqlConsentStore(session), config=CONFIG, clock=clock)
        started = _initiate(ledger)
        ledger.record_callback(started.consent_id, "APPROVED", response_payload={"ok": True})
    consent_id = started.consent_id

    with session_scope(database_url=url) as session:
        ledger = ConsentLedger(SqlConsentStore(session), config=CONFIG, clock=clock)
        history = ledger.history(consent_id)
        assert [r.status for r in history] == [ConsentStatus.PENDING, ConsentStatus.APPROVED]
        assert all(r.created_at is not None for r in history)
        assert ledger.verify_chain(consent_id)
        assert ledger.require_usable(consent_id).version == 2
        assert ledger.find_by_handle(started.consent_handle).version == 2
        v1_id = history[0].id

    tamper_consent_row(url, v1_id, customer_identifier="attacker@aa")

    with session_scope(database_url=url) as session:
        ledger = ConsentLedger(SqlConsentStore(session), config=CONFIG, clock=clock)
        assert not ledger.verify(ledger.history(consent_id)[0])
        assert not ledger.verify_chain(consent_id)
        with pytest.raises(ConsentIntegrityViolation) as exc:
            ledger.require_usable(consent_id)
        assert exc.value.version == 1


def test_sql_store_rejects_duplicate_version(tmp_path, clock: FakeClock) -> None:
    url = bootstrap_sqlite_db(tmp_path / "consent.sqlite")

    with session_scope(database_url=url) as session:
        store = SqlConsentStore(session)
        record = ConsentLedger(store, config=CONFIG, clock=clock).initiate(
            user_id="u", customer_identifier="c@aa"
        ).record
        clash = dataclasses.replace(record, id="another-row-id")
        with pytest.raises(ConsentVersionConflict):
            store.append(clash)
        # The savepoint rolled back alone; the first version is still there.
        assert [r.id for r in store.versions(record.consent_id)] == [record.id]
