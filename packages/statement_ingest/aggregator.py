"""Account Aggregator (AA) boundary: configuration, request shapes, clients.

No network traffic happens here. The consent-request and FI data-request
payloads follow the AA API shape so a real transport can post them
unchanged. :class:`MockAggregatorClient` stands in for the transport and
returns a fixed sample response (or one supplied by the caller).

Environment variables
---------------------
``AA_BASE_URL``       gateway base URL (default ``https://aa-sandbox.example.com``)
``AA_CLIENT_ID``      registered client id
``AA_CLIENT_SECRET``  client secret
``AA_REDIRECT_URL``   callback URL after customer authorization
``AA_API_VERSION``    API version segment (default ``v1``)
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol
from urllib.parse import urlencode

from .logging_setup import get_logger

_logger = get_logger("statement_ingest.aggregator")

DEFAULT_BASE_URL = "https://aa-sandbox.example.com"
DEFAULT_REDIRECT_URL = "http://localhost:3000/api/aa/callback"
DEFAULT_API_VERSION = "v1"

CONSENT_VALIDITY = timedelta(days=365)
DEFAULT_FETCH_WINDOW = timedelta(days=180)
PURPOSE_REF_URI = "https://api.rebit.org.in/aa/purpose/{code}.xml"


@dataclass(frozen=True, slots=True)
class AggregatorConfig:
    base_url: str = DEFAULT_BASE_URL
    client_id: str = ""
    client_secret: str = field(default="", repr=False)
    redirect_url: str = DEFAULT_REDIRECT_URL
    api_version: str = DEFAULT_API_VERSION

    @classmethod
    def from_env(cls) -> AggregatorConfig:
        return cls(
            base_url=(os.getenv("AA_BASE_URL") or DEFAULT_BASE_URL).rstrip("/"),
            client_id=os.getenv("AA_CLIENT_ID") or "",
            client_secret=os.getenv("AA_CLIENT_SECRET") or "",
            redirect_url=os.getenv("AA_REDIRECT_URL") or DEFAULT_REDIRECT_URL,
            api_version=os.getenv("AA_API_VERSION") or DEFAULT_API_VERSION,
        )


def iso_utc(dt: datetime) -> str:
    """``YYYY-MM-DDTHH:MM:SS.mmmZ`` for an aware or naive-UTC datetime."""

    if dt.tzinfo is not None:
        dt = dt.astimezone(UTC).replace(tzinfo=None)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def new_txn_id() -> str:
    return str(uuid.uuid4())


def consent_handle_for(txn_id: str) -> str:
    return f"CONSENT_{txn_id}"


def build_consent_request(
    *,
    customer_identifier: str,
    fi_types: Sequence[str],
    config: AggregatorConfig,
    txn_id: str,
    now: datetime,
    date_range: tuple[datetime, datetime] | None = None,
    purpose_code: str = "101",
    validity: timedelta = CONSENT_VALIDITY,
) -> dict[str, Any]:
    """Consent request body for the AA ``/Consent`` endpoint.

    ``date_range`` defaults to the last 180 days ending at ``now``.
    """

    fetch_from, fetch_to = date_range or (now - DEFAULT_FETCH_WINDOW, now)
    return {
        "ver": "1.0",
        "txnid": txn_id,
        "timestamp": iso_utc(now),
        "ConsentDetail": {
            "consentStart": iso_utc(now),
            "consentExpiry": iso_utc(now + validity),
            "consentMode": "VIEW",
            "fetchType": "ONETIME",
            "consentTypes": ["TRANSACTIONS", "PROFILE", "SUMMARY"],
            "fiTypes": list(fi_types),
            "DataConsumer": {"id": config.client_id},
            "Customer": {"id": customer_identifier},
            "Purpose": {
                "code": purpose_code,
                "refUri": PURPOSE_REF_URI.format(code=purpose_code),
                "text": "Wealth management service",
                "Category": {"type": "Personal Finance"},
            },
            "FIDataRange": {"from": iso_utc(fetch_from), "to": iso_utc(fetch_to)},
            "DataLife": {"unit": "MONTH", "value": 1},
            "Frequency": {"unit": "MONTH", "value": 1},
        },
    }


def build_authorization_url(consent_handle: str, config: AggregatorConfig) -> str:
    """URL the customer is redirected to for approving ``consent_handle``."""

    params = urlencode(
        {
            "consentHandle": consent_handle,
            "redirect_uri": config.redirect_url,
            "client_id": config.client_id,
        }
    )
    return f"{config.base_url}/consent/authorize?{params}"


def build_fi_data_request(
    consent_id: str,
    *,
    txn_id: str,
    now: datetime,
    window: timedelta = DEFAULT_FETCH_WINDOW,
) -> dict[str, Any]:
    """FI data-session request body for an approved consent."""

    return {
        "ver": "1.0",
        "txnid": txn_id,
        "timestamp": iso_utc(now),
        "consentId": consent_id,
        "DataRange": {"from": iso_utc(now - window), "to": iso_utc(now)},
        "KeyMaterial": {
            "cryptoAlg": "ECDH",
            "curve": "Curve25519",
            "params": "cipher=AES/GCM/NoPadding;KeyPairGenerator=ECDH",
        },
    }


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


class AggregatorClient(Protocol):
    def fetch_fi_data(self, consent_id: str) -> Mapping[str, Any]:
        """Return the FI response for an approved consent."""
        ...


def sample_fi_payload(now: datetime | None = None) -> dict[str, Any]:
    """A single savings account at ``FIP_BANK_001`` with three transactions."""

    now = now or datetime.now(UTC)
    return {
        "ver": "1.0",
        "txnid": new_txn_id(),
        "timestamp": iso_utc(now),
        "FI": [
            {
                "fipId": "FIP_BANK_001",
                "data": [
                    {
                        "linkRefNumber": "LINK_REF_001",
                        "maskedAccNumber": "XXXX1234",
                        "Account": {
                            "type": "SAVINGS",
                            "branch": "Mumbai Main",
                            "status": "ACTIVE",
                            "ifscCode": "BANK0001234",
                            "micrCode": "400002001",
                            "openingDate": "2020-01-15",
                            "currentBalance": "150000.00",
                            "currency": "INR",
                            "Transactions": {
                                "startDate": (now - DEFAULT_FETCH_WINDOW).date().isoformat(),
                                "endDate": now.date().isoformat(),
                                "Transaction": [
                                    {
                                        "txnId": "TXN001",
                                        "type": "CREDIT",
                                        "mode": "UPI",
                                        "amount": "25000.00",
                                        "currentBalance": "150000.00",
                                        "transactionTimestamp": iso_utc(now - timedelta(days=2)),
                                        "narration": "Salary Credit",
                                        "reference": "SAL/2024/001",
                                    },
                                    {
                                        "txnId": "TXN002",
                                        "type": "DEBIT",
                                        "mode": "NEFT",
                                        "amount": "5000.00",
                                        "currentBalance": "125000.00",
                                        "transactionTimestamp": iso_utc(now - timedelta(days=5)),
                                        "narration": "Bill Payment",
                                        "reference": "NEFT/2024/002",
                                    },
                                    {
                                        "txnId": "TXN003",
                                        "type": "DEBIT",
                                        "mode": "UPI",
                                        "amount": "1500.00",
                                        "currentBalance": "130000.00",
                                        "transactionTimestamp": iso_utc(now - timedelta(days=3)),
                                        "narration": "Online Shopping",
                                        "reference": "UPI/2024/003",
                                    },
                                ],
                            },
                        },
                    }
                ],
            }
        ],
    }


class MockAggregatorClient:
    """In-process :class:`AggregatorClient` returning canned FI data.

    ``payload`` may be a mapping or a callable taking the consent id. Every
    data request that a real transport would post is kept in ``requests``.
    """

    def __init__(
        self,
        payload: Mapping[str, Any] | Callable[[str], Mapping[str, Any]] | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._payload = payload
        self._clock = clock or (lambda: datetime.now(UTC))
        self.requests: list[dict[str, Any]] = []

    def fetch_fi_data(self, consent_id: str) -> Mapping[str, Any]:
        now = self._clock()
        self.requests.append(build_fi_data_request(consent_id, txn_id=new_txn_id(), now=now))
        _logger.debug("Mock FI fetch for consent %s", consent_id)
        if self._payload is None:
            return sample_fi_payload(now)
        if callable(self._payload):
            return self._payload(consent_id)
        return self._payload


__all__ = [
    "CONSENT_VALIDITY",
    "AggregatorClient",
    "AggregatorConfig",
    "MockAggregatorClient",
    "build_authorization_url",
    "build_consent_request",
    "build_fi_data_request",
    "consent_handle_for",
    "iso_utc",
    "new_txn_id",
    "sample_fi_payload",
]
