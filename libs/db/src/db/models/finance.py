from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    CHAR,
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
_BigIntPk = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    pass


# ---------------------------
# Core: transactions
# ---------------------------


class TransactionRow(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(_BigIntPk, primary_key=True, autoincrement=True)
    # Source-provided id (reference / aggregator txnId) or a synthesized key.
    # Together with ``user_id`` this is the idempotency key for ingestion.
    external_id: Mapped[str] = mapped_column(String, nullable=False)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    # NULL for rows that came from a CSV upload rather than an aggregator fetch.
    consent_ref: Mapped[str | None] = mapped_column(String, nullable=True)
    # Naive UTC.
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    direction: Mapped[str] = mapped_column(String(6), nullable=False)
    merchant: Mapped[str | None] = mapped_column(String(100), nullable=True)
    category: Mapped[str] = mapped_column(
        String, nullable=False, server_default=text("'Other'")
    )
    subcategory: Mapped[str] = mapped_column(
        String, nullable=False, server_default=text("'Uncategorized'")
    )
    source_type: Mapped[str] = mapped_column(
        String, nullable=False, server_default=text("'BANK_ACCOUNT'")
    )
    # Masked account number (e.g. XXXX1234) or the caller's account hint.
    source_account: Mapped[str | None] = mapped_column(String, nullable=True)
    payment_mode: Mapped[str] = mapped_column(
        String, nullable=False, server_default=text("'OTHER'")
    )
    reference: Mapped[str | None] = mapped_column(String, nullable=True)
    narration: Mapped[str | None] = mapped_column(Text, nullable=True)
    balance_after: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    currency: Mapped[str] = mapped_column(CHAR(3), nullable=False, server_default=text("'INR'"))
    # Original source fragment (CSV row mapping or aggregator JSON), kept for audit.
    raw_payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("external_id", "user_id", name="uq_transactions_external_id_user"),
        CheckConstraint("amount >= 0", name="ck_transactions_amount_non_negative"),
        CheckConstraint("direction in ('CREDIT','DEBIT')", name="ck_transactions_direction"),
        CheckConstraint(
            (
                "source_type in ('BANK_ACCOUNT','CREDIT_CARD','LOAN','MUTUAL_FUND',"
                "'INSURANCE','OTHER')"
            ),
            name="ck_transactions_source_type",
        ),
        CheckConstraint(
            (
                "payment_mode in ('UPI','NEFT','IMPS','RTGS','ATM','CARD','CHEQUE','CASH',"
                "'AUTO_DEBIT','OTHER')"
            ),
            name="ck_transactions_payment_mode",
        ),
        Index("ix_transactions_user_timestamp", "user_id", "timestamp"),
        Index("ix_transactions_category", "category"),
        Index("ix_transactions_source_type", "source_type"),
    )


# ---------------------------
# Audit: consent_records (insert-only)
# ---------------------------


class ConsentRecordRow(Base):
    """One immutable version of a consent authorization.

    Rows are only ever inserted. A status change is a new row with
    ``version = parent.version + 1`` pointing back through
    ``parent_version_id``/``parent_hash``. The application code has no
    update path.
    """

    __tablename__ = "consent_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    # Logical consent id shared by every version of the same authorization.
    consent_id: Mapped[str] = mapped_column(String, nullable=False)
    consent_handle: Mapped[str | None] = mapped_column(String, nullable=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    # Customer mobile number or virtual address used with the aggregator.
    customer_identifier: Mapped[str] = mapped_column(String, nullable=False)
    request_payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    response_payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    scopes: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    purpose_code: Mapped[str | None] = mapped_column(String, nullable=True)
    provider_id: Mapped[str | None] = mapped_column(String, nullable=True)
    integrity_hash: Mapped[str] = mapped_column(CHAR(64), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    parent_version_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("consent_records.id"), nullable=True
    )
    parent_hash: Mapped[str | None] = mapped_column(CHAR(64), nullable=True)
    # Naive UTC.
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("consent_id", "version", name="uq_consent_records_consent_version"),
        CheckConstraint(
            "status in ('PENDING','APPROVED','REJECTED','EXPIRED','REVOKED')",
            name="ck_consent_records_status",
        ),
        CheckConstraint("version >= 1", name="ck_consent_records_version"),
        Index("ix_consent_records_user_id", "user_id"),
        Index("ix_consent_records_consent_handle", "consent_handle"),
        Index("ix_consent_records_status", "status"),
        Index("ix_consent_records_expires_at", "expires_at"),
        Index("ix_consent_records_integrity_hash", "integrity_hash"),
    )


__all__ = [
    "Base",
    "ConsentRecordRow",
    "TransactionRow",
]
