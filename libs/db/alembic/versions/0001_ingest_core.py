# ruff: noqa: I001
"""Normalized transactions and insert-only consent records.

Revision ID: 0001_ingest_core
Revises: None
Create Date: 2024-11-27
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "0001_ingest_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # transactions
    op.create_table(
        "transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("external_id", sa.Text(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("consent_ref", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=False), nullable=False),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("direction", sa.String(6), nullable=False),
        sa.Column("merchant", sa.String(100), nullable=True),
        sa.Column("category", sa.Text(), nullable=False, server_default=sa.text("'Other'")),
        sa.Column(
            "subcategory",
            sa.Text(),
            nullable=False,
            server_default=sa.text("'Uncategorized'"),
        ),
        sa.Column(
            "source_type",
            sa.Text(),
            nullable=False,
            server_default=sa.text("'BANK_ACCOUNT'"),
        ),
        sa.Column("source_account", sa.Text(), nullable=True),
        sa.Column("payment_mode", sa.Text(), nullable=False, server_default=sa.text("'OTHER'")),
        sa.Column("reference", sa.Text(), nullable=True),
        sa.Column("narration", sa.Text(), nullable=True),
        sa.Column("balance_after", sa.Numeric(15, 2), nullable=True),
        sa.Column("currency", sa.CHAR(3), nullable=False, server_default=sa.text("'INR'")),
        sa.Column("raw_payload", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.UniqueConstraint("external_id", "user_id", name="uq_transactions_external_id_user"),
        sa.CheckConstraint("amount >= 0", name="ck_transactions_amount_non_negative"),
        sa.CheckConstraint("direction in ('CREDIT','DEBIT')", name="ck_transactions_direction"),
        sa.CheckConstraint(
            (
                "source_type in ('BANK_ACCOUNT','CREDIT_CARD','LOAN','MUTUAL_FUND',"
                "'INSURANCE','OTHER')"
            ),
            name="ck_transactions_source_type",
        ),
        sa.CheckConstraint(
            (
                "payment_mode in ('UPI','NEFT','IMPS','RTGS','ATM','CARD','CHEQUE','CASH',"
                "'AUTO_DEBIT','OTHER')"
            ),
            name="ck_transactions_payment_mode",
        ),
    )
    op.create_index(
        "ix_transactions_user_timestamp", "transactions", ["user_id", "timestamp"], unique=False
    )
    op.create_index("ix_transactions_category", "transactions", ["category"], unique=False)
    op.create_index("ix_transactions_source_type", "transactions", ["source_type"], unique=False)

    # consent_records (insert-only; a status change is a new version row)
    op.create_table(
        "consent_records",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("consent_id", sa.Text(), nullable=False),
        sa.Column("consent_handle", sa.Text(), nullable=True),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("customer_identifier", sa.Text(), nullable=False),
        sa.Column("request_payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("response_payload", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("scopes", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("purpose_code", sa.Text(), nullable=True),
        sa.Column("provider_id", sa.Text(), nullable=True),
        sa.Column("integrity_hash", sa.CHAR(64), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("parent_version_id", sa.String(36), nullable=True),
        sa.Column("parent_hash", sa.CHAR(64), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.ForeignKeyConstraint(
            ["parent_version_id"],
            ["consent_records.id"],
            name="fk_consent_records_parent_version",
        ),
        sa.UniqueConstraint("consent_id", "version", name="uq_consent_records_consent_version"),
        sa.CheckConstraint(
            "status in ('PENDING','APPROVED','REJECTED','EXPIRED','REVOKED')",
            name="ck_consent_records_status",
        ),
        sa.CheckConstraint("version >= 1", name="ck_consent_records_version"),
    )
    op.create_index("ix_consent_records_user_id", "consent_records", ["user_id"], unique=False)
    op.create_index(
        "ix_consent_records_consent_handle", "consent_records", ["consent_handle"], unique=False
    )
    op.create_index("ix_consent_records_status", "consent_records", ["status"], unique=False)
    op.create_index(
        "ix_consent_records_expires_at", "consent_records", ["expires_at"], unique=False
    )
    op.create_index(
        "ix_consent_records_integrity_hash", "consent_records", ["integrity_hash"], unique=False
    )

    # Reject in-place edits at the database level as well.
    op.execute(
        """
        CREATE OR REPLACE FUNCTION consent_records_reject_update() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'consent_records is insert-only; append a new version instead';
        END;
        $$ LANGUAGE plpgsql
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_consent_records_no_update
        BEFORE UPDATE ON consent_records
        FOR EACH ROW EXECUTE FUNCTION consent_records_reject_update()
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_consent_records_no_update ON consent_records")
    op.execute("DROP FUNCTION IF EXISTS consent_records_reject_update()")
    op.drop_index("ix_consent_records_integrity_hash", table_name="consent_records")
    op.drop_index("ix_consent_records_expires_at", table_name="consent_records")
    op.drop_index("ix_consent_records_status", table_name="consent_records")
    op.drop_index("ix_consent_records_consent_handle", table_name="consent_records")
    op.drop_index("ix_consent_records_user_id", table_name="consent_records")
    op.drop_table("consent_records")
    op.drop_index("ix_transactions_source_type", table_name="transactions")
    op.drop_index("ix_transactions_category", table_name="transactions")
    op.drop_index("ix_transactions_user_timestamp", table_name="transactions")
    op.drop_table("transactions")
