# ruff: noqa: I001
"""Persistence integration for statement_ingest.

Writes normalized transactions and consent versions to the shared database
owned by ``libs/db``. ORM models live in ``db.models.finance``; sessions come
from ``db.client``.

Scope:
- Insert-or-skip transactions keyed on ``(external_id, user_id)``. An existing
  key is never updated.
- Append-only consent versions. There is no update or delete path here.
- Read helpers for listing, counting and summarizing a user's transactions.

The core depends only on the :class:`TransactionStore` and
:class:`ConsentStore` protocols; the SQL classes are one implementation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Protocol

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from db.models.finance import ConsentRecordRow, TransactionRow
from .errors import ConsentVersionConflict, PersistenceFailed
from .logging_setup import get_logger
from .models import (
    ConsentRecord,
    ConsentStatus,
    Direction,
    NormalizedTransaction,
    PaymentMode,
    SourceType,
)

_logger = get_logger("statement_ingest.persistence")

_TWO_PLACES = Decimal("0.01")


def _to_decimal_2(raw: Any) -> Decimal | None:
    if raw is None:
        return None
    return Decimal(str(raw)).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Store protocols
# ---------------------------------------------------------------------------


class TransactionStore(Protocol):
    def insert_or_skip(self, tx: NormalizedTransaction) -> bool:
        """Insert ``tx``; return ``False`` when its key already exists."""
        ...


class ConsentStore(Protocol):
    def append(self, record: ConsentRecord) -> ConsentRecord: ...

    def versions(self, consent_id: str) -> list[ConsentRecord]: ...

    def find_by_handle(self, consent_handle: str) -> str | None: ...


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


def _transaction_values(tx: NormalizedTransaction) -> dict[str, Any]:
    return {
        "external_id": tx.external_id,
        "user_id": tx.user_id,
        "consent_ref": tx.consent_ref,
        "timestamp": tx.timestamp,
        "amount": tx.amount,
        "direction": tx.direction.value,
        "merchant": tx.merchant,
        "category": tx.category or "Other",
        "subcategory": tx.subcategory or "Uncategorized",
        "source_type": tx.source_type.value,
        "source_account": tx.source_account,
        "payment_mode": (tx.payment_mode or PaymentMode.OTHER).value,
        "reference": tx.reference,
        "narration": tx.narration,
        "balance_after": tx.balance_after,
        "currency": tx.currency,
        "raw_payload": dict(tx.raw_payload),
    }


def _row_to_transaction(row: TransactionRow) -> NormalizedTransaction:
    return NormalizedTransaction(
        external_id=row.external_id,
        user_id=row.user_id,
        consent_ref=row.consent_ref,
        timestamp=row.timestamp,
        amount=_to_decimal_2(row.amount) or Decimal("0.00"),
        direction=Direction(row.direction),
        merchant=row.merchant,
        category=row.category,
        subcategory=row.subcategory,
        source_type=SourceType(row.source_type),
        source_account=row.source_account,
        payment_mode=PaymentMode(row.payment_mode),
        reference=row.reference,
        narration=row.narration,
        balance_after=_to_decimal_2(row.balance_after),
        currency=row.currency,
        raw_payload=dict(row.raw_payload or {}),
    )


class SqlTransactionStore:
    """:class:`TransactionStore` over a SQLAlchemy session.

    Each insert runs inside a SAVEPOINT so a failing row rolls back alone and
    the caller's outer transaction stays usable. Commit is left to the owner
    of the session (typically ``db.client.session_scope``).
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def _insert_statement(self, values: dict[str, Any]):
        dialect = self._session.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = pg_insert(TransactionRow).values(**values)
        elif dialect == "sqlite":
            stmt = sqlite_insert(TransactionRow).values(**values)
        else:
            return None
        return stmt.on_conflict_do_nothing(
            index_elements=[TransactionRow.external_id, TransactionRow.user_id]
        )

    def insert_or_skip(self, tx: NormalizedTransaction) -> bool:
        values = _transaction_values(tx)
        stmt = self._insert_statement(values)
        try:
            with self._session.begin_nested():
                if stmt is not None:
                    result = self._session.execute(stmt)
                    inserted = (result.rowcount or 0) > 0
                    if not inserted:
                        _logger.debug(
                            "Skipped existing transaction %s for user %s",
                            tx.external_id,
                            tx.user_id,
                        )
                    return inserted
                # Dialects without ON CONFLICT: rely on the unique constraint.
                self._session.add(TransactionRow(**values))
                self._session.flush()
                return True
        except IntegrityError as exc:
            if stmt is None and _is_duplicate_key(exc):
                return False
            raise PersistenceFailed(f"insert failed for {tx.external_id!r}: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            raise PersistenceFailed(f"insert failed for {tx.external_id!r}: {exc}") from exc


def _is_duplicate_key(exc: IntegrityError) -> bool:
    text = str(exc.orig).lower()
    return "unique" in text or "duplicate" in text


def _filtered_transactions(
    *,
    user_id: str,
    start: date | None,
    end: date | None,
    category: str | None,
    direction: Direction | str | None,
    source_type: SourceType | str | None,
) -> Select[Any]:
    stmt = select(TransactionRow).where(TransactionRow.user_id == user_id)
    if start is not None:
        stmt = stmt.where(TransactionRow.timestamp >= datetime(start.year, start.month, start.day))
    if end is not None:
        # Inclusive end date.
        end_excl = datetime(end.year, end.month, end.day) + timedelta(days=1)
        stmt = stmt.where(TransactionRow.timestamp < end_excl)
    if category:
        stmt = stmt.where(TransactionRow.category == category)
    if direction:
        stmt = stmt.where(TransactionRow.direction == Direction(direction).value)
    if source_type:
        stmt = stmt.where(TransactionRow.source_type == SourceType(source_type).value)
    return stmt


def list_transactions(
    session: Session,
    *,
    user_id: str,
    start: date | None = None,
    end: date | None = None,
    category: str | None = None,
    direction: Direction | str | None = None,
    source_type: SourceType | str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[NormalizedTransaction]:
    """Newest-first page of a user's transactions."""

    stmt = _filtered_transactions(
        user_id=user_id,
        start=start,
        end=end,
        category=category,
        direction=direction,
        source_type=source_type,
    )
    stmt = stmt.order_by(TransactionRow.timestamp.desc(), TransactionRow.id.desc())
    stmt = stmt.limit(limit).offset(offset)
    return [_row_to_transaction(r) for r in session.scalars(stmt)]


def count_transactions(
    session: Session,
    *,
    user_id: str,
    start: date | None = None,
    end: date | None = None,
    category: str | None = None,
    direction: Direction | str | None = None,
    source_type: SourceType | str | None = None,
) -> int:
    inner = _filtered_transactions(
        user_id=user_id,
        start=start,
        end=end,
        category=category,
        direction=direction,
        source_type=source_type,
    ).subquery()
    return int(session.scalar(select(func.count()).select_from(inner)) or 0)


def get_transaction(
    session: Session, *, user_id: str, external_id: str
) -> NormalizedTransaction | None:
    row = session.scalars(
        select(TransactionRow).where(
            (TransactionRow.user_id == user_id) & (TransactionRow.external_id == external_id)
        )
    ).one_or_none()
    return _row_to_transaction(row) if row is not None else None


@dataclass(frozen=True, slots=True)
class CategoryTotal:
    category: str
    direction: Direction
    total: Decimal
    count: int


@dataclass(frozen=True, slots=True)
class TransactionSummary:
    by_category: tuple[CategoryTotal, ...]
    income: Decimal
    expense: Decimal

    @property
    def net(self) -> Decimal:
        return self.income - self.expense


def summarize_transactions(
    session: Session,
    *,
    user_id: str,
    start: date | None = None,
    end: date | None = None,
) -> TransactionSummary:
    """Category-wise totals plus overall income (CREDIT) and expense (DEBIT)."""

    inner = _filtered_transactions(
        user_id=user_id,
        start=start,
        end=end,
        category=None,
        direction=None,
        source_type=None,
    ).subquery()
    rows = session.execute(
        select(
            inner.c.category,
            inner.c.direction,
            func.sum(inner.c.amount),
            func.count(inner.c.id),
        )
        .group_by(inner.c.category, inner.c.direction)
        .order_by(inner.c.category, inner.c.direction)
    ).all()

    by_category: list[CategoryTotal] = []
    income = Decimal("0.00")
    expense = Decimal("0.00")
    for category, direction, total, count in rows:
        amount = _to_decimal_2(total) or Decimal("0.00")
        d = Direction(direction)
        by_category.append(CategoryTotal(category=category, direction=d, total=amount, count=count))
        if d is Direction.CREDIT:
            income += amount
        else:
            expense += amount
    return TransactionSummary(by_category=tuple(by_category), income=income, expense=expense)


# ---------------------------------------------------------------------------
# Consent versions (append-only)
# ---------------------------------------------------------------------------


def _row_to_consent(row: ConsentRecordRow) -> ConsentRecord:
    return ConsentRecord(
        id=row.id,
        consent_id=row.consent_id,
        consent_handle=row.consent_handle,
        user_id=row.user_id,
        customer_identifier=row.customer_identifier,
        request_payload=row.request_payload,
        response_payload=row.response_payload,
        scopes=tuple(row.scopes or ()),
        status=ConsentStatus(row.status),
        purpose_code=row.purpose_code,
        provider_id=row.provider_id,
        integrity_hash=row.integrity_hash,
        version=row.version,
        parent_version_ref=row.parent_version_id,
        parent_hash=row.parent_hash,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )


class SqlConsentStore:
    """:class:`ConsentStore` over a SQLAlchemy session (insert-only)."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def append(self, record: ConsentRecord) -> ConsentRecord:
        """Insert one version.

        Raises :class:`ConsentVersionConflict` when ``(consent_id, version)``
        already exists, i.e. a concurrent writer got there first.
        """

        row = ConsentRecordRow(
            id=record.id,
            consent_id=record.consent_id,
            consent_handle=record.consent_handle,
            user_id=record.user_id,
            customer_identifier=record.customer_identifier,
            request_payload=dict(record.request_payload),
            response_payload=(
                dict(record.response_payload) if record.response_payload is not None else None
            ),
            scopes=list(record.scopes),
            status=record.status.value,
            purpose_code=record.purpose_code,
            provider_id=record.provider_id,
            integrity_hash=record.integrity_hash,
            version=record.version,
            parent_version_id=record.parent_version_ref,
            parent_hash=record.parent_hash,
            expires_at=record.expires_at,
        )
        if record.created_at is not None:
            row.created_at = record.created_at
        try:
            with self._session.begin_nested():
                self._session.add(row)
                self._session.flush()
        except IntegrityError as exc:
            if _is_duplicate_key(exc):
                raise ConsentVersionConflict(record.consent_id, record.version) from exc
            raise PersistenceFailed(
                f"consent append failed for {record.consent_id} v{record.version}: {exc.orig}"
            ) from exc
        return _row_to_consent(row)

    def versions(self, consent_id: str) -> list[ConsentRecord]:
        rows = self._session.scalars(
            select(ConsentRecordRow)
            .where(ConsentRecordRow.consent_id == consent_id)
            .order_by(ConsentRecordRow.version)
        )
        return [_row_to_consent(r) for r in rows]

    def find_by_handle(self, consent_handle: str) -> str | None:
        """Logical consent id that owns ``consent_handle``, if any."""

        return self._session.scalars(
            select(ConsentRecordRow.consent_id)
            .where(ConsentRecordRow.consent_handle == consent_handle)
            .order_by(ConsentRecordRow.version)
            .limit(1)
        ).first()


__all__ = [
    "CategoryTotal",
    "ConsentStore",
    "SqlConsentStore",
    "SqlTransactionStore",
    "TransactionStore",
    "TransactionSummary",
    "count_transactions",
    "get_transaction",
    "list_transactions",
    "summarize_transactions",
]
