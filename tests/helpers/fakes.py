"""In-memory store implementations for exercising the core without a DB."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

from statement_ingest.errors import ConsentVersionConflict, DuplicateRecord
from statement_ingest.models import ConsentRecord, NormalizedTransaction


class InMemoryTransactionStore:
    def __init__(self) -> None:
        self.rows: dict[tuple[str, str], NormalizedTransaction] = {}

    def insert_or_skip(self, tx: NormalizedTransaction) -> bool:
        key = (tx.external_id, tx.user_id)
        if key in self.rows:
            return False
        self.rows[key] = tx
        return True


class RaisingDuplicateStore(InMemoryTransactionStore):
    """Signals duplicates by raising instead of returning ``False``."""

    def insert_or_skip(self, tx: NormalizedTransaction) -> bool:
        if (tx.external_id, tx.user_id) in self.rows:
            raise DuplicateRecord(tx.external_id, tx.user_id)
        return super().insert_or_skip(tx)


class FailingTransactionStore(InMemoryTransactionStore):
    def __init__(self, fail_ids: set[str]) -> None:
        super().__init__()
        self.fail_ids = fail_ids

    def insert_or_skip(self, tx: NormalizedTransaction) -> bool:
        if tx.external_id in self.fail_ids:
            raise RuntimeError(f"disk full while writing {tx.external_id}")
        return super().insert_or_skip(tx)


class InMemoryConsentStore:
    def __init__(self) -> None:
        self.records: list[ConsentRecord] = []
        # Called with the record about to be appended; may append a rival first.
        self.before_append: Callable[[ConsentRecord], None] | None = None

    def append(self, record: ConsentRecord) -> ConsentRecord:
        if self.before_append is not None:
            hook, self.before_append = self.before_append, None
            hook(record)
        if any(
            r.consent_id == record.consent_id and r.version == record.version
            for r in self.records
        ):
            raise ConsentVersionConflict(record.consent_id, record.version)
        self.records.append(record)
        return record

    def versions(self, consent_id: str) -> list[ConsentRecord]:
        return sorted(
            (r for r in self.records if r.consent_id == consent_id), key=lambda r: r.version
        )

    def find_by_handle(self, consent_handle: str) -> str | None:
        for r in self.records:
            if r.consent_handle == consent_handle:
                return r.consent_id
        return None

    def replace(self, original: ConsentRecord, tampered: ConsentRecord) -> None:
        self.records[self.records.index(original)] = tampered


class FakeClock:
    """Naive-UTC clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)
