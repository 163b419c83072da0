"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the ingestion tables used by ``statement_ingest``.
"""

from .finance import Base, ConsentRecordRow, TransactionRow

__all__ = [
    "Base",
    "ConsentRecordRow",
    "TransactionRow",
]
