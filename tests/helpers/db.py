"""DB helpers for tests: bootstrap a temporary SQLite DB from ORM metadata."""

from __future__ import annotations

import os
from pathlib import Path

from db import Base
from db.client import create_schema, session_scope
from db.models.finance import ConsentRecordRow, TransactionRow
from sqlalchemy import text as sql_text


def bootstrap_sqlite_db(db_file: Path, *, set_default_env: bool = False) -> str:
    """Create a SQLite database file, initialize schema, and return the URL.

    Using a file-backed SQLite DB ensures multiple SQLAlchemy connections share
    the same state (in-memory DBs are per-connection by default).
    """

    url = f"sqlite+pysqlite:///{db_file}"
    db_file.parent.mkdir(parents=True, exist_ok=True)
    create_schema(database_url=url)
    _assert_schema_in_sync(url)

    if set_default_env:
        os.environ.setdefault("DATABASE_URL", url)
    return url


def _assert_schema_in_sync(database_url: str) -> None:
    """ORM column sets match the created SQLite tables."""

    with session_scope(database_url=database_url) as session:
        for model in (TransactionRow, ConsentRecordRow):
            table = model.__tablename__
            rows = session.execute(sql_text(f"PRAGMA table_info('{table}')")).fetchall()
            got = {row[1] for row in rows}  # (cid, name, type, notnull, dflt_value, pk)
            expected = {c.name for c in Base.metadata.tables[table].columns}
            assert got == expected, f"{table} schema drift: {expected ^ got}"


def tamper_consent_row(database_url: str, row_id: str, **changes: object) -> None:
    """Edit a stored consent version behind the application's back."""

    assignments = ", ".join(f"{col} = :{col}" for col in changes)
    with session_scope(database_url=database_url) as session:
        session.execute(
            sql_text(f"UPDATE consent_records SET {assignments} WHERE id = :row_id"),
            {**changes, "row_id": row_id},
        )
