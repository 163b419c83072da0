"""Pytest configuration for test isolation.

``db.client`` keeps one shared engine per process and refuses to rebind it to
a different URL. Every test gets a fresh engine so per-test SQLite files do
not collide.

Environment that the code reads (database URL, aggregator settings, default
currency) is cleared so a developer's shell or ``.env`` cannot leak in. The
working directory is moved to the test's temp dir for the same reason: the
CLI loads ``.env`` from the current directory.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from db.client import reset_engine

_ENV_VARS = (
    "DATABASE_URL",
    "AA_BASE_URL",
    "AA_CLIENT_ID",
    "AA_CLIENT_SECRET",
    "AA_REDIRECT_URL",
    "AA_API_VERSION",
    "STATEMENT_INGEST_DEFAULT_CURRENCY",
)


@pytest.fixture(autouse=True)
def _isolate_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    reset_engine()
    yield
    reset_engine()
