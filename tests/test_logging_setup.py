import logging

import pytest

from statement_ingest.logging_setup import LEVEL_ENV_VAR, resolve_level


@pytest.mark.parametrize(
    ("level", "expected"),
    [
        (logging.DEBUG, logging.DEBUG),
        ("warning", logging.WARNING),
        (" ERROR ", logging.ERROR),
        ("15", 15),
        ("chatty", logging.INFO),
    ],
)
def test_resolve_level(level, expected: int) -> None:
    assert resolve_level(level) == expected


def test_resolve_level_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(LEVEL_ENV_VAR, "debug")
    assert resolve_level() == logging.DEBUG

    monkeypatch.delenv(LEVEL_ENV_VAR)
    assert resolve_level() == logging.INFO
