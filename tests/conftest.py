"""Pytest configuration for test isolation.

The package reads its settings (API URL, token, page size, log level) from
``AGRI_LEDGER_*`` environment variables, and the CLI loads a ``.env`` from the
working directory. A developer shell or a stray ``.env`` would otherwise leak
into tests, so every test runs with those variables cleared and from an empty
temporary working directory.

The CLI also configures the package logger once per process. We reset that
state after each test so log configuration done by one CLI test does not
affect later tests.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from pathlib import Path

import pytest

from agri_ledger import logging_setup


@pytest.fixture(autouse=True)
def _isolate_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("AGRI_LEDGER_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    yield
    logger = logging.getLogger("agri_ledger")
    for h in list(logger.handlers):
        logger.removeHandler(h)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    logging_setup._CONFIGURED = False
