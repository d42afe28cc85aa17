"""Pytest configuration for test isolation.

The database client keeps one process-wide engine bound to the first URL it
sees, and the CLI configures the package logger once per process. Both are
reset around every test so each test can bootstrap its own SQLite file and
capture its own output.
"""

# ruff: noqa: E402, I001
from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest

# Make the workspace packages importable without installing them.
_ROOT = Path(__file__).resolve().parents[1]
_PATHS = [_ROOT / "packages", _ROOT / "libs" / "db" / "src", _ROOT]
sys.path[:0] = [str(p) for p in _PATHS if str(p) not in sys.path]

from db.client import reset_engine
import budget_planning.logging_setup as logging_setup


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop ambient configuration that would leak into protocol settings."""

    for name in (
        "DATABASE_URL",
        "BUDGET_PLANNING_MAX_RECORDS",
        "BUDGET_PLANNING_MAX_ERROR_RATE",
        "BUDGET_PLANNING_MAX_VALUE",
        "BUDGET_PLANNING_UNSIGNED_UNTIL",
        "BUDGET_PLANNING_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _fresh_engine():
    reset_engine()
    yield
    reset_engine()


@pytest.fixture(autouse=True)
def _fresh_logging():
    yield
    logger = logging.getLogger("budget_planning")
    for h in list(logger.handlers):
        logger.removeHandler(h)
    logger.propagate = True
    logging_setup._CONFIGURED = False


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    from tests.helpers.db import bootstrap_sqlite_db

    return bootstrap_sqlite_db(tmp_path / "budget.sqlite3")
