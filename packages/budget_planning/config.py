"""Protocol limits and policy knobs resolved from the environment.

Entrypoints load ``.env`` (``python-dotenv``) before calling
:func:`load_settings`; library code receives a :class:`ProtocolSettings`
instance and never reads the environment itself.

Environment variables
---------------------
``BUDGET_PLANNING_MAX_RECORDS``
    Hard cap on records per document (default ``10000``).
``BUDGET_PLANNING_MAX_ERROR_RATE``
    Tolerated fraction of invalid records (default ``0.10``).
``BUDGET_PLANNING_MAX_VALUE``
    Upper sanity bound for a single record value (default ``1e9``).
``BUDGET_PLANNING_UNSIGNED_UNTIL``
    ISO date after which documents without a signature line are rejected.
    Unset means unsigned documents are accepted with a warning.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date

from .logging_setup import get_logger

_log = get_logger("budget_planning.config")

PROTOCOL_VERSION = "1.0"


@dataclass(frozen=True, slots=True)
class ProtocolSettings:
    max_records: int = 10_000
    max_error_rate: float = 0.10
    max_reported_issues: int = 10
    max_value: float = 1_000_000_000.0
    min_budget_year: int = 2020
    max_budget_year: int = 2100
    supported_versions: tuple[str, ...] = field(default=(PROTOCOL_VERSION,))
    unsigned_until: date | None = None

    def unsigned_allowed(self, today: date | None = None) -> bool:
        """Whether the legacy allowance for unsigned documents is still open."""

        if self.unsigned_until is None:
            return True
        return (today or date.today()) <= self.unsigned_until


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        _log.warning("Ignoring non-integer %s=%r", name, raw)
        return default
    if value <= 0:
        _log.warning("Ignoring non-positive %s=%r", name, raw)
        return default
    return value


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw.strip())
    except ValueError:
        _log.warning("Ignoring non-numeric %s=%r", name, raw)
        return default
    if value < 0:
        _log.warning("Ignoring negative %s=%r", name, raw)
        return default
    return value


def _env_date(env: Mapping[str, str], name: str) -> date | None:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return date.fromisoformat(raw.strip())
    except ValueError as e:
        raise ValueError(f"{name} must be an ISO date (YYYY-MM-DD), got {raw!r}") from e


def load_settings(env: Mapping[str, str] | None = None) -> ProtocolSettings:
    """Build settings from ``env`` (defaults to ``os.environ``)."""

    src = os.environ if env is None else env
    return ProtocolSettings(
        max_records=_env_int(src, "BUDGET_PLANNING_MAX_RECORDS", 10_000),
        max_error_rate=_env_float(src, "BUDGET_PLANNING_MAX_ERROR_RATE", 0.10),
        max_value=_env_float(src, "BUDGET_PLANNING_MAX_VALUE", 1_000_000_000.0),
        unsigned_until=_env_date(src, "BUDGET_PLANNING_UNSIGNED_UNTIL"),
    )


__all__ = ["PROTOCOL_VERSION", "ProtocolSettings", "load_settings"]
