from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from budget_planning.api import calculate_estimate, save_estimate
from budget_planning.errors import MergeTransactionFailed, NoBasisAvailable
from budget_planning.models import ValueKind
from db.client import session_scope
from db.models.budget import ActualLine
from tests.helpers.db import estimate_count, seed_actuals


@pytest.fixture
def actuals_db(database_url: str) -> str:
    rows = []
    for month, (a, b) in {1: (60.0, 40.0), 2: (120.0, 80.0), 3: (180.0, 120.0)}.items():
        rows += [
            ("Narek Koroukian", "Masafi", "UAE", "Shrink Film", month, "KGS", a),
            ("Sofiane Salah", "Agthia", "Oman", "Labels", month, "KGS", b),
            ("Narek Koroukian", "Masafi", "UAE", "Shrink Film", month, "AMOUNT", a * 10),
            ("Sofiane Salah", "Agthia", "Oman", "Labels", month, "AMOUNT", b * 10),
        ]
    seed_actuals(database_url=database_url, division="FP-UAE", year=2025, rows=rows)
    return database_url


def test_calculate_estimate_averages_base_months(actuals_db: str) -> None:
    with session_scope(database_url=actuals_db) as session:
        result = calculate_estimate(session, division="fp-uae", year=2025, target_months=[4, 5])

    assert result.base_months == (1, 2, 3)
    assert result.averages == {ValueKind.KGS: 200, ValueKind.AMOUNT: 2000}
    assert result.record_count == 2
    assert set(result.per_month()) == {4, 5}


def test_calculate_estimate_needs_a_base_month(actuals_db: str) -> None:
    with session_scope(database_url=actuals_db) as session:
        with pytest.raises(NoBasisAvailable):
            calculate_estimate(session, division="FP-UAE", year=2025, target_months=[1, 2, 3])


def test_save_estimate_allocates_by_share(actuals_db: str) -> None:
    saved = save_estimate(
        division="FP-UAE",
        year=2025,
        estimates={4: {ValueKind.KGS: 1000.0, ValueKind.AMOUNT: 5000.0}},
        approved_by="finance@example.com",
        database_url=actuals_db,
    )

    assert saved.months == (4,)
    assert saved.base_months == (1, 2, 3)
    assert saved.inserted == 4
    assert saved.combinations == 2

    with session_scope(database_url=actuals_db) as session:
        rows = session.execute(
            select(ActualLine).where(ActualLine.line_type == "ESTIMATE")
        ).scalars().all()
        got = {(r.sales_rep, r.value_kind): r.value for r in rows}
        approvers = {r.uploaded_by for r in rows}

    assert got[("Narek Koroukian", "KGS")] == pytest.approx(600.0)
    assert got[("Sofiane Salah", "KGS")] == pytest.approx(400.0)
    assert got[("Narek Koroukian", "AMOUNT")] == pytest.approx(3000.0)
    assert approvers == {"finance@example.com"}


def test_save_estimate_replaces_previous_estimates(actuals_db: str) -> None:
    first = save_estimate(
        division="FP-UAE", year=2025, estimates={4: {"KGS": 10.0}}, database_url=actuals_db
    )
    second = save_estimate(
        division="FP-UAE", year=2025, estimates={4: {"KGS": 20.0}}, database_url=actuals_db
    )

    assert first.deleted == 0
    assert second.deleted == first.inserted
    assert estimate_count(actuals_db, division="FP-UAE", year=2025) == second.inserted


def test_missing_kind_is_written_as_zero(actuals_db: str) -> None:
    saved = save_estimate(
        division="FP-UAE", year=2025, estimates={6: {"KGS": 10.0}}, database_url=actuals_db
    )
    with session_scope(database_url=actuals_db) as session:
        amounts = session.execute(
            select(ActualLine.value).where(
                ActualLine.line_type == "ESTIMATE", ActualLine.value_kind == "AMOUNT"
            )
        ).scalars().all()

    assert saved.inserted == 4
    assert amounts == [0.0, 0.0]


def test_save_estimate_without_months_is_rejected(actuals_db: str) -> None:
    with pytest.raises(ValueError):
        save_estimate(division="FP-UAE", year=2025, estimates={}, database_url=actuals_db)


def test_failed_estimate_commit_is_a_merge_failure(actuals_db: str, monkeypatch) -> None:
    def _failing_commit(self):
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(Session, "commit", _failing_commit)
    with pytest.raises(MergeTransactionFailed) as exc:
        save_estimate(
            division="FP-UAE",
            year=2025,
            estimates={4: {ValueKind.KGS: 1000.0}},
            database_url=actuals_db,
        )
    monkeypatch.undo()

    assert exc.value.details == {"division": "FP-UAE", "year": 2025}
    assert estimate_count(actuals_db, division="FP-UAE", year=2025) == 0
