from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest
from typer.testing import CliRunner

from budget_planning.cli import (
    app,
    cmd_calculate_estimate,
    cmd_export_document,
    cmd_finalize_document,
    cmd_import_document,
    cmd_save_estimate,
)
from budget_planning.encoder import encode
from budget_planning.models import BudgetRecord, DocumentMetadata, DocumentType, Lifecycle
from tests.helpers.db import budget_rows, estimate_count, seed_actuals, seed_pricing


@pytest.fixture
def seeded_db(database_url: str) -> str:
    rows = []
    for month in (1, 2, 3):
        rows += [
            ("Narek Koroukian", "Masafi", "UAE", "Shrink Film", month, "KGS", 300.0),
            ("Narek Koroukian", "Masafi", "UAE", "Shrink Film", month, "AMOUNT", 1500.0),
            ("Sofiane Salah", "Lulu", "UAE", "Labels", month, "KGS", 100.0),
            ("Sofiane Salah", "Lulu", "UAE", "Labels", month, "AMOUNT", 400.0),
        ]
    seed_actuals(database_url=database_url, division="FP-UAE", year=2025, rows=rows)
    seed_pricing(
        database_url=database_url, division="fp", year=2025, entries={"Shrink Film": (5.0, 2.0)}
    )
    return database_url


def _write_final(
    path: Path, *, division: str = "FP-UAE", lifecycle: Lifecycle = Lifecycle.FINAL
) -> Path:
    md = DocumentMetadata(
        division=division,
        owner="Narek Koroukian",
        actual_year=2025,
        budget_year=2026,
        created_at=datetime(2025, 10, 1, tzinfo=UTC),
        document_type=DocumentType.SALES_REP_BUDGET,
        lifecycle=lifecycle,
    )
    doc = encode([BudgetRecord(("Masafi", "UAE", "Shrink Film"), 1, 10.0)], md)
    path.write_text(doc.html, encoding="utf-8")
    return path


def test_export_finalize_import_flow(seeded_db: str, tmp_path: Path, capsys) -> None:
    targets = tmp_path / "targets.json"
    targets.write_text(json.dumps({"1": 900, "2": 600}), encoding="utf-8")
    draft = tmp_path / "draft.html"

    rc = cmd_export_document(
        division="FP-UAE",
        owner="Narek Koroukian",
        source_year=2025,
        targets_path=str(targets),
        output=str(draft),
        database_url=seeded_db,
    )
    assert rc == 0
    assert draft.read_text(encoding="utf-8").startswith("<!-- IPD_BUDGET_SYSTEM_v1.0")

    # A draft upload is refused.
    rc = cmd_import_document(str(draft), kind="sales-rep", database_url=seeded_db)
    assert rc == 1
    assert "Draft documents cannot be imported" in capsys.readouterr().err

    final = tmp_path / "final.html"
    assert cmd_finalize_document(str(draft), output=str(final)) == 0

    rc = cmd_import_document(
        str(final),
        kind="sales-rep",
        division="FP-UAE",
        owner="Narek Koroukian",
        database_url=seeded_db,
    )
    assert rc == 0
    out = capsys.readouterr().out
    assert "Budget import" in out
    kgs = budget_rows(seeded_db, value_kind="KGS")
    assert sorted(r.value for r in kgs) == [600.0, 900.0]
    assert {r.uploaded_filename for r in kgs} == {"final.html"}


def test_export_uses_suggested_filename(seeded_db: str, tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    rc = cmd_export_document(
        division="FP-UAE",
        owner=None,
        source_year=2025,
        final=True,
        targets_path=None,
        database_url=seeded_db,
    )
    assert rc == 0
    written = list(tmp_path.glob("FINAL_Divisional_FP_UAE_2026_*.html"))
    assert len(written) == 1


def test_import_reports_validation_errors(seeded_db: str, tmp_path: Path, capsys) -> None:
    doc = _write_final(tmp_path / "doc.html", division="HC-UAE")

    rc = cmd_import_document(str(doc), kind="sales-rep", division="FP-UAE", database_url=seeded_db)

    assert rc == 1
    assert "Division mismatch" in capsys.readouterr().err
    assert budget_rows(seeded_db) == []


def test_import_rejects_unknown_kind(tmp_path: Path, capsys) -> None:
    doc = _write_final(tmp_path / "doc.html")
    assert cmd_import_document(str(doc), kind="regional") == 1
    assert "unknown kind" in capsys.readouterr().err


def test_import_missing_file(tmp_path: Path, capsys) -> None:
    assert cmd_import_document(str(tmp_path / "nope.html"), kind="sales-rep") == 1
    assert "cannot read" in capsys.readouterr().err


def test_calculate_and_save_estimate(seeded_db: str, tmp_path: Path, capsys) -> None:
    rc = cmd_calculate_estimate(
        division="FP-UAE", year=2025, months=[4, 5], database_url=seeded_db
    )
    assert rc == 0
    out = capsys.readouterr().out
    assert "1,900" in out
    assert "400" in out

    estimates = tmp_path / "estimates.json"
    estimates.write_text(json.dumps({"4": {"kgs": 400, "amount": 1900}}), encoding="utf-8")
    rc = cmd_save_estimate(
        division="FP-UAE",
        year=2025,
        estimates_path=str(estimates),
        approved_by="cfo",
        database_url=seeded_db,
    )
    assert rc == 0
    assert estimate_count(seeded_db, division="FP-UAE", year=2025) == 4


def test_calculate_estimate_without_basis(seeded_db: str, capsys) -> None:
    rc = cmd_calculate_estimate(
        division="FP-UAE", year=2025, months=[1, 2, 3], database_url=seeded_db
    )
    assert rc == 1
    assert "No base months" in capsys.readouterr().err


def test_finalize_applies_edited_records_from_csv(seeded_db: str, tmp_path: Path) -> None:
    draft = _write_final(tmp_path / "draft.html", lifecycle=Lifecycle.DRAFT)
    edits = tmp_path / "edits.csv"
    edits.write_text(
        "customer,country,productGroup,month,value\n"
        "Masafi,UAE,Shrink Film,1,55\n"
        "Masafi,UAE,Shrink Film,2,65.5\n",
        encoding="utf-8",
    )
    final = tmp_path / "final.html"

    assert cmd_finalize_document(str(draft), output=str(final), records_path=str(edits)) == 0
    rc = cmd_import_document(
        str(final), kind="sales-rep", division="FP-UAE", database_url=seeded_db
    )

    assert rc == 0
    kgs = budget_rows(seeded_db, value_kind="KGS")
    assert sorted((r.month, r.value) for r in kgs) == [(1, 55.0), (2, 65.5)]


def test_finalize_reports_unreadable_edits(tmp_path: Path, capsys) -> None:
    draft = _write_final(tmp_path / "draft.html", lifecycle=Lifecycle.DRAFT)
    edits = tmp_path / "edits.csv"
    edits.write_text(
        "customer,country,productGroup,month,value\nMasafi,UAE,Shrink Film,Jan,5\n",
        encoding="utf-8",
    )

    rc = cmd_finalize_document(
        str(draft), output=str(tmp_path / "final.html"), records_path=str(edits)
    )

    assert rc == 1
    assert "line 2" in capsys.readouterr().err
    assert not (tmp_path / "final.html").exists()


def test_typer_finalize_accepts_json_records(tmp_path: Path) -> None:
    draft = _write_final(tmp_path / "draft.html", lifecycle=Lifecycle.DRAFT)
    edits = tmp_path / "edits.json"
    edits.write_text(
        json.dumps(
            {
                "records": [
                    {
                        "customer": "Lulu",
                        "country": "Oman",
                        "productGroup": "Labels",
                        "month": 3,
                        "value": 7,
                    }
                ]
            }
        ),
        encoding="utf-8",
    )
    final = tmp_path / "final.html"

    result = CliRunner().invoke(
        app,
        [
            "finalize-document",
            "--input",
            str(draft),
            "--records",
            str(edits),
            "--output",
            str(final),
        ],
    )

    assert result.exit_code == 0, result.output
    assert "1 record(s)" in result.output
    assert "Lulu" in final.read_text(encoding="utf-8")


def test_save_estimate_rejects_out_of_range_month(seeded_db: str, tmp_path: Path, capsys) -> None:
    estimates = tmp_path / "estimates.json"
    estimates.write_text(json.dumps({"13": {"kgs": 100}}), encoding="utf-8")

    rc = cmd_save_estimate(
        division="FP-UAE", year=2025, estimates_path=str(estimates), database_url=seeded_db
    )

    assert rc == 1
    assert "within 1..12" in capsys.readouterr().err
    assert estimate_count(seeded_db, division="FP-UAE", year=2025) == 0


def test_typer_import_command_exit_code(seeded_db: str, tmp_path: Path) -> None:
    doc = _write_final(tmp_path / "doc.html")
    runner = CliRunner()

    ok = runner.invoke(
        app,
        [
            "import-document",
            "--input",
            str(doc),
            "--division",
            "FP-UAE",
            "--database-url",
            seeded_db,
        ],
    )
    assert ok.exit_code == 0, ok.output
    assert len(budget_rows(seeded_db, value_kind="KGS")) == 1

    bad = runner.invoke(
        app,
        [
            "import-document",
            "--input",
            str(doc),
            "--kind",
            "divisional",
            "--database-url",
            seeded_db,
        ],
    )
    assert bad.exit_code == 1
    assert "Wrong document type" in bad.output


def test_typer_calculate_estimate_accepts_repeated_months(seeded_db: str) -> None:
    result = CliRunner().invoke(
        app,
        [
            "calculate-estimate",
            "--division",
            "FP-UAE",
            "--year",
            "2025",
            "--month",
            "4",
            "--month",
            "5",
            "--database-url",
            seeded_db,
        ],
    )
    assert result.exit_code == 0, result.output
    assert "1,900" in result.output
